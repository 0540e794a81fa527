# -*- coding: utf-8 -*-
"""
记忆模块 - 管理对话历史

本模块定义了记忆系统的抽象和基础实现：
1. MemoryBase - 记忆基类，定义统一接口
2. InMemoryMemory - 基于列表的简单实现

AutoContextMemory（见 auto_context_memory.py）在此基础上增加了自动压缩，
内部的工作记录和原始记录都是 InMemoryMemory。
"""

from abc import abstractmethod

from .message import Msg


class MemoryBase:
    """记忆基类 - 定义记忆管理的统一接口

    所有记忆实现都应继承此类并实现抽象方法。
    """

    @abstractmethod
    async def add(self, msg: Msg | list[Msg] | None) -> None:
        """添加消息到记忆

        Args:
            msg: 要添加的消息，可以是单条消息、消息列表或 None
        """

    @abstractmethod
    async def get_memory(self) -> list[Msg]:
        """获取记忆中的消息"""

    @abstractmethod
    async def delete(self, index: int | list[int]) -> None:
        """删除指定索引的消息"""

    @abstractmethod
    async def clear(self) -> None:
        """清空记忆"""

    @abstractmethod
    async def size(self) -> int:
        """获取记忆中消息的数量"""

    def state_dict(self) -> dict:
        """获取记忆的状态字典，用于序列化"""
        raise NotImplementedError

    def load_state_dict(self, state_dict: dict) -> None:
        """从状态字典恢复记忆"""
        raise NotImplementedError


class InMemoryMemory(MemoryBase):
    """基于列表的记忆实现

    Example:
        >>> memory = InMemoryMemory()
        >>> await memory.add(Msg(name="user", content="你好", role="user"))
        >>> msgs = await memory.get_memory()
        >>> print(len(msgs))  # 1
    """

    def __init__(self) -> None:
        self.content: list[Msg] = []

    async def add(
        self,
        msg: Msg | list[Msg] | None,
        allow_duplicates: bool = False,
    ) -> None:
        """添加消息到记忆

        Args:
            msg: 要添加的消息
            allow_duplicates: 是否允许重复消息（基于消息 ID 判断）
        """
        if msg is None:
            return

        if isinstance(msg, Msg):
            messages = [msg]
        else:
            messages = list(msg)

        for m in messages:
            if not isinstance(m, Msg):
                raise TypeError(f"只能添加 Msg，但收到 {type(m)}")

        if not allow_duplicates:
            existing_ids = {m.id for m in self.content}
            messages = [m for m in messages if m.id not in existing_ids]

        self.content.extend(messages)

    async def get_memory(self) -> list[Msg]:
        """获取所有消息（返回副本）"""
        return list(self.content)

    async def delete(self, index: int | list[int]) -> None:
        """删除指定索引的消息，越界的索引会被忽略"""
        if isinstance(index, int):
            index = [index]

        # 从后往前删除，避免索引错位
        for idx in sorted(set(index), reverse=True):
            if 0 <= idx < len(self.content):
                self.content.pop(idx)

    async def clear(self) -> None:
        self.content = []

    async def size(self) -> int:
        return len(self.content)

    def state_dict(self) -> dict:
        return {"content": [msg.to_dict() for msg in self.content]}

    def load_state_dict(self, state_dict: dict) -> None:
        self.content = [
            Msg.from_dict(data) for data in state_dict.get("content", [])
        ]
