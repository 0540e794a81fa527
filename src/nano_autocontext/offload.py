# -*- coding: utf-8 -*-
"""
卸载存储 - 保存被压缩替换掉的原始消息

压缩策略把大消息或整段历史替换为预览/摘要时，原始内容以 UUID 为键
存入卸载存储。模型可以通过 context_reload 工具按 UUID 取回原文。

提供两种实现：
1. InMemoryContextOffloader - 内存字典，可通过 state_dict 序列化
2. LocalFileContextOffloader - 每个 UUID 一个 JSON 文件
"""

import json
import uuid
from abc import abstractmethod
from pathlib import Path

import structlog

from .exception import OffloadNotFoundError
from .message import Msg

logger = structlog.get_logger(__name__)


class ContextOffloaderBase:
    """卸载存储基类

    卸载和读取都是同步的本地操作，不会挂起压缩流程。
    """

    @abstractmethod
    def offload(self, offload_uuid: str, msgs: list[Msg]) -> None:
        """保存一组消息"""

    @abstractmethod
    def reload(self, offload_uuid: str) -> list[Msg]:
        """读取一组消息

        Raises:
            OffloadNotFoundError: UUID 不存在
        """

    @abstractmethod
    def delete(self, offload_uuid: str) -> None:
        """删除一组消息，UUID 不存在时什么也不做"""

    @abstractmethod
    def clear(self) -> None:
        """清空所有卸载内容"""

    @abstractmethod
    def keys(self) -> list[str]:
        """所有已保存的 UUID"""

    def has(self, offload_uuid: str) -> bool:
        return offload_uuid in self.keys()


class InMemoryContextOffloader(ContextOffloaderBase):
    """基于内存字典的卸载存储

    Example:
        >>> offloader = InMemoryContextOffloader()
        >>> offloader.offload("5f0c...", [msg])
        >>> offloader.reload("5f0c...")
    """

    def __init__(self) -> None:
        self._store: dict[str, list[Msg]] = {}

    def offload(self, offload_uuid: str, msgs: list[Msg]) -> None:
        self._store[offload_uuid] = list(msgs)
        logger.debug("消息已卸载", uuid=offload_uuid, count=len(msgs))

    def reload(self, offload_uuid: str) -> list[Msg]:
        if offload_uuid not in self._store:
            raise OffloadNotFoundError(offload_uuid)
        return list(self._store[offload_uuid])

    def delete(self, offload_uuid: str) -> None:
        self._store.pop(offload_uuid, None)

    def clear(self) -> None:
        self._store.clear()

    def keys(self) -> list[str]:
        return list(self._store)

    def has(self, offload_uuid: str) -> bool:
        return offload_uuid in self._store

    def state_dict(self) -> dict:
        """获取状态字典用于序列化"""
        return {
            key: [msg.to_dict() for msg in msgs]
            for key, msgs in self._store.items()
        }

    def load_state_dict(self, state_dict: dict) -> None:
        """从状态字典恢复"""
        self._store = {
            key: [Msg.from_dict(data) for data in msgs]
            for key, msgs in state_dict.items()
        }


class LocalFileContextOffloader(ContextOffloaderBase):
    """基于本地文件的卸载存储

    每个 UUID 保存为 ``<base_dir>/<uuid>.json``，内容是消息字典列表。
    不是合法 UUID 的键一律视为不存在，避免拼出目录外的路径。

    Example:
        >>> offloader = LocalFileContextOffloader("./offload")
    """

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _is_valid_key(offload_uuid: str) -> bool:
        try:
            return str(uuid.UUID(offload_uuid)) == offload_uuid.lower()
        except (ValueError, AttributeError, TypeError):
            return False

    def _path(self, offload_uuid: str) -> Path:
        return self.base_dir / f"{offload_uuid.lower()}.json"

    def offload(self, offload_uuid: str, msgs: list[Msg]) -> None:
        if not self._is_valid_key(offload_uuid):
            raise ValueError(f"卸载键必须是 UUID: {offload_uuid!r}")

        self._path(offload_uuid).write_text(
            json.dumps([msg.to_dict() for msg in msgs], ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        logger.debug("消息已卸载到文件", uuid=offload_uuid, count=len(msgs))

    def reload(self, offload_uuid: str) -> list[Msg]:
        if not self._is_valid_key(offload_uuid):
            raise OffloadNotFoundError(offload_uuid)

        path = self._path(offload_uuid)
        if not path.exists():
            raise OffloadNotFoundError(offload_uuid)

        data = json.loads(path.read_text(encoding="utf-8"))
        return [Msg.from_dict(item) for item in data]

    def delete(self, offload_uuid: str) -> None:
        if self._is_valid_key(offload_uuid):
            self._path(offload_uuid).unlink(missing_ok=True)

    def clear(self) -> None:
        for key in self.keys():
            self._path(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        return sorted(
            path.stem
            for path in self.base_dir.glob("*.json")
            if self._is_valid_key(path.stem)
        )

    def has(self, offload_uuid: str) -> bool:
        return self._is_valid_key(offload_uuid) and self._path(offload_uuid).exists()
