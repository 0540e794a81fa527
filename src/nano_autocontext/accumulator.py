# -*- coding: utf-8 -*-
"""
流式工具调用累积器

流式输出时，一个工具调用会被拆成多个 chunk：

    chunk 1: index=0, id="call_1", name="get_weather", arguments='{"ci'
    chunk 2: index=0,                                  arguments='ty": "北'
    chunk 3: index=0,                                  arguments='京"}'

格式化器的 parse_chunk 把第 2、3 个 chunk 解析为 fragment=True 的 ToolUseBlock，
本模块负责以工具调用 id 为键把它们拼接成完整的工具调用。

一个累积器只属于一个正在进行的流式响应，不能在多个流之间共享。
"""

import json
from typing import Iterable

import structlog

from .message import ContentBlock, ToolUseBlock

logger = structlog.get_logger(__name__)


def is_fragment(block: ContentBlock) -> bool:
    """判断内容块是否为流式工具调用片段"""
    return block.get("type") == "tool_use" and bool(block.get("fragment"))


def complete_tool_calls(blocks: Iterable[ContentBlock]) -> list[ToolUseBlock]:
    """从内容块列表中挑出完整的工具调用（排除片段）"""
    return [
        block
        for block in blocks
        if block.get("type") == "tool_use" and not is_fragment(block)
    ]


class ToolCallAccumulator:
    """按工具调用 id 累积流式片段

    Example:
        >>> accumulator = ToolCallAccumulator()
        >>> for chunk in stream:
        ...     delta, accumulator = formatter.parse_chunk(chunk, accumulator)
        >>> tool_calls = accumulator.get_tool_calls()
    """

    def __init__(self) -> None:
        self._index_to_id: dict[int, str] = {}
        self._names: dict[str, str] = {}
        self._arguments: dict[str, list[str]] = {}
        # 记录首次出现的顺序
        self._order: list[str] = []

    def resolve_id(self, index: int | None, call_id: str | None) -> str:
        """确定一个 chunk 所属的工具调用 id

        chunk 自带 id 时记录 index -> id 的映射；后续只带 index 的 chunk
        通过映射找回 id。
        """
        index = 0 if index is None else index
        if call_id:
            self._index_to_id[index] = call_id
            return call_id
        if index in self._index_to_id:
            return self._index_to_id[index]

        call_id = f"fragment_{index}"
        self._index_to_id[index] = call_id
        return call_id

    def add(self, block: ToolUseBlock) -> None:
        """累积一个工具调用块（完整块或片段）"""
        call_id = block["id"]
        if call_id not in self._arguments:
            self._arguments[call_id] = []
            self._order.append(call_id)

        if block.get("name") and not block.get("fragment"):
            self._names[call_id] = block["name"]

        raw = block.get("raw_input")
        if raw:
            self._arguments[call_id].append(raw)

    def get_arguments(self, call_id: str) -> str:
        """获取某个工具调用已累积的参数文本"""
        return "".join(self._arguments.get(call_id, []))

    def get_name(self, call_id: str) -> str | None:
        """获取工具名，尚未收到名字时返回 None"""
        return self._names.get(call_id)

    def is_complete(self, call_id: str) -> bool:
        """已知名字且参数是一个完整的 JSON 对象"""
        if call_id not in self._names:
            return False
        raw = self.get_arguments(call_id).strip()
        if not raw:
            return True
        try:
            return isinstance(json.loads(raw), dict)
        except json.JSONDecodeError:
            return False

    def get_tool_calls(self) -> list[ToolUseBlock]:
        """构建合并后的工具调用列表

        只返回已经拿到名字的调用；参数无法解析时 input 为空字典，
        原始文本保留在 raw_input 中。
        """
        tool_calls = []
        for call_id in self._order:
            name = self._names.get(call_id)
            raw = self.get_arguments(call_id)

            if not name:
                logger.debug("工具调用尚未收到名字，暂不输出", id=call_id)
                continue

            arguments: dict = {}
            if raw.strip():
                try:
                    parsed = json.loads(raw)
                    if isinstance(parsed, dict):
                        arguments = parsed
                except json.JSONDecodeError:
                    logger.debug(
                        "工具调用参数不完整或不是合法 JSON",
                        id=call_id,
                        name=name,
                        raw=raw[:100],
                    )

            tool_calls.append(
                ToolUseBlock(
                    type="tool_use",
                    id=call_id,
                    name=name,
                    input=arguments,
                    raw_input=raw,
                )
            )
        return tool_calls

    def clear(self) -> None:
        """清空累积状态"""
        self._index_to_id.clear()
        self._names.clear()
        self._arguments.clear()
        self._order.clear()

    def __len__(self) -> int:
        return len(self._order)

    def __bool__(self) -> bool:
        return True
