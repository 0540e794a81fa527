# -*- coding: utf-8 -*-
"""
AutoContextMemory - 自动压缩上下文的记忆

对话越长，发给模型的上下文越大。AutoContextMemory 维护两份记录：

- working（工作记录）：发给模型的消息列表，会被压缩策略改写
- original（原始记录）：只追加、从不压缩的完整历史

以及一个卸载存储（offload），保存被替换掉的原始内容，可按 UUID 取回。

每次 get_memory() 时先检查阈值：

    消息数 >= msg_threshold  或  估算 token 数 >= max_token * token_ratio

超出阈值时按固定顺序尝试五个压缩策略，每个策略生效后重新检查阈值，
回到阈值以内即停止：

    1. 压缩历史工具调用          连续的工具调用/结果 -> 一条摘要
    2. 卸载大消息（保留最近 N 条） 大消息 -> 预览 + UUID
    3. 卸载大消息（不保留）       仅在策略 2 没有效果时执行
    4. 摘要历史轮次              一轮对话 -> 一条摘要
    5. 压缩当前轮次              过大的工具结果 -> 摘要；仍超出阈值时整个轮次 -> 一条摘要

所有策略都执行完仍超出阈值时，返回尽力压缩后的结果，不会报错。
"""

import json
import uuid
from typing import Awaitable, Callable, Sequence

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exception import CompressionSkipped
from .memory import InMemoryMemory, MemoryBase
from .message import Msg, TextBlock, ToolResultBlock, ToolUseBlock
from .offload import ContextOffloaderBase, InMemoryContextOffloader
from .prompts import (
    COMPRESSED_CURRENT_ROUND_FORMAT,
    COMPRESSED_LARGE_MESSAGE_FORMAT,
    COMPRESSED_TOOL_INVOCATION_FORMAT,
    COMPRESSED_TOOL_INVOCATION_OFFLOAD_HINT,
    CURRENT_ROUND_COMPRESS_PROMPT_END,
    CURRENT_ROUND_COMPRESS_PROMPT_START,
    CURRENT_ROUND_LARGE_MESSAGE_PROMPT_END,
    CURRENT_ROUND_LARGE_MESSAGE_PROMPT_START,
    CURRENT_ROUND_TOOL_CALL_LINE,
    LARGE_MESSAGE_OFFLOAD_FORMAT,
    PLAN_TOOL_STUB,
    PREVIOUS_ROUND_SUMMARY_FORMAT,
    PREVIOUS_ROUND_SUMMARY_OFFLOAD_HINT,
    PREVIOUS_ROUND_SUMMARY_PROMPT_END,
    PREVIOUS_ROUND_SUMMARY_PROMPT_START,
    TOOL_INVOCATION_COMPRESS_PROMPT_END,
    TOOL_INVOCATION_COMPRESS_PROMPT_START,
    build_summary_request,
    find_offload_uuids,
)
from .summarizer import SummarizerBase
from .token_counter import estimate_tokens, render_block_text, render_msg_text

logger = structlog.get_logger(__name__)

PLAN_TOOL_NAMES = (
    "create_plan",
    "revise_current_plan",
    "update_subtask_state",
    "finish_subtask",
    "view_subtasks",
    "finish_plan",
    "view_historical_plans",
    "recover_historical_plan",
)

# 合并当前轮次时，每个工具结果最多保留的字符数
CURRENT_ROUND_RESULT_PREVIEW = 500


class AutoContextConfig(BaseSettings):
    """AutoContextMemory 配置

    可以通过 AUTO_CONTEXT_ 前缀的环境变量覆盖，例如
    AUTO_CONTEXT_MSG_THRESHOLD=50。
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTO_CONTEXT_",
        case_sensitive=False,
        extra="ignore",
    )

    # 触发压缩的消息数
    msg_threshold: int = Field(default=100, ge=1)

    # 模型上下文上限（token），实际阈值为 max_token * token_ratio
    max_token: int = Field(default=128 * 1024, ge=1)
    token_ratio: float = Field(default=0.75, gt=0, le=1)

    # 策略 2 中不参与卸载的最近消息数
    last_keep: int = Field(default=50, ge=0)

    # 单条消息超过该字符数视为大消息
    large_payload_threshold: int = Field(default=5 * 1024, ge=1)

    # 卸载后保留的预览字符数
    offload_single_preview: int = Field(default=200, ge=0)

    # 策略 1 中连续工具消息的最小长度
    min_consecutive_tool_messages: int = Field(default=6, ge=1)

    # 策略 5 中工具结果超过该字符数才会被摘要
    current_round_result_threshold: int = Field(default=2 * 1024, ge=1)

    # 合并当前轮次时，摘要长度相对原文的目标比例
    current_round_compress_ratio: float = Field(default=0.3, gt=0, le=1)

    # 计划类工具，压缩时只保留"调用过"这一事实
    plan_tool_names: list[str] = Field(default_factory=lambda: list(PLAN_TOOL_NAMES))

    # 自定义摘要提示词，None 表示使用 prompts.py 中的默认提示词。
    # 自定义提示词原样放在对话记录之前，不再追加默认的结尾提示。
    previous_round_tool_compress_prompt: str | None = None
    previous_round_summary_prompt: str | None = None
    current_round_large_message_prompt: str | None = None
    current_round_compress_prompt: str | None = None

    @property
    def token_threshold(self) -> int:
        return int(self.max_token * self.token_ratio)


Strategy = Callable[[list[Msg], dict[str, list[Msg]]], Awaitable[list[Msg]]]


def _is_tool_related(msg: Msg) -> bool:
    return (
        msg.role == "tool"
        or msg.has_content_blocks("tool_use")
        or msg.has_content_blocks("tool_result")
    )


def _is_final_reply(msg: Msg) -> bool:
    """不带工具调用的 assistant 消息，即一轮对话的最终回复"""
    return msg.role == "assistant" and not msg.has_content_blocks("tool_use")


def _last_index(msgs: Sequence[Msg], predicate: Callable[[Msg], bool]) -> int | None:
    for idx in range(len(msgs) - 1, -1, -1):
        if predicate(msgs[idx]):
            return idx
    return None


def _is_offloaded(msg: Msg) -> bool:
    if msg.metadata and msg.metadata.get("offload_uuid"):
        return True
    return bool(find_offload_uuids(render_msg_text(msg)))


class AutoContextMemory(MemoryBase):
    """自动压缩上下文的记忆

    Example:
        >>> summarizer = ModelSummarizer(OpenAIChatModel("gpt-4o-mini", stream=False))
        >>> memory = AutoContextMemory(
        ...     summarizer=summarizer,
        ...     config=AutoContextConfig(msg_threshold=30),
        ... )
        >>> await memory.add(Msg(name="user", content="你好", role="user"))
        >>> msgs = await memory.get_memory()  # 必要时自动压缩
    """

    def __init__(
        self,
        summarizer: SummarizerBase | None = None,
        config: AutoContextConfig | None = None,
        offloader: ContextOffloaderBase | None = None,
        name: str = "assistant",
    ) -> None:
        """
        Args:
            summarizer: 摘要器；为 None 时需要摘要的策略会被跳过
            config: 压缩配置
            offloader: 卸载存储，默认保存在内存中
            name: 压缩生成的消息使用的发送者名称
        """
        self.summarizer = summarizer
        self.config = config or AutoContextConfig()
        self.offloader = offloader or InMemoryContextOffloader()
        self.name = name

        self.working = InMemoryMemory()
        self.original = InMemoryMemory()

    # ============== 记忆接口 ==============

    async def add(self, msg: Msg | list[Msg] | None) -> None:
        """追加消息，同时写入工作记录和原始记录"""
        await self.working.add(msg)
        await self.original.add(msg)

    async def get_memory(self) -> list[Msg]:
        """获取工作记录，超出阈值时先压缩"""
        if self._exceeds_threshold(self.working.content):
            await self._compress()
        return await self.working.get_memory()

    async def delete(self, index: int | list[int]) -> None:
        """删除工作记录中的消息，原始记录不受影响"""
        await self.working.delete(index)

    async def clear(self) -> None:
        """清空工作记录和卸载存储，原始记录保留"""
        await self.working.clear()
        self.offloader.clear()

    async def size(self) -> int:
        """工作记录中的消息数"""
        return await self.working.size()

    async def get_original_memory(self) -> list[Msg]:
        """获取完整的原始记录"""
        return await self.original.get_memory()

    async def retrieve_offloaded(self, offload_uuid: str) -> list[Msg]:
        """按 UUID 取回被卸载的原始消息

        Raises:
            OffloadNotFoundError: UUID 不存在或已被清除
        """
        return self.offloader.reload(offload_uuid)

    def state_dict(self) -> dict:
        """三份记录分别序列化；文件卸载存储自行持久化，不包含在内"""
        offload = {}
        if isinstance(self.offloader, InMemoryContextOffloader):
            offload = self.offloader.state_dict()

        return {
            "working": [msg.to_dict() for msg in self.working.content],
            "original": [msg.to_dict() for msg in self.original.content],
            "offload": offload,
        }

    def load_state_dict(self, state_dict: dict) -> None:
        self.working.content = [
            Msg.from_dict(data) for data in state_dict.get("working", [])
        ]
        self.original.content = [
            Msg.from_dict(data) for data in state_dict.get("original", [])
        ]
        if isinstance(self.offloader, InMemoryContextOffloader):
            self.offloader.load_state_dict(state_dict.get("offload", {}))

    # ============== 压缩流程 ==============

    def _exceeds_threshold(self, msgs: Sequence[Msg]) -> bool:
        return (
            len(msgs) >= self.config.msg_threshold
            or estimate_tokens(msgs) >= self.config.token_threshold
        )

    @staticmethod
    def _reduced(before: Sequence[Msg], after: Sequence[Msg]) -> bool:
        return len(after) < len(before) or estimate_tokens(after) < estimate_tokens(before)

    async def _compress(self) -> None:
        """按顺序执行压缩策略，直到回到阈值以内"""
        strategies: list[tuple[str, Strategy]] = [
            ("compress_tool_invocations", self._compress_tool_invocations),
            ("offload_large_messages", self._offload_large_messages_keep_last),
            ("offload_large_messages_all", self._offload_large_messages_all),
            ("summarize_previous_rounds", self._summarize_previous_rounds),
            ("compress_current_round", self._compress_current_round),
        ]

        logger.info(
            "上下文超出阈值，开始压缩",
            messages=len(self.working.content),
            tokens=estimate_tokens(self.working.content),
            msg_threshold=self.config.msg_threshold,
            token_threshold=self.config.token_threshold,
        )

        keep_last_offload_applied = False

        for strategy_name, strategy in strategies:
            if strategy_name == "offload_large_messages_all" and keep_last_offload_applied:
                continue

            before = list(self.working.content)
            # 策略产生的卸载内容先暂存，策略生效后才写入卸载存储
            pending: dict[str, list[Msg]] = {}

            try:
                after = await strategy(before, pending)
            except CompressionSkipped as e:
                logger.info("压缩策略跳过", strategy=e.strategy, reason=e.reason)
                continue

            if not self._reduced(before, after):
                logger.debug("压缩策略没有效果，已回滚", strategy=strategy_name)
                continue

            for offload_uuid, msgs in pending.items():
                self.offloader.offload(offload_uuid, msgs)
            self.working.content = after

            if strategy_name == "offload_large_messages":
                keep_last_offload_applied = True

            logger.info(
                "压缩策略生效",
                strategy=strategy_name,
                messages_before=len(before),
                messages_after=len(after),
                tokens_before=estimate_tokens(before),
                tokens_after=estimate_tokens(after),
                offloaded=len(pending),
            )

            if not self._exceeds_threshold(after):
                return

        logger.warning(
            "所有压缩策略执行完毕，仍超出阈值",
            messages=len(self.working.content),
            tokens=estimate_tokens(self.working.content),
        )

    async def _summarize(
        self,
        strategy: str,
        prompt_start: str,
        prompt_end: str,
        transcript: str,
        override: str | None = None,
    ) -> str:
        """调用摘要器，失败时抛出 CompressionSkipped

        override 为配置中的自定义提示词，设置后替换默认的开头和结尾提示。
        """
        if override:
            prompt_start, prompt_end = override, ""

        if self.summarizer is None:
            raise CompressionSkipped(strategy, "未配置摘要器")

        request = Msg(
            name="user",
            content=build_summary_request(prompt_start, transcript, prompt_end),
            role="user",
        )

        try:
            result = await self.summarizer.summarize([request])
        except Exception as e:
            raise CompressionSkipped(strategy, f"摘要失败: {e}") from e

        text = result.get_text_content() if isinstance(result, Msg) else None
        if not text or not text.strip():
            raise CompressionSkipped(strategy, "摘要结果为空")
        return text.strip()

    @staticmethod
    def _transcript(msgs: Sequence[Msg]) -> str:
        return "\n".join(
            f"{msg.role} {msg.name or 'Unknown'}: {render_msg_text(msg)}"
            for msg in msgs
        )

    def _summary_msg(self, text: str, kind: str, offload_uuid: str) -> Msg:
        return Msg(
            name=self.name,
            content=[TextBlock(type="text", text=text)],
            role="assistant",
            metadata={"compressed": kind, "offload_uuid": offload_uuid},
        )

    # ============== 策略 1：压缩历史工具调用 ==============

    async def _compress_tool_invocations(
        self,
        msgs: list[Msg],
        pending: dict[str, list[Msg]],
    ) -> list[Msg]:
        """把最新回复之前足够长的连续工具消息压缩为一条摘要"""
        strategy = "compress_tool_invocations"

        boundary = _last_index(msgs, _is_final_reply)
        if boundary is None:
            boundary = max(len(msgs) - self.config.last_keep, 0)

        # 找出完整（不被边界截断）的连续工具消息
        runs = []
        start = None
        for idx, msg in enumerate(msgs + [None]):
            if msg is not None and _is_tool_related(msg):
                if start is None:
                    start = idx
                continue
            if start is not None:
                if idx <= boundary and idx - start >= self.config.min_consecutive_tool_messages:
                    runs.append((start, idx))
                start = None

        if not runs:
            raise CompressionSkipped(strategy, "没有足够长的历史工具调用")

        result = list(msgs)
        # 从后往前替换，前面的索引保持不变
        for start, end in reversed(runs):
            run = msgs[start:end]
            tool_names = self._tool_names(run)

            if tool_names and tool_names <= set(self.config.plan_tool_names):
                summary = PLAN_TOOL_STUB.format(tools=", ".join(sorted(tool_names)))
            else:
                try:
                    summary = await self._summarize(
                        strategy,
                        TOOL_INVOCATION_COMPRESS_PROMPT_START,
                        TOOL_INVOCATION_COMPRESS_PROMPT_END.format(
                            plan_tools=", ".join(self.config.plan_tool_names),
                        ),
                        self._transcript(run),
                        self.config.previous_round_tool_compress_prompt,
                    )
                except CompressionSkipped as e:
                    logger.info("工具调用摘要失败，保留原消息", reason=e.reason, start=start)
                    continue

            offload_uuid = str(uuid.uuid4())
            pending[offload_uuid] = run
            text = COMPRESSED_TOOL_INVOCATION_FORMAT.format(
                summary=summary,
            ) + COMPRESSED_TOOL_INVOCATION_OFFLOAD_HINT.format(uuid=offload_uuid)

            result[start:end] = [
                self._summary_msg(text, "tool_invocations", offload_uuid)
            ]

        return result

    @staticmethod
    def _tool_names(msgs: Sequence[Msg]) -> set[str]:
        names = set()
        for msg in msgs:
            for block in msg.get_content_blocks():
                if block.get("type") in ("tool_use", "tool_result") and block.get("name"):
                    names.add(block["name"])
        return names

    # ============== 策略 2、3：卸载大消息 ==============

    async def _offload_large_messages_keep_last(
        self,
        msgs: list[Msg],
        pending: dict[str, list[Msg]],
    ) -> list[Msg]:
        limit = _last_index(msgs, _is_final_reply)
        if limit is None:
            limit = len(msgs)
        limit = min(limit, len(msgs) - self.config.last_keep)
        return self._offload_large_messages(msgs, pending, limit)

    async def _offload_large_messages_all(
        self,
        msgs: list[Msg],
        pending: dict[str, list[Msg]],
    ) -> list[Msg]:
        limit = _last_index(msgs, _is_final_reply)
        if limit is None:
            limit = len(msgs)
        return self._offload_large_messages(msgs, pending, limit)

    def _offload_large_messages(
        self,
        msgs: list[Msg],
        pending: dict[str, list[Msg]],
        limit: int,
    ) -> list[Msg]:
        """把 limit 之前的大消息替换为预览 + UUID"""
        result = list(msgs)

        for idx in range(max(limit, 0)):
            msg = msgs[idx]
            if msg.role == "system" or _is_offloaded(msg):
                continue

            text = render_msg_text(msg)
            if len(text) <= self.config.large_payload_threshold:
                continue

            offload_uuid = str(uuid.uuid4())
            pending[offload_uuid] = [msg]
            result[idx] = self._offloaded_copy(msg, text, offload_uuid)

            logger.debug(
                "大消息已替换为预览",
                index=idx,
                size=len(text),
                uuid=offload_uuid,
            )

        return result

    def _preview(self, text: str, offload_uuid: str) -> str:
        preview = text[: self.config.offload_single_preview] + "..."
        return LARGE_MESSAGE_OFFLOAD_FORMAT.format(preview=preview, uuid=offload_uuid)

    def _offloaded_copy(self, msg: Msg, text: str, offload_uuid: str) -> Msg:
        """构造替换消息，保留工具调用和工具结果的 id / name"""
        blocks = msg.get_content_blocks()
        has_tool_result = any(b.get("type") == "tool_result" for b in blocks)
        has_tool_use = any(b.get("type") == "tool_use" for b in blocks)

        if has_tool_result:
            content = [
                ToolResultBlock(
                    type="tool_result",
                    id=block["id"],
                    name=block.get("name", ""),
                    output=[TextBlock(
                        type="text",
                        text=self._preview(render_block_text(block), offload_uuid),
                    )],
                )
                for block in blocks
                if block.get("type") == "tool_result"
            ]
        elif has_tool_use:
            # 参数可能就是大内容本身，只保留调用的 id / name，参数见预览
            content = [TextBlock(type="text", text=self._preview(text, offload_uuid))]
            content.extend(
                ToolUseBlock(
                    type="tool_use",
                    id=block["id"],
                    name=block.get("name", ""),
                    input={},
                )
                for block in blocks
                if block.get("type") == "tool_use"
            )
        else:
            content = [TextBlock(type="text", text=self._preview(text, offload_uuid))]

        return Msg(
            name=msg.name,
            content=content,
            role=msg.role,
            metadata={**(msg.metadata or {}), "offload_uuid": offload_uuid},
            timestamp=msg.timestamp,
            id=msg.id,
        )

    # ============== 策略 4：摘要历史轮次 ==============

    async def _summarize_previous_rounds(
        self,
        msgs: list[Msg],
        pending: dict[str, list[Msg]],
    ) -> list[Msg]:
        """把最新一轮之前的每个完整轮次摘要为一条消息"""
        strategy = "summarize_previous_rounds"

        final_idx = _last_index(msgs, _is_final_reply)
        if final_idx is None:
            raise CompressionSkipped(strategy, "还没有完整的对话轮次")

        latest_round_start = _last_index(
            msgs[: final_idx + 1],
            lambda m: m.role == "user",
        )
        if not latest_round_start:
            raise CompressionSkipped(strategy, "没有历史轮次")

        # 轮次 = 一条 user 消息 + 其后的回复；第一条 user 之前的消息不参与
        rounds = []
        start = None
        for idx in range(latest_round_start):
            if msgs[idx].role == "user":
                if start is not None:
                    rounds.append((start, idx))
                start = idx
        if start is not None:
            rounds.append((start, latest_round_start))

        complete_rounds = [
            (s, e) for s, e in rounds
            if e - s >= 2 and _is_final_reply(msgs[e - 1])
        ]
        if not complete_rounds:
            raise CompressionSkipped(strategy, "没有完整的历史轮次")

        result = list(msgs)
        for start, end in reversed(complete_rounds):
            round_msgs = msgs[start:end]
            try:
                summary = await self._summarize(
                    strategy,
                    PREVIOUS_ROUND_SUMMARY_PROMPT_START,
                    PREVIOUS_ROUND_SUMMARY_PROMPT_END,
                    self._transcript(round_msgs),
                    self.config.previous_round_summary_prompt,
                )
            except CompressionSkipped as e:
                logger.info("轮次摘要失败，保留原消息", reason=e.reason, start=start)
                continue

            offload_uuid = str(uuid.uuid4())
            pending[offload_uuid] = round_msgs

            text = PREVIOUS_ROUND_SUMMARY_FORMAT.format(summary=summary)
            text += PREVIOUS_ROUND_SUMMARY_OFFLOAD_HINT.format(uuid=offload_uuid)

            # 轮次中已有的卸载引用继续保留
            carried = find_offload_uuids(
                "\n".join(render_msg_text(m) for m in round_msgs)
            )
            for carried_uuid in carried:
                text += "\n" + PREVIOUS_ROUND_SUMMARY_OFFLOAD_HINT.format(uuid=carried_uuid)

            result[start:end] = [self._summary_msg(text, "round_summary", offload_uuid)]

        return result

    # ============== 策略 5：压缩当前轮次 ==============

    @staticmethod
    def _current_round_start(msgs: Sequence[Msg]) -> int:
        """当前轮次从最后一条 user 消息之后开始；没有 user 消息时跳过开头的 system 消息"""
        last_user = _last_index(msgs, lambda m: m.role == "user")
        if last_user is not None:
            return last_user + 1

        start = 0
        while start < len(msgs) and msgs[start].role == "system":
            start += 1
        return start

    async def _compress_current_round(
        self,
        msgs: list[Msg],
        pending: dict[str, list[Msg]],
    ) -> list[Msg]:
        """压缩当前轮次

        先摘要过大的工具结果；仍超出阈值时，把整个轮次合并为一条摘要消息，
        工具调用的名称、ID 和参数原样保留在摘要消息中。
        """
        strategy = "compress_current_round"

        start = self._current_round_start(msgs)
        round_msgs = msgs[start:]
        if not round_msgs:
            raise CompressionSkipped(strategy, "当前轮次没有消息")

        result, changed = await self._summarize_large_results(msgs, start, pending)
        if changed and not self._exceeds_threshold(result):
            return result

        if len(round_msgs) == 1 and _is_offloaded(round_msgs[0]):
            logger.info("当前轮次已经压缩过，不再合并")
            return result

        merge_pending: dict[str, list[Msg]] = {}
        try:
            merged = await self._merge_current_round(round_msgs, merge_pending)
        except CompressionSkipped as e:
            logger.info("当前轮次合并失败", reason=e.reason)
            return result

        # 合并时卸载的是原始消息，单个结果的卸载内容不再被引用
        pending.clear()
        pending.update(merge_pending)
        return msgs[:start] + [merged]

    async def _summarize_large_results(
        self,
        msgs: list[Msg],
        start: int,
        pending: dict[str, list[Msg]],
    ) -> tuple[list[Msg], bool]:
        """摘要 start 之后过大的工具结果，工具调用本身保持不变"""
        strategy = "compress_current_round"

        result = list(msgs)
        any_changed = False
        for idx in range(start, len(msgs)):
            msg = msgs[idx]
            if not msg.has_content_blocks("tool_result"):
                continue

            new_blocks = []
            changed = False
            for block in msg.get_content_blocks():
                if block.get("type") != "tool_result":
                    new_blocks.append(block)
                    continue

                output_text = render_block_text(block)
                if (
                    len(output_text) <= self.config.current_round_result_threshold
                    or find_offload_uuids(output_text)
                ):
                    new_blocks.append(block)
                    continue

                try:
                    summary = await self._summarize(
                        strategy,
                        CURRENT_ROUND_LARGE_MESSAGE_PROMPT_START,
                        CURRENT_ROUND_LARGE_MESSAGE_PROMPT_END,
                        f"Tool {block.get('name', '')} (id {block['id']}) result:\n"
                        f"{output_text}",
                        self.config.current_round_large_message_prompt,
                    )
                except CompressionSkipped as e:
                    logger.info(
                        "工具结果摘要失败，保留原结果",
                        reason=e.reason,
                        tool_call_id=block["id"],
                    )
                    new_blocks.append(block)
                    continue

                offload_uuid = str(uuid.uuid4())
                pending[offload_uuid] = [
                    Msg(name=msg.name, content=[block], role=msg.role)
                ]
                new_blocks.append(ToolResultBlock(
                    type="tool_result",
                    id=block["id"],
                    name=block.get("name", ""),
                    output=[TextBlock(
                        type="text",
                        text=COMPRESSED_LARGE_MESSAGE_FORMAT.format(
                            summary=summary,
                            uuid=offload_uuid,
                        ),
                    )],
                ))
                changed = True

            if changed:
                any_changed = True
                result[idx] = Msg(
                    name=msg.name,
                    content=new_blocks,
                    role=msg.role,
                    metadata=msg.metadata,
                    timestamp=msg.timestamp,
                    id=msg.id,
                )

        return result, any_changed

    async def _merge_current_round(
        self,
        round_msgs: list[Msg],
        pending: dict[str, list[Msg]],
    ) -> Msg:
        """把当前轮次的全部消息合并为一条摘要消息"""
        strategy = "compress_current_round"

        tool_calls = []
        lines = []
        for msg in round_msgs:
            for block in msg.get_content_blocks():
                block_type = block.get("type")

                if block_type == "tool_use":
                    line = CURRENT_ROUND_TOOL_CALL_LINE.format(
                        name=block.get("name") or "unknown",
                        id=block.get("id", ""),
                        arguments=json.dumps(block.get("input", {}), ensure_ascii=False),
                    )
                    tool_calls.append(line)
                    lines.append(line)
                elif block_type == "tool_result":
                    output = render_block_text(block)
                    if len(output) > CURRENT_ROUND_RESULT_PREVIEW:
                        output = output[:CURRENT_ROUND_RESULT_PREVIEW] + "..."
                    lines.append(
                        f"Tool Result: {block.get('name') or 'unknown'} "
                        f"(ID: {block.get('id', '')})\n  Result: {output}\n"
                    )
                elif block_type != "thinking":
                    text = render_block_text(block)
                    if text:
                        lines.append(f"{msg.role} {msg.name or 'Unknown'}: {text}\n")

        transcript = "".join(lines)
        target_chars = max(int(len(transcript) * self.config.current_round_compress_ratio), 1)

        summary = await self._summarize(
            strategy,
            CURRENT_ROUND_COMPRESS_PROMPT_START.format(
                original_chars=len(transcript),
                target_chars=target_chars,
                plan_tools=", ".join(self.config.plan_tool_names),
            ),
            CURRENT_ROUND_COMPRESS_PROMPT_END.format(target_chars=target_chars),
            transcript,
            self.config.current_round_compress_prompt,
        )

        offload_uuid = str(uuid.uuid4())
        pending[offload_uuid] = list(round_msgs)

        text = COMPRESSED_CURRENT_ROUND_FORMAT.format(
            summary=summary,
            tool_calls="".join(tool_calls),
            uuid=offload_uuid,
        )
        logger.debug(
            "当前轮次已合并",
            messages=len(round_msgs),
            tool_calls=len(tool_calls),
            uuid=offload_uuid,
        )
        return self._summary_msg(text, "current_round", offload_uuid)
