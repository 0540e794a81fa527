# -*- coding: utf-8 -*-
"""
格式化器模块 - Msg 与各模型 API 格式之间的双向转换

本模块定义了格式化器的抽象和实现：
1. FormatterBase - 格式化器基类，实现与具体 API 无关的公共逻辑
2. OpenAIChatFormatter - OpenAI Chat Completions API 格式
3. DashScopeChatFormatter - 阿里云 DashScope（通义千问）API 格式

学习要点：
- 格式化（format）：Msg 列表 -> API 消息字典列表
- 解析（parse_response / parse_chunk）：API 响应 -> ChatResponse
- 格式化是纯函数：同样的输入，两次格式化的结果完全一致
- ThinkingBlock 永远不会发送给模型

消息格式对比:

Nano-AutoContext Msg:
    Msg(name="user", content="你好", role="user")

OpenAI API 格式:
    {"role": "user", "name": "user", "content": "你好"}

DashScope API 格式（多模态）:
    {"role": "user", "content": [{"text": "这是什么？"}, {"image": "file:///tmp/cat.png"}]}
"""

import json
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

import structlog

from .accumulator import ToolCallAccumulator
from .exception import ParseError
from .media import audio_format, source_location, source_to_url
from .message import (
    MEDIA_BLOCK_TYPES,
    ContentBlock,
    Msg,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from .model import ChatResponse, ChatUsage

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FormatterCapabilities:
    """格式化器能力描述"""
    provider_name: str
    support_tools_api: bool
    support_multi_agent: bool
    support_vision: bool
    supported_blocks: tuple[str, ...]


class FormatterBase:
    """格式化器基类 - 定义格式化与解析接口

    格式化器的职责：
    1. 将 Msg 对象列表转换为 API 要求的格式
    2. 把 API 响应（包括流式 chunk）解析回内容块
    3. 描述自身能力（capabilities）

    子类通过类属性和几个钩子方法描述各自 API 的差异，
    格式化与解析的主流程都在基类中完成。

    格式化器不持有可变状态，可以在多个并发请求之间共享。
    """

    capabilities: FormatterCapabilities

    # 只有工具调用、没有文本时 content 字段的占位值
    empty_tool_call_content: str | None = None

    # 是否在 user / assistant 消息中带上 name 字段
    include_name: bool = False

    # 可以携带多媒体内容的角色
    media_roles: tuple[str, ...] = ("user",)

    # 用量字段名
    input_tokens_key: str = "input_tokens"
    output_tokens_key: str = "output_tokens"

    async def format(self, msgs: list[Msg]) -> list[dict[str, Any]]:
        """将消息列表格式化为 API 要求的格式

        处理逻辑：
        1. 遍历每条消息的 ContentBlock，按目标字段分组
        2. 连续的文本块用换行拼接；出现多媒体时切换为多段（parts）内容
        3. 工具调用放入 tool_calls，工具结果拆成独立的 tool 消息

        Args:
            msgs: Msg 对象列表

        Returns:
            格式化后的消息字典列表
        """
        self._assert_msgs(msgs)

        formatted_msgs = []
        for msg in msgs:
            formatted_msgs.extend(self._format_msg(msg))
        return formatted_msgs

    @staticmethod
    def _assert_msgs(msgs: list[Msg]) -> None:
        """验证输入是否为 Msg 列表"""
        if not isinstance(msgs, list):
            raise TypeError(f"msgs 必须是列表，但收到 {type(msgs)}")
        for msg in msgs:
            if not isinstance(msg, Msg):
                raise TypeError(f"列表元素必须是 Msg，但收到 {type(msg)}")

    # ============== 格式化 ==============

    def _format_msg(self, msg: Msg) -> list[dict[str, Any]]:
        """格式化单条消息，可能产生多条 API 消息（内容消息 + 工具结果消息）"""
        # parts 中字符串表示文本，字典表示已转换好的多媒体段
        parts: list[str | dict] = []
        tool_calls = []
        tool_results: list[ToolResultBlock] = []

        for block in msg.get_content_blocks():
            block_type = block.get("type")

            if block_type == "text":
                self._append_text(parts, block.get("text", ""))

            elif block_type == "thinking":
                # 思考内容只在内部保留
                continue

            elif block_type in MEDIA_BLOCK_TYPES:
                part = self._convert_media_block(block, msg.role)
                if isinstance(part, str):
                    self._append_text(parts, part)
                else:
                    parts.append(part)

            elif block_type == "tool_use":
                if block.get("fragment"):
                    logger.warning(
                        "跳过未合并的流式工具调用片段",
                        id=block.get("id"),
                    )
                    continue
                if msg.role != "assistant":
                    logger.warning(
                        "非 assistant 消息中的工具调用被忽略",
                        role=msg.role,
                        id=block.get("id"),
                    )
                    continue
                tool_calls.append(self._convert_tool_use(block))

            elif block_type == "tool_result":
                tool_results.append(block)

            else:
                logger.warning("未知的内容块类型，已跳过", block_type=block_type)

        formatted = []
        sibling_text = "\n".join(p for p in parts if isinstance(p, str))

        # tool 角色的文本只作为工具结果的后备内容
        if msg.role == "tool" and tool_results:
            parts = []

        if parts or tool_calls:
            api_msg: dict[str, Any] = {
                "role": msg.role,
                "content": self._build_content(parts, tool_calls),
            }
            if self.include_name and msg.role in ("user", "assistant") and msg.name:
                api_msg["name"] = msg.name
            if tool_calls:
                api_msg["tool_calls"] = tool_calls
            formatted.append(api_msg)

        for block in tool_results:
            formatted.append({
                "role": "tool",
                "tool_call_id": block["id"],
                "name": block.get("name") or "",
                "content": self.convert_tool_result_to_string(
                    block.get("output"),
                    sibling_text,
                ),
            })

        return formatted

    @staticmethod
    def _append_text(parts: list[str | dict], text: str) -> None:
        """追加文本，与前一个文本段合并"""
        if parts and isinstance(parts[-1], str):
            parts[-1] = parts[-1] + "\n" + text
        else:
            parts.append(text)

    def _build_content(
        self,
        parts: list[str | dict],
        tool_calls: list[dict],
    ) -> str | list[dict] | None:
        """构建 content 字段

        - 没有内容（只有工具调用）：占位值
        - 纯文本：字符串
        - 包含多媒体：多段列表
        """
        if not parts:
            return self.empty_tool_call_content if tool_calls else ""

        if all(isinstance(p, str) for p in parts):
            return "\n".join(parts)

        return [
            self._text_part(p) if isinstance(p, str) else p
            for p in parts
        ]

    @staticmethod
    def _convert_tool_use(block: ToolUseBlock) -> dict[str, Any]:
        """工具调用块 -> tool_calls 条目"""
        return {
            "id": block["id"],
            "type": "function",
            "function": {
                "name": block["name"],
                "arguments": json.dumps(
                    block.get("input", {}),
                    ensure_ascii=False,
                ),
            },
        }

    def _convert_media_block(
        self,
        block: ContentBlock,
        role: str,
    ) -> dict | str:
        """多媒体块 -> API 多段内容中的一段

        无法处理时返回占位文本（并记录警告），而不是抛出异常。
        Source 结构错误时抛出 FormatError。
        """
        kind = block["type"]

        if role not in self.media_roles:
            logger.warning("该角色的消息不支持多媒体内容", kind=kind, role=role)
            return f"[{kind.capitalize()} - not supported in {role} message]"

        try:
            return self._media_part(kind, block["source"])
        except (OSError, ValueError) as e:
            logger.warning("多媒体内容处理失败", kind=kind, error=str(e))
            return f"[{kind.capitalize()} - processing failed: {e}]"

    @staticmethod
    def _unsupported(kind: str, reason: str) -> str:
        logger.warning("多媒体内容不受支持，已降级为文本", kind=kind, reason=reason)
        return f"[{kind.capitalize()} - {reason}]"

    @abstractmethod
    def _text_part(self, text: str) -> dict:
        """文本段的多段内容表示"""

    @abstractmethod
    def _media_part(self, kind: str, source: dict) -> dict | str:
        """多媒体段的多段内容表示，不支持时返回占位文本"""

    @staticmethod
    def convert_tool_result_to_string(
        output: str | list | None,
        sibling_text: str = "",
    ) -> str:
        """把工具结果转换为文本

        大多数 API 的 tool 消息只能携带文本，多媒体结果用文字描述其位置：

        - 只有一个文本块：原样返回
        - 输出为空：使用同一条消息中的文本作为后备
        - 多个条目：每个条目一行 "- " 开头
        - 多媒体条目："The returned <kind> can be found at: <location>"

        Args:
            output: 工具结果块的 output
            sibling_text: 同一条消息中的文本内容

        Returns:
            工具结果文本
        """
        if output is None:
            return sibling_text

        if isinstance(output, str):
            return output or sibling_text

        textual_outputs = []
        for block in output:
            if not isinstance(block, dict):
                textual_outputs.append(str(block))
                continue

            block_type = block.get("type")
            if block_type == "text":
                textual_outputs.append(block.get("text", ""))

            elif block_type in MEDIA_BLOCK_TYPES:
                try:
                    location = source_location(block["source"])
                    textual_outputs.append(
                        f"The returned {block_type} can be found at: {location}"
                    )
                except (OSError, ValueError) as e:
                    logger.warning(
                        "工具结果中的多媒体内容保存失败",
                        kind=block_type,
                        error=str(e),
                    )
                    textual_outputs.append(
                        f"[{block_type.capitalize()} - failed to save file: {e}]"
                    )

            else:
                logger.debug("工具结果中的内容块被忽略", block_type=block_type)

        if not textual_outputs:
            return sibling_text

        if len(textual_outputs) == 1:
            return textual_outputs[0]

        return "\n".join(f"- {text}" for text in textual_outputs)

    # ============== 解析 ==============

    def parse_response(
        self,
        response: Any,
        start_time: datetime | None = None,
    ) -> ChatResponse:
        """解析非流式 API 响应

        内容块顺序固定为：ThinkingBlock、TextBlock、ToolUseBlock(s)。

        Args:
            response: API 响应（字典或 SDK 对象）
            start_time: 请求开始时间，用于计算耗时

        Returns:
            ChatResponse

        Raises:
            ParseError: 响应结构无法解析
        """
        if response is None:
            logger.warning("模型响应为空")
            return ChatResponse(content=[])

        data = self._to_dict(response)
        try:
            choices, usage_data, response_id = self._unwrap(data)

            blocks: list[ContentBlock] = []
            finish_reason = None
            if choices:
                choice = choices[0]
                message = choice.get("message") or {}
                blocks = self._parse_message(message)
                finish_reason = choice.get("finish_reason")
            else:
                logger.warning("模型响应中没有 choices", id=response_id)

            usage = self._build_usage(usage_data, start_time)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ParseError(f"无法解析模型响应: {e}") from e

        return ChatResponse(
            content=blocks,
            usage=usage,
            id=response_id,
            finish_reason=finish_reason,
        )

    def parse_chunk(
        self,
        chunk: Any,
        accumulator: ToolCallAccumulator | None = None,
        start_time: datetime | None = None,
    ) -> tuple[ChatResponse, ToolCallAccumulator]:
        """解析一个流式 chunk

        返回本 chunk 的增量内容。工具调用增量中：
        - 带名字的是一个新调用的开始（fragment=False）
        - 不带名字但有参数文本的是后续片段（fragment=True, name=""）

        所有工具调用块都会送入累积器，调用方最后通过
        accumulator.get_tool_calls() 获取完整的工具调用。

        Args:
            chunk: 流式 chunk
            accumulator: 本次流式响应的累积器，None 时新建
            start_time: 请求开始时间

        Returns:
            (本 chunk 的 ChatResponse, 更新后的累积器)
        """
        if accumulator is None:
            accumulator = ToolCallAccumulator()

        if chunk is None:
            return ChatResponse(content=[]), accumulator

        data = self._to_dict(chunk)
        try:
            choices, usage_data, response_id = self._unwrap(data)

            blocks: list[ContentBlock] = []
            finish_reason = None
            if choices:
                choice = choices[0]
                delta = choice.get("delta") or choice.get("message") or {}
                blocks = self._parse_text_fields(delta)

                for position, tool_call in enumerate(delta.get("tool_calls") or []):
                    block = self._parse_tool_call_delta(
                        tool_call,
                        position,
                        accumulator,
                    )
                    if block is not None:
                        accumulator.add(block)
                        blocks.append(block)

                finish_reason = choice.get("finish_reason")

            usage = self._build_usage(usage_data, start_time)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ParseError(f"无法解析流式 chunk: {e}") from e

        return (
            ChatResponse(
                content=blocks,
                usage=usage,
                id=response_id,
                finish_reason=finish_reason,
            ),
            accumulator,
        )

    @abstractmethod
    def _unwrap(self, data: dict) -> tuple[list | None, dict | None, str | None]:
        """从响应中取出 (choices, usage, id)"""

    def _parse_message(self, message: Mapping) -> list[ContentBlock]:
        """解析一条完整的 message"""
        blocks = self._parse_text_fields(message)

        for index, tool_call in enumerate(message.get("tool_calls") or []):
            function = tool_call.get("function") or {}
            raw = function.get("arguments") or ""
            arguments, ok = self._parse_arguments(raw)
            call_id = tool_call.get("id") or f"tool_call_{index}"

            if not ok:
                logger.warning(
                    "工具调用参数不是合法的 JSON 对象",
                    id=call_id,
                    raw=raw[:100],
                )

            block = ToolUseBlock(
                type="tool_use",
                id=call_id,
                name=function.get("name") or "",
                input=arguments,
            )
            if raw:
                block["raw_input"] = raw
            blocks.append(block)

        return blocks

    def _parse_text_fields(self, message: Mapping) -> list[ContentBlock]:
        """解析思考内容和文本内容"""
        blocks: list[ContentBlock] = []

        reasoning = message.get("reasoning_content")
        if reasoning:
            blocks.append(ThinkingBlock(type="thinking", thinking=reasoning))

        text = self._extract_text(message.get("content"))
        if text:
            blocks.append(TextBlock(type="text", text=text))

        return blocks

    def _parse_tool_call_delta(
        self,
        tool_call: Mapping,
        position: int,
        accumulator: ToolCallAccumulator,
    ) -> ToolUseBlock | None:
        """解析流式工具调用增量"""
        function = tool_call.get("function") or {}
        name = function.get("name") or ""
        raw = function.get("arguments") or ""

        index = tool_call.get("index")
        call_id = accumulator.resolve_id(
            position if index is None else index,
            tool_call.get("id"),
        )

        if name:
            # 首个 chunk 的参数通常不完整，解析失败是正常的
            arguments, _ = self._parse_arguments(raw)
            return ToolUseBlock(
                type="tool_use",
                id=call_id,
                name=name,
                input=arguments,
                raw_input=raw,
                fragment=False,
            )

        if raw:
            return ToolUseBlock(
                type="tool_use",
                id=call_id,
                name="",
                input={},
                raw_input=raw,
                fragment=True,
            )

        return None

    @staticmethod
    def _extract_text(content: Any) -> str:
        """content 可能是字符串，也可能是 [{"text": ...}] 形式的列表"""
        if not content:
            return ""
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(
                item["text"]
                for item in content
                if isinstance(item, Mapping) and isinstance(item.get("text"), str)
            )
        return str(content)

    @staticmethod
    def _parse_arguments(raw: str) -> tuple[dict, bool]:
        """解析工具调用参数，返回 (参数字典, 是否解析成功)"""
        if not raw or not raw.strip():
            return {}, True
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}, False
        if isinstance(parsed, dict):
            return parsed, True
        return {}, False

    def _build_usage(
        self,
        usage_data: Mapping | None,
        start_time: datetime | None,
    ) -> ChatUsage | None:
        """构建用量统计，缺失的计数默认为 0"""
        if not usage_data:
            return None

        elapsed = 0.0
        if start_time is not None:
            elapsed = (datetime.now() - start_time).total_seconds()

        return ChatUsage(
            input_tokens=usage_data.get(self.input_tokens_key) or 0,
            output_tokens=usage_data.get(self.output_tokens_key) or 0,
            time=elapsed,
        )

    @staticmethod
    def _to_dict(obj: Any) -> dict:
        """把 SDK 响应对象转换为字典"""
        if isinstance(obj, Mapping):
            return dict(obj)
        if hasattr(obj, "model_dump"):
            return obj.model_dump()
        raise ParseError(f"无法解析的响应类型: {type(obj)}")


class OpenAIChatFormatter(FormatterBase):
    """OpenAI Chat Completions API 格式化器

    支持的内容类型：
    - TextBlock -> 字符串 content，或 {"type": "text", "text": "..."}
    - ImageBlock -> {"type": "image_url", "image_url": {"url": "..."}}
      本地文件会被读取并转换为 data URL
    - AudioBlock -> {"type": "input_audio", "input_audio": {"data": "...", "format": "wav"}}
    - VideoBlock -> 不支持，降级为占位文本
    - ToolUseBlock -> message.tool_calls
    - ToolResultBlock -> {"role": "tool", ...}

    Example:
        >>> formatter = OpenAIChatFormatter()
        >>> msgs = [
        ...     Msg(name="system", content="你是助手", role="system"),
        ...     Msg(name="user", content="你好", role="user"),
        ... ]
        >>> formatted = await formatter.format(msgs)
        >>> print(formatted[0])
        # {"role": "system", "content": "你是助手"}
    """

    capabilities = FormatterCapabilities(
        provider_name="OpenAI",
        support_tools_api=True,
        support_multi_agent=False,
        support_vision=True,
        supported_blocks=(
            "text", "thinking", "image", "audio", "tool_use", "tool_result",
        ),
    )

    empty_tool_call_content = None
    include_name = True
    media_roles = ("user",)

    input_tokens_key = "prompt_tokens"
    output_tokens_key = "completion_tokens"

    def _text_part(self, text: str) -> dict:
        return {"type": "text", "text": text}

    def _media_part(self, kind: str, source: dict) -> dict | str:
        if kind == "image":
            url = source_to_url(source, "image", local_mode="data_url")
            return {"type": "image_url", "image_url": {"url": url}}

        if kind == "audio":
            fmt = audio_format(source)
            if source.get("type") == "base64":
                return {
                    "type": "input_audio",
                    "input_audio": {"data": source["data"], "format": fmt},
                }

            data_url = source_to_url(source, "audio", local_mode="data_url")
            if not data_url.startswith("data:"):
                return self._unsupported(
                    "audio",
                    "remote audio URL is not supported, download it first",
                )
            return {
                "type": "input_audio",
                "input_audio": {"data": data_url.split(",", 1)[1], "format": fmt},
            }

        return self._unsupported(kind, f"{kind} is not supported by OpenAI chat API")

    def _unwrap(self, data: dict) -> tuple[list | None, dict | None, str | None]:
        return data.get("choices"), data.get("usage"), data.get("id")


class DashScopeChatFormatter(FormatterBase):
    """DashScope（通义千问）API 格式化器

    DashScope 多模态消息使用不带 type 字段的多段格式：

        {"role": "user", "content": [
            {"text": "描述一下这张图"},
            {"image": "https://example.com/cat.png"},
        ]}

    - 本地文件转换为 file:// 绝对路径，由 SDK 负责上传
    - base64 数据转换为 data URL
    - 工具调用格式与 OpenAI 相同

    Example:
        >>> formatter = DashScopeChatFormatter()
        >>> formatted = await formatter.format([
        ...     Msg(name="user", content="你好", role="user"),
        ... ])
        >>> print(formatted[0])
        # {"role": "user", "content": "你好"}
    """

    capabilities = FormatterCapabilities(
        provider_name="DashScope",
        support_tools_api=True,
        support_multi_agent=False,
        support_vision=True,
        supported_blocks=(
            "text", "thinking", "image", "audio", "video", "tool_use", "tool_result",
        ),
    )

    empty_tool_call_content = ""
    include_name = False
    media_roles = ("user", "assistant")

    input_tokens_key = "input_tokens"
    output_tokens_key = "output_tokens"

    def _text_part(self, text: str) -> dict:
        return {"text": text}

    def _media_part(self, kind: str, source: dict) -> dict | str:
        # DashScope 不校验音频扩展名
        url = source_to_url(source, kind, local_mode="file_url", validate=kind != "audio")
        return {kind: url}

    def _unwrap(self, data: dict) -> tuple[list | None, dict | None, str | None]:
        output = data.get("output") or {}
        choices = output.get("choices")

        # result_format="text" 时只有 output.text
        if not choices and output.get("text"):
            choices = [{
                "message": {"role": "assistant", "content": output["text"]},
                "finish_reason": output.get("finish_reason"),
            }]

        return choices, data.get("usage"), data.get("request_id")
