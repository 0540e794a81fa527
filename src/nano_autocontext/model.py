# -*- coding: utf-8 -*-
"""
模型模块 - 封装 LLM API 调用

本模块定义了模型调用的抽象和实现：
1. ChatResponse - 模型响应的数据结构
2. ChatModelBase - 模型基类，定义统一接口
3. DashScopeChatModel - 阿里云 DashScope（通义千问）API 实现
4. OpenAIChatModel - OpenAI API 的具体实现

学习要点：
- 模型只负责发请求，响应的解析全部交给格式化器（parse_response / parse_chunk）
- 支持流式（streaming）和非流式两种输出模式
- 流式模式下每个 chunk 都 yield 当前累积的完整状态
"""

import os
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, AsyncGenerator, Literal

import structlog

from .message import ContentBlock, Msg, TextBlock, ThinkingBlock

if TYPE_CHECKING:
    from .formatter import FormatterBase

logger = structlog.get_logger(__name__)


@dataclass
class ChatUsage:
    """Token 使用统计

    记录一次 API 调用的 token 消耗，用于成本估算和监控。
    """
    input_tokens: int = 0   # 输入 token 数
    output_tokens: int = 0  # 输出 token 数
    time: float = 0.0       # 耗时（秒）


@dataclass
class ChatResponse:
    """模型响应数据结构

    将不同 LLM API 的响应统一转换为此格式，包含：
    - content: 响应内容（ThinkingBlock、TextBlock、ToolUseBlock 列表）
    - usage: Token 使用统计
    - id: 响应 ID
    - finish_reason: 结束原因，如 "stop"、"tool_calls"

    Example:
        >>> response = ChatResponse(
        ...     content=[TextBlock(type="text", text="你好！")]
        ... )
        >>> msg = response.to_msg("assistant")
    """
    content: list[ContentBlock] = field(default_factory=list)
    usage: ChatUsage | None = None
    id: str | None = None
    finish_reason: str | None = None
    metadata: dict | None = None

    def to_msg(self, name: str = "assistant") -> Msg:
        """把响应转换为一条 assistant 消息"""
        return Msg(
            name=name,
            content=list(self.content),
            role="assistant",
            metadata=self.metadata,
        )


class ChatModelBase:
    """模型基类 - 定义统一的模型调用接口

    所有模型实现都应继承此类，并实现 __call__ 方法。

    Attributes:
        model_name: 模型名称
        stream: 是否使用流式输出
        formatter: 用于解析响应的格式化器
    """

    model_name: str
    stream: bool
    formatter: "FormatterBase"

    def __init__(
        self,
        model_name: str,
        formatter: "FormatterBase",
        stream: bool = True,
    ) -> None:
        self.model_name = model_name
        self.formatter = formatter
        self.stream = stream

    @abstractmethod
    async def __call__(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        tool_choice: Literal["auto", "none", "required"] | None = None,
        **kwargs: Any,
    ) -> ChatResponse | AsyncGenerator[ChatResponse, None]:
        """调用模型生成响应

        Args:
            messages: 消息列表，格式为 API 要求的格式
            tools: 可用工具的 JSON schema 列表
            tool_choice: 工具选择模式
                - "auto": 自动决定是否调用工具
                - "none": 禁止调用工具
                - "required": 必须调用工具
            **kwargs: 其他参数，如 temperature, max_tokens 等

        Returns:
            如果 stream=False，返回 ChatResponse
            如果 stream=True，返回 AsyncGenerator[ChatResponse, None]
        """

    async def _accumulate_stream(
        self,
        response: Any,
        start_time: datetime,
    ) -> AsyncGenerator[ChatResponse, None]:
        """把流式 chunk 累积成完整的 ChatResponse

        每个 chunk 交给格式化器解析，文本和思考内容在这里拼接，
        工具调用片段由累积器按 id 合并。
        """
        thinking = ""
        text = ""
        usage = None
        response_id = None
        finish_reason = None
        accumulator = None

        async for chunk in response:
            self._check_chunk(chunk)

            delta, accumulator = self.formatter.parse_chunk(
                chunk,
                accumulator,
                start_time,
            )

            for block in delta.content:
                if block["type"] == "thinking":
                    thinking += block.get("thinking", "")
                elif block["type"] == "text":
                    text += block.get("text", "")

            usage = delta.usage or usage
            response_id = delta.id or response_id
            finish_reason = delta.finish_reason or finish_reason

            content: list[ContentBlock] = []
            if thinking:
                content.append(ThinkingBlock(type="thinking", thinking=thinking))
            if text:
                content.append(TextBlock(type="text", text=text))
            content.extend(accumulator.get_tool_calls())

            yield ChatResponse(
                content=content,
                usage=usage,
                id=response_id,
                finish_reason=finish_reason,
            )

    def _check_chunk(self, chunk: Any) -> None:
        """检查流式 chunk 是否为错误响应"""


class DashScopeChatModel(ChatModelBase):
    """DashScope（阿里云通义千问）Chat API 模型实现

    支持通义千问系列模型，如 qwen-max, qwen-plus, qwen-turbo 等。

    Example:
        >>> model = DashScopeChatModel(
        ...     model_name="qwen-max",
        ...     api_key="sk-xxx",  # 可选，默认从环境变量 DASHSCOPE_API_KEY 读取
        ... )
        >>> response = await model(messages=[{"role": "user", "content": "你好"}])
    """

    def __init__(
        self,
        model_name: str = "qwen-max",
        api_key: str | None = None,
        stream: bool = True,
        formatter: "FormatterBase | None" = None,
        **kwargs: Any,
    ) -> None:
        """初始化 DashScope 模型

        Args:
            model_name: 模型名称，如 "qwen-max", "qwen-plus", "qwen-turbo"
            api_key: API 密钥，不提供则从 DASHSCOPE_API_KEY 环境变量读取
            stream: 是否使用流式输出
            formatter: 解析响应的格式化器，默认 DashScopeChatFormatter
            **kwargs: 传递给生成 API 的其他参数，如 temperature
        """
        if formatter is None:
            from .formatter import DashScopeChatFormatter
            formatter = DashScopeChatFormatter()

        super().__init__(model_name, formatter, stream)

        self.api_key = api_key or os.environ.get("DASHSCOPE_API_KEY")
        if not self.api_key:
            raise ValueError(
                "需要提供 api_key 参数或设置 DASHSCOPE_API_KEY 环境变量"
            )

        self.generate_kwargs = kwargs

    async def __call__(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        tool_choice: Literal["auto", "none", "required"] | None = None,
        **kwargs: Any,
    ) -> ChatResponse | AsyncGenerator[ChatResponse, None]:
        """调用 DashScope Generation API"""
        # 延迟导入
        from dashscope.aigc.generation import AioGeneration

        start_time = datetime.now()

        request_kwargs = {
            "model": self.model_name,
            "messages": messages,
            "api_key": self.api_key,
            "stream": self.stream,
            "result_format": "message",
            "incremental_output": self.stream,  # 流式时使用增量输出
            **self.generate_kwargs,
            **kwargs,
        }

        if tools:
            request_kwargs["tools"] = tools

        # DashScope 不支持 required，转为 auto
        if tool_choice:
            if tool_choice == "required":
                tool_choice = "auto"
            request_kwargs["tool_choice"] = tool_choice

        logger.debug("调用 DashScope", model=self.model_name, messages=len(messages))
        response = await AioGeneration.call(**request_kwargs)

        if self.stream:
            return self._accumulate_stream(response, start_time)

        self._check_chunk(response)
        return self.formatter.parse_response(response, start_time)

    def _check_chunk(self, chunk: Any) -> None:
        status_code = getattr(chunk, "status_code", HTTPStatus.OK)
        if status_code != HTTPStatus.OK:
            raise RuntimeError(f"DashScope API 错误: {chunk}")


class OpenAIChatModel(ChatModelBase):
    """OpenAI Chat API 模型实现

    支持 OpenAI 及兼容 API（如 Azure OpenAI, DeepSeek, 通义千问等）。

    Example:
        >>> model = OpenAIChatModel(
        ...     model_name="gpt-4o-mini",
        ...     api_key="sk-xxx",  # 可选，默认从环境变量读取
        ... )
        >>> response = await model(messages=[{"role": "user", "content": "你好"}])
    """

    def __init__(
        self,
        model_name: str,
        api_key: str | None = None,
        base_url: str | None = None,
        stream: bool = True,
        formatter: "FormatterBase | None" = None,
        client: Any = None,
        **kwargs: Any,
    ) -> None:
        """初始化 OpenAI 模型

        Args:
            model_name: 模型名称，如 "gpt-4o-mini", "gpt-4o"
            api_key: API 密钥，不提供则从 OPENAI_API_KEY 环境变量读取
            base_url: API 基础 URL，用于兼容其他 API
            stream: 是否使用流式输出
            formatter: 解析响应的格式化器，默认 OpenAIChatFormatter
            client: 已创建好的 AsyncOpenAI 客户端
            **kwargs: 传递给 OpenAI 客户端的其他参数
        """
        if formatter is None:
            from .formatter import OpenAIChatFormatter
            formatter = OpenAIChatFormatter()

        super().__init__(model_name, formatter, stream)

        if client is None:
            # 延迟导入，避免未安装 openai 时报错
            from openai import AsyncOpenAI

            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                **kwargs,
            )
        self.client = client

    async def __call__(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        tool_choice: Literal["auto", "none", "required"] | None = None,
        **kwargs: Any,
    ) -> ChatResponse | AsyncGenerator[ChatResponse, None]:
        """调用 OpenAI Chat Completions API"""
        start_time = datetime.now()

        request_kwargs = {
            "model": self.model_name,
            "messages": messages,
            "stream": self.stream,
            **kwargs,
        }

        if tools:
            request_kwargs["tools"] = tools
        if tool_choice:
            request_kwargs["tool_choice"] = tool_choice

        # 流式输出需要包含 usage 信息
        if self.stream:
            request_kwargs["stream_options"] = {"include_usage": True}

        logger.debug("调用 OpenAI", model=self.model_name, messages=len(messages))
        response = await self.client.chat.completions.create(**request_kwargs)

        if self.stream:
            return self._accumulate_stream(response, start_time)

        return self.formatter.parse_response(response, start_time)
