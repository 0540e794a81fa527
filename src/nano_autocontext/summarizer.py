# -*- coding: utf-8 -*-
"""
摘要器 - 压缩策略依赖的外部摘要能力

AutoContextMemory 只依赖 SummarizerBase 这个接口：给一组消息，返回一条摘要消息。
摘要可能失败（网络错误、模型拒答等），失败时压缩策略会被跳过，而不会中断对话。
"""

from abc import abstractmethod
from typing import AsyncGenerator

import structlog

from .formatter import FormatterBase
from .message import Msg
from .model import ChatModelBase, ChatResponse

logger = structlog.get_logger(__name__)


class SummarizerBase:
    """摘要器基类"""

    @abstractmethod
    async def summarize(self, msgs: list[Msg]) -> Msg:
        """把一组消息摘要为一条消息

        Args:
            msgs: 待摘要的消息

        Returns:
            摘要消息，其文本内容即摘要
        """


class ModelSummarizer(SummarizerBase):
    """用聊天模型生成摘要

    超时、重试等策略由模型客户端负责，这里只负责格式化、调用和取回最终结果。

    Example:
        >>> model = OpenAIChatModel(model_name="gpt-4o-mini", stream=False)
        >>> summarizer = ModelSummarizer(model)
        >>> memory = AutoContextMemory(summarizer=summarizer)
    """

    def __init__(
        self,
        model: ChatModelBase,
        formatter: FormatterBase | None = None,
        name: str = "summarizer",
    ) -> None:
        """
        Args:
            model: 聊天模型
            formatter: 格式化器，默认使用模型自带的格式化器
            name: 摘要消息的发送者名称
        """
        self.model = model
        self.formatter = formatter or model.formatter
        self.name = name

    async def summarize(self, msgs: list[Msg]) -> Msg:
        formatted = await self.formatter.format(msgs)
        response = await self.model(formatted)

        if not isinstance(response, ChatResponse):
            response = await self._last_chunk(response)

        if response.usage:
            logger.debug(
                "摘要完成",
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )

        return response.to_msg(self.name)

    @staticmethod
    async def _last_chunk(
        stream: AsyncGenerator[ChatResponse, None],
    ) -> ChatResponse:
        """流式模式下，最后一个响应就是完整结果"""
        last = ChatResponse()
        async for chunk in stream:
            last = chunk
        return last
