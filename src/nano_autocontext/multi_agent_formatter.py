# -*- coding: utf-8 -*-
"""
多智能体格式化器

多数聊天 API 只接受 user / assistant 严格交替的对话，无法直接表示
多个具名参与者。多智能体格式化器把连续的 user / assistant 消息折叠成
一条 user 消息，用 <history></history> 包裹对话历史：

    # Conversation History
    The content between <history></history> tags contains your conversation history
    <history>
    User Alice: 大家好
    Assistant Bob: 你好 Alice
    </history>

工具调用和工具结果需要保持结构，不会被折叠，仍按普通聊天格式输出。
"""

import dataclasses
from typing import Any, Literal

import structlog

from .formatter import DashScopeChatFormatter, OpenAIChatFormatter
from .message import MEDIA_BLOCK_TYPES, Msg

logger = structlog.get_logger(__name__)

DEFAULT_CONVERSATION_HISTORY_PROMPT = (
    "# Conversation History\n"
    "The content between <history></history> tags contains your conversation"
    " history\n"
)

GroupType = Literal["system", "tool_sequence", "agent_conversation"]


class MultiAgentFormatterMixin:
    """多智能体格式化的公共逻辑，需要与 FormatterBase 的子类一起使用"""

    def __init__(self, conversation_history_prompt: str | None = None) -> None:
        """
        Args:
            conversation_history_prompt: 放在第一段历史前面的提示语
        """
        self.conversation_history_prompt = (
            DEFAULT_CONVERSATION_HISTORY_PROMPT
            if conversation_history_prompt is None
            else conversation_history_prompt
        )

    async def format(self, msgs: list[Msg]) -> list[dict[str, Any]]:
        """按分组格式化消息

        - system 消息：按普通聊天格式输出
        - 工具序列：按普通聊天格式逐条输出
        - 其余连续的 user / assistant 消息：折叠成一条 user 消息
        """
        self._assert_msgs(msgs)

        formatted_msgs = []
        is_first_conversation = True

        for group_type, group in self._group_msgs(msgs):
            if group_type == "agent_conversation":
                formatted_msgs.append(
                    self._format_conversation(group, is_first_conversation)
                )
                is_first_conversation = False
            else:
                for msg in group:
                    formatted_msgs.extend(self._format_msg(msg))

        return formatted_msgs

    @staticmethod
    def _group_type(msg: Msg) -> GroupType:
        if msg.role == "system":
            return "system"
        if (
            msg.role == "tool"
            or msg.has_content_blocks("tool_use")
            or msg.has_content_blocks("tool_result")
        ):
            return "tool_sequence"
        return "agent_conversation"

    def _group_msgs(self, msgs: list[Msg]) -> list[tuple[GroupType, list[Msg]]]:
        """把消息划分为连续的同类分组，每条 system 消息单独成组"""
        groups: list[tuple[GroupType, list[Msg]]] = []

        for msg in msgs:
            group_type = self._group_type(msg)
            if groups and groups[-1][0] == group_type and group_type != "system":
                groups[-1][1].append(msg)
            else:
                groups.append((group_type, [msg]))

        return groups

    def _format_conversation(
        self,
        msgs: list[Msg],
        with_prompt: bool,
    ) -> dict[str, Any]:
        """把一段对话折叠成一条 user 消息"""
        text = self.conversation_history_prompt if with_prompt else ""
        text += "<history>\n"
        media_parts = []

        for msg in msgs:
            prefix = f"{msg.role.capitalize()} {msg.name or 'Unknown'}"

            for block in msg.get_content_blocks():
                block_type = block.get("type")

                if block_type == "text":
                    text += f"{prefix}: {block.get('text', '')}\n"

                elif block_type in MEDIA_BLOCK_TYPES:
                    # 折叠后的消息是 user 角色
                    part = self._convert_media_block(block, "user")
                    if isinstance(part, str):
                        text += f"{prefix}: {part}\n"
                    else:
                        media_parts.append(part)
                        text += f"{prefix}: [{block_type.capitalize()}]\n"

                elif block_type == "thinking":
                    logger.debug("多智能体历史中跳过思考内容", name=msg.name)

        text += "</history>"

        if not media_parts:
            return {"role": "user", "content": text}

        return {"role": "user", "content": [self._text_part(text), *media_parts]}


class OpenAIMultiAgentFormatter(MultiAgentFormatterMixin, OpenAIChatFormatter):
    """OpenAI 多智能体格式化器

    Example:
        >>> formatter = OpenAIMultiAgentFormatter()
        >>> formatted = await formatter.format([
        ...     Msg(name="Alice", content="大家好", role="user"),
        ...     Msg(name="Bob", content="你好", role="assistant"),
        ... ])
        >>> formatted[0]["role"]
        'user'
    """

    capabilities = dataclasses.replace(
        OpenAIChatFormatter.capabilities,
        support_multi_agent=True,
    )


class DashScopeMultiAgentFormatter(MultiAgentFormatterMixin, DashScopeChatFormatter):
    """DashScope 多智能体格式化器"""

    capabilities = dataclasses.replace(
        DashScopeChatFormatter.capabilities,
        support_multi_agent=True,
    )
