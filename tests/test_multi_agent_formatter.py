# -*- coding: utf-8 -*-
"""
测试多智能体格式化器
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from nano_autocontext.message import (
    ImageBlock,
    Msg,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from nano_autocontext.multi_agent_formatter import (
    DEFAULT_CONVERSATION_HISTORY_PROMPT,
    DashScopeMultiAgentFormatter,
    OpenAIMultiAgentFormatter,
)


class TestOpenAIMultiAgentFormatter:
    """测试 OpenAI 多智能体格式化器"""

    @pytest.fixture
    def formatter(self):
        return OpenAIMultiAgentFormatter()

    @pytest.mark.asyncio
    async def test_collapse_conversation(self, formatter):
        """多个参与者的对话折叠为一条 user 消息"""
        result = await formatter.format([
            Msg(name="system", content="你是主持人", role="system"),
            Msg(name="Alice", content="大家好", role="user"),
            Msg(name="Bob", content="你好 Alice", role="assistant"),
            Msg(name="", content="我是谁？", role="user"),
        ])

        assert result[0] == {"role": "system", "content": "你是主持人"}
        assert len(result) == 2
        assert result[1]["role"] == "user"
        assert result[1]["content"] == (
            DEFAULT_CONVERSATION_HISTORY_PROMPT
            + "<history>\n"
            "User Alice: 大家好\n"
            "Assistant Bob: 你好 Alice\n"
            "User Unknown: 我是谁？\n"
            "</history>"
        )

    @pytest.mark.asyncio
    async def test_tool_sequence_not_collapsed(self, formatter):
        """工具调用和结果保持结构，提示语只出现在第一段历史"""
        result = await formatter.format([
            Msg(name="Alice", content="查一下日本首都", role="user"),
            Msg(
                name="Bob",
                content=[
                    ToolUseBlock(
                        type="tool_use",
                        id="1",
                        name="get_capital",
                        input={"country": "Japan"},
                    ),
                ],
                role="assistant",
            ),
            Msg(
                name="tool",
                content=[
                    ToolResultBlock(
                        type="tool_result",
                        id="1",
                        name="get_capital",
                        output=[TextBlock(type="text", text="Tokyo")],
                    ),
                ],
                role="tool",
            ),
            Msg(name="Bob", content="是东京", role="assistant"),
        ])

        assert [m["role"] for m in result] == ["user", "assistant", "tool", "user"]
        assert result[0]["content"].startswith(DEFAULT_CONVERSATION_HISTORY_PROMPT)
        assert result[1]["tool_calls"][0]["id"] == "1"
        assert result[2]["content"] == "Tokyo"
        assert result[3]["content"] == "<history>\nAssistant Bob: 是东京\n</history>"

    @pytest.mark.asyncio
    async def test_thinking_skipped(self, formatter):
        result = await formatter.format([
            Msg(
                name="Bob",
                content=[
                    ThinkingBlock(type="thinking", thinking="内心独白"),
                    TextBlock(type="text", text="说出口的话"),
                ],
                role="assistant",
            ),
        ])

        assert "内心独白" not in result[0]["content"]
        assert "Assistant Bob: 说出口的话" in result[0]["content"]

    @pytest.mark.asyncio
    async def test_custom_prompt(self):
        formatter = OpenAIMultiAgentFormatter(conversation_history_prompt="")
        result = await formatter.format([Msg(name="Alice", content="hi", role="user")])

        assert result[0]["content"] == "<history>\nUser Alice: hi\n</history>"

    @pytest.mark.asyncio
    async def test_empty(self, formatter):
        assert await formatter.format([]) == []

    def test_capabilities(self, formatter):
        assert formatter.capabilities.support_multi_agent
        assert formatter.capabilities.provider_name == "OpenAI"


class TestDashScopeMultiAgentFormatter:
    """测试 DashScope 多智能体格式化器"""

    @pytest.mark.asyncio
    async def test_media_as_extra_parts(self):
        """对话中的图片作为额外的多段内容"""
        formatter = DashScopeMultiAgentFormatter(conversation_history_prompt="")
        result = await formatter.format([
            Msg(
                name="Alice",
                content=[
                    TextBlock(type="text", text="看这张图"),
                    ImageBlock(
                        type="image",
                        source={"type": "url", "url": "https://example.com/cat.png"},
                    ),
                ],
                role="user",
            ),
        ])

        assert result == [{
            "role": "user",
            "content": [
                {"text": "<history>\nUser Alice: 看这张图\nUser Alice: [Image]\n</history>"},
                {"image": "https://example.com/cat.png"},
            ],
        }]
