#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
示例 1: 消息格式化 - 同一段对话转换为不同 API 的格式

这个示例展示了如何：
1. 用 Msg 和内容块描述一段带工具调用的对话
2. 用 OpenAIChatFormatter / DashScopeChatFormatter 转换为 API 格式
3. 用多智能体格式化器把多方对话折叠为一条带 <history> 的消息

本示例不调用模型，不需要 API 密钥。

运行方式:
    python 01_format_messages.py
"""

import asyncio
import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from nano_autocontext import (
    DashScopeChatFormatter,
    DashScopeMultiAgentFormatter,
    ImageBlock,
    Msg,
    OpenAIChatFormatter,
    OpenAIMultiAgentFormatter,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)


def build_conversation() -> list[Msg]:
    """一段包含图片和工具调用的对话"""
    return [
        Msg(name="system", content="你是一个旅行助手。", role="system"),
        Msg(
            name="用户",
            content=[
                TextBlock(type="text", text="这是哪里？那边天气怎么样？"),
                ImageBlock(
                    type="image",
                    source={"type": "url", "url": "https://example.com/bund.jpg"},
                ),
            ],
            role="user",
        ),
        Msg(
            name="助手",
            content=[
                TextBlock(type="text", text="这是上海外滩，我查一下天气。"),
                ToolUseBlock(
                    type="tool_use",
                    id="call_1",
                    name="get_weather",
                    input={"city": "上海"},
                ),
            ],
            role="assistant",
        ),
        Msg(
            name="tool",
            content=[
                ToolResultBlock(
                    type="tool_result",
                    id="call_1",
                    name="get_weather",
                    output=[TextBlock(type="text", text="多云，22°C")],
                ),
            ],
            role="tool",
        ),
        Msg(name="助手", content="上海外滩现在多云，22°C。", role="assistant"),
    ]


def show(title: str, formatted: list[dict]) -> None:
    print("=" * 50)
    print(title)
    print("=" * 50)
    print(json.dumps(formatted, ensure_ascii=False, indent=2))


async def main():
    msgs = build_conversation()

    show("OpenAI 格式", await OpenAIChatFormatter().format(msgs))
    show("DashScope 格式", await DashScopeChatFormatter().format(msgs))

    # 多智能体：多个参与者的发言折叠为一条 user 消息，工具调用保持原结构
    debate = [
        Msg(name="system", content="你是辩论主持人。", role="system"),
        Msg(name="Alice", content="我认为应该多坐地铁。", role="user"),
        Msg(name="Bob", content="我更喜欢骑车。", role="assistant"),
        Msg(name="Carol", content="那下雨天呢？", role="user"),
    ]
    show("OpenAI 多智能体格式", await OpenAIMultiAgentFormatter().format(debate))
    show("DashScope 多智能体格式", await DashScopeMultiAgentFormatter().format(debate))


if __name__ == "__main__":
    asyncio.run(main())
