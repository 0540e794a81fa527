# -*- coding: utf-8 -*-
"""
Token 估算

这里不使用真实的分词器，而是按"字符数 / 每 token 平均字符数"估算。
估算误差由 AutoContextConfig.token_ratio 吸收。
"""

import json
from typing import Sequence

from .message import MEDIA_BLOCK_TYPES, ContentBlock, Msg

CHARS_PER_TOKEN = 4

# 每条消息的固定开销（角色、分隔符等）
MESSAGE_OVERHEAD_CHARS = 16


def render_block_text(block: ContentBlock) -> str:
    """把单个内容块渲染为文本"""
    block_type = block.get("type")

    if block_type == "text":
        return block.get("text", "")

    if block_type == "thinking":
        return block.get("thinking", "")

    if block_type == "tool_use":
        arguments = json.dumps(block.get("input", {}), ensure_ascii=False)
        return f"{block.get('name', '')}({arguments})"

    if block_type == "tool_result":
        output = block.get("output")
        if isinstance(output, str):
            return output
        return "\n".join(render_block_text(item) for item in output or [])

    if block_type in MEDIA_BLOCK_TYPES:
        source = block.get("source") or {}
        if source.get("type") == "url":
            location = source.get("url", "")
        else:
            location = source.get("media_type", "base64")
        return f"[{block_type}: {location}]"

    return ""


def render_msg_text(msg: Msg) -> str:
    """把一条消息的全部内容块渲染为文本"""
    if isinstance(msg.content, str):
        return msg.content
    return "\n".join(
        text
        for text in (render_block_text(block) for block in msg.content)
        if text
    )


def estimate_tokens(msgs: Sequence[Msg]) -> int:
    """估算消息列表的 token 数"""
    chars = sum(len(render_msg_text(msg)) for msg in msgs)
    return (chars + MESSAGE_OVERHEAD_CHARS * len(msgs)) // CHARS_PER_TOKEN
