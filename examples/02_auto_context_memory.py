#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
示例 2: AutoContextMemory - 长对话自动压缩

这个示例展示了如何：
1. 用 ModelSummarizer 给 AutoContextMemory 提供摘要能力
2. 用较小的阈值触发压缩，观察工作记录和原始记录的差异
3. 注册 context_reload 工具，让模型按 UUID 取回被卸载的原文

运行方式:
    # 使用 DashScope（推荐）
    export DASHSCOPE_API_KEY="sk-xxx"
    python 02_auto_context_memory.py

    # 或使用 OpenAI
    export OPENAI_API_KEY="sk-xxx"
    python 02_auto_context_memory.py --openai

    # 阈值也可以通过环境变量调整
    export AUTO_CONTEXT_MSG_THRESHOLD=12
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from nano_autocontext import (
    AutoContextConfig,
    AutoContextMemory,
    DashScopeChatModel,
    ModelSummarizer,
    Msg,
    OpenAIChatModel,
    Toolkit,
    create_context_reload_tool,
    estimate_tokens,
)


def create_model(use_openai: bool = False):
    """摘要使用非流式模型即可"""
    if use_openai:
        return OpenAIChatModel(model_name="gpt-4o-mini", stream=False)
    return DashScopeChatModel(model_name="qwen-plus", stream=False)


def fake_history() -> list[Msg]:
    """构造几轮对话，其中一条回复非常长"""
    msgs = []
    topics = ["Python 装饰器", "asyncio 事件循环", "GIL", "生成器", "类型注解"]
    for i, topic in enumerate(topics):
        msgs.append(Msg(name="用户", content=f"简单讲讲{topic}", role="user"))
        answer = f"{topic}的要点如下。" + ("细节说明。" * 1500 if i == 1 else "")
        msgs.append(Msg(name="助手", content=answer, role="assistant"))
    return msgs


async def main(use_openai: bool = False):
    config = AutoContextConfig(
        msg_threshold=8,
        last_keep=2,
        large_payload_threshold=2000,
    )
    memory = AutoContextMemory(
        summarizer=ModelSummarizer(create_model(use_openai)),
        config=config,
    )

    await memory.add(fake_history())

    original = await memory.get_original_memory()
    print(f"原始记录: {len(original)} 条, 约 {estimate_tokens(original)} tokens")

    working = await memory.get_memory()
    print(f"工作记录: {len(working)} 条, 约 {estimate_tokens(working)} tokens")
    print("=" * 50)
    for msg in working:
        print(f"[{msg.role}] {msg.get_text_content()[:120]}")
        print("-" * 50)

    # 压缩后的消息带有 offload_uuid，模型可以通过 context_reload 取回原文
    toolkit = Toolkit()
    toolkit.register_tool_function(create_context_reload_tool(memory))

    offloaded = [m for m in working if m.metadata and m.metadata.get("offload_uuid")]
    if offloaded:
        offload_uuid = offloaded[0].metadata["offload_uuid"]
        result = await toolkit.call_tool_function({
            "type": "tool_use",
            "id": "reload_1",
            "name": "context_reload",
            "input": {"working_context_offload_uuid": offload_uuid},
        })
        print(f"取回 {offload_uuid}:")
        print(result.content[0]["text"][:300])


if __name__ == "__main__":
    use_openai = "--openai" in sys.argv

    key = "OPENAI_API_KEY" if use_openai else "DASHSCOPE_API_KEY"
    if not os.environ.get(key):
        print(f"请设置 {key} 环境变量")
        print(f"export {key}='sk-xxx'")
        sys.exit(1)

    asyncio.run(main(use_openai))
