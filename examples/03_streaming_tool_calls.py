#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
示例 3: 流式工具调用 - 片段合并

流式输出时，工具调用的参数被拆成多个 chunk：

    chunk 1: id=call_1, name=get_weather, arguments='{"ci'
    chunk 2:                              arguments='ty": "北'     <- 片段
    chunk 3:                              arguments='京"}'         <- 片段

格式化器把后续 chunk 标记为 fragment，累积器按 id 合并，
模型每个 chunk 都 yield 当前累积的完整工具调用。

运行方式:
    export DASHSCOPE_API_KEY="sk-xxx"
    python 03_streaming_tool_calls.py

    export OPENAI_API_KEY="sk-xxx"
    python 03_streaming_tool_calls.py --openai
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from nano_autocontext import (
    DashScopeChatModel,
    Msg,
    OpenAIChatModel,
    TextBlock,
    Toolkit,
    ToolResponse,
)


def get_weather(city: str) -> ToolResponse:
    """查询城市天气

    Args:
        city: 城市名称，如 "北京"
    """
    return ToolResponse(content=[TextBlock(type="text", text=f"{city}：晴，25°C")])


async def main(use_openai: bool = False):
    if use_openai:
        model = OpenAIChatModel(model_name="gpt-4o-mini", stream=True)
    else:
        model = DashScopeChatModel(model_name="qwen-max", stream=True)

    toolkit = Toolkit()
    toolkit.register_tool_function(get_weather)

    msgs = [Msg(name="用户", content="北京和上海今天天气怎么样？", role="user")]
    formatted = await model.formatter.format(msgs)

    response = None
    generator = await model(formatted, tools=toolkit.get_json_schemas())
    async for response in generator:
        for block in response.content:
            if block["type"] == "tool_use":
                print(f"  {block['id']}: {block['name']}({block.get('raw_input', '')})")
        print("-" * 50)

    if response is None:
        return

    # 最后一个响应中的工具调用都是完整的
    for tool_call in response.content:
        if tool_call["type"] != "tool_use":
            continue
        result = await toolkit.call_tool_function(tool_call)
        print(f"{tool_call['name']}({tool_call['input']}) -> {result.content[0]['text']}")

    if response.usage:
        print(f"tokens: {response.usage.input_tokens} + {response.usage.output_tokens}")


if __name__ == "__main__":
    use_openai = "--openai" in sys.argv

    key = "OPENAI_API_KEY" if use_openai else "DASHSCOPE_API_KEY"
    if not os.environ.get(key):
        print(f"请设置 {key} 环境变量")
        sys.exit(1)

    asyncio.run(main(use_openai))
