# -*- coding: utf-8 -*-
"""
测试工具模块
"""

import pytest
import asyncio
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from nano_autocontext.auto_context_memory import AutoContextConfig, AutoContextMemory
from nano_autocontext.message import Msg, TextBlock, ToolUseBlock
from nano_autocontext.tool import (
    Toolkit,
    ToolResponse,
    _parse_function_to_schema,
    create_context_reload_tool,
)


# 测试用的工具函数
def simple_func() -> ToolResponse:
    """简单函数"""
    return ToolResponse(content=[TextBlock(type="text", text="OK")])


def func_with_args(name: str, count: int = 1) -> ToolResponse:
    """带参数的函数

    Args:
        name: 名称
        count: 数量
    """
    return ToolResponse(
        content=[TextBlock(type="text", text=f"Hello {name} x {count}")]
    )


async def async_func(value: str) -> ToolResponse:
    """异步函数

    Args:
        value: 输入值
    """
    await asyncio.sleep(0.01)
    return ToolResponse(
        content=[TextBlock(type="text", text=f"Async: {value}")]
    )


def broken_func() -> ToolResponse:
    """总是出错"""
    raise RuntimeError("磁盘已满")


class TestParseFunction:
    """测试函数解析"""

    def test_parse_simple_func(self):
        schema = _parse_function_to_schema(simple_func)

        assert schema["type"] == "function"
        assert schema["function"]["name"] == "simple_func"
        assert schema["function"]["description"] == "简单函数"
        assert schema["function"]["parameters"] == {"type": "object", "properties": {}}

    def test_parse_func_with_args(self):
        params = _parse_function_to_schema(func_with_args)["function"]["parameters"]

        assert params["properties"]["name"]["description"] == "名称"
        assert params["required"] == ["name"]
        # title 字段已被移除
        assert "title" not in params
        assert "title" not in params["properties"]["count"]


class TestToolkit:
    """测试 Toolkit"""

    @pytest.fixture
    def toolkit(self):
        toolkit = Toolkit()
        toolkit.register_tool_function(simple_func)
        toolkit.register_tool_function(func_with_args)
        toolkit.register_tool_function(async_func)
        toolkit.register_tool_function(broken_func)
        return toolkit

    def test_schemas(self, toolkit):
        names = [s["function"]["name"] for s in toolkit.get_json_schemas()]
        assert names == ["simple_func", "func_with_args", "async_func", "broken_func"]

    def test_custom_description(self):
        toolkit = Toolkit()
        toolkit.register_tool_function(simple_func, description="自定义描述")

        assert toolkit.get_json_schemas()[0]["function"]["description"] == "自定义描述"

    @pytest.mark.asyncio
    async def test_call_sync_and_async(self, toolkit):
        sync_result = await toolkit.call_tool_function(ToolUseBlock(
            type="tool_use", id="1", name="func_with_args", input={"name": "小明", "count": 2},
        ))
        async_result = await toolkit.call_tool_function(ToolUseBlock(
            type="tool_use", id="2", name="async_func", input={"value": "x"},
        ))

        assert sync_result.content[0]["text"] == "Hello 小明 x 2"
        assert async_result.content[0]["text"] == "Async: x"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, toolkit):
        result = await toolkit.call_tool_function(ToolUseBlock(
            type="tool_use", id="1", name="nope", input={},
        ))
        assert "找不到工具函数" in result.content[0]["text"]

    @pytest.mark.asyncio
    async def test_fragment_rejected(self, toolkit):
        """参数尚未接收完整的片段不会被执行"""
        result = await toolkit.call_tool_function({
            "type": "tool_use",
            "id": "1",
            "name": "",
            "input": {},
            "fragment": True,
        })
        assert result.content[0]["text"].startswith("Error:")

    @pytest.mark.asyncio
    async def test_exception_wrapped(self, toolkit):
        result = await toolkit.call_tool_function(ToolUseBlock(
            type="tool_use", id="1", name="broken_func", input={},
        ))
        assert result.content[0]["text"] == "Error: 磁盘已满"

    def test_to_tool_result(self):
        response = ToolResponse(content=[TextBlock(type="text", text="OK")])
        result = response.to_tool_result(ToolUseBlock(
            type="tool_use", id="call_1", name="simple_func", input={},
        ))

        assert result == {
            "type": "tool_result",
            "id": "call_1",
            "name": "simple_func",
            "output": [{"type": "text", "text": "OK"}],
        }


class TestContextReloadTool:
    """测试 context_reload 工具"""

    @pytest.mark.asyncio
    async def test_reload_found(self):
        config = AutoContextConfig(
            max_token=1000,
            token_ratio=0.5,
            large_payload_threshold=1000,
            last_keep=0,
        )
        memory = AutoContextMemory(config=config)
        big = "日志" * 2000
        await memory.add([
            Msg(name="user", content="看看日志", role="user"),
            Msg(name="assistant", content=big, role="assistant"),
            Msg(name="user", content="好", role="user"),
            Msg(name="assistant", content="嗯", role="assistant"),
        ])
        working = await memory.get_memory()
        offload_uuid = working[1].metadata["offload_uuid"]

        toolkit = Toolkit()
        toolkit.register_tool_function(create_context_reload_tool(memory))
        schema = toolkit.get_json_schemas()[0]["function"]
        assert schema["name"] == "context_reload"
        assert "working_context_offload_uuid" in schema["parameters"]["properties"]

        result = await toolkit.call_tool_function(ToolUseBlock(
            type="tool_use",
            id="r1",
            name="context_reload",
            input={"working_context_offload_uuid": offload_uuid},
        ))

        assert result.metadata == {"found": True, "messages": 1}
        assert result.content[0]["text"] == f"assistant assistant: {big}"

    @pytest.mark.asyncio
    async def test_reload_missing(self):
        reload_func = create_context_reload_tool(AutoContextMemory(), tool_name="reload")

        result = await reload_func("00000000-0000-0000-0000-000000000000")

        assert reload_func.__name__ == "reload"
        assert result.metadata == {"found": False}
        assert result.content[0]["text"].startswith("Content not available")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
