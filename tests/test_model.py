# -*- coding: utf-8 -*-
"""
测试模型调用与摘要器

不访问真实 API，用假的客户端返回预先构造好的响应。
"""

import pytest
import sys
import os
from http import HTTPStatus
from types import SimpleNamespace

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from nano_autocontext.formatter import OpenAIChatFormatter
from nano_autocontext.message import Msg, TextBlock
from nano_autocontext.model import (
    ChatModelBase,
    ChatResponse,
    ChatUsage,
    DashScopeChatModel,
    OpenAIChatModel,
)
from nano_autocontext.summarizer import ModelSummarizer


class FakeCompletions:
    """记录请求参数，返回预设响应"""

    def __init__(self, response):
        self.response = response
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return self.response


def _fake_client(response):
    completions = FakeCompletions(response)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


async def _stream(chunks):
    for chunk in chunks:
        yield chunk


def _delta_chunk(delta, finish=None, usage=None):
    return {
        "id": "chatcmpl-9",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish}],
        "usage": usage,
    }


class TestOpenAIChatModel:
    """测试 OpenAIChatModel"""

    @pytest.mark.asyncio
    async def test_non_stream(self):
        client, completions = _fake_client({
            "id": "chatcmpl-1",
            "choices": [{
                "message": {"role": "assistant", "content": "你好"},
                "finish_reason": "stop",
            }],
            "usage": {"prompt_tokens": 5, "completion_tokens": 2},
        })
        model = OpenAIChatModel("gpt-4o-mini", stream=False, client=client)

        response = await model([{"role": "user", "content": "hi"}], temperature=0)

        assert isinstance(response, ChatResponse)
        assert response.content == [{"type": "text", "text": "你好"}]
        assert response.usage.input_tokens == 5
        assert response.finish_reason == "stop"
        assert completions.kwargs["temperature"] == 0
        assert "stream_options" not in completions.kwargs

    @pytest.mark.asyncio
    async def test_stream_accumulation(self):
        """流式输出：文本拼接，工具调用片段合并"""
        client, completions = _fake_client(_stream([
            _delta_chunk({"content": "让我"}),
            _delta_chunk({"content": "查一下"}),
            _delta_chunk({"tool_calls": [{
                "index": 0,
                "id": "call_1",
                "function": {"name": "get_weather", "arguments": '{"city"'},
            }]}),
            _delta_chunk({"tool_calls": [{
                "index": 0,
                "function": {"arguments": ': "上海"}'},
            }]}, finish="tool_calls"),
            {
                "id": "chatcmpl-9",
                "choices": [],
                "usage": {"prompt_tokens": 20, "completion_tokens": 8},
            },
        ]))
        model = OpenAIChatModel("gpt-4o-mini", stream=True, client=client)

        generator = await model(
            [{"role": "user", "content": "上海天气"}],
            tools=[{"type": "function", "function": {"name": "get_weather"}}],
            tool_choice="auto",
        )
        responses = [r async for r in generator]

        assert completions.kwargs["stream_options"] == {"include_usage": True}
        assert completions.kwargs["tool_choice"] == "auto"

        # 每个 chunk 都产出当前累积的完整状态
        assert responses[1].content == [{"type": "text", "text": "让我查一下"}]

        final = responses[-1]
        assert final.content[0] == {"type": "text", "text": "让我查一下"}
        tool_call = final.content[1]
        assert tool_call["id"] == "call_1"
        assert tool_call["name"] == "get_weather"
        assert tool_call["input"] == {"city": "上海"}
        assert final.finish_reason == "tool_calls"
        assert final.usage.output_tokens == 8
        assert final.id == "chatcmpl-9"


class TestDashScopeChatModel:
    """测试 DashScopeChatModel 的本地逻辑"""

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)
        with pytest.raises(ValueError):
            DashScopeChatModel("qwen-max")

    def test_check_chunk(self):
        model = DashScopeChatModel("qwen-max", api_key="sk-test")

        model._check_chunk(SimpleNamespace(status_code=HTTPStatus.OK))
        with pytest.raises(RuntimeError):
            model._check_chunk(SimpleNamespace(status_code=400, message="bad"))

    def test_default_formatter(self):
        model = DashScopeChatModel("qwen-max", api_key="sk-test")
        assert model.formatter.capabilities.provider_name == "DashScope"


class FakeModel(ChatModelBase):
    """返回固定文本的模型"""

    def __init__(self, text: str, stream: bool = False) -> None:
        super().__init__("fake", OpenAIChatFormatter(), stream)
        self.text = text
        self.received = None

    async def __call__(self, messages, tools=None, tool_choice=None, **kwargs):
        self.received = messages
        if not self.stream:
            return ChatResponse(
                content=[TextBlock(type="text", text=self.text)],
                usage=ChatUsage(input_tokens=10, output_tokens=3),
            )
        return self._chunks()

    async def _chunks(self):
        for end in range(1, len(self.text) + 1):
            yield ChatResponse(content=[TextBlock(type="text", text=self.text[:end])])


class TestModelSummarizer:
    """测试 ModelSummarizer"""

    @pytest.mark.asyncio
    async def test_summarize(self):
        model = FakeModel("要点")
        summarizer = ModelSummarizer(model)

        result = await summarizer.summarize([
            Msg(name="user", content="请摘要", role="user"),
        ])

        assert isinstance(result, Msg)
        assert result.name == "summarizer"
        assert result.role == "assistant"
        assert result.get_text_content() == "要点"
        assert model.received == [{"role": "user", "name": "user", "content": "请摘要"}]

    @pytest.mark.asyncio
    async def test_summarize_stream(self):
        summarizer = ModelSummarizer(FakeModel("流式摘要", stream=True), name="压缩器")

        result = await summarizer.summarize([
            Msg(name="user", content="请摘要", role="user"),
        ])

        assert result.name == "压缩器"
        assert result.get_text_content() == "流式摘要"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
