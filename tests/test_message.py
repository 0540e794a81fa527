# -*- coding: utf-8 -*-
"""
测试消息模块
"""

import copy
import pickle
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from nano_autocontext.message import (
    Msg,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
    ToolResultBlock,
    text_msg,
)


class TestMsg:
    """测试 Msg 类"""

    def test_create_text_msg(self):
        """测试创建文本消息"""
        msg = Msg(name="user", content="你好", role="user")

        assert msg.name == "user"
        assert msg.content == "你好"
        assert msg.role == "user"
        assert msg.id is not None
        assert msg.timestamp is not None

    def test_create_msg_with_blocks(self):
        """测试创建包含 ContentBlock 的消息"""
        blocks = [
            TextBlock(type="text", text="让我查一下"),
            ToolUseBlock(
                type="tool_use",
                id="call_1",
                name="get_weather",
                input={"city": "北京"},
            ),
        ]
        msg = Msg(name="assistant", content=blocks, role="assistant")

        assert len(msg.content) == 2
        assert msg.content[0]["type"] == "text"
        assert msg.content[1]["type"] == "tool_use"

    def test_invalid_role(self):
        """未知角色直接报错"""
        with pytest.raises(ValueError):
            Msg(name="x", content="hi", role="robot")

    def test_immutable(self):
        """构造后不能修改属性"""
        msg = Msg(name="user", content="你好", role="user")

        with pytest.raises(AttributeError):
            msg.content = "改了"
        with pytest.raises(AttributeError):
            del msg.name

        assert msg.content == "你好"

    def test_block_list_is_copied(self):
        """外部列表的后续修改不影响消息"""
        blocks = [TextBlock(type="text", text="a")]
        msg = Msg(name="user", content=blocks, role="user")
        blocks.append(TextBlock(type="text", text="b"))

        assert len(msg.content) == 1

    def test_get_text_content_blocks(self):
        """测试从 TextBlock 获取文本"""
        blocks = [
            TextBlock(type="text", text="第一段"),
            TextBlock(type="text", text="第二段"),
        ]
        msg = Msg(name="user", content=blocks, role="user")

        assert msg.get_text_content() == "第一段\n第二段"
        assert msg.get_text_content(separator=" ") == "第一段 第二段"

    def test_get_text_content_excludes_thinking(self):
        """思考内容不属于文本"""
        msg = Msg(
            name="assistant",
            content=[
                ThinkingBlock(type="thinking", thinking="先想一想"),
                TextBlock(type="text", text="答案是 42"),
            ],
            role="assistant",
        )

        assert msg.get_text_content() == "答案是 42"

    def test_get_text_content_none(self):
        """没有文本时返回 None"""
        msg = Msg(
            name="assistant",
            content=[ToolUseBlock(type="tool_use", id="1", name="f", input={})],
            role="assistant",
        )
        assert msg.get_text_content() is None

    def test_get_content_blocks(self):
        """测试获取内容块"""
        blocks = [
            TextBlock(type="text", text="文本"),
            ToolUseBlock(type="tool_use", id="1", name="func", input={}),
        ]
        msg = Msg(name="assistant", content=blocks, role="assistant")

        assert len(msg.get_content_blocks()) == 2
        assert len(msg.get_content_blocks("text")) == 1
        assert msg.has_content_blocks("tool_use")
        assert not msg.has_content_blocks("tool_result")

    def test_string_content_as_block(self):
        """字符串内容视为一个文本块"""
        msg = Msg(name="user", content="你好", role="user")
        assert msg.get_content_blocks() == [TextBlock(type="text", text="你好")]


class TestMsgSerialization:
    """测试消息序列化"""

    def test_to_dict_from_dict(self):
        """字典往返后相等"""
        msg = Msg(
            name="tool",
            content=[
                ToolResultBlock(
                    type="tool_result",
                    id="call_1",
                    name="get_weather",
                    output=[TextBlock(type="text", text="晴")],
                ),
            ],
            role="tool",
            metadata={"source": "test"},
        )

        restored = Msg.from_dict(msg.to_dict())

        assert restored == msg
        assert restored.id == msg.id
        assert restored.timestamp == msg.timestamp

    def test_copy_and_pickle(self):
        """copy / deepcopy / pickle 都可用"""
        msg = Msg(name="user", content="你好", role="user")

        assert copy.copy(msg) == msg
        assert copy.deepcopy(msg) == msg
        assert pickle.loads(pickle.dumps(msg)) == msg

    def test_to_dict_is_detached(self):
        """修改 to_dict 的结果不影响原消息"""
        msg = text_msg("user", "你好", "user")
        data = msg.to_dict()
        data["content"][0]["text"] = "被改了"

        assert msg.get_text_content() == "你好"

    def test_deepcopy_is_detached(self):
        """修改 deepcopy 得到的内容块不影响原消息"""
        msg = text_msg("user", "你好", "user")
        copied = copy.deepcopy(msg)
        copied.content[0]["text"] = "被改了"
        copied.content.append(TextBlock(type="text", text="多出来的"))

        assert msg.get_text_content() == "你好"
        assert len(msg.content) == 1
