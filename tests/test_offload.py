# -*- coding: utf-8 -*-
"""
测试卸载存储
"""

import uuid
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from nano_autocontext.exception import OffloadNotFoundError
from nano_autocontext.message import Msg
from nano_autocontext.offload import (
    InMemoryContextOffloader,
    LocalFileContextOffloader,
)


def _msgs():
    return [
        Msg(name="user", content="原始内容 1", role="user"),
        Msg(name="assistant", content="原始内容 2", role="assistant"),
    ]


class TestInMemoryContextOffloader:
    """测试内存卸载存储"""

    def test_offload_and_reload(self):
        offloader = InMemoryContextOffloader()
        key = str(uuid.uuid4())
        msgs = _msgs()

        offloader.offload(key, msgs)

        assert offloader.has(key)
        assert offloader.reload(key) == msgs

    def test_unknown_key(self):
        offloader = InMemoryContextOffloader()
        with pytest.raises(OffloadNotFoundError) as exc_info:
            offloader.reload("missing")

        # 同时也是 KeyError
        assert isinstance(exc_info.value, KeyError)
        assert "missing" in str(exc_info.value)

    def test_delete_and_clear(self):
        offloader = InMemoryContextOffloader()
        offloader.offload("a", _msgs())
        offloader.offload("b", _msgs())

        offloader.delete("a")
        offloader.delete("not-there")
        assert offloader.keys() == ["b"]

        offloader.clear()
        assert offloader.keys() == []

    def test_state_dict(self):
        offloader = InMemoryContextOffloader()
        offloader.offload("a", _msgs())

        restored = InMemoryContextOffloader()
        restored.load_state_dict(offloader.state_dict())

        assert restored.reload("a") == offloader.reload("a")


class TestLocalFileContextOffloader:
    """测试本地文件卸载存储"""

    def test_offload_and_reload(self, tmp_path):
        offloader = LocalFileContextOffloader(tmp_path / "offload")
        key = str(uuid.uuid4())
        msgs = _msgs()

        offloader.offload(key, msgs)

        assert (tmp_path / "offload" / f"{key}.json").exists()
        assert offloader.reload(key) == msgs

        # 新实例也能读到
        assert LocalFileContextOffloader(tmp_path / "offload").reload(key) == msgs

    def test_non_uuid_key(self, tmp_path):
        offloader = LocalFileContextOffloader(tmp_path)

        with pytest.raises(OffloadNotFoundError):
            offloader.reload("../../etc/passwd")
        with pytest.raises(ValueError):
            offloader.offload("not-a-uuid", _msgs())
        assert not offloader.has("not-a-uuid")

    def test_clear(self, tmp_path):
        offloader = LocalFileContextOffloader(tmp_path)
        key = str(uuid.uuid4())
        offloader.offload(key, _msgs())
        (tmp_path / "notes.json").write_text("[]")

        offloader.clear()

        assert offloader.keys() == []
        assert not offloader.has(key)
        # 其他文件不受影响
        assert (tmp_path / "notes.json").exists()
