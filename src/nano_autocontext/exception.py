# -*- coding: utf-8 -*-
"""
异常模块 - 格式化、解析、压缩与卸载相关的异常

异常分类：
- FormatError: 输入块格式错误（如 Source 既不是 URL 也不是 base64），调用方应修正输入
- ParseError: 模型响应结构异常，无法解析
- CompressionSkipped: 某个压缩策略无法执行（如摘要模型失败），只在内部使用，
  不会抛给智能体循环
- OffloadNotFoundError: 重新加载未知或已清除的卸载 UUID
"""


class AutoContextError(Exception):
    """所有自定义异常的基类"""


class FormatError(AutoContextError):
    """消息格式化失败"""


class ParseError(AutoContextError):
    """模型响应解析失败"""


class CompressionSkipped(AutoContextError):
    """压缩策略被跳过"""

    def __init__(self, strategy: str, reason: str) -> None:
        super().__init__(f"{strategy}: {reason}")
        self.strategy = strategy
        self.reason = reason


class OffloadNotFoundError(AutoContextError, KeyError):
    """卸载内容不存在"""

    def __init__(self, offload_uuid: str) -> None:
        super().__init__(offload_uuid)
        self.offload_uuid = offload_uuid

    def __str__(self) -> str:
        return f"卸载内容不存在或已被清除: {self.offload_uuid}"
