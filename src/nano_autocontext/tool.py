# -*- coding: utf-8 -*-
"""
工具模块 - 注册和执行工具函数

本模块定义了工具系统的核心组件：
1. ToolResponse - 工具执行结果的数据结构
2. Toolkit - 工具管理器，负责注册、解析和执行工具
3. create_context_reload_tool - 把 AutoContextMemory 的卸载内容暴露给模型

学习要点：
- JSON Schema 用于向 LLM 描述工具的参数
- 从 docstring 自动提取函数描述和参数信息
- 工具函数的异常不会抛给智能体循环，而是包装成错误文本
"""

import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

import structlog
from docstring_parser import parse
from pydantic import Field, create_model

from .exception import OffloadNotFoundError
from .message import ContentBlock, TextBlock, ToolResultBlock, ToolUseBlock
from .token_counter import render_msg_text

if TYPE_CHECKING:
    from .auto_context_memory import AutoContextMemory

logger = structlog.get_logger(__name__)


@dataclass
class ToolResponse:
    """工具执行结果

    Example:
        >>> ToolResponse(content=[TextBlock(type="text", text="北京今天晴天")])
    """
    content: list[ContentBlock] = field(default_factory=list)
    metadata: dict | None = None

    def to_tool_result(self, tool_call: ToolUseBlock) -> ToolResultBlock:
        """转换为对应工具调用的 ToolResultBlock"""
        return ToolResultBlock(
            type="tool_result",
            id=tool_call["id"],
            name=tool_call["name"],
            output=list(self.content),
        )


def _parse_function_to_schema(func: Callable) -> dict:
    """从函数签名和 docstring 解析 JSON Schema

    Args:
        func: 要解析的函数

    Returns:
        符合 OpenAI function calling 格式的 JSON Schema 字典
    """
    docstring = parse(func.__doc__ or "")
    params_doc = {p.arg_name: p.description for p in docstring.params}

    descriptions = []
    if docstring.short_description:
        descriptions.append(docstring.short_description)
    if docstring.long_description:
        descriptions.append(docstring.long_description)
    func_description = "\n".join(descriptions)

    fields = {}
    for name, param in inspect.signature(func).parameters.items():
        if name in ["self", "cls"]:
            continue

        annotation = param.annotation
        if annotation == inspect.Parameter.empty:
            annotation = Any

        if param.default == inspect.Parameter.empty:
            default = ...  # 必需参数
        else:
            default = param.default

        fields[name] = (
            annotation,
            Field(default=default, description=params_doc.get(name)),
        )

    if fields:
        params_schema = create_model("DynamicModel", **fields).model_json_schema()
        # 移除多余的 title 字段
        params_schema.pop("title", None)
        for prop in params_schema.get("properties", {}).values():
            prop.pop("title", None)
    else:
        params_schema = {"type": "object", "properties": {}}

    schema = {
        "type": "function",
        "function": {
            "name": func.__name__,
            "parameters": params_schema,
        },
    }
    if func_description:
        schema["function"]["description"] = func_description

    return schema


class Toolkit:
    """工具管理器 - 注册、管理和执行工具函数

    Example:
        >>> toolkit = Toolkit()
        >>> toolkit.register_tool_function(create_context_reload_tool(memory))
        >>> schemas = toolkit.get_json_schemas()
    """

    def __init__(self) -> None:
        # name -> (function, schema)
        self._tools: dict[str, tuple[Callable, dict]] = {}

    def register_tool_function(
        self,
        func: Callable,
        description: str | None = None,
    ) -> None:
        """注册工具函数

        Args:
            func: 工具函数，应返回 ToolResponse
            description: 函数描述，不提供则从 docstring 提取
        """
        schema = _parse_function_to_schema(func)
        if description:
            schema["function"]["description"] = description

        if func.__name__ in self._tools:
            logger.warning("工具函数被覆盖", name=func.__name__)
        self._tools[func.__name__] = (func, schema)

    def remove_tool_function(self, name: str) -> None:
        self._tools.pop(name, None)

    def get_json_schemas(self) -> list[dict]:
        """获取所有工具的 JSON Schema 列表"""
        return [schema for _, schema in self._tools.values()]

    @property
    def tools(self) -> dict[str, tuple[Callable, dict]]:
        return self._tools

    async def call_tool_function(self, tool_call: ToolUseBlock) -> ToolResponse:
        """执行工具函数

        工具不存在、调用片段或执行出错时，返回包含错误信息的 ToolResponse。

        Args:
            tool_call: 工具调用块，包含函数名和参数

        Returns:
            工具执行结果
        """
        if tool_call.get("fragment"):
            return ToolResponse(
                content=[TextBlock(
                    type="text",
                    text="Error: 工具调用参数尚未接收完整",
                )]
            )

        func_name = tool_call["name"]
        if func_name not in self._tools:
            return ToolResponse(
                content=[TextBlock(
                    type="text",
                    text=f"Error: 找不到工具函数 '{func_name}'",
                )]
            )

        func, _ = self._tools[func_name]
        kwargs = tool_call.get("input", {}) or {}

        try:
            if inspect.iscoroutinefunction(func):
                result = await func(**kwargs)
            else:
                result = func(**kwargs)
        except Exception as e:
            logger.warning("工具函数执行失败", name=func_name, error=str(e))
            return ToolResponse(
                content=[TextBlock(type="text", text=f"Error: {e}")]
            )

        if isinstance(result, ToolResponse):
            return result
        return ToolResponse(content=[TextBlock(type="text", text=str(result))])

    def clear(self) -> None:
        self._tools.clear()


def create_context_reload_tool(
    memory: "AutoContextMemory",
    tool_name: str = "context_reload",
) -> Callable:
    """创建取回卸载内容的工具函数

    压缩后的消息里带有 working_context_offload_uuid，模型可以调用本工具
    取回对应的原始内容。

    Args:
        memory: AutoContextMemory 实例
        tool_name: 工具函数名称

    Returns:
        可注册到 Toolkit 的工具函数

    Example:
        >>> toolkit.register_tool_function(create_context_reload_tool(memory))
    """

    async def reload_func(working_context_offload_uuid: str) -> ToolResponse:
        """Retrieve the original content that was offloaded from the working context.

        Args:
            working_context_offload_uuid: The UUID shown in the offload hint.
        """
        try:
            msgs = await memory.retrieve_offloaded(working_context_offload_uuid)
        except OffloadNotFoundError as e:
            logger.info("卸载内容不存在", uuid=e.offload_uuid)
            return ToolResponse(
                content=[TextBlock(
                    type="text",
                    text=(
                        "Content not available: no offloaded content for "
                        f"working_context_offload_uuid {working_context_offload_uuid}."
                    ),
                )],
                metadata={"found": False},
            )

        text = "\n".join(
            f"{msg.role} {msg.name}: {render_msg_text(msg)}" for msg in msgs
        )
        return ToolResponse(
            content=[TextBlock(type="text", text=text)],
            metadata={"found": True, "messages": len(msgs)},
        )

    reload_func.__name__ = tool_name
    return reload_func
