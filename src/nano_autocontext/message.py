# -*- coding: utf-8 -*-
"""
消息模块 - Nano-AutoContext 的核心消息结构

本模块定义了消息的基本结构，包括：
1. Msg - 消息类，是智能体、格式化器和记忆之间传递信息的基本单位
2. ContentBlock - 内容块，一个封闭的标签联合（tagged union），通过 "type" 字段区分

学习要点：
- Msg 构造完成后不可修改，压缩策略只会"替换"消息，不会"改写"消息
- role 字段标识消息来源（system/user/assistant/tool）
- content 可以是字符串或 ContentBlock 列表
- 工具结果本身也是多模态的：ToolResultBlock.output 是一个内容块列表

内容块一览：

    text / thinking / image / audio / video / tool_use / tool_result
"""

import copy
import uuid
from datetime import datetime
from typing import Any, Literal, Sequence

from typing_extensions import NotRequired, Required, TypedDict


# ============== Source 定义 ==============

class URLSource(TypedDict, total=False):
    """URL 来源 - 远程 URL 或本地文件路径

    Example:
        >>> URLSource(type="url", url="https://example.com/cat.png")
        >>> URLSource(type="url", url="./images/cat.png")
    """
    type: Required[Literal["url"]]
    url: Required[str]


class Base64Source(TypedDict, total=False):
    """Base64 内联数据来源

    Example:
        >>> Base64Source(type="base64", media_type="audio/wav", data="UklGR...")
    """
    type: Required[Literal["base64"]]
    media_type: Required[str]  # MIME 类型，如 "image/png"
    data: Required[str]  # 不带 data: 前缀的 base64 字符串


Source = URLSource | Base64Source


# ============== Content Block 定义 ==============

class TextBlock(TypedDict, total=False):
    """文本内容块

    Example:
        >>> block = TextBlock(type="text", text="你好，世界！")
    """
    type: Required[Literal["text"]]
    text: str


class ThinkingBlock(TypedDict, total=False):
    """思考内容块 - 模型的推理过程

    只在智能体内部保留（记忆、界面展示），格式化时永远不会发送给模型。
    """
    type: Required[Literal["thinking"]]
    thinking: str


class ImageBlock(TypedDict, total=False):
    """图片内容块"""
    type: Required[Literal["image"]]
    source: Required[Source]


class AudioBlock(TypedDict, total=False):
    """音频内容块"""
    type: Required[Literal["audio"]]
    source: Required[Source]


class VideoBlock(TypedDict, total=False):
    """视频内容块"""
    type: Required[Literal["video"]]
    source: Required[Source]


class ToolUseBlock(TypedDict, total=False):
    """工具调用块 - 表示 LLM 想要调用某个工具

    流式输出时，工具调用会被拆成多个片段到达。没有名字的后续片段会被
    显式标记为 ``fragment=True``，由调用方按 ``id`` 累积，不能当作完整的
    工具调用使用。

    Example:
        >>> block = ToolUseBlock(
        ...     type="tool_use",
        ...     id="call_123",
        ...     name="get_weather",
        ...     input={"city": "北京"}
        ... )
    """
    type: Required[Literal["tool_use"]]
    id: Required[str]  # 调用的唯一标识，也是流式片段的合并键
    name: Required[str]  # 工具函数名，片段中为空字符串
    input: Required[dict[str, object]]  # 解析后的调用参数
    raw_input: NotRequired[str]  # 原始参数文本（解析失败或流式片段时保留）
    fragment: NotRequired[bool]  # 是否为流式片段


class ToolResultBlock(TypedDict, total=False):
    """工具结果块 - 表示工具执行的返回结果

    output 是内容块列表，可以包含文本、图片、音频、视频；
    为了兼容简单场景，也接受一个字符串。

    Example:
        >>> block = ToolResultBlock(
        ...     type="tool_result",
        ...     id="call_123",
        ...     name="get_weather",
        ...     output=[TextBlock(type="text", text="北京今天晴天，25度")]
        ... )
    """
    type: Required[Literal["tool_result"]]
    id: Required[str]  # 对应 ToolUseBlock 的 id
    name: str  # 工具函数名
    output: Required[str | list]  # 执行结果


# 所有支持的内容块类型
ContentBlock = (
    TextBlock
    | ThinkingBlock
    | ImageBlock
    | AudioBlock
    | VideoBlock
    | ToolUseBlock
    | ToolResultBlock
)

BlockType = Literal[
    "text", "thinking", "image", "audio", "video", "tool_use", "tool_result"
]

# 多媒体块类型
MEDIA_BLOCK_TYPES: tuple[str, ...] = ("image", "audio", "video")

Role = Literal["system", "user", "assistant", "tool"]

_ROLES = ("system", "user", "assistant", "tool")


# ============== Msg 消息类 ==============

class Msg:
    """消息类 - 通信的基本单位

    核心属性：
        - name: 发送者名称
        - content: 消息内容，可以是字符串或 ContentBlock 列表
        - role: 角色类型（system/user/assistant/tool）
        - metadata: 附加元数据

    Msg 构造后不可修改，对属性赋值会抛出 AttributeError。
    需要"修改"消息时，请构造一个新的 Msg。
    这种不可变是浅层的：构造时会复制传入的内容块列表，但列表本身和其中的
    内容块字典仍然可以原地修改。需要独立副本时使用 copy.deepcopy 或 to_dict。

    Example:
        >>> # 简单文本消息
        >>> msg = Msg(name="user", content="你好", role="user")

        >>> # 包含工具调用的消息
        >>> msg = Msg(
        ...     name="assistant",
        ...     content=[
        ...         TextBlock(type="text", text="让我查一下天气"),
        ...         ToolUseBlock(type="tool_use", id="1", name="get_weather", input={"city": "北京"})
        ...     ],
        ...     role="assistant"
        ... )
    """

    __slots__ = ("name", "content", "role", "metadata", "id", "timestamp")

    def __init__(
        self,
        name: str,
        content: str | Sequence[ContentBlock],
        role: Role,
        metadata: dict | None = None,
        timestamp: str | None = None,
        id: str | None = None,
    ) -> None:
        """初始化消息对象

        Args:
            name: 发送者名称，如 "user", "assistant", "小助手" 等
            content: 消息内容
            role: 角色类型
                - "system": 系统提示
                - "user": 用户消息
                - "assistant": 助手（LLM）消息
                - "tool": 工具执行结果
            metadata: 可选的元数据
            timestamp: 时间戳，不提供则自动生成
            id: 消息 ID，不提供则自动生成
        """
        if role not in _ROLES:
            raise ValueError(f"role 必须是 {_ROLES} 之一，但收到 {role!r}")

        setter = object.__setattr__
        setter(self, "name", name)
        setter(
            self,
            "content",
            content if isinstance(content, str) else list(content),
        )
        setter(self, "role", role)
        setter(self, "metadata", metadata)
        setter(self, "id", id or str(uuid.uuid4())[:8])
        setter(
            self,
            "timestamp",
            timestamp or datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        )

    def __setattr__(self, key: str, value: Any) -> None:
        raise AttributeError(f"Msg 不可修改，无法设置属性 '{key}'")

    def __delattr__(self, key: str) -> None:
        raise AttributeError(f"Msg 不可修改，无法删除属性 '{key}'")

    def __reduce__(self) -> tuple:
        # copy / deepcopy / pickle 都经由 to_dict 和 from_dict
        return (Msg.from_dict, (self.to_dict(),))

    def get_text_content(self, separator: str = "\n") -> str | None:
        """获取消息中的纯文本内容

        只拼接 TextBlock，ThinkingBlock 不会出现在结果中。

        Args:
            separator: 多个文本块之间的分隔符

        Returns:
            拼接后的文本内容，如果没有文本则返回 None
        """
        if isinstance(self.content, str):
            return self.content

        texts = [
            block.get("text", "")
            for block in self.content
            if block.get("type") == "text"
        ]
        return separator.join(texts) if texts else None

    def get_content_blocks(
        self,
        block_type: BlockType | None = None,
    ) -> list[ContentBlock]:
        """获取指定类型的内容块

        Args:
            block_type: 要筛选的块类型，None 表示获取所有块

        Returns:
            ContentBlock 列表
        """
        if isinstance(self.content, str):
            blocks = [TextBlock(type="text", text=self.content)]
        else:
            blocks = list(self.content)

        if block_type:
            blocks = [b for b in blocks if b.get("type") == block_type]

        return blocks

    def has_content_blocks(
        self,
        block_type: BlockType | None = None,
    ) -> bool:
        """检查消息是否包含指定类型的内容块"""
        return len(self.get_content_blocks(block_type)) > 0

    def to_dict(self) -> dict:
        """将消息转换为可 JSON 序列化的字典"""
        return {
            "id": self.id,
            "name": self.name,
            "content": copy.deepcopy(self.content),
            "role": self.role,
            "metadata": copy.deepcopy(self.metadata),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Msg":
        """从字典创建消息对象"""
        return cls(
            name=data["name"],
            content=copy.deepcopy(data["content"]),
            role=data["role"],
            metadata=copy.deepcopy(data.get("metadata")),
            timestamp=data.get("timestamp"),
            id=data.get("id"),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Msg):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        content_preview = (
            self.content[:50] + "..."
            if isinstance(self.content, str) and len(self.content) > 50
            else str(self.content)[:50] + "..."
        )
        return f"Msg(name='{self.name}', role='{self.role}', content={content_preview})"


def text_msg(name: str, text: str, role: Role) -> Msg:
    """快捷创建只包含一个 TextBlock 的消息"""
    return Msg(name=name, content=[TextBlock(type="text", text=text)], role=role)
