# -*- coding: utf-8 -*-
"""
Nano-AutoContext - AgentScope 消息格式化与上下文压缩的精简实现

通过阅读源码，你可以了解：

1. 消息系统 (message.py)
   - Msg: 不可修改的消息，是各组件之间传递信息的基本单位
   - ContentBlock: 文本、思考、图片、音频、视频、工具调用、工具结果

2. 格式化器 (formatter.py, multi_agent_formatter.py)
   - OpenAIChatFormatter / DashScopeChatFormatter: Msg <-> API 格式
   - OpenAIMultiAgentFormatter / DashScopeMultiAgentFormatter: 多参与者对话折叠为 <history>
   - ToolCallAccumulator: 按 id 合并流式工具调用片段

3. 模型封装 (model.py)
   - OpenAIChatModel / DashScopeChatModel: 请求发送，响应交给格式化器解析

4. 上下文压缩 (auto_context_memory.py)
   - AutoContextMemory: 超出阈值时按五个策略逐级压缩
   - AutoContextConfig: 压缩阈值配置（支持 AUTO_CONTEXT_ 环境变量）
   - ModelSummarizer: 用聊天模型生成摘要
   - create_context_reload_tool: 让模型按 UUID 取回被卸载的原文

快速开始:
    >>> import asyncio
    >>> from nano_autocontext import (
    ...     AutoContextConfig, AutoContextMemory, ModelSummarizer,
    ...     OpenAIChatFormatter, OpenAIChatModel, Msg,
    ... )
    >>>
    >>> model = OpenAIChatModel(model_name="gpt-4o-mini", stream=False)
    >>> formatter = OpenAIChatFormatter()
    >>> memory = AutoContextMemory(
    ...     summarizer=ModelSummarizer(model),
    ...     config=AutoContextConfig(msg_threshold=30),
    ... )
    >>>
    >>> async def main():
    ...     await memory.add(Msg(name="user", content="你好", role="user"))
    ...     response = await model(await formatter.format(await memory.get_memory()))
    ...     await memory.add(response.to_msg())
    >>>
    >>> asyncio.run(main())
"""

__version__ = "0.1.0"

# 消息模块
from .message import (
    Msg,
    TextBlock,
    ThinkingBlock,
    ImageBlock,
    AudioBlock,
    VideoBlock,
    ToolUseBlock,
    ToolResultBlock,
    ContentBlock,
    URLSource,
    Base64Source,
    text_msg,
)

# 异常
from .exception import (
    AutoContextError,
    FormatError,
    ParseError,
    CompressionSkipped,
    OffloadNotFoundError,
)

# 格式化模块
from .formatter import (
    FormatterBase,
    FormatterCapabilities,
    OpenAIChatFormatter,
    DashScopeChatFormatter,
)
from .multi_agent_formatter import (
    OpenAIMultiAgentFormatter,
    DashScopeMultiAgentFormatter,
)
from .accumulator import (
    ToolCallAccumulator,
    complete_tool_calls,
)

# 模型模块
from .model import (
    ChatModelBase,
    DashScopeChatModel,
    OpenAIChatModel,
    ChatResponse,
    ChatUsage,
)

# 记忆模块
from .memory import (
    MemoryBase,
    InMemoryMemory,
)
from .auto_context_memory import (
    AutoContextConfig,
    AutoContextMemory,
)
from .offload import (
    ContextOffloaderBase,
    InMemoryContextOffloader,
    LocalFileContextOffloader,
)
from .summarizer import (
    SummarizerBase,
    ModelSummarizer,
)
from .token_counter import estimate_tokens

# 工具模块
from .tool import (
    Toolkit,
    ToolResponse,
    create_context_reload_tool,
)


__all__ = [
    # 版本
    "__version__",
    # 消息
    "Msg",
    "TextBlock",
    "ThinkingBlock",
    "ImageBlock",
    "AudioBlock",
    "VideoBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "ContentBlock",
    "URLSource",
    "Base64Source",
    "text_msg",
    # 异常
    "AutoContextError",
    "FormatError",
    "ParseError",
    "CompressionSkipped",
    "OffloadNotFoundError",
    # 格式化
    "FormatterBase",
    "FormatterCapabilities",
    "OpenAIChatFormatter",
    "DashScopeChatFormatter",
    "OpenAIMultiAgentFormatter",
    "DashScopeMultiAgentFormatter",
    "ToolCallAccumulator",
    "complete_tool_calls",
    # 模型
    "ChatModelBase",
    "DashScopeChatModel",
    "OpenAIChatModel",
    "ChatResponse",
    "ChatUsage",
    # 记忆
    "MemoryBase",
    "InMemoryMemory",
    "AutoContextConfig",
    "AutoContextMemory",
    "ContextOffloaderBase",
    "InMemoryContextOffloader",
    "LocalFileContextOffloader",
    "SummarizerBase",
    "ModelSummarizer",
    "estimate_tokens",
    # 工具
    "Toolkit",
    "ToolResponse",
    "create_context_reload_tool",
]
