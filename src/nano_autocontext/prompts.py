# -*- coding: utf-8 -*-
"""
提示词模板 - AutoContextMemory 各压缩策略使用的提示词

提示词按压缩策略从轻到重排列：
1. 历史工具调用压缩
2-3. 大消息卸载
4. 历史轮次摘要
5. 当前轮次：过大的工具结果摘要，必要时合并整个轮次

发给模型的提示词保持英文，和模型的指令遵循习惯一致。
"""

import re

# ============== 策略 1：历史工具调用压缩 ==============

TOOL_INVOCATION_COMPRESS_PROMPT_START = (
    "Please intelligently compress and summarize the following tool invocation history"
)

TOOL_INVOCATION_COMPRESS_PROMPT_END = (
    "Above is a history of tool invocations. \n"
    "Please intelligently compress and summarize the following tool invocation history:\n"
    "    Summarize the tool responses while preserving key invocation details, including"
    " the tool name, its purpose, and its output.\n"
    "    For repeated calls to the same tool, consolidate the different parameters and"
    " results, highlighting essential variations and outcomes.\n"
    "    Special handling for plan-related tools ({plan_tools}): Use minimal compression -"
    " only keep a brief description indicating that plan-related tool calls were made,"
    " without preserving detailed parameters, results, or intermediate states."
)

COMPRESSED_TOOL_INVOCATION_FORMAT = (
    "<compressed_history>{summary}</compressed_history>\n"
    "<hint> You can use this information as historical context for future reference in"
    " carrying out your tasks\n"
)

COMPRESSED_TOOL_INVOCATION_OFFLOAD_HINT = (
    "<hint> The original tools invocation is stored in the offload with"
    " working_context_offload_uuid: {uuid}. if you need to retrieve it, please use the"
    " context_reload tool to get it. \n"
)

# 只包含计划类工具的调用序列不调用摘要模型，直接使用固定文本
PLAN_TOOL_STUB = "Plan-related tool calls were made ({tools})."

# ============== 策略 2-3：大消息卸载 ==============

LARGE_MESSAGE_OFFLOAD_FORMAT = (
    "{preview}\n"
    "<hint> This message content has been offloaded due to large size. The original"
    " content is stored with working_context_offload_uuid: {uuid}. If you need to"
    " retrieve the full content, please use the context_reload tool with this"
    " UUID.</hint>"
)

# ============== 策略 4：历史轮次摘要 ==============

PREVIOUS_ROUND_SUMMARY_PROMPT_START = (
    "Please intelligently summarize the following conversation history. Preserve key"
    " information, decisions, and context that would be important for future reference."
)

PREVIOUS_ROUND_SUMMARY_PROMPT_END = (
    "Above is a conversation history. \n"
    "Please provide a concise summary that:\n"
    "    - Preserves important decisions, conclusions, and key information\n"
    "    - Maintains context that would be needed for future interactions\n"
    "    - Consolidates repeated or similar information\n"
    "    - Highlights any important outcomes or results"
)

PREVIOUS_ROUND_SUMMARY_FORMAT = (
    "<conversation_summary>{summary}</conversation_summary>\n"
    "<hint> This is a summary of previous conversation rounds. You can use this"
    " information as historical context for future reference.\n"
)

PREVIOUS_ROUND_SUMMARY_OFFLOAD_HINT = (
    "<hint> The original conversation is stored in the offload with"
    " working_context_offload_uuid: {uuid}. If you need to retrieve the full"
    " conversation, please use the context_reload tool with this UUID.</hint>"
)

# ============== 策略 5：当前轮次 ==============

# 5a. 单个过大的工具结果

CURRENT_ROUND_LARGE_MESSAGE_PROMPT_START = (
    "Please intelligently summarize the following message content. This message exceeds"
    " the size threshold and needs to be compressed while preserving all critical"
    " information."
)

CURRENT_ROUND_LARGE_MESSAGE_PROMPT_END = (
    "Above is a large message that needs to be summarized.\n"
    "Please provide a concise summary that:\n"
    "    - Preserves all critical information and key details\n"
    "    - Maintains important context that would be needed for future reference\n"
    "    - Highlights any important outcomes, results, or status information\n"
    "    - Retains tool call information if present (tool names, IDs, key parameters)"
)

COMPRESSED_LARGE_MESSAGE_FORMAT = (
    "<compressed_large_message>{summary}</compressed_large_message>\n"
    "<hint> The above is a compressed summary of a tool result in the current round. The"
    " original result has been offloaded with working_context_offload_uuid: {uuid}. If"
    " you need the full original content, use the context_reload tool with this"
    " UUID.</hint>"
)

# 5b. 合并整个当前轮次

CURRENT_ROUND_COMPRESS_PROMPT_START = (
    "Please compress and summarize the following current round messages (tool calls and"
    " results).\n"
    "\n"
    "The original content contains approximately {original_chars} characters. Compress it"
    " to approximately {target_chars} characters.\n"
    "\n"
    "Compression guidelines:\n"
    "  * Preserve tool names, IDs, and important parameters\n"
    "  * Retain key results, outcomes, and status information\n"
    "  * Maintain logical flow and relationships between tool calls\n"
    "  * Consolidate similar or repeated information\n"
    "  * For plan-related tools ({plan_tools}): keep brief descriptions of what plan"
    " operations were performed and the task-related outcomes"
)

CURRENT_ROUND_COMPRESS_PROMPT_END = (
    "Above are the current round messages that need to be summarized.\n"
    "\n"
    "Please provide a summary that:\n"
    "    - Preserves all critical information and key details\n"
    "    - Highlights important outcomes, results, and status information\n"
    "    - Retains tool call information (tool names, IDs, key parameters)\n"
    "    - Stays close to {target_chars} characters"
)

COMPRESSED_CURRENT_ROUND_FORMAT = (
    "<compressed_current_round>{summary}</compressed_current_round>\n"
    "<current_round_tool_calls>\n{tool_calls}</current_round_tool_calls>\n"
    "<hint> The above is a compressed summary of the current round tool calls and"
    " results. You should use this summary as context to continue reasoning and answer"
    " the user's questions, rather than directly returning this compressed content. The"
    " original detailed tool calls and results have been offloaded with"
    " working_context_offload_uuid: {uuid}. If you need to retrieve the full original"
    " content for specific details, you can use the context_reload tool with this"
    " UUID.</hint>"
)

# 工具调用接口按原样保留在合并后的消息中
CURRENT_ROUND_TOOL_CALL_LINE = "Tool Call: {name} (ID: {id})\n  Parameters: {arguments}\n"

# 从已有提示中找回卸载 UUID
OFFLOAD_UUID_PATTERN = re.compile(
    r"working_context_offload_uuid: ([0-9a-fA-F-]{36})"
)


def build_summary_request(start: str, transcript: str, end: str = "") -> str:
    """把待摘要的对话记录包在策略提示词之间，end 为空时省略结尾提示"""
    request = f"{start}\n\n<messages>\n{transcript}\n</messages>"
    if end:
        request += f"\n\n{end}"
    return request


def find_offload_uuids(text: str) -> list[str]:
    """提取文本中引用的卸载 UUID（保持首次出现的顺序，去重）"""
    return list(dict.fromkeys(OFFLOAD_UUID_PATTERN.findall(text)))
