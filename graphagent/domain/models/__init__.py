from .message import (
    MessageMetadata,
    BaseMessage,
    SystemMessage,
    UserMessage,
    AssistantMessage,
    ToolCallMessage,
    ToolResultMessage,
    Message,
    is_memory,
)
from .agent_state import AgentStatus, ExecutionPoint, AgentCheckpoint, RunSummary

__all__ = [
    "MessageMetadata",
    "BaseMessage",
    "SystemMessage",
    "UserMessage",
    "AssistantMessage",
    "ToolCallMessage",
    "ToolResultMessage",
    "Message",
    "is_memory",
    "AgentStatus",
    "ExecutionPoint",
    "AgentCheckpoint",
    "RunSummary",
]
