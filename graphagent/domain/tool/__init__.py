from .tool import Tool, ToolDescriptor, ToolParameter, ToolParameterType
from .tool_registry import ToolRegistry
from .tool_validator import ToolParameterValidator
from .tool_executor import ToolExecutor, ToolResult, ToolErrorType

__all__ = [
    "Tool",
    "ToolDescriptor",
    "ToolParameter",
    "ToolParameterType",
    "ToolRegistry",
    "ToolParameterValidator",
    "ToolExecutor",
    "ToolResult",
    "ToolErrorType",
]
