from typing import Dict, List, Any, Optional, Callable, Iterable, Iterator, Type, Union
from pydantic import BaseModel
import structlog

from graphagent.domain.errors import DuplicateToolError, ToolNotFoundError
from .tool import Tool, ToolDescriptor

logger = structlog.get_logger(__name__)


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self.tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register(
        self,
        descriptor: ToolDescriptor,
        handler: Callable[..., Any],
        args_model: Optional[Type[BaseModel]] = None,
        result_formatter: Optional[Callable[[Any], str]] = None
    ) -> Tool:
        """Register a handler under a descriptor"""

        tool = Tool(descriptor, handler, args_model=args_model, result_formatter=result_formatter)
        self.register_tool(tool)
        return tool

    def register_tool(self, tool: Tool) -> None:
        """Register a new tool"""

        if tool.name in self.tools:
            raise DuplicateToolError(tool.name)
        self.tools[tool.name] = tool
        logger.debug("Registered tool", tool=tool.name)

    def resolve(self, name: str) -> Tool:
        """Get the tool registered under a name"""

        tool = self.tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def get_tool_info(self, name: str) -> Optional[ToolDescriptor]:
        """Get the descriptor of a tool, if registered"""

        tool = self.tools.get(name)
        return tool.descriptor if tool else None

    def descriptors(self) -> List[ToolDescriptor]:
        """Descriptors of all tools, in registration order"""

        return [tool.descriptor for tool in self.tools.values()]

    def names(self) -> List[str]:
        return list(self.tools)

    def subset(self, names: Iterable[Union[str, Tool]]) -> "ToolRegistry":
        """New registry holding only the named tools"""

        selected = []
        for item in names:
            name = item.name if isinstance(item, Tool) else item
            selected.append(self.resolve(name))
        return ToolRegistry(selected)

    def merge(self, other: "ToolRegistry") -> "ToolRegistry":
        """New registry holding the tools of both registries"""

        return ToolRegistry(list(self.tools.values()) + list(other.tools.values()))

    def search_tools(self, query: str) -> List[ToolDescriptor]:
        """Search tools by name or description"""

        query_lower = query.lower()
        return [
            tool.descriptor for tool in self.tools.values()
            if query_lower in tool.name.lower() or query_lower in tool.descriptor.description.lower()
        ]

    def __contains__(self, name: object) -> bool:
        return name in self.tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self.tools.values())

    def __len__(self) -> int:
        return len(self.tools)
