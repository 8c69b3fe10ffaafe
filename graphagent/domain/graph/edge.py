from typing import Any, Callable, List, Optional, Tuple, TYPE_CHECKING
import inspect

from graphagent.domain.models.message import AssistantMessage, ToolCallMessage
from .node import Node

if TYPE_CHECKING:
    from .context import AgentContext

EdgeCallback = Callable[["AgentContext", Any], Any]


class _NoMatch:
    def __repr__(self) -> str:
        return "NO_MATCH"


NO_MATCH = _NoMatch()


async def _call(fn: Callable, ctx: "AgentContext", value: Any) -> Any:
    result = fn(ctx, value)
    if inspect.isawaitable(result):
        result = await result
    return result


class Edge:
    """Connection from one node to another

    An edge is a pipeline of condition and transform steps applied in the
    order they were declared. A condition that fails stops the pipeline and
    the edge does not match; otherwise the value left at the end is the
    target node's input. With no steps the edge always matches and passes
    the output through unchanged.
    """

    def __init__(self, source: Node, target: Node):
        self.source = source
        self.target = target
        self.steps: List[Tuple[str, EdgeCallback]] = []

    def add_condition(self, fn: EdgeCallback):
        self.steps.append(("condition", fn))

    def add_transform(self, fn: EdgeCallback):
        self.steps.append(("transform", fn))

    async def resolve(self, ctx: "AgentContext", output: Any) -> Any:
        """Value for the target node, or NO_MATCH"""

        value = output
        for kind, fn in self.steps:
            if kind == "condition":
                if not await _call(fn, ctx, value):
                    return NO_MATCH
            else:
                value = await _call(fn, ctx, value)
        return value

    def __repr__(self) -> str:
        return f"Edge({self.source.name!r} -> {self.target.name!r})"


class EdgeBuilder:
    """Fluent configuration of an edge that is already part of its graph"""

    def __init__(self, edge: Edge):
        self.edge = edge

    def on_condition(self, fn: EdgeCallback) -> "EdgeBuilder":
        self.edge.add_condition(fn)
        return self

    def transformed(self, fn: EdgeCallback) -> "EdgeBuilder":
        self.edge.add_transform(fn)
        return self

    def on_is_instance(self, cls: type) -> "EdgeBuilder":
        return self.on_condition(lambda ctx, value: isinstance(value, cls))

    def on_tool_call(self, fn: Optional[EdgeCallback] = None) -> "EdgeBuilder":
        """Match a single tool call message, optionally filtered further by fn"""

        self.on_is_instance(ToolCallMessage)
        if fn is not None:
            self.on_condition(fn)
        return self

    def on_assistant_message(self, fn: Optional[EdgeCallback] = None) -> "EdgeBuilder":
        """Match an assistant message; the message itself is passed on"""

        self.on_is_instance(AssistantMessage)
        if fn is not None:
            self.on_condition(fn)
        return self

    def on_multiple_tool_calls(self, fn: Optional[EdgeCallback] = None) -> "EdgeBuilder":
        """Match a list of responses holding tool calls; passes on only the tool calls"""

        self.on_condition(lambda ctx, value: isinstance(value, (list, tuple)))
        self.transformed(lambda ctx, value: [m for m in value if isinstance(m, ToolCallMessage)])
        self.on_condition(lambda ctx, calls: len(calls) > 0)
        if fn is not None:
            self.on_condition(fn)
        return self

    def on_multiple_assistant_messages(self, fn: Optional[EdgeCallback] = None) -> "EdgeBuilder":
        """Match a list of responses without tool calls; passes on the assistant messages"""

        self.on_condition(
            lambda ctx, value: isinstance(value, (list, tuple))
            and not any(isinstance(m, ToolCallMessage) for m in value)
        )
        self.transformed(lambda ctx, value: [m for m in value if isinstance(m, AssistantMessage)])
        if fn is not None:
            self.on_condition(fn)
        return self
