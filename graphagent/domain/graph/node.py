from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union, TYPE_CHECKING
import inspect
import structlog

from graphagent.domain.errors import AgentGraphError, NodeExecutionError, NodeTypeError
from graphagent.domain.events import AgentEventType
from graphagent.infrastructure.observability.logging import AgentLogger

if TYPE_CHECKING:
    from .context import AgentContext

logger = structlog.get_logger(__name__)
agent_logger = AgentLogger(__name__)

START_NODE_NAME = "__start__"
FINISH_NODE_NAME = "__finish__"

NodeFunction = Callable[["AgentContext", Any], Union[Any, Awaitable[Any]]]


class Node(ABC):
    """Named unit of computation with one input and one output

    ``input_type`` is checked at runtime when it is a plain class; generic
    aliases such as ``List[str]`` are documentation only.
    """

    def __init__(
        self,
        name: str,
        input_type: Optional[Any] = None,
        output_type: Optional[Any] = None
    ):
        if not name:
            raise ValueError("Node name must not be empty")
        self.name = name
        self.input_type = input_type
        self.output_type = output_type

    @abstractmethod
    async def execute(self, ctx: "AgentContext", input: Any) -> Any:
        """Produce the node's output"""
        pass

    def check_input(self, value: Any):
        expected = self.input_type
        if isinstance(expected, type) and expected is not object and not isinstance(value, expected):
            raise NodeTypeError(self.name, expected, value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class FunctionNode(Node):
    """Node backed by a plain or coroutine function taking (ctx, input)"""

    def __init__(
        self,
        name: str,
        fn: NodeFunction,
        input_type: Optional[Any] = None,
        output_type: Optional[Any] = None
    ):
        super().__init__(name, input_type, output_type)
        self.fn = fn

    async def execute(self, ctx: "AgentContext", input: Any) -> Any:
        result = self.fn(ctx, input)
        if inspect.isawaitable(result):
            result = await result
        return result


class StartNode(Node):
    """Graph entry; passes its input through"""

    def __init__(self):
        super().__init__(START_NODE_NAME)

    async def execute(self, ctx: "AgentContext", input: Any) -> Any:
        return input


class FinishNode(Node):
    """Graph exit; its input becomes the graph's result"""

    def __init__(self):
        super().__init__(FINISH_NODE_NAME)

    async def execute(self, ctx: "AgentContext", input: Any) -> Any:
        return input


async def run_node(ctx: "AgentContext", node: Node, value: Any, check_input: bool = True) -> Any:
    """Execute one node with lifecycle events

    Exceptions outside the engine's taxonomy are wrapped in NodeExecutionError.
    """
    node_ctx = ctx.for_node(node.name, value)
    agent_logger.log_node_event("started", node.name, path="/".join(node_ctx.node_path))
    await ctx.events.emit(AgentEventType.NODE_STARTED, node_ctx.node_path, input=value)

    try:
        if check_input:
            node.check_input(value)
        output = await node.execute(node_ctx, value)
    except AgentGraphError as e:
        await ctx.events.emit(AgentEventType.NODE_FAILED, node_ctx.node_path, error=str(e))
        raise
    except Exception as e:
        logger.error("Node execution failed",
                     node=node.name,
                     path="/".join(node_ctx.node_path),
                     error=str(e))
        await ctx.events.emit(AgentEventType.NODE_FAILED, node_ctx.node_path, error=str(e))
        raise NodeExecutionError(node.name, e) from e

    await ctx.events.emit(AgentEventType.NODE_FINISHED, node_ctx.node_path, output=output)
    agent_logger.log_node_event("finished", node.name, path="/".join(node_ctx.node_path))
    return output
