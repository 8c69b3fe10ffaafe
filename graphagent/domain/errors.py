from typing import Any, Optional


class AgentGraphError(Exception):
    """Base class for all errors raised by the execution engine"""


class GraphValidationError(AgentGraphError):
    """Graph failed structural validation at build time"""


class RoutingError(AgentGraphError):
    """No outgoing edge matched a node's output"""

    def __init__(self, node_name: str, output: Any):
        self.node_name = node_name
        self.output = output
        super().__init__(
            f"No outgoing edge of node '{node_name}' matched output {output!r}"
        )


class ToolError(AgentGraphError):
    """Base class for tool registry and invocation errors"""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message)


class DuplicateToolError(ToolError):
    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Tool '{tool_name}' is already registered")


class ToolNotFoundError(ToolError):
    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Tool '{tool_name}' is not registered")


class ToolNotAvailableError(ToolError):
    """Tool exists but is outside the visible tool subset of the running subgraph"""

    def __init__(self, tool_name: str, subgraph: Optional[str] = None):
        self.subgraph = subgraph
        where = f" in subgraph '{subgraph}'" if subgraph else ""
        super().__init__(tool_name, f"Tool '{tool_name}' is not available{where}")


class ToolValidationError(ToolError):
    """Tool arguments are malformed"""

    def __init__(self, tool_name: str, errors: list):
        self.errors = list(errors)
        super().__init__(
            tool_name,
            f"Invalid arguments for tool '{tool_name}': " + "; ".join(self.errors),
        )


class ToolExecutionError(ToolError):
    """Tool handler raised while executing"""

    def __init__(self, tool_name: str, message: str):
        self.underlying_message = message
        super().__init__(tool_name, f"Tool '{tool_name}' failed: {message}")


class AggregateError(AgentGraphError):
    """A branch of a parallel node failed; the earliest failure is reported"""

    def __init__(self, parallel_node: str, branch_name: str, cause: BaseException):
        self.parallel_node = parallel_node
        self.branch_name = branch_name
        self.cause = cause
        super().__init__(
            f"Branch '{branch_name}' of parallel node '{parallel_node}' failed: {cause}"
        )


class ParallelMergeError(AgentGraphError):
    """Merge strategy produced an invalid selection"""


class DeadlockError(AgentGraphError):
    """Session access requested while the same task already holds exclusive access"""


class NodeExecutionError(AgentGraphError):
    """Node body raised an exception outside the engine's taxonomy"""

    def __init__(self, node_name: str, cause: BaseException):
        self.node_name = node_name
        self.cause = cause
        super().__init__(f"Node '{node_name}' failed: {type(cause).__name__}: {cause}")


class NodeTypeError(AgentGraphError):
    """Node received an input that does not match its declared input type"""

    def __init__(self, node_name: str, expected: type, value: Any):
        self.node_name = node_name
        self.expected = expected
        self.value = value
        super().__init__(
            f"Node '{node_name}' expects {expected.__name__}, got {type(value).__name__}"
        )


class LLMRequestError(AgentGraphError):
    """LLM provider call failed"""


class StructuredOutputError(LLMRequestError):
    """LLM answer never validated against the requested structure"""

    def __init__(self, structure: str, errors: list, raw: str):
        self.structure = structure
        self.errors = list(errors)
        self.raw = raw
        super().__init__(
            f"LLM response does not match '{structure}': " + "; ".join(self.errors)
        )


class MaxIterationsExceededError(AgentGraphError):
    """Run executed more nodes than the configured iteration budget"""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Agent exceeded the maximum of {limit} node executions")


class CheckpointNotFoundError(AgentGraphError):
    def __init__(self, checkpoint_id: str):
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint '{checkpoint_id}' not found")
