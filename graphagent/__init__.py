from graphagent.domain.errors import (
    AgentGraphError,
    AggregateError,
    CheckpointNotFoundError,
    DeadlockError,
    DuplicateToolError,
    GraphValidationError,
    LLMRequestError,
    MaxIterationsExceededError,
    NodeExecutionError,
    NodeTypeError,
    ParallelMergeError,
    RoutingError,
    StructuredOutputError,
    ToolError,
    ToolExecutionError,
    ToolNotAvailableError,
    ToolNotFoundError,
    ToolValidationError,
)
from graphagent.domain.events import AgentEvent, AgentEventType, EventDispatcher
from graphagent.domain.graph import (
    AgentContext,
    GraphBuilder,
    Node,
    FunctionNode,
    ParallelNode,
    Strategy,
    Subgraph,
    ToolSelection,
    select_by_max,
    select_by_index,
    select_by,
    fold,
    single_run_strategy,
    strategy_builder,
)
from graphagent.domain.llm import LLMClient, LLMModel, StructuredResponse
from graphagent.domain.models import (
    AssistantMessage,
    ExecutionPoint,
    SystemMessage,
    ToolCallMessage,
    ToolResultMessage,
    UserMessage,
)
from graphagent.domain.orchestration import AIAgent
from graphagent.domain.session import AgentSession
from graphagent.domain.tool import Tool, ToolDescriptor, ToolParameter, ToolParameterType, ToolRegistry
from graphagent.infrastructure.config import AgentGraphSettings

__version__ = "0.1.0"
