from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple
import copy
import structlog

from graphagent.domain.errors import MaxIterationsExceededError
from graphagent.domain.events import EventDispatcher
from graphagent.domain.llm.llm_client import LLMGateway
from graphagent.domain.models.agent_state import AgentCheckpoint, ExecutionPoint
from graphagent.domain.session import AgentSession, ReadSession, WriteSession
from graphagent.domain.tool.tool import ToolDescriptor
from graphagent.domain.tool.tool_executor import ToolExecutor, ToolResult
from graphagent.domain.tool.tool_registry import ToolRegistry

logger = structlog.get_logger(__name__)


class RunState:
    """Bookkeeping shared by every context of one run"""

    def __init__(
        self,
        run_id: str,
        agent_id: str,
        max_iterations: int = 50,
        checkpoint_store: Any = None,
        auto_checkpoint: bool = False,
        resume_point: Optional[ExecutionPoint] = None
    ):
        self.run_id = run_id
        self.agent_id = agent_id
        self.max_iterations = max_iterations
        self.checkpoint_store = checkpoint_store
        self.auto_checkpoint = auto_checkpoint
        self.trace: List[str] = []
        self.iterations = 0
        self.resume_path: Optional[List[str]] = list(resume_point.node_path) if resume_point else None
        self.resume_input: Any = resume_point.input if resume_point else None


class AgentContext:
    """Everything a node can reach while it runs

    Contexts are cheap views: entering a subgraph, a node or a parallel
    branch derives a new context that shares the run state, storage and
    event dispatcher of its parent.
    """

    def __init__(
        self,
        session: AgentSession,
        tool_registry: ToolRegistry,
        llm: LLMGateway,
        tool_executor: ToolExecutor,
        events: EventDispatcher,
        run: RunState,
        agent_input: Any = None,
        storage: Optional[Dict[str, Any]] = None,
        path: Optional[List[str]] = None
    ):
        self.session = session
        self.tool_registry = tool_registry
        self.llm = llm
        self.tool_executor = tool_executor
        self.events = events
        self.run = run
        self.agent_input = agent_input
        self.storage: Dict[str, Any] = storage if storage is not None else {}
        self.path: List[str] = list(path or [])
        self.visible_tools: Optional[FrozenSet[str]] = None
        self.subgraph_name: Optional[str] = None
        self.node_name: Optional[str] = None
        self.node_input: Any = None
        self.in_parallel_branch = False

    @property
    def run_id(self) -> str:
        return self.run.run_id

    @property
    def node_path(self) -> List[str]:
        """Names from the strategy down to the running node"""

        if self.node_name is None:
            return list(self.path)
        return self.path + [self.node_name]

    def _derive(self, **changes: Any) -> "AgentContext":
        derived = copy.copy(self)
        for key, value in changes.items():
            setattr(derived, key, value)
        return derived

    def for_subgraph(self, name: str, visible_tools: Optional[FrozenSet[str]]) -> "AgentContext":
        return self._derive(
            path=self.path + [name],
            visible_tools=visible_tools,
            subgraph_name=name,
            node_name=None,
            node_input=None,
        )

    def for_node(self, name: str, input: Any) -> "AgentContext":
        return self._derive(node_name=name, node_input=input)

    def for_parallel_branch(self, parallel_name: str) -> "AgentContext":
        """Context running on a fork of the session"""

        return self._derive(
            session=self.session.fork(),
            path=self.path + [parallel_name],
            node_name=None,
            node_input=None,
            in_parallel_branch=True,
        )

    # tools

    def visible_descriptors(self) -> List[ToolDescriptor]:
        if self.visible_tools is None:
            return self.tool_registry.descriptors()
        return [d for d in self.tool_registry.descriptors() if d.name in self.visible_tools]

    async def call_tool(
        self,
        tool_name: str,
        args: Optional[Dict[str, Any]],
        call_id: Optional[str] = None
    ) -> ToolResult:
        """Run a tool visible in this subgraph; failures come back in the ToolResult"""

        return await self.tool_executor.execute_tool(
            tool_name,
            args,
            call_id=call_id,
            available=self.visible_tools,
            node_path=self.node_path,
            subgraph=self.subgraph_name,
        )

    # session access

    def read(self):
        return self.session.read()

    def write(self):
        return self.session.write(llm=self.llm, tool_caller=self.call_tool, node_path=self.node_path)

    async def read_session(self, fn: Callable[[ReadSession], Any]) -> Any:
        return await self.session.read_session(fn)

    async def write_session(self, fn: Callable[[WriteSession], Any]) -> Any:
        return await self.session.write_session(
            fn, llm=self.llm, tool_caller=self.call_tool, node_path=self.node_path
        )

    # run bookkeeping

    def record_visit(self, node_name: str):
        """Count a node execution and append it to the run trace"""

        self.run.iterations += 1
        if self.run.iterations > self.run.max_iterations:
            raise MaxIterationsExceededError(self.run.max_iterations)
        if not self.in_parallel_branch:
            self.run.trace.append("/".join(self.path[1:] + [node_name]))

    def take_resume(self) -> Optional[Tuple[List[str], Any]]:
        """Remaining resume path below this graph, if a resume targets it

        The pending resume is cleared once the target node itself is reached.
        """
        resume_path = self.run.resume_path
        if resume_path is None or self.in_parallel_branch:
            return None
        depth = len(self.path)
        if resume_path[:depth] != self.path or len(resume_path) <= depth:
            return None

        remaining = resume_path[depth:]
        value = None
        if len(remaining) == 1:
            value = self.run.resume_input
            self.run.resume_path = None
            self.run.resume_input = None
        return remaining, value

    def execution_point(self, node_path: Optional[List[str]] = None, input: Any = None) -> ExecutionPoint:
        """Current position; the session is read without locking"""

        snapshot = self.session.snapshot()
        return ExecutionPoint(
            node_path=node_path or self.node_path,
            input=input if node_path else self.node_input,
            messages=list(snapshot.messages),
            tools=[t.name for t in snapshot.tools],
            model_provider=snapshot.model.provider if snapshot.model else None,
            model_id=snapshot.model.model_id if snapshot.model else None,
        )

    async def create_checkpoint(
        self,
        metadata: Optional[Dict[str, Any]] = None,
        node_path: Optional[List[str]] = None,
        input: Any = None
    ) -> AgentCheckpoint:
        """Persist the current position; resuming from it re-runs the current node"""

        if self.run.checkpoint_store is None:
            raise RuntimeError("No checkpoint store configured for this agent")
        if self.in_parallel_branch:
            raise RuntimeError("Checkpoints cannot be created inside parallel branches")

        checkpoint = AgentCheckpoint(
            agent_id=self.run.agent_id,
            run_id=self.run.run_id,
            point=self.execution_point(node_path, input),
            metadata=metadata or {},
        )
        await self.run.checkpoint_store.save_checkpoint(checkpoint)
        logger.info("Created checkpoint",
                    checkpoint_id=checkpoint.checkpoint_id,
                    node_path="/".join(checkpoint.point.node_path))
        return checkpoint
