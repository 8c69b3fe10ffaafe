from typing import Any, Callable, Iterable, List, Optional
import uuid
import structlog

from graphagent.domain.errors import AgentGraphError, NodeExecutionError
from graphagent.domain.events import AgentEventType, EventDispatcher, EventObserver
from graphagent.domain.graph.context import AgentContext, RunState
from graphagent.domain.graph.strategy import Strategy
from graphagent.domain.llm.llm_client import LLMClient, LLMGateway, LLMModel
from graphagent.domain.models.agent_state import AgentStatus, ExecutionPoint, RunSummary
from graphagent.domain.models.message import SystemMessage, utc_now
from graphagent.domain.session import AgentSession
from graphagent.domain.tool.tool_executor import ToolExecutor
from graphagent.domain.tool.tool_registry import ToolRegistry
from graphagent.infrastructure.config import AgentGraphSettings

logger = structlog.get_logger(__name__)


class AIAgent:
    """Runs a strategy graph against an LLM client and a tool registry"""

    def __init__(
        self,
        strategy: Strategy,
        llm_client: LLMClient,
        model: LLMModel,
        tool_registry: Optional[ToolRegistry] = None,
        system_prompt: Optional[str] = None,
        settings: Optional[AgentGraphSettings] = None,
        observers: Optional[Iterable[EventObserver]] = None,
        checkpoint_store: Any = None,
        agent_id: Optional[str] = None
    ):
        self.strategy = strategy
        self.llm_client = llm_client
        self.model = model
        self.tool_registry = tool_registry or ToolRegistry()
        self.system_prompt = system_prompt
        self.settings = settings or AgentGraphSettings()
        self.events = EventDispatcher(observers)
        self.checkpoint_store = checkpoint_store
        self.agent_id = agent_id or strategy.name
        self.status = AgentStatus.IDLE
        self.last_run: Optional[RunSummary] = None

    def add_observer(self, observer: EventObserver):
        self.events.add_observer(observer)

    def register_event_handler(self, event_type: AgentEventType, handler: Callable):
        self.events.register_event_handler(event_type, handler)

    async def run(self, input: Any = None, resume_from: Optional[str] = None) -> Any:
        """Run the strategy; with resume_from, continue from that checkpoint instead"""

        if resume_from is None:
            return await self._run(input, None)
        if self.checkpoint_store is None:
            raise RuntimeError("Resuming requires a checkpoint store")

        checkpoint = await self.checkpoint_store.get_checkpoint(resume_from)
        logger.info("Resuming from checkpoint", checkpoint_id=resume_from, node_path=checkpoint.point.node_path)
        return await self._run(input, checkpoint.point)

    async def run_from_execution_point(self, point: ExecutionPoint, input: Any = None) -> Any:
        """Restore a session snapshot and resume routing at the recorded node"""

        return await self._run(input, point)

    def _create_session(self, point: Optional[ExecutionPoint]) -> AgentSession:
        if point is None:
            messages = [SystemMessage(content=self.system_prompt)] if self.system_prompt else []
            return AgentSession(messages, self.tool_registry.descriptors(), self.model)

        session = AgentSession(model=self.model)
        tools = [self.tool_registry.resolve(name).descriptor for name in point.tools if name in self.tool_registry]
        session.restore(point, tools)
        return session

    async def _run(self, input: Any, point: Optional[ExecutionPoint]) -> Any:
        run_id = uuid.uuid4().hex
        strategy_name = self.strategy.name
        structlog.contextvars.bind_contextvars(run_id=run_id, strategy=strategy_name)

        events = self.events.bind(run_id, strategy_name)
        session = self._create_session(point)
        run = RunState(
            run_id=run_id,
            agent_id=self.agent_id,
            max_iterations=self.settings.max_agent_iterations,
            checkpoint_store=self.checkpoint_store,
            auto_checkpoint=self.settings.auto_checkpoint,
            resume_point=point,
        )
        ctx = AgentContext(
            session=session,
            tool_registry=self.tool_registry,
            llm=LLMGateway(self.llm_client, events),
            tool_executor=ToolExecutor(self.tool_registry, events),
            events=events,
            run=run,
            agent_input=input,
        )

        summary = RunSummary(run_id=run_id, strategy=strategy_name, status=AgentStatus.RUNNING)
        self.last_run = summary
        self.status = AgentStatus.RUNNING
        logger.info("Agent run started", model=str(self.model), resumed=point is not None)

        try:
            await events.emit(AgentEventType.AGENT_STARTED, input=input, resumed=point is not None)
            try:
                if point is None:
                    self.strategy.check_input(input)
                output = await self.strategy.execute(ctx, input)
            except AgentGraphError as e:
                await self._fail(summary, run, events, e)
                raise
            except Exception as e:
                error = NodeExecutionError(strategy_name, e)
                await self._fail(summary, run, events, error)
                raise error from e

            self.status = AgentStatus.COMPLETED
            summary.status = AgentStatus.COMPLETED
            self._finish(summary, run)
            await events.emit(AgentEventType.AGENT_FINISHED, output=output, trace=run.trace)
            logger.info("Agent run finished", iterations=run.iterations)
            return output
        finally:
            structlog.contextvars.unbind_contextvars("run_id", "strategy")

    async def _fail(self, summary: RunSummary, run: RunState, events: EventDispatcher, error: Exception):
        self.status = AgentStatus.FAILED
        summary.status = AgentStatus.FAILED
        summary.error = str(error)
        self._finish(summary, run)
        logger.error("Agent run failed", error=str(error), error_type=type(error).__name__, trace=run.trace)
        await events.emit(AgentEventType.AGENT_FAILED, error=str(error), error_type=type(error).__name__)

    @staticmethod
    def _finish(summary: RunSummary, run: RunState):
        summary.node_trace = list(run.trace)
        summary.iterations = run.iterations
        summary.finished_at = utc_now()

    @property
    def trace(self) -> List[str]:
        """Node trace of the most recent run"""

        return list(self.last_run.node_trace) if self.last_run else []
