from typing import Dict, Any, Optional, List, Callable, Protocol, Iterable
import inspect
import structlog

from .schema import AgentEvent, AgentEventType, to_jsonable

logger = structlog.get_logger(__name__)


class EventObserver(Protocol):
    """Receives every lifecycle event of a run; may be sync or async"""

    def on_event(self, event: AgentEvent) -> Any:
        ...


class EventDispatcher:
    """Delivers ordered lifecycle events to observers and per-type handlers

    A failing observer is logged and skipped, it never aborts the run.
    """

    def __init__(
        self,
        observers: Optional[Iterable[EventObserver]] = None,
        run_id: str = "",
        strategy: str = ""
    ):
        self.observers: List[EventObserver] = list(observers or [])
        self.event_handlers: Dict[AgentEventType, List[Callable]] = {}
        self.run_id = run_id
        self.strategy = strategy
        self._sequence = 0

    def add_observer(self, observer: EventObserver):
        """Register an observer for all events"""

        self.observers.append(observer)

    def register_event_handler(self, event_type: AgentEventType, handler: Callable):
        """Register a custom event handler"""

        if event_type not in self.event_handlers:
            self.event_handlers[event_type] = []
        self.event_handlers[event_type].append(handler)

    def bind(self, run_id: str, strategy: str) -> "EventDispatcher":
        """Dispatcher for a single run sharing this one's observers and handlers"""

        bound = EventDispatcher(self.observers, run_id=run_id, strategy=strategy)
        bound.event_handlers = self.event_handlers
        return bound

    def _next_sequence(self) -> int:
        seq = self._sequence
        self._sequence += 1
        return seq

    async def emit(
        self,
        event_type: AgentEventType,
        node_path: Optional[List[str]] = None,
        **payload: Any
    ) -> AgentEvent:
        """Build an event and deliver it to every observer, then every handler"""

        event = AgentEvent(
            event_type=event_type,
            run_id=self.run_id,
            strategy=self.strategy,
            sequence=self._next_sequence(),
            node_path=list(node_path or []),
            payload={key: to_jsonable(value) for key, value in payload.items()},
        )

        for observer in list(self.observers):
            await self._deliver(observer.on_event, event)
        for handler in self.event_handlers.get(event_type, []):
            await self._deliver(handler, event)

        return event

    async def _deliver(self, callback: Callable, event: AgentEvent):
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Error in event handler",
                         event_type=event.event_type.value,
                         handler=getattr(callback, "__qualname__", repr(callback)),
                         error=str(e))
