from .schema import AgentEvent, AgentEventType, to_jsonable
from .event_dispatcher import EventDispatcher, EventObserver

__all__ = [
    "AgentEvent",
    "AgentEventType",
    "to_jsonable",
    "EventDispatcher",
    "EventObserver",
]
