# Langfuse integration
from typing import Any, Dict, List, Optional, Tuple
from langfuse import Langfuse
import structlog

from graphagent.domain.events import AgentEvent, AgentEventType

logger = structlog.get_logger(__name__)


class LangfuseTracingObserver:
    """Maps agent lifecycle events to Langfuse traces, spans and generations

    One trace per run, one span per node execution (nested along the node
    path), one generation per LLM call and one span per tool call.
    """

    def __init__(
        self,
        langfuse: Optional[Langfuse] = None,
        public_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        host: Optional[str] = None,
        tags: Optional[List[str]] = None
    ):
        self.langfuse = langfuse or Langfuse(public_key=public_key, secret_key=secret_key, host=host)
        self.tags = list(tags or [])
        self._traces: Dict[str, Any] = {}
        self._spans: Dict[Tuple[str, Tuple[str, ...]], Any] = {}
        self._generations: Dict[Tuple[str, str], Any] = {}
        self._tool_spans: Dict[Tuple[str, str], Any] = {}

    def on_event(self, event: AgentEvent):
        handler = self._handlers.get(event.event_type)
        if handler is not None:
            handler(self, event)

    def _parent(self, event: AgentEvent, path: Optional[Tuple[str, ...]] = None) -> Any:
        """Innermost open node span enclosing the path, else the run's trace"""

        path = tuple(event.node_path) if path is None else path
        while path:
            span = self._spans.get((event.run_id, path))
            if span is not None:
                return span
            path = path[:-1]
        return self._trace(event)

    def _trace(self, event: AgentEvent) -> Any:
        trace = self._traces.get(event.run_id)
        if trace is None:
            trace = self.langfuse.trace(
                id=event.run_id,
                name=event.strategy,
                tags=self.tags,
                metadata={"strategy": event.strategy},
            )
            self._traces[event.run_id] = trace
        return trace

    def _agent_started(self, event: AgentEvent):
        self._trace(event).update(input=event.payload.get("input"))

    def _agent_ended(self, event: AgentEvent):
        trace = self._traces.pop(event.run_id, None)
        if trace is None:
            return
        if event.event_type == AgentEventType.AGENT_FINISHED:
            trace.update(output=event.payload.get("output"), metadata={"trace": event.payload.get("trace")})
        else:
            trace.update(output=event.payload.get("error"), metadata={"error_type": event.payload.get("error_type")})
        for open_items in (self._spans, self._generations, self._tool_spans):
            for key in [k for k in open_items if k[0] == event.run_id]:
                open_items.pop(key)
        self.langfuse.flush()
        logger.debug("Flushed Langfuse trace", run_id=event.run_id)

    def _node_started(self, event: AgentEvent):
        parent = self._parent(event, tuple(event.node_path[:-1]))
        span = parent.span(name=event.node_name, input=event.payload.get("input"))
        self._spans[(event.run_id, tuple(event.node_path))] = span

    def _node_ended(self, event: AgentEvent):
        span = self._spans.pop((event.run_id, tuple(event.node_path)), None)
        if span is None:
            return
        if event.event_type == AgentEventType.NODE_FINISHED:
            span.end(output=event.payload.get("output"))
        else:
            span.end(level="ERROR", status_message=event.payload.get("error"))

    def _llm_started(self, event: AgentEvent):
        generation = self._parent(event).generation(
            name="llm_call",
            model=event.payload.get("model"),
            metadata={"tools": event.payload.get("tools", []), "message_count": event.payload.get("message_count")},
        )
        self._generations[(event.run_id, str(event.payload.get("request_id")))] = generation

    def _llm_ended(self, event: AgentEvent):
        generation = self._generations.pop((event.run_id, str(event.payload.get("request_id"))), None)
        if generation is None:
            return
        if event.event_type == AgentEventType.LLM_CALL_FINISHED:
            generation.end(output=event.payload.get("responses"))
        else:
            generation.end(level="ERROR", status_message=event.payload.get("error"))

    def _tool_started(self, event: AgentEvent):
        span = self._parent(event).span(
            name=f"tool:{event.payload.get('tool')}",
            input=event.payload.get("arguments"),
        )
        self._tool_spans[(event.run_id, str(event.payload.get("call_id")))] = span

    def _tool_ended(self, event: AgentEvent):
        span = self._tool_spans.pop((event.run_id, str(event.payload.get("call_id"))), None)
        if span is None:
            return
        if event.event_type == AgentEventType.TOOL_CALL_FINISHED:
            span.end(output=event.payload.get("result"))
        else:
            span.end(level="ERROR", status_message=event.payload.get("error"))

    _handlers = {
        AgentEventType.AGENT_STARTED: _agent_started,
        AgentEventType.AGENT_FINISHED: _agent_ended,
        AgentEventType.AGENT_FAILED: _agent_ended,
        AgentEventType.NODE_STARTED: _node_started,
        AgentEventType.NODE_FINISHED: _node_ended,
        AgentEventType.NODE_FAILED: _node_ended,
        AgentEventType.LLM_CALL_STARTED: _llm_started,
        AgentEventType.LLM_CALL_FINISHED: _llm_ended,
        AgentEventType.LLM_CALL_FAILED: _llm_ended,
        AgentEventType.TOOL_CALL_STARTED: _tool_started,
        AgentEventType.TOOL_CALL_FINISHED: _tool_ended,
        AgentEventType.TOOL_CALL_FAILED: _tool_ended,
    }
