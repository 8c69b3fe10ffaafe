from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import uuid

from graphagent.domain.models.message import utc_now


class AgentEventType(str, Enum):
    """Lifecycle event types emitted during a run"""
    AGENT_STARTED = "agent_started"
    AGENT_FINISHED = "agent_finished"
    AGENT_FAILED = "agent_failed"
    NODE_STARTED = "node_started"
    NODE_FINISHED = "node_finished"
    NODE_FAILED = "node_failed"
    LLM_CALL_STARTED = "llm_call_started"
    LLM_CALL_FINISHED = "llm_call_finished"
    LLM_CALL_FAILED = "llm_call_failed"
    TOOL_CALL_STARTED = "tool_call_started"
    TOOL_CALL_FINISHED = "tool_call_finished"
    TOOL_CALL_FAILED = "tool_call_failed"
    TOOL_VALIDATION_FAILED = "tool_validation_failed"


class AgentEvent(BaseModel):
    """Base event model for all lifecycle notifications"""
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event_type: AgentEventType
    run_id: str
    strategy: str
    sequence: int = Field(description="Monotonic ordering within a run")
    timestamp: datetime = Field(default_factory=utc_now)
    node_path: List[str] = Field(default_factory=list)
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def node_name(self) -> Optional[str]:
        return self.node_path[-1] if self.node_path else None


def to_jsonable(value: Any) -> Any:
    """Best-effort conversion of node values into JSON-friendly payloads"""

    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return repr(value)
