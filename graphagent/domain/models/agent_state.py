from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum
import uuid

from .message import Message, utc_now


class AgentStatus(str, Enum):
    """Agent execution status"""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionPoint(BaseModel):
    """Position of a run: which node runs next, with what input, over which history"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    node_path: List[str] = Field(description="Node names from the strategy down to the active node")
    input: Any = Field(None, description="Pending input of the active node")
    messages: List[Message] = Field(default_factory=list, description="Session history snapshot")
    tools: List[str] = Field(default_factory=list, description="Names of the tools active in the session")
    model_provider: Optional[str] = Field(None, description="Provider of the session model")
    model_id: Optional[str] = Field(None, description="Session model; restored on resume")


class AgentCheckpoint(BaseModel):
    """Persisted execution point of one agent run"""
    checkpoint_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    agent_id: str = Field(description="Strategy name the checkpoint belongs to")
    run_id: str
    point: ExecutionPoint
    created_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RunSummary(BaseModel):
    """Outcome of a single agent run"""
    run_id: str
    strategy: str
    status: AgentStatus = Field(default=AgentStatus.IDLE)
    node_trace: List[str] = Field(default_factory=list)
    iterations: int = 0
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    def get_state_summary(self) -> Dict[str, Any]:
        """Get a summary of the run"""
        return {
            "run_id": self.run_id,
            "strategy": self.strategy,
            "status": self.status.value,
            "nodes_visited": len(self.node_trace),
            "iterations": self.iterations,
            "error": self.error,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None
        }
