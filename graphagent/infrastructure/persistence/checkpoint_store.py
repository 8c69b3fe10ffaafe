from typing import Dict, List, Optional, Protocol
import asyncio

from graphagent.domain.errors import CheckpointNotFoundError
from graphagent.domain.models.agent_state import AgentCheckpoint


class CheckpointStore(Protocol):
    """Storage seam for execution points"""

    async def save_checkpoint(self, checkpoint: AgentCheckpoint) -> None:
        ...

    async def get_checkpoint(self, checkpoint_id: str) -> AgentCheckpoint:
        ...

    async def get_checkpoints(self, agent_id: str) -> List[AgentCheckpoint]:
        ...

    async def get_latest_checkpoint(self, agent_id: str) -> Optional[AgentCheckpoint]:
        ...


class InMemoryCheckpointStore:
    """Process-local checkpoint store"""

    def __init__(self):
        self.checkpoints: Dict[str, AgentCheckpoint] = {}
        self._lock = asyncio.Lock()

    async def save_checkpoint(self, checkpoint: AgentCheckpoint) -> None:
        async with self._lock:
            self.checkpoints[checkpoint.checkpoint_id] = checkpoint

    async def get_checkpoint(self, checkpoint_id: str) -> AgentCheckpoint:
        """Get a checkpoint by id"""

        async with self._lock:
            checkpoint = self.checkpoints.get(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return checkpoint

    async def get_checkpoints(self, agent_id: str) -> List[AgentCheckpoint]:
        """All checkpoints of an agent, oldest first"""

        async with self._lock:
            return [c for c in self.checkpoints.values() if c.agent_id == agent_id]

    async def get_latest_checkpoint(self, agent_id: str) -> Optional[AgentCheckpoint]:
        checkpoints = await self.get_checkpoints(agent_id)
        return checkpoints[-1] if checkpoints else None

    async def delete_checkpoint(self, checkpoint_id: str) -> bool:
        async with self._lock:
            return self.checkpoints.pop(checkpoint_id, None) is not None
