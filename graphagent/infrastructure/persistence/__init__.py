from .checkpoint_store import CheckpointStore, InMemoryCheckpointStore

__all__ = ["CheckpointStore", "InMemoryCheckpointStore"]
