# Session = the conversation of one run: ordered messages, the tools offered
# to the model and the active model.
#
# Nodes never touch it directly. They go through
#   read()  -> ReadSession   (snapshot, shared)
#   write() -> WriteSession  (mutable, exclusive, scoped)

from .rw_lock import ReadWriteLock
from .session import AgentSession, ReadSession, WriteSession

__all__ = ["ReadWriteLock", "AgentSession", "ReadSession", "WriteSession"]
