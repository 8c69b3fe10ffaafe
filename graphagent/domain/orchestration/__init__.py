from .agent import AIAgent

__all__ = ["AIAgent"]
