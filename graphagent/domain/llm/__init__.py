from .llm_client import LLMClient, LLMGateway, LLMModel
from .structured import StructuredResponse

__all__ = ["LLMClient", "LLMGateway", "LLMModel", "StructuredResponse"]
