from .mock_llm import MockLLMClient, MockRequest, tool_call

__all__ = ["MockLLMClient", "MockRequest", "tool_call"]
