from .langchain_client import LangChainLLMClient, from_langchain_response, to_langchain_messages

__all__ = ["LangChainLLMClient", "from_langchain_response", "to_langchain_messages"]
