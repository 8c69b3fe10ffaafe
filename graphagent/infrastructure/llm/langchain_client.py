from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage as LCBaseMessage,
    HumanMessage,
    SystemMessage as LCSystemMessage,
    ToolMessage,
)
import structlog

from graphagent.domain.llm.llm_client import LLMModel
from graphagent.domain.models.message import (
    AssistantMessage,
    BaseMessage,
    SystemMessage,
    ToolCallMessage,
    ToolResultMessage,
    UserMessage,
)
from graphagent.domain.tool.tool import ToolDescriptor

logger = structlog.get_logger(__name__)


def _append_tool_call(converted: List[LCBaseMessage], message: ToolCallMessage):
    """Add the call to the preceding tool-calling AI message, or start a new one"""

    arguments = message.arguments
    previous = converted[-1] if converted else None
    if isinstance(previous, AIMessage) and (previous.tool_calls or previous.invalid_tool_calls):
        tool_calls = list(previous.tool_calls)
        invalid_tool_calls = list(previous.invalid_tool_calls)
        content = previous.content
        converted.pop()
    else:
        tool_calls, invalid_tool_calls, content = [], [], ""

    if arguments is None:
        invalid_tool_calls.append({
            "name": message.tool, "args": message.content, "id": message.call_id,
            "error": None, "type": "invalid_tool_call",
        })
    else:
        tool_calls.append({"name": message.tool, "args": arguments, "id": message.call_id})
    converted.append(AIMessage(content=content, tool_calls=tool_calls, invalid_tool_calls=invalid_tool_calls))


def to_langchain_messages(messages: Sequence[BaseMessage]) -> List[LCBaseMessage]:
    """Convert a history; consecutive tool calls become one AI message"""

    converted: List[LCBaseMessage] = []
    for message in messages:
        if isinstance(message, SystemMessage):
            converted.append(LCSystemMessage(content=message.content))
        elif isinstance(message, UserMessage):
            converted.append(HumanMessage(content=message.content))
        elif isinstance(message, AssistantMessage):
            converted.append(AIMessage(content=message.content))
        elif isinstance(message, ToolCallMessage):
            _append_tool_call(converted, message)
        elif isinstance(message, ToolResultMessage):
            converted.append(ToolMessage(content=message.content, tool_call_id=message.call_id, name=message.tool))
        else:
            raise TypeError(f"Unsupported message type {type(message).__name__}")
    return converted


def _text_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def from_langchain_response(message: AIMessage) -> List[BaseMessage]:
    """Tool calls first, then the text answer if there is one

    Calls whose arguments the provider could not parse are kept with their
    raw text and no payload, so tool execution reports them as invalid.
    """

    responses: List[BaseMessage] = [
        ToolCallMessage.create(call["name"], call.get("args") or {}, call_id=call.get("id"))
        for call in message.tool_calls
    ]
    for call in message.invalid_tool_calls:
        logger.warning("LLM produced unparsable tool arguments", tool=call.get("name"), error=call.get("error"))
        extra = {"call_id": call["id"]} if call.get("id") else {}
        responses.append(ToolCallMessage(tool=call.get("name") or "", content=call.get("args") or "", **extra))

    text = _text_content(message.content)
    if text or not responses:
        responses.append(AssistantMessage(content=text))
    return responses


class LangChainLLMClient:
    """LLM client over langchain-core chat models, one per model id"""

    def __init__(self, default: BaseChatModel, by_model: Optional[Dict[str, BaseChatModel]] = None):
        self.default = default
        self.by_model = dict(by_model or {})

    def chat_model(self, model: LLMModel) -> BaseChatModel:
        return self.by_model.get(model.model_id, self.default)

    async def execute(
        self,
        messages: Sequence[BaseMessage],
        model: LLMModel,
        tools: Sequence[ToolDescriptor]
    ) -> List[BaseMessage]:
        chat_model = self.chat_model(model)
        runnable = chat_model.bind_tools([t.to_function_spec() for t in tools]) if tools else chat_model

        logger.debug("Invoking chat model", model=str(model), messages=len(messages), tools=len(tools))
        result = await runnable.ainvoke(to_langchain_messages(messages))
        return from_langchain_response(result)

    async def execute_streaming(
        self,
        messages: Sequence[BaseMessage],
        model: LLMModel
    ) -> AsyncIterator[str]:
        chat_model = self.chat_model(model)
        async for chunk in chat_model.astream(to_langchain_messages(messages)):
            text = _text_content(chunk.content)
            if text:
                yield text
