from typing import Any, AsyncIterator, List, Optional, Protocol, Sequence
from pydantic import BaseModel, ConfigDict
import uuid
import structlog

from graphagent.domain.errors import LLMRequestError
from graphagent.domain.events import AgentEventType, EventDispatcher
from graphagent.domain.models.message import (
    AssistantMessage,
    BaseMessage,
    MessageMetadata,
    ToolCallMessage,
)
from graphagent.domain.tool.tool import ToolDescriptor

logger = structlog.get_logger(__name__)


class LLMModel(BaseModel):
    """Model selector passed to the LLM client"""
    model_config = ConfigDict(frozen=True)

    provider: str
    model_id: str

    def __str__(self) -> str:
        return f"{self.provider}/{self.model_id}"


class LLMClient(Protocol):
    """Provider-facing seam; implementations live outside the engine"""

    async def execute(
        self,
        messages: Sequence[BaseMessage],
        model: LLMModel,
        tools: Sequence[ToolDescriptor]
    ) -> List[BaseMessage]:
        """Return the response messages (assistant text and/or tool calls)"""
        ...

    def execute_streaming(
        self,
        messages: Sequence[BaseMessage],
        model: LLMModel
    ) -> AsyncIterator[str]:
        """Stream assistant text chunks"""
        ...


class LLMGateway:
    """Calls the LLM client on behalf of nodes, emitting lifecycle events

    Provider exceptions are surfaced as LLMRequestError.
    """

    def __init__(self, client: LLMClient, events: EventDispatcher):
        self.client = client
        self.events = events

    async def request(
        self,
        messages: Sequence[BaseMessage],
        model: LLMModel,
        tools: Sequence[ToolDescriptor],
        node_path: Optional[List[str]] = None
    ) -> List[BaseMessage]:
        """Send the prompt and tag every response with a request id"""

        request_id = uuid.uuid4().hex
        await self.events.emit(
            AgentEventType.LLM_CALL_STARTED, node_path,
            request_id=request_id, model=str(model),
            message_count=len(messages), tools=[t.name for t in tools]
        )

        try:
            responses = await self.client.execute(list(messages), model, list(tools))
            if not responses:
                raise LLMRequestError(f"LLM {model} returned no response")
            tagged = [_with_request_id(message, request_id) for message in responses]
        except LLMRequestError as e:
            await self._failed(request_id, model, node_path, e)
            raise
        except Exception as e:
            logger.error("LLM request failed", model=str(model), error=str(e))
            await self._failed(request_id, model, node_path, e)
            raise LLMRequestError(f"LLM request to {model} failed: {e}") from e

        await self.events.emit(
            AgentEventType.LLM_CALL_FINISHED, node_path,
            request_id=request_id, model=str(model), responses=tagged
        )
        return tagged

    async def stream(
        self,
        messages: Sequence[BaseMessage],
        model: LLMModel,
        node_path: Optional[List[str]] = None
    ) -> AsyncIterator[str]:
        """Stream text chunks from the client"""

        request_id = uuid.uuid4().hex
        await self.events.emit(
            AgentEventType.LLM_CALL_STARTED, node_path,
            request_id=request_id, model=str(model), message_count=len(messages), streaming=True
        )

        chunks: List[str] = []
        try:
            async for chunk in self.client.execute_streaming(list(messages), model):
                chunks.append(chunk)
                yield chunk
        except Exception as e:
            logger.error("LLM stream failed", model=str(model), error=str(e))
            await self._failed(request_id, model, node_path, e, streaming=True)
            raise LLMRequestError(f"LLM stream from {model} failed: {e}") from e

        await self.events.emit(
            AgentEventType.LLM_CALL_FINISHED, node_path,
            request_id=request_id, model=str(model), responses=["".join(chunks)], streaming=True
        )

    async def _failed(
        self, request_id: str, model: LLMModel, node_path: Optional[List[str]], error: Exception, **extra: Any
    ):
        await self.events.emit(
            AgentEventType.LLM_CALL_FAILED, node_path,
            request_id=request_id, model=str(model), error=str(error) or type(error).__name__, **extra
        )


def _with_request_id(message: BaseMessage, request_id: str) -> BaseMessage:
    if not isinstance(message, (AssistantMessage, ToolCallMessage)):
        raise LLMRequestError(f"LLM returned unsupported message type {type(message).__name__}")
    if message.metadata.request_id:
        return message
    metadata = MessageMetadata(
        timestamp=message.metadata.timestamp,
        request_id=request_id,
        memory=message.metadata.memory,
    )
    return message.model_copy(update={"metadata": metadata})
