from typing import Dict, Any, Optional, Annotated, Literal, Union
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
import json
import uuid


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageMetadata(BaseModel):
    """Metadata attached to every message"""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    request_id: Optional[str] = Field(None, description="Id of the LLM request that produced the message")
    memory: bool = Field(default=False, description="Message carries agent memory and survives history compression")


class BaseMessage(BaseModel):
    """Fields shared by all message variants"""
    model_config = ConfigDict(frozen=True)

    content: str = ""
    payload: Optional[Dict[str, Any]] = Field(None, description="Optional structured payload")
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)


class SystemMessage(BaseMessage):
    role: Literal["system"] = "system"


class UserMessage(BaseMessage):
    role: Literal["user"] = "user"


class AssistantMessage(BaseMessage):
    role: Literal["assistant"] = "assistant"


class ToolCallMessage(BaseMessage):
    """LLM request to invoke a tool; content holds the JSON-encoded arguments"""
    role: Literal["tool_call"] = "tool_call"
    tool: str
    call_id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def create(cls, tool: str, arguments: Dict[str, Any], call_id: Optional[str] = None, **kwargs) -> "ToolCallMessage":
        """Build a tool call from an arguments dict"""
        return cls(
            tool=tool,
            call_id=call_id or uuid.uuid4().hex,
            content=json.dumps(arguments),
            payload=dict(arguments),
            **kwargs
        )

    @property
    def arguments(self) -> Optional[Dict[str, Any]]:
        """Decoded arguments, or None when the content is not a JSON object"""
        if self.payload is not None:
            return dict(self.payload)
        if not self.content:
            return {}
        try:
            decoded = json.loads(self.content)
        except ValueError:
            return None
        return decoded if isinstance(decoded, dict) else None


class ToolResultMessage(BaseMessage):
    role: Literal["tool_result"] = "tool_result"
    tool: str
    call_id: str
    is_error: bool = False


Message = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolCallMessage, ToolResultMessage],
    Field(discriminator="role"),
]


def is_memory(message: BaseMessage) -> bool:
    return message.metadata.memory
