from typing import Dict, Any, List, Optional, Collection
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
import time

from graphagent.domain.errors import (
    ToolExecutionError,
    ToolNotAvailableError,
    ToolValidationError,
)
from graphagent.domain.events import AgentEventType, EventDispatcher
from graphagent.domain.models.message import ToolResultMessage
from graphagent.infrastructure.observability.logging import AgentLogger
from .tool_registry import ToolRegistry
from .tool_validator import ToolParameterValidator

agent_logger = AgentLogger(__name__)


class ToolErrorType(str, Enum):
    VALIDATION = "validation"
    EXECUTION = "execution"


class ToolResult(BaseModel):
    """Outcome of one tool invocation"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    tool_name: str
    call_id: Optional[str] = None
    success: bool
    output: Any = Field(None, description="Typed handler result")
    raw: str = Field("", description="Text form of the result or the error")
    error: Optional[str] = None
    error_type: Optional[ToolErrorType] = None
    validation_errors: List[str] = Field(default_factory=list)
    duration_ms: Optional[float] = None

    def unwrap(self) -> Any:
        """Return the typed output or raise the typed tool error"""

        if self.success:
            return self.output
        if self.error_type == ToolErrorType.VALIDATION:
            raise ToolValidationError(self.tool_name, self.validation_errors)
        raise ToolExecutionError(self.tool_name, self.error or "unknown error")

    def to_message(self) -> ToolResultMessage:
        """Tool result message for the conversation history"""

        return ToolResultMessage(
            tool=self.tool_name,
            call_id=self.call_id or "",
            content=self.raw,
            is_error=not self.success,
        )


class ToolExecutor:
    """Validates and runs tools, reporting failures as results"""

    def __init__(self, registry: ToolRegistry, events: Optional[EventDispatcher] = None):
        self.registry = registry
        self.events = events or EventDispatcher()

    async def execute_tool(
        self,
        tool_name: str,
        parameters: Optional[Dict[str, Any]],
        call_id: Optional[str] = None,
        available: Optional[Collection[str]] = None,
        node_path: Optional[List[str]] = None,
        subgraph: Optional[str] = None
    ) -> ToolResult:
        """Run a tool; validation and handler failures come back as a failed ToolResult

        Raises ToolNotAvailableError when the tool is outside ``available`` and
        ToolNotFoundError when it is not registered.
        """
        if available is not None and tool_name not in available:
            raise ToolNotAvailableError(tool_name, subgraph)

        tool = self.registry.resolve(tool_name)

        try:
            args = ToolParameterValidator.validate_tool_call(tool, parameters)
        except ToolValidationError as e:
            await self.events.emit(
                AgentEventType.TOOL_VALIDATION_FAILED, node_path,
                tool=tool_name, call_id=call_id, arguments=parameters, errors=e.errors
            )
            agent_logger.log_tool_execution(
                tool_name=tool_name, input_data=parameters, success=False, error=str(e)
            )
            return ToolResult(
                tool_name=tool_name,
                call_id=call_id,
                success=False,
                raw=str(e),
                error=str(e),
                error_type=ToolErrorType.VALIDATION,
                validation_errors=e.errors,
            )

        await self.events.emit(
            AgentEventType.TOOL_CALL_STARTED, node_path,
            tool=tool_name, call_id=call_id, arguments=parameters
        )
        started = time.perf_counter()

        try:
            output = await tool.execute(args)
            raw = tool.format_result(output)
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            message = str(e) or type(e).__name__
            await self.events.emit(
                AgentEventType.TOOL_CALL_FAILED, node_path,
                tool=tool_name, call_id=call_id, error=message
            )
            agent_logger.log_tool_execution(
                tool_name=tool_name, input_data=parameters,
                duration_ms=duration_ms, success=False, error=message
            )
            return ToolResult(
                tool_name=tool_name,
                call_id=call_id,
                success=False,
                raw=f"Tool '{tool_name}' failed: {message}",
                error=message,
                error_type=ToolErrorType.EXECUTION,
                duration_ms=duration_ms,
            )

        duration_ms = (time.perf_counter() - started) * 1000
        await self.events.emit(
            AgentEventType.TOOL_CALL_FINISHED, node_path,
            tool=tool_name, call_id=call_id, result=raw, duration_ms=duration_ms
        )
        agent_logger.log_tool_execution(
            tool_name=tool_name, input_data=parameters, output_data=raw, duration_ms=duration_ms
        )

        return ToolResult(
            tool_name=tool_name,
            call_id=call_id,
            success=True,
            output=output,
            raw=raw,
            duration_ms=duration_ms,
        )
