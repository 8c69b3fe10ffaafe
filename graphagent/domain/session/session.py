"""Conversation session shared by all nodes of a run.

Access goes through two scoped views. ``read()`` yields an immutable
snapshot and may overlap with other readers. ``write()`` yields a mutable
view with exclusive access for the duration of the ``async with`` block;
the lock is released on every exit path. Asking for access again from the
task that already holds the write view raises DeadlockError instead of
hanging.
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Type
import inspect
import uuid
from pydantic import BaseModel, ValidationError
import structlog

from graphagent.domain.errors import DeadlockError, LLMRequestError, StructuredOutputError
from graphagent.domain.llm.llm_client import LLMGateway, LLMModel
from graphagent.domain.llm.structured import (
    StructuredResponse,
    correction_instruction,
    fixing_prompt,
    parse_structured,
    structure_instruction,
    validation_messages,
)
from graphagent.domain.models.message import (
    AssistantMessage,
    BaseMessage,
    MessageMetadata,
    SystemMessage,
    UserMessage,
    is_memory,
)
from graphagent.domain.models.agent_state import ExecutionPoint
from graphagent.domain.tool.tool import ToolDescriptor
from .rw_lock import ReadWriteLock

logger = structlog.get_logger(__name__)

# (session_id, mode) pairs held by the current task
_held_access: ContextVar[FrozenSet[Tuple[str, str]]] = ContextVar("graphagent_session_access", default=frozenset())

ToolCaller = Callable[..., Awaitable[Any]]


class ReadSession:
    """Immutable snapshot of a session"""

    def __init__(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[ToolDescriptor],
        model: Optional[LLMModel]
    ):
        self._messages = tuple(messages)
        self._tools = tuple(tools)
        self._model = model

    @property
    def messages(self) -> Tuple[BaseMessage, ...]:
        return self._messages

    @property
    def tools(self) -> Tuple[ToolDescriptor, ...]:
        return self._tools

    @property
    def model(self) -> Optional[LLMModel]:
        return self._model

    def memory_messages(self) -> List[BaseMessage]:
        return [m for m in self._messages if is_memory(m)]

    def last_message(self) -> Optional[BaseMessage]:
        return self._messages[-1] if self._messages else None


class WriteSession:
    """Exclusive, mutable view of a session, valid only inside its write scope"""

    def __init__(
        self,
        session: "AgentSession",
        llm: Optional[LLMGateway] = None,
        tool_caller: Optional[ToolCaller] = None,
        node_path: Optional[List[str]] = None
    ):
        self._session = session
        self._llm = llm
        self._tool_caller = tool_caller
        self._node_path = list(node_path or [])
        self._active = True

    def _check_active(self):
        if not self._active:
            raise RuntimeError("Write session used outside of its write scope")

    def _close(self):
        self._active = False

    @property
    def messages(self) -> Tuple[BaseMessage, ...]:
        return tuple(self._session._messages)

    @property
    def tools(self) -> Tuple[ToolDescriptor, ...]:
        return tuple(self._session._tools)

    @tools.setter
    def tools(self, tools: Iterable[ToolDescriptor]):
        self._check_active()
        self._session._tools = list(tools)

    @property
    def model(self) -> Optional[LLMModel]:
        return self._session._model

    @model.setter
    def model(self, model: LLMModel):
        self._check_active()
        self._session._model = model

    def memory_messages(self) -> List[BaseMessage]:
        return [m for m in self._session._messages if is_memory(m)]

    # prompt editing

    def append(self, message: BaseMessage):
        """Add a message to the end of the history"""

        self._check_active()
        self._session._messages.append(message)

    def extend(self, messages: Iterable[BaseMessage]):
        self._check_active()
        self._session._messages.extend(messages)

    def system(self, content: str):
        self.append(SystemMessage(content=content))

    def user(self, content: str):
        self.append(UserMessage(content=content))

    def assistant(self, content: str):
        self.append(AssistantMessage(content=content))

    def add_memory(self, content: str):
        """Append a memory message that survives history compression"""

        self.append(UserMessage(content=content, metadata=MessageMetadata(memory=True)))

    def rewrite_prompt(self, messages: Iterable[BaseMessage]):
        """Replace the whole history, memory messages included"""

        self._check_active()
        self._session._messages = list(messages)

    def replace_history(
        self,
        new_messages: Iterable[BaseMessage],
        preserve_memory: bool = False,
        memory_messages: Optional[Sequence[BaseMessage]] = None
    ):
        """Swap the history; with preserve_memory, memory messages are re-appended

        ``memory_messages`` defaults to the memory-flagged messages of the
        current history. Messages already present in ``new_messages`` are not
        duplicated.
        """
        self._check_active()
        if memory_messages is None:
            memory_messages = self.memory_messages()

        history = list(new_messages)
        if preserve_memory:
            for message in memory_messages:
                if message not in history:
                    history.append(message)

        logger.debug("Replacing history",
                     before=len(self._session._messages),
                     after=len(history),
                     preserve_memory=preserve_memory)
        self._session._messages = history

    # LLM requests

    def _gateway(self) -> LLMGateway:
        if self._llm is None:
            raise LLMRequestError("No LLM client is available to this session")
        if self._session._model is None:
            raise LLMRequestError("No model selected for this session")
        return self._llm

    async def request_llm_multiple(self) -> List[BaseMessage]:
        """Request with tools enabled; every response is appended"""

        self._check_active()
        responses = await self._gateway().request(
            self._session._messages, self._session._model, self._session._tools, self._node_path
        )
        self._session._messages.extend(responses)
        return responses

    async def request_llm(self) -> BaseMessage:
        """Request with tools enabled; the first response is appended and returned"""

        self._check_active()
        responses = await self._gateway().request(
            self._session._messages, self._session._model, self._session._tools, self._node_path
        )
        response = responses[0]
        self._session._messages.append(response)
        return response

    async def request_llm_without_tools(self) -> BaseMessage:
        """Request with no tools offered to the model"""

        self._check_active()
        responses = await self._gateway().request(
            self._session._messages, self._session._model, [], self._node_path
        )
        response = responses[0]
        self._session._messages.append(response)
        return response

    async def request_llm_structured(
        self,
        structure: Type[BaseModel],
        retries: int = 1,
        fixing_model: Optional[LLMModel] = None,
        examples: Sequence[BaseModel] = ()
    ) -> StructuredResponse:
        """Ask for a JSON answer matching ``structure`` and validate it.

        An invalid answer is retried up to ``retries`` times: with
        ``fixing_model`` the bad output alone is sent to that model for
        repair, otherwise the session model is re-prompted with the
        validation errors. Only the final valid answer is appended to the
        history. Raises StructuredOutputError once the retries run out.
        """
        self._check_active()
        gateway = self._gateway()
        model = self._session._model
        prompt = list(self._session._messages) + [UserMessage(content=structure_instruction(structure, examples))]

        responses = await gateway.request(prompt, model, [], self._node_path)
        raw = responses[0].content
        attempts = 1
        while True:
            try:
                data = parse_structured(structure, raw)
                break
            except ValidationError as e:
                errors = validation_messages(e)
                if attempts > retries:
                    raise StructuredOutputError(structure.__name__, errors, raw) from e
                logger.warning("Structured response invalid, retrying",
                               structure=structure.__name__, attempt=attempts, errors=errors)

            if fixing_model is not None:
                responses = await gateway.request(
                    fixing_prompt(structure, raw, errors), fixing_model, [], self._node_path
                )
            else:
                prompt += [AssistantMessage(content=raw), UserMessage(content=correction_instruction(errors))]
                responses = await gateway.request(prompt, model, [], self._node_path)
            raw = responses[0].content
            attempts += 1

        self._session._messages.append(AssistantMessage(content=raw, payload=data.model_dump(mode="json")))
        return StructuredResponse(data=data, raw=raw, attempts=attempts)

    async def request_llm_streaming(self) -> AsyncIterator[str]:
        """Stream the response; the accumulated text is appended once the stream ends"""

        self._check_active()
        gateway = self._gateway()
        chunks: List[str] = []
        async for chunk in gateway.stream(self._session._messages, self._session._model, self._node_path):
            chunks.append(chunk)
            yield chunk
        self.append(AssistantMessage(content="".join(chunks)))

    # tools

    async def call_tool_result(self, tool_name: str, args: Dict[str, Any]):
        """Invoke a visible tool and return its ToolResult"""

        self._check_active()
        if self._tool_caller is None:
            raise RuntimeError("No tool executor is available to this session")
        return await self._tool_caller(tool_name, args, None)

    async def call_tool(self, tool_name: str, args: Dict[str, Any]) -> Any:
        """Invoke a tool and return its typed result, raising typed tool errors"""

        result = await self.call_tool_result(tool_name, args)
        return result.unwrap()

    async def call_tool_raw(self, tool_name: str, args: Dict[str, Any]) -> str:
        """Invoke a tool and return its text form (error text on failure)"""

        result = await self.call_tool_result(tool_name, args)
        return result.raw

    # compression

    async def replace_history_with_tldr(
        self,
        strategy=None,
        preserve_memory: bool = True,
        memory_messages: Optional[Sequence[BaseMessage]] = None
    ):
        """Compress the history with a HistoryCompressionStrategy (WholeHistory by default)"""

        from graphagent.domain.compression.strategies import WholeHistory

        self._check_active()
        strategy = strategy or WholeHistory()
        if memory_messages is None:
            memory_messages = self.memory_messages()
        await strategy.compress(self, preserve_memory, list(memory_messages))


class AgentSession:
    """Owns the message history, active tools and active model of one run"""

    def __init__(
        self,
        messages: Optional[Iterable[BaseMessage]] = None,
        tools: Optional[Iterable[ToolDescriptor]] = None,
        model: Optional[LLMModel] = None,
        session_id: Optional[str] = None
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self._messages: List[BaseMessage] = list(messages or [])
        self._tools: List[ToolDescriptor] = list(tools or [])
        self._model = model
        self._lock = ReadWriteLock()

    def _held(self, mode: str) -> bool:
        return (self.session_id, mode) in _held_access.get()

    def snapshot(self) -> ReadSession:
        return ReadSession(self._messages, self._tools, self._model)

    @asynccontextmanager
    async def read(self) -> AsyncIterator[ReadSession]:
        """Shared access to a snapshot of the session"""

        if self._held("write"):
            raise DeadlockError(
                f"Read access to session {self.session_id} requested while holding its write access"
            )
        if self._held("read"):
            yield self.snapshot()
            return

        async with self._lock.read():
            token = _held_access.set(_held_access.get() | {(self.session_id, "read")})
            try:
                yield self.snapshot()
            finally:
                _held_access.reset(token)

    @asynccontextmanager
    async def write(
        self,
        llm: Optional[LLMGateway] = None,
        tool_caller: Optional[ToolCaller] = None,
        node_path: Optional[List[str]] = None
    ) -> AsyncIterator[WriteSession]:
        """Exclusive access to the session"""

        if self._held("write") or self._held("read"):
            raise DeadlockError(
                f"Reentrant write access to session {self.session_id}"
            )

        async with self._lock.write():
            token = _held_access.set(_held_access.get() | {(self.session_id, "write")})
            view = WriteSession(self, llm=llm, tool_caller=tool_caller, node_path=node_path)
            try:
                yield view
            finally:
                view._close()
                _held_access.reset(token)

    async def read_session(self, fn: Callable[[ReadSession], Any]) -> Any:
        """Invoke fn with a read-only snapshot; fn may be a coroutine function"""

        async with self.read() as view:
            result = fn(view)
            if inspect.isawaitable(result):
                result = await result
            return result

    async def write_session(self, fn: Callable[[WriteSession], Any], **kwargs) -> Any:
        """Invoke fn with exclusive mutable access; fn may be a coroutine function"""

        async with self.write(**kwargs) as view:
            result = fn(view)
            if inspect.isawaitable(result):
                result = await result
            return result

    async def append(self, message: BaseMessage):
        async with self.write() as view:
            view.append(message)

    async def replace_history(
        self,
        new_messages: Iterable[BaseMessage],
        preserve_memory: bool = False,
        memory_messages: Optional[Sequence[BaseMessage]] = None
    ):
        async with self.write() as view:
            view.replace_history(new_messages, preserve_memory, memory_messages)

    def fork(self) -> "AgentSession":
        """Independent copy of the current state, with its own lock"""

        return AgentSession(
            messages=self._messages,
            tools=self._tools,
            model=self._model,
            session_id=f"{self.session_id}:{uuid.uuid4().hex[:8]}"
        )

    def adopt(self, view: WriteSession, other: "AgentSession"):
        """Take over the state of another session; requires this session's write view"""

        view.rewrite_prompt(other._messages)
        view.tools = other._tools
        if other._model is not None:
            view.model = other._model

    def restore(self, point: ExecutionPoint, tools: Iterable[ToolDescriptor]):
        """Load the history, tools and model recorded in an execution point; call before the run starts"""

        self._messages = list(point.messages)
        self._tools = list(tools)
        if point.model_provider and point.model_id:
            self._model = LLMModel(provider=point.model_provider, model_id=point.model_id)

    def __len__(self) -> int:
        return len(self._messages)
