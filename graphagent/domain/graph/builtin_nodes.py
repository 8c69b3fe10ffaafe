"""Ready-made nodes for common LLM and tool steps"""

from typing import Any, AsyncIterator, Callable, List, Optional, Sequence, Type
from pydantic import BaseModel
import asyncio

from graphagent.domain.compression.strategies import HistoryCompressionStrategy, WholeHistory
from graphagent.domain.llm.llm_client import LLMModel
from graphagent.domain.models.message import BaseMessage, ToolCallMessage, ToolResultMessage
from graphagent.domain.session import WriteSession
from .context import AgentContext
from .node import FunctionNode


def node_do_nothing(name: str = "do_nothing") -> FunctionNode:
    return FunctionNode(name, lambda ctx, value: value)


def node_update_prompt(name: str, update: Callable[[WriteSession], Any]) -> FunctionNode:
    """Edit the prompt with update(session); the input passes through"""

    async def run(ctx: AgentContext, value: Any) -> Any:
        await ctx.write_session(update)
        return value

    return FunctionNode(name, run)


def node_llm_request(name: str = "llm_request", allow_tool_calls: bool = True) -> FunctionNode:
    """Append the input as a user message (if any) and return the LLM response"""

    async def run(ctx: AgentContext, value: Optional[str]) -> BaseMessage:
        async with ctx.write() as session:
            if value:
                session.user(value)
            if allow_tool_calls:
                return await session.request_llm()
            return await session.request_llm_without_tools()

    return FunctionNode(name, run, output_type=BaseMessage)


def node_llm_request_structured(
    name: str,
    structure: Type[BaseModel],
    retries: int = 1,
    fixing_model: Optional[LLMModel] = None,
    examples: Sequence[BaseModel] = ()
) -> FunctionNode:
    """Append the input as a user message (if any) and return the validated structure instance"""

    async def run(ctx: AgentContext, value: Optional[str]) -> BaseModel:
        async with ctx.write() as session:
            if value:
                session.user(value)
            response = await session.request_llm_structured(
                structure, retries=retries, fixing_model=fixing_model, examples=examples
            )
        return response.data

    return FunctionNode(name, run, output_type=structure)


def node_llm_request_multiple(name: str = "llm_request_multiple") -> FunctionNode:
    """Like node_llm_request, returning every response message"""

    async def run(ctx: AgentContext, value: Optional[str]) -> List[BaseMessage]:
        async with ctx.write() as session:
            if value:
                session.user(value)
            return await session.request_llm_multiple()

    return FunctionNode(name, run, output_type=List[BaseMessage])


def node_llm_request_streaming(name: str = "llm_request_streaming", collect: bool = False) -> FunctionNode:
    """Streaming request

    With ``collect`` the node consumes the stream and returns the full text.
    Otherwise it returns a lazy async iterator of chunks that takes the
    session's write access while it is being consumed.
    """

    async def run(ctx: AgentContext, value: Optional[str]):
        if collect:
            async with ctx.write() as session:
                if value:
                    session.user(value)
                chunks = [chunk async for chunk in session.request_llm_streaming()]
            return "".join(chunks)

        return _stream(ctx, value)

    return FunctionNode(name, run)


async def _stream(ctx: AgentContext, value: Optional[str]) -> AsyncIterator[str]:
    async with ctx.write() as session:
        if value:
            session.user(value)
        async for chunk in session.request_llm_streaming():
            yield chunk


def node_execute_tool(name: str = "execute_tool") -> FunctionNode:
    """Run the requested tool; argument and handler failures become an error result"""

    async def run(ctx: AgentContext, call: ToolCallMessage) -> ToolResultMessage:
        result = await ctx.call_tool(call.tool, call.arguments, call_id=call.call_id)
        return result.to_message()

    return FunctionNode(name, run, input_type=ToolCallMessage, output_type=ToolResultMessage)


def node_execute_multiple_tools(name: str = "execute_multiple_tools", parallel_tools: bool = False) -> FunctionNode:
    """Run several tool calls, sequentially or concurrently; results keep call order"""

    async def run(ctx: AgentContext, calls: List[ToolCallMessage]) -> List[ToolResultMessage]:
        if parallel_tools:
            results = await asyncio.gather(
                *(ctx.call_tool(c.tool, c.arguments, call_id=c.call_id) for c in calls)
            )
        else:
            results = [await ctx.call_tool(c.tool, c.arguments, call_id=c.call_id) for c in calls]
        return [r.to_message() for r in results]

    return FunctionNode(name, run, input_type=list, output_type=List[ToolResultMessage])


def node_llm_send_tool_result(name: str = "send_tool_result") -> FunctionNode:
    """Append a tool result and return the next LLM response"""

    async def run(ctx: AgentContext, result: ToolResultMessage) -> BaseMessage:
        async with ctx.write() as session:
            session.append(result)
            return await session.request_llm()

    return FunctionNode(name, run, input_type=ToolResultMessage, output_type=BaseMessage)


def node_llm_send_multiple_tool_results(name: str = "send_multiple_tool_results") -> FunctionNode:
    async def run(ctx: AgentContext, results: List[ToolResultMessage]) -> List[BaseMessage]:
        async with ctx.write() as session:
            session.extend(results)
            return await session.request_llm_multiple()

    return FunctionNode(name, run, input_type=list, output_type=List[BaseMessage])


def node_llm_compress_history(
    name: str = "compress_history",
    strategy: Optional[HistoryCompressionStrategy] = None,
    preserve_memory: bool = True
) -> FunctionNode:
    """Compress the history; the input passes through"""

    strategy = strategy or WholeHistory()

    async def run(ctx: AgentContext, value: Any) -> Any:
        async with ctx.write() as session:
            await session.replace_history_with_tldr(strategy, preserve_memory=preserve_memory)
        return value

    return FunctionNode(name, run)
