from typing import Any, Optional
from enum import Enum

from .builtin_nodes import (
    node_execute_multiple_tools,
    node_execute_tool,
    node_llm_request,
    node_llm_request_multiple,
    node_llm_send_multiple_tool_results,
    node_llm_send_tool_result,
)
from .subgraph import GraphBuilder, Subgraph, ToolSelection, ToolsSpec


class Strategy(Subgraph):
    """Top-level graph an agent runs"""


class StrategyBuilder(GraphBuilder):
    def build(self) -> Strategy:
        graph = super().build()
        return Strategy(
            graph.name, graph.start, graph.finish, graph.nodes, graph.edges,
            tools=graph.tools, input_type=graph.input_type, output_type=graph.output_type,
        )


def strategy_builder(
    name: str,
    tools: ToolsSpec = ToolSelection.ALL,
    input_type: Optional[Any] = None,
    output_type: Optional[Any] = None
) -> StrategyBuilder:
    return StrategyBuilder(name, tools=tools, input_type=input_type, output_type=output_type)


class ToolCallsMode(str, Enum):
    SINGLE = "single"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


def single_run_strategy(name: str = "single_run", mode: ToolCallsMode = ToolCallsMode.SINGLE) -> Strategy:
    """Ask the LLM, run the tools it calls and feed results back until it answers in text"""

    builder = strategy_builder(name)

    if mode == ToolCallsMode.SINGLE:
        request = node_llm_request("requestLLM")
        execute = node_execute_tool("executeTool")
        send = node_llm_send_tool_result("sendToolResult")

        builder.edge(builder.start, request)
        builder.edge(request, builder.finish).on_assistant_message()
        builder.edge(request, execute).on_tool_call()
        builder.edge(execute, send)
        builder.edge(send, execute).on_tool_call()
        builder.edge(send, builder.finish).on_assistant_message()
        return builder.build()

    request = node_llm_request_multiple("requestLLM")
    execute = node_execute_multiple_tools("executeTools", parallel_tools=mode == ToolCallsMode.PARALLEL)
    send = node_llm_send_multiple_tool_results("sendToolResults")

    builder.edge(builder.start, request)
    builder.edge(request, execute).on_multiple_tool_calls()
    builder.edge(request, builder.finish).on_multiple_assistant_messages().transformed(
        lambda ctx, messages: messages[-1] if messages else None
    )
    builder.edge(execute, send)
    builder.edge(send, execute).on_multiple_tool_calls()
    builder.edge(send, builder.finish).on_multiple_assistant_messages().transformed(
        lambda ctx, messages: messages[-1] if messages else None
    )
    return builder.build()
