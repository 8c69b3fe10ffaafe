from .node import Node, FunctionNode, StartNode, FinishNode, run_node, START_NODE_NAME, FINISH_NODE_NAME
from .edge import Edge, EdgeBuilder, NO_MATCH
from .context import AgentContext, RunState
from .parallel import (
    BranchResult,
    MergeOutcome,
    MergeStrategy,
    ParallelNode,
    SelectByMax,
    SelectByIndex,
    SelectBy,
    Fold,
    CustomMerge,
    select_by_max,
    select_by_index,
    select_by,
    fold,
)
from .subgraph import GraphBuilder, Subgraph, ToolSelection, chain
from .strategy import Strategy, StrategyBuilder, ToolCallsMode, strategy_builder, single_run_strategy
from .builtin_nodes import (
    node_do_nothing,
    node_update_prompt,
    node_llm_request,
    node_llm_request_structured,
    node_llm_request_multiple,
    node_llm_request_streaming,
    node_execute_tool,
    node_execute_multiple_tools,
    node_llm_send_tool_result,
    node_llm_send_multiple_tool_results,
    node_llm_compress_history,
)

__all__ = [
    "Node",
    "FunctionNode",
    "StartNode",
    "FinishNode",
    "run_node",
    "START_NODE_NAME",
    "FINISH_NODE_NAME",
    "Edge",
    "EdgeBuilder",
    "NO_MATCH",
    "AgentContext",
    "RunState",
    "BranchResult",
    "MergeOutcome",
    "MergeStrategy",
    "ParallelNode",
    "SelectByMax",
    "SelectByIndex",
    "SelectBy",
    "Fold",
    "CustomMerge",
    "select_by_max",
    "select_by_index",
    "select_by",
    "fold",
    "GraphBuilder",
    "Subgraph",
    "ToolSelection",
    "chain",
    "Strategy",
    "StrategyBuilder",
    "ToolCallsMode",
    "strategy_builder",
    "single_run_strategy",
    "node_do_nothing",
    "node_update_prompt",
    "node_llm_request",
    "node_llm_request_structured",
    "node_llm_request_multiple",
    "node_llm_request_streaming",
    "node_execute_tool",
    "node_execute_multiple_tools",
    "node_llm_send_tool_result",
    "node_llm_send_multiple_tool_results",
    "node_llm_compress_history",
]
