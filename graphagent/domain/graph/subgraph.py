from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union
from enum import Enum
import structlog

from graphagent.domain.errors import AgentGraphError, GraphValidationError, NodeExecutionError, RoutingError
from graphagent.domain.tool.tool import Tool
from graphagent.infrastructure.observability.logging import AgentLogger
from .context import AgentContext
from .edge import NO_MATCH, Edge, EdgeBuilder
from .node import FinishNode, FunctionNode, Node, NodeFunction, StartNode, run_node
from .parallel import MergeStrategy, ParallelNode

logger = structlog.get_logger(__name__)
agent_logger = AgentLogger(__name__)


class ToolSelection(str, Enum):
    """Tool visibility of a subgraph, besides an explicit list of tools"""
    ALL = "all"
    NONE = "none"


ToolsSpec = Union[ToolSelection, Sequence[Union[str, Tool]]]


def _tool_names(tools: ToolsSpec) -> Optional[FrozenSet[str]]:
    if tools == ToolSelection.ALL:
        return None
    if tools == ToolSelection.NONE:
        return frozenset()
    return frozenset(t.name if isinstance(t, Tool) else t for t in tools)


class Subgraph(Node):
    """Self-contained graph that runs from start to finish as a single node

    Inside the subgraph only the selected tools are visible: the session's
    tool set is swapped on entry and restored on exit.
    """

    def __init__(
        self,
        name: str,
        start: StartNode,
        finish: FinishNode,
        nodes: Dict[str, Node],
        edges: Dict[str, List[Edge]],
        tools: ToolsSpec = ToolSelection.ALL,
        input_type: Optional[Any] = None,
        output_type: Optional[Any] = None
    ):
        super().__init__(name, input_type, output_type)
        self.start = start
        self.finish = finish
        self.nodes = nodes
        self.edges = edges
        self.tools = tools

    def outgoing(self, node: Node) -> List[Edge]:
        return self.edges.get(node.name, [])

    async def execute(self, ctx: AgentContext, input: Any) -> Any:
        selection = _tool_names(self.tools)
        if selection is None:
            return await self._traverse(ctx.for_subgraph(self.name, ctx.visible_tools), input)

        for name in selection:
            ctx.tool_registry.resolve(name)
        sub_ctx = ctx.for_subgraph(self.name, selection)

        async with ctx.session.write() as session:
            previous_tools = session.tools
            session.tools = sub_ctx.visible_descriptors()
        agent_logger.log_context_update("tools", "restrict", {"subgraph": self.name, "tools": sorted(selection)})

        try:
            return await self._traverse(sub_ctx, input)
        finally:
            async with ctx.session.write() as session:
                session.tools = previous_tools

    async def _traverse(self, ctx: AgentContext, input: Any) -> Any:
        current: Node = self.start
        value = input
        # a resume below this graph passes through a subgraph node with no input
        passing_through = False

        resume = ctx.take_resume()
        if resume is not None:
            remaining, value = resume
            current = self._resume_target(remaining[0])
            passing_through = len(remaining) > 1
            logger.info("Resuming graph", graph=self.name, node=current.name)

        while True:
            if current is not self.start:
                ctx.record_visit(current.name)
                if ctx.run.auto_checkpoint and ctx.run.checkpoint_store is not None and not ctx.in_parallel_branch:
                    await ctx.create_checkpoint(node_path=ctx.path + [current.name], input=value)

            output = await run_node(ctx, current, value, check_input=not passing_through)
            passing_through = False
            if current is self.finish:
                return output

            edge_index, edge, value = await self._select_edge(ctx, current, output)
            agent_logger.log_workflow_transition(current.name, edge.target.name, edge_index, self.name)
            current = edge.target

    async def _select_edge(self, ctx: AgentContext, node: Node, output: Any) -> Tuple[int, Edge, Any]:
        """First edge, in declaration order, whose conditions hold for the output"""

        edge_ctx = ctx.for_node(node.name, output)
        for index, edge in enumerate(self.outgoing(node)):
            try:
                value = await edge.resolve(edge_ctx, output)
            except AgentGraphError:
                raise
            except Exception as e:
                raise NodeExecutionError(node.name, e) from e
            if value is not NO_MATCH:
                return index, edge, value

        logger.error("No matching edge", graph=self.name, node=node.name, output=repr(output)[:200])
        raise RoutingError(node.name, output)

    def _resume_target(self, name: str) -> Node:
        if name == self.start.name:
            return self.start
        if name == self.finish.name:
            return self.finish
        if name not in self.nodes:
            raise GraphValidationError(f"Cannot resume graph '{self.name}' at unknown node '{name}'")
        return self.nodes[name]


class GraphBuilder:
    """Declares nodes and edges, then validates them into a Subgraph

    Nodes used in an edge are added to the graph automatically.
    """

    def __init__(
        self,
        name: str,
        tools: ToolsSpec = ToolSelection.ALL,
        input_type: Optional[Any] = None,
        output_type: Optional[Any] = None
    ):
        self.name = name
        self.tools = tools
        self.input_type = input_type
        self.output_type = output_type
        self.start = StartNode()
        self.finish = FinishNode()
        self._nodes: List[Node] = []
        self._edges: List[Edge] = []

    def add_node(self, node: Node) -> Node:
        if node is self.start or node is self.finish:
            return node
        if not any(existing is node for existing in self._nodes):
            self._nodes.append(node)
        return node

    def node(
        self,
        name: str,
        fn: NodeFunction,
        input_type: Optional[Any] = None,
        output_type: Optional[Any] = None
    ) -> FunctionNode:
        """Add a node backed by fn(ctx, input)"""

        return self.add_node(FunctionNode(name, fn, input_type, output_type))

    def parallel(self, name: str, nodes: Sequence[Node], merge: Union[MergeStrategy, Any]) -> ParallelNode:
        return self.add_node(ParallelNode(name, nodes, merge))

    def edge(self, source: Node, target: Node) -> EdgeBuilder:
        """Declare an edge; edges from one node are tried in declaration order"""

        if source is self.finish:
            raise GraphValidationError(f"Finish node of '{self.name}' cannot have outgoing edges")
        if target is self.start:
            raise GraphValidationError(f"Start node of '{self.name}' cannot have incoming edges")
        self.add_node(source)
        self.add_node(target)
        edge = Edge(source, target)
        self._edges.append(edge)
        return EdgeBuilder(edge)

    def then(self, *nodes: Node) -> "GraphBuilder":
        """Unconditional edges between consecutive nodes"""

        for source, target in zip(nodes, nodes[1:]):
            self.edge(source, target)
        return self

    def _validate(self) -> Dict[str, Node]:
        by_name: Dict[str, Node] = {self.start.name: self.start, self.finish.name: self.finish}
        for node in self._nodes:
            if node.name in by_name:
                raise GraphValidationError(f"Duplicate node name '{node.name}' in graph '{self.name}'")
            by_name[node.name] = node

        branch_owner: Dict[int, str] = {}
        for node in self._nodes:
            if isinstance(node, ParallelNode):
                for branch in node.nodes:
                    if id(branch) in branch_owner:
                        raise GraphValidationError(
                            f"Node '{branch.name}' is used by both parallel nodes "
                            f"'{branch_owner[id(branch)]}' and '{node.name}'"
                        )
                    branch_owner[id(branch)] = node.name

        reachable = self._reachable()
        unreachable = [n.name for n in self._nodes if id(n) not in reachable]
        if unreachable:
            raise GraphValidationError(
                f"Nodes not reachable from start in graph '{self.name}': {', '.join(unreachable)}"
            )
        if id(self.finish) not in reachable:
            raise GraphValidationError(f"Finish node is not reachable from start in graph '{self.name}'")

        return {n.name: n for n in self._nodes}

    def _reachable(self) -> set:
        adjacency: Dict[int, List[Node]] = {}
        for edge in self._edges:
            adjacency.setdefault(id(edge.source), []).append(edge.target)

        seen = {id(self.start)}
        stack = [self.start]
        while stack:
            node = stack.pop()
            for target in adjacency.get(id(node), []):
                if id(target) not in seen:
                    seen.add(id(target))
                    stack.append(target)
        return seen

    def _edge_table(self) -> Dict[str, List[Edge]]:
        table: Dict[str, List[Edge]] = {}
        for edge in self._edges:
            table.setdefault(edge.source.name, []).append(edge)
        return table

    def build(self) -> Subgraph:
        nodes = self._validate()
        logger.debug("Built graph", graph=self.name, nodes=len(nodes), edges=len(self._edges))
        return Subgraph(
            self.name, self.start, self.finish, nodes, self._edge_table(),
            tools=self.tools, input_type=self.input_type, output_type=self.output_type,
        )


def chain(builder: GraphBuilder, nodes: Iterable[Node]) -> GraphBuilder:
    """start -> nodes... -> finish"""

    return builder.then(builder.start, *nodes, builder.finish)
