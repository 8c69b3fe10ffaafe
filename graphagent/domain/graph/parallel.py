"""Parallel execution of a fixed set of nodes and merging of their outputs"""

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence, TYPE_CHECKING
import asyncio
import copy
import inspect
import structlog

from graphagent.domain.errors import AggregateError, GraphValidationError, ParallelMergeError
from graphagent.domain.session import AgentSession
from .node import Node, run_node

if TYPE_CHECKING:
    from .context import AgentContext

logger = structlog.get_logger(__name__)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class BranchResult:
    """Output of one branch together with the session it ran on"""

    def __init__(self, node_name: str, output: Any, session: AgentSession):
        self.node_name = node_name
        self.output = output
        self.session = session

    def __repr__(self) -> str:
        return f"BranchResult({self.node_name!r}, {self.output!r})"


class MergeOutcome:
    def __init__(self, output: Any, session: Optional[AgentSession] = None):
        self.output = output
        self.session = session


class MergeStrategy(ABC):
    """Reduces branch results, given in declaration order, to one output"""

    @abstractmethod
    async def merge(self, ctx: "AgentContext", results: List[BranchResult]) -> MergeOutcome:
        pass


class _Selection(MergeStrategy):
    """Picks one branch; the session of that branch replaces the current one"""

    async def select(self, ctx: "AgentContext", results: List[BranchResult]) -> int:
        raise NotImplementedError

    async def merge(self, ctx: "AgentContext", results: List[BranchResult]) -> MergeOutcome:
        index = await self.select(ctx, results)
        chosen = results[index]
        logger.debug("Selected parallel branch", branch=chosen.node_name, index=index)
        return MergeOutcome(chosen.output, chosen.session)


class SelectByMax(_Selection):
    def __init__(self, score_fn: Callable[[Any], Any]):
        self.score_fn = score_fn

    async def select(self, ctx: "AgentContext", results: List[BranchResult]) -> int:
        best_index = 0
        best_score = None
        for index, result in enumerate(results):
            score = await _maybe_await(self.score_fn(result.output))
            # strict comparison keeps the first-declared branch on ties
            if best_score is None or score > best_score:
                best_index, best_score = index, score
        return best_index


class SelectByIndex(_Selection):
    def __init__(self, index_fn: Callable[["AgentContext", List[Any]], Any]):
        self.index_fn = index_fn

    async def select(self, ctx: "AgentContext", results: List[BranchResult]) -> int:
        outputs = [r.output for r in results]
        index = await _maybe_await(self.index_fn(ctx, outputs))
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(results):
            raise ParallelMergeError(
                f"Selected index {index!r} is not valid for {len(results)} branch outputs"
            )
        return index


class SelectBy(_Selection):
    def __init__(self, predicate: Callable[[Any], Any]):
        self.predicate = predicate

    async def select(self, ctx: "AgentContext", results: List[BranchResult]) -> int:
        for index, result in enumerate(results):
            if await _maybe_await(self.predicate(result.output)):
                return index
        raise ParallelMergeError("No branch output satisfied the selection predicate")


class Fold(MergeStrategy):
    """Accumulates all outputs; the pre-fork session is kept"""

    def __init__(self, initial: Any, fn: Callable[[Any, Any], Any]):
        self.initial = initial
        self.fn = fn

    async def merge(self, ctx: "AgentContext", results: List[BranchResult]) -> MergeOutcome:
        acc = copy.deepcopy(self.initial)
        for result in results:
            acc = await _maybe_await(self.fn(acc, result.output))
        return MergeOutcome(acc)


class CustomMerge(MergeStrategy):
    """Wraps merge(ctx, outputs); the function may call the LLM through ctx"""

    def __init__(self, fn: Callable[["AgentContext", List[Any]], Any]):
        self.fn = fn

    async def merge(self, ctx: "AgentContext", results: List[BranchResult]) -> MergeOutcome:
        output = await _maybe_await(self.fn(ctx, [r.output for r in results]))
        return MergeOutcome(output)


def select_by_max(score_fn: Callable[[Any], Any]) -> MergeStrategy:
    return SelectByMax(score_fn)


def select_by_index(index_fn: Callable[["AgentContext", List[Any]], Any]) -> MergeStrategy:
    return SelectByIndex(index_fn)


def select_by(predicate: Callable[[Any], Any]) -> MergeStrategy:
    return SelectBy(predicate)


def fold(initial: Any, fn: Callable[[Any, Any], Any]) -> MergeStrategy:
    return Fold(initial, fn)


class ParallelNode(Node):
    """Runs its branch nodes concurrently on copies of the input and session

    Any branch failure cancels the others and fails the node with an
    AggregateError naming the branch that failed first; the merge only
    ever sees a complete set of outputs.
    """

    def __init__(self, name: str, nodes: Sequence[Node], merge: Any):
        super().__init__(name)
        nodes = list(nodes)
        if len(nodes) < 2:
            raise GraphValidationError(f"Parallel node '{name}' needs at least two branches")
        names = [n.name for n in nodes]
        if len(set(names)) != len(names) or len({id(n) for n in nodes}) != len(nodes):
            raise GraphValidationError(f"Parallel node '{name}' has duplicate branches: {', '.join(names)}")
        self.nodes = nodes
        self.merge_strategy = merge if isinstance(merge, MergeStrategy) else CustomMerge(merge)

    async def execute(self, ctx: "AgentContext", input: Any) -> Any:
        branch_contexts = [ctx.for_parallel_branch(self.name) for _ in self.nodes]
        tasks = [
            asyncio.create_task(run_node(branch_ctx, node, copy.deepcopy(input)), name=f"{self.name}/{node.name}")
            for branch_ctx, node in zip(branch_contexts, self.nodes)
        ]
        completed: List[asyncio.Task] = []
        for task in tasks:
            task.add_done_callback(completed.append)

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        # in completion order
        branch_of = dict(zip(tasks, self.nodes))
        failed = [
            (branch_of[task], task) for task in completed
            if task in done and not task.cancelled() and task.exception() is not None
        ]
        if failed:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            node, task = failed[0]
            cause = task.exception()
            logger.error("Parallel branch failed", parallel=self.name, branch=node.name, error=str(cause))
            raise AggregateError(self.name, node.name, cause) from cause

        results = [
            BranchResult(node.name, task.result(), branch_ctx.session)
            for node, task, branch_ctx in zip(self.nodes, tasks, branch_contexts)
        ]
        outcome = await self.merge_strategy.merge(ctx, results)

        if outcome.session is not None:
            async with ctx.session.write() as session:
                ctx.session.adopt(session, outcome.session)
        return outcome.output
