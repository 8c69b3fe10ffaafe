import pytest

from graphagent import AIAgent
from graphagent.domain.errors import AggregateError, CheckpointNotFoundError
from graphagent.domain.graph import FunctionNode, GraphBuilder, chain, single_run_strategy, strategy_builder
from graphagent.domain.llm import LLMModel
from graphagent.domain.models.agent_state import AgentCheckpoint, ExecutionPoint
from graphagent.domain.models.message import ToolCallMessage, ToolResultMessage, UserMessage
from graphagent.infrastructure.config import AgentGraphSettings
from graphagent.infrastructure.persistence import InMemoryCheckpointStore
from graphagent.testing import MockLLMClient, tool_call


def checkpoint(agent_id, node):
    return AgentCheckpoint(agent_id=agent_id, run_id="r", point=ExecutionPoint(node_path=[agent_id, node]))


class TestInMemoryCheckpointStore:
    @pytest.mark.asyncio
    async def test_save_and_get(self):
        store = InMemoryCheckpointStore()
        saved = checkpoint("agent", "a")
        await store.save_checkpoint(saved)
        assert await store.get_checkpoint(saved.checkpoint_id) == saved

    @pytest.mark.asyncio
    async def test_missing_checkpoint(self):
        with pytest.raises(CheckpointNotFoundError):
            await InMemoryCheckpointStore().get_checkpoint("nope")

    @pytest.mark.asyncio
    async def test_latest_per_agent(self):
        store = InMemoryCheckpointStore()
        for cp in [checkpoint("one", "a"), checkpoint("two", "a"), checkpoint("one", "b")]:
            await store.save_checkpoint(cp)

        latest = await store.get_latest_checkpoint("one")
        assert latest.point.node_path == ["one", "b"]
        assert len(await store.get_checkpoints("one")) == 2
        assert await store.get_latest_checkpoint("three") is None

    @pytest.mark.asyncio
    async def test_delete(self):
        store = InMemoryCheckpointStore()
        cp = checkpoint("agent", "a")
        await store.save_checkpoint(cp)
        assert await store.delete_checkpoint(cp.checkpoint_id)
        assert not await store.delete_checkpoint(cp.checkpoint_id)


class TestCreateCheckpoint:
    @pytest.mark.asyncio
    async def test_node_checkpoints_current_position(self, make_context):
        store = InMemoryCheckpointStore()

        async def save(ctx, value):
            await ctx.create_checkpoint(metadata={"reason": "manual"})
            return value

        builder = GraphBuilder("g")
        chain(builder, [FunctionNode("save", save)])
        ctx = make_context(messages=[UserMessage(content="hello")], checkpoint_store=store)
        await builder.build().execute(ctx, "payload")

        [saved] = store.checkpoints.values()
        assert saved.point.node_path == ["test", "g", "save"]
        assert saved.point.input == "payload"
        assert [m.content for m in saved.point.messages] == ["hello"]
        assert saved.point.tools == ["add", "weather", "explode"]
        assert saved.metadata == {"reason": "manual"}

    @pytest.mark.asyncio
    async def test_requires_store(self, make_context):
        ctx = make_context()
        with pytest.raises(RuntimeError):
            await ctx.create_checkpoint()

    @pytest.mark.asyncio
    async def test_not_allowed_in_parallel_branch(self, make_context):
        async def save(ctx, value):
            await ctx.create_checkpoint()
            return value

        builder = GraphBuilder("g")
        parallel = builder.parallel(
            "fan_out", [FunctionNode("save", save), FunctionNode("other", lambda c, v: v)], lambda c, o: o
        )
        chain(builder, [parallel])

        with pytest.raises(AggregateError) as exc_info:
            await builder.build().execute(make_context(checkpoint_store=InMemoryCheckpointStore()), None)
        assert isinstance(exc_info.value.cause.cause, RuntimeError)


class TestResume:
    """Continuing a run from a saved execution point"""

    @pytest.mark.asyncio
    async def test_auto_checkpoint_before_each_node(self, model, registry):
        store = InMemoryCheckpointStore()
        llm = MockLLMClient(responses=[tool_call("add", a=1, b=2), "3"])
        agent = AIAgent(
            single_run_strategy(), llm, model, registry,
            checkpoint_store=store, settings=AgentGraphSettings(auto_checkpoint=True),
        )

        await agent.run("sum")

        nodes = [cp.point.node_path for cp in await store.get_checkpoints("single_run")]
        assert nodes == [
            ["single_run", "requestLLM"],
            ["single_run", "executeTool"],
            ["single_run", "sendToolResult"],
            ["single_run", "__finish__"],
        ]

    @pytest.mark.asyncio
    async def test_resume_reruns_checkpointed_node(self, model, registry):
        store = InMemoryCheckpointStore()
        first = MockLLMClient(responses=[tool_call("add", a=1, b=2), "3"])
        agent = AIAgent(
            single_run_strategy(), first, model, registry,
            checkpoint_store=store, settings=AgentGraphSettings(auto_checkpoint=True),
        )
        await agent.run("sum")
        checkpoints = await store.get_checkpoints("single_run")
        send_point = next(cp for cp in checkpoints if cp.point.node_path[-1] == "sendToolResult")

        second = MockLLMClient(default_response="resumed answer")
        resumed = AIAgent(single_run_strategy(), second, model, registry, checkpoint_store=store)
        output = await resumed.run(resume_from=send_point.checkpoint_id)

        assert output.content == "resumed answer"
        assert resumed.trace == ["sendToolResult", "__finish__"]
        history = second.requests[0].messages
        assert [type(m) for m in history] == [UserMessage, ToolCallMessage, ToolResultMessage]

    @pytest.mark.asyncio
    async def test_resume_from_execution_point(self, model, registry):
        call = ToolCallMessage.create("add", {"a": 2, "b": 2})
        point = ExecutionPoint(
            node_path=["single_run", "executeTool"],
            input=call,
            messages=[UserMessage(content="2+2"), call],
            tools=["add"],
        )
        llm = MockLLMClient(default_response="four")
        agent = AIAgent(single_run_strategy(), llm, model, registry)

        output = await agent.run_from_execution_point(point)

        assert output.content == "four"
        assert agent.trace == ["executeTool", "sendToolResult", "__finish__"]
        assert llm.requests[0].tool_names == ["add"]
        assert llm.requests[0].messages[-1].content == "4"

    @pytest.mark.asyncio
    async def test_resume_restores_recorded_model(self, model, registry):
        call = ToolCallMessage.create("add", {"a": 1, "b": 1})
        point = ExecutionPoint(
            node_path=["single_run", "executeTool"],
            input=call,
            messages=[UserMessage(content="1+1"), call],
            tools=["add"],
            model_provider="mock",
            model_id="switched-model",
        )
        llm = MockLLMClient(default_response="two")
        agent = AIAgent(single_run_strategy(), llm, model, registry)

        await agent.run_from_execution_point(point)

        assert llm.requests[0].model == LLMModel(provider="mock", model_id="switched-model")

    @pytest.mark.asyncio
    async def test_checkpoint_records_session_model(self, make_context, model):
        ctx = make_context()
        point = ctx.execution_point(["test", "n"], "input")
        assert (point.model_provider, point.model_id) == (model.provider, model.model_id)

    @pytest.mark.asyncio
    async def test_resume_inside_subgraph(self, model, registry):
        inner = GraphBuilder("inner")
        chain(inner, [FunctionNode("first", lambda c, v: v + "-first"), FunctionNode("second", lambda c, v: v + "-second")])
        builder = strategy_builder("outer")
        chain(builder, [inner.build(), FunctionNode("after", lambda c, v: v + "-after")])
        agent = AIAgent(builder.build(), MockLLMClient(), model, registry)

        point = ExecutionPoint(node_path=["outer", "inner", "second"], input="x")
        output = await agent.run_from_execution_point(point)

        assert output == "x-second-after"
        assert agent.trace == ["inner", "inner/second", "inner/__finish__", "after", "__finish__"]

    @pytest.mark.asyncio
    async def test_resume_requires_store(self, model, registry):
        agent = AIAgent(single_run_strategy(), MockLLMClient(), model, registry)
        with pytest.raises(RuntimeError):
            await agent.run(resume_from="anything")
