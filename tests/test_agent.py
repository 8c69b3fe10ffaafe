import pytest

from graphagent import AIAgent
from graphagent.domain.errors import LLMRequestError, MaxIterationsExceededError, NodeExecutionError, NodeTypeError
from graphagent.domain.events import AgentEventType
from graphagent.domain.graph import (
    FunctionNode,
    ToolCallsMode,
    chain,
    node_llm_request,
    node_llm_request_streaming,
    single_run_strategy,
    strategy_builder,
)
from graphagent.domain.models.agent_state import AgentStatus
from graphagent.domain.models.message import AssistantMessage, SystemMessage, ToolCallMessage, ToolResultMessage
from graphagent.infrastructure.config import AgentGraphSettings
from graphagent.testing import MockLLMClient, tool_call
from tests.conftest import RecordingObserver


def make_agent(strategy, llm, model, registry, **kwargs):
    return AIAgent(strategy=strategy, llm_client=llm, model=model, tool_registry=registry, **kwargs)


class UnavailableLLM:
    async def execute(self, messages, model, tools):
        raise ConnectionError("provider down")

    async def execute_streaming(self, messages, model):
        raise ConnectionError("provider down")
        yield


class TestSingleRun:
    """LLM, tool, result, answer"""

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, model, registry):
        llm = MockLLMClient(responses=[tool_call("add", a=1, b=2), "The sum is 3"])
        agent = make_agent(single_run_strategy(), llm, model, registry)

        output = await agent.run("What is 1 + 2?")

        assert isinstance(output, AssistantMessage)
        assert output.content == "The sum is 3"
        assert agent.trace == ["requestLLM", "executeTool", "sendToolResult", "__finish__"]
        assert agent.status == AgentStatus.COMPLETED

        second_request = llm.requests[1].messages
        result = second_request[-1]
        assert isinstance(result, ToolResultMessage)
        assert result.content == "3"
        assert result.call_id == second_request[-2].call_id

    @pytest.mark.asyncio
    async def test_direct_answer_skips_tools(self, model, registry):
        agent = make_agent(single_run_strategy(), MockLLMClient(default_response="hi"), model, registry)
        output = await agent.run("hello")
        assert output.content == "hi"
        assert agent.trace == ["requestLLM", "__finish__"]

    @pytest.mark.asyncio
    async def test_invalid_tool_arguments_reach_the_llm_as_error(self, model, registry):
        """A validation failure is sent back as an error result, the run continues"""
        llm = MockLLMClient(responses=[tool_call("add", a=1), "sorry"])
        agent = make_agent(single_run_strategy(), llm, model, registry)

        await agent.run("add")

        result = llm.requests[1].messages[-1]
        assert isinstance(result, ToolResultMessage)
        assert result.is_error

    @pytest.mark.asyncio
    async def test_unparsable_arguments_reach_the_llm_as_error(self, model, registry):
        broken = ToolCallMessage(tool="add", call_id="c1", content="{bad json")
        llm = MockLLMClient(responses=[broken, "let me retry"])
        agent = make_agent(single_run_strategy(), llm, model, registry)

        output = await agent.run("add")

        assert output.content == "let me retry"
        result = llm.requests[1].messages[-1]
        assert isinstance(result, ToolResultMessage)
        assert result.is_error
        assert result.call_id == "c1"
        assert "JSON object" in result.content

    @pytest.mark.asyncio
    async def test_parallel_tool_calls_mode(self, model, registry):
        llm = MockLLMClient(responses=[
            [tool_call("add", a=1, b=1), tool_call("weather", city="Oslo")],
            "both done",
        ])
        agent = make_agent(single_run_strategy(mode=ToolCallsMode.PARALLEL), llm, model, registry)

        output = await agent.run("go")

        assert output.content == "both done"
        results = [m for m in llm.requests[1].messages if isinstance(m, ToolResultMessage)]
        assert [r.content for r in results] == ["2", "Sunny in Oslo (celsius)"]
        assert agent.trace == ["requestLLM", "executeTools", "sendToolResults", "__finish__"]

    @pytest.mark.asyncio
    async def test_system_prompt_starts_history(self, model, registry):
        llm = MockLLMClient(default_response="ok")
        agent = make_agent(single_run_strategy(), llm, model, registry, system_prompt="You are terse.")

        await agent.run("hi")

        first = llm.requests[0].messages[0]
        assert isinstance(first, SystemMessage)
        assert first.content == "You are terse."
        assert llm.requests[0].tool_names == ["add", "weather", "explode"]


class TestRunLifecycle:
    """Status, events and failures"""

    @pytest.mark.asyncio
    async def test_events_in_order(self, model, registry):
        observer = RecordingObserver()
        llm = MockLLMClient(responses=[tool_call("add", a=1, b=2), "3"])
        agent = make_agent(single_run_strategy(), llm, model, registry, observers=[observer])

        await agent.run("sum")

        types = observer.types()
        assert types[0] == "agent_started"
        assert types[-1] == "agent_finished"
        assert types.index("tool_call_started") > types.index("llm_call_finished")
        sequences = [e.sequence for e in observer.events]
        assert sequences == sorted(sequences)
        assert len(set(e.run_id for e in observer.events)) == 1
        assert observer.events[-1].payload["trace"] == agent.trace

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_abort(self, model, registry):
        class Broken:
            def on_event(self, event):
                raise RuntimeError("observer broke")

        agent = make_agent(single_run_strategy(), MockLLMClient(default_response="fine"), model, registry,
                           observers=[Broken()])
        assert (await agent.run("x")).content == "fine"

    @pytest.mark.asyncio
    async def test_event_handler_receives_typed_events(self, model, registry):
        finished = []
        agent = make_agent(single_run_strategy(), MockLLMClient(default_response="ok"), model, registry)
        agent.register_event_handler(AgentEventType.NODE_FINISHED, lambda e: finished.append(e.node_name))

        await agent.run("x")
        assert finished == ["requestLLM", "__finish__"]

    @pytest.mark.asyncio
    async def test_node_failure_fails_run(self, model, registry):
        def broken(ctx, value):
            raise ValueError("bad input")

        builder = strategy_builder("fragile")
        chain(builder, [FunctionNode("broken", broken)])
        observer = RecordingObserver()
        agent = make_agent(builder.build(), MockLLMClient(), model, registry, observers=[observer])

        with pytest.raises(NodeExecutionError) as exc_info:
            await agent.run("x")

        assert exc_info.value.node_name == "broken"
        assert agent.status == AgentStatus.FAILED
        assert agent.last_run.error
        assert observer.types()[-1] == "agent_failed"
        assert "node_failed" in observer.types()

    @pytest.mark.asyncio
    async def test_strategy_input_type_checked(self, model, registry):
        builder = strategy_builder("typed", input_type=str)
        chain(builder, [node_llm_request("ask")])
        agent = make_agent(builder.build(), MockLLMClient(), model, registry)

        with pytest.raises(NodeTypeError):
            await agent.run(42)
        assert agent.status == AgentStatus.FAILED

    @pytest.mark.asyncio
    async def test_iteration_limit_from_settings(self, model, registry):
        """An LLM that keeps calling tools is stopped by the configured limit"""
        llm = MockLLMClient(default_response=tool_call("add", a=1, b=1))
        agent = make_agent(single_run_strategy(), llm, model, registry,
                           settings=AgentGraphSettings(max_agent_iterations=6))

        with pytest.raises(MaxIterationsExceededError):
            await agent.run("loop forever")
        assert len(agent.trace) == 6

    @pytest.mark.asyncio
    async def test_runs_are_independent(self, model, registry):
        llm = MockLLMClient(responses=["first", "second"])
        agent = make_agent(single_run_strategy(), llm, model, registry)

        await agent.run("one")
        await agent.run("two")

        assert [m.content for m in llm.requests[1].messages] == ["two"]

    @pytest.mark.asyncio
    async def test_provider_error_ends_llm_call(self, model, registry):
        observer = RecordingObserver()
        agent = make_agent(single_run_strategy(), UnavailableLLM(), model, registry, observers=[observer])

        with pytest.raises(LLMRequestError):
            await agent.run("x")

        types = observer.types()
        assert types[-4:] == ["llm_call_started", "llm_call_failed", "node_failed", "agent_failed"]
        failed = observer.events[types.index("llm_call_failed")]
        assert failed.payload["error"] == "provider down"
        assert failed.payload["request_id"] == observer.events[types.index("llm_call_started")].payload["request_id"]

    @pytest.mark.asyncio
    async def test_stream_error_ends_llm_call(self, make_context, model):
        observer = RecordingObserver()
        ctx = make_context(llm=UnavailableLLM(), observers=[observer])

        with pytest.raises(LLMRequestError):
            async for _ in ctx.llm.stream([], model):
                pass

        assert observer.types() == ["llm_call_started", "llm_call_failed"]
        assert observer.events[-1].payload["streaming"] is True


class TestStreaming:
    @pytest.mark.asyncio
    async def test_collected_stream(self, model, registry):
        builder = strategy_builder("stream")
        chain(builder, [node_llm_request_streaming("stream", collect=True)])
        agent = make_agent(builder.build(), MockLLMClient(default_response="one two three"), model, registry)

        assert await agent.run("talk") == "one two three"

    @pytest.mark.asyncio
    async def test_lazy_stream_holds_write_access(self, make_context):
        """Chunks arrive one by one and the full text lands in the history"""
        ctx = make_context(llm=MockLLMClient(default_response="a b c"))
        node = node_llm_request_streaming("stream")

        stream = await node.execute(ctx, "go")
        chunks = [chunk async for chunk in stream]

        assert chunks == ["a ", "b ", "c"]
        assert [m.content for m in ctx.session.snapshot().messages] == ["go", "a b c"]


class TestRunSummary:
    @pytest.mark.asyncio
    async def test_summary_of_last_run(self, model, registry):
        llm = MockLLMClient().on_request_contains("weather").respond_with_tool_call("weather", city="Paris")
        llm.add_response("It is sunny")
        agent = make_agent(single_run_strategy(), llm, model, registry)

        await agent.run("What is the weather in Paris?")

        summary = agent.last_run.get_state_summary()
        assert summary["status"] == "completed"
        assert summary["nodes_visited"] == 4
        assert summary["iterations"] == 4
        assert summary["error"] is None
        assert summary["finished_at"] is not None
