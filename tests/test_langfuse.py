import pytest

from graphagent import AIAgent
from graphagent.domain.graph import FunctionNode, chain, single_run_strategy, strategy_builder
from graphagent.domain.errors import LLMRequestError, NodeExecutionError
from graphagent.domain.events import AgentEvent, AgentEventType
from graphagent.infrastructure.observability.langfuse_tracing import LangfuseTracingObserver
from graphagent.testing import MockLLMClient, tool_call


class FakeObservation:
    def __init__(self, kind, name, parent=None, **kwargs):
        self.kind = kind
        self.name = name
        self.parent = parent
        self.start_kwargs = kwargs
        self.children = []
        self.updates = []
        self.ended = None

    def span(self, name, **kwargs):
        child = FakeObservation("span", name, self, **kwargs)
        self.children.append(child)
        return child

    def generation(self, name, **kwargs):
        child = FakeObservation("generation", name, self, **kwargs)
        self.children.append(child)
        return child

    def update(self, **kwargs):
        self.updates.append(kwargs)

    def end(self, **kwargs):
        self.ended = kwargs


class FakeLangfuse:
    def __init__(self):
        self.traces = []
        self.flushes = 0

    def trace(self, id, name, **kwargs):
        trace = FakeObservation("trace", name, id=id, **kwargs)
        self.traces.append(trace)
        return trace

    def flush(self):
        self.flushes += 1


def names(observation):
    return [c.name for c in observation.children]


class TestLangfuseTracingObserver:
    @pytest.mark.asyncio
    async def test_run_maps_to_nested_observations(self, model, registry):
        langfuse = FakeLangfuse()
        llm = MockLLMClient(responses=[tool_call("add", a=1, b=2), "3"])
        agent = AIAgent(single_run_strategy(), llm, model, registry,
                        observers=[LangfuseTracingObserver(langfuse, tags=["test"])])

        await agent.run("sum")

        [trace] = langfuse.traces
        assert trace.name == "single_run"
        assert trace.start_kwargs["tags"] == ["test"]
        assert names(trace) == ["requestLLM", "executeTool", "sendToolResult", "__finish__"]

        request, execute, send, _ = trace.children
        assert [c.kind for c in request.children] == ["generation"]
        assert names(execute) == ["tool:add"]
        assert execute.children[0].ended == {"output": "3"}
        assert all(c.ended is not None for c in trace.children)
        assert trace.updates[-1]["metadata"]["trace"] == agent.trace
        assert langfuse.flushes == 1

    @pytest.mark.asyncio
    async def test_failure_marks_span_as_error(self, model, registry):
        def broken(ctx, value):
            raise ValueError("nope")

        builder = strategy_builder("fragile")
        chain(builder, [FunctionNode("broken", broken)])
        langfuse = FakeLangfuse()
        agent = AIAgent(builder.build(), MockLLMClient(), model, registry,
                        observers=[LangfuseTracingObserver(langfuse)])

        with pytest.raises(NodeExecutionError):
            await agent.run("x")

        [trace] = langfuse.traces
        [span] = trace.children
        assert span.ended["level"] == "ERROR"
        assert trace.updates[-1]["metadata"]["error_type"] == "NodeExecutionError"
        assert langfuse.flushes == 1

    @pytest.mark.asyncio
    async def test_subgraph_nodes_nest_under_subgraph_span(self, model, registry):
        inner = strategy_builder("inner")
        chain(inner, [FunctionNode("step", lambda c, v: v)])
        outer = strategy_builder("outer")
        chain(outer, [inner.build()])
        langfuse = FakeLangfuse()
        agent = AIAgent(outer.build(), MockLLMClient(), model, registry,
                        observers=[LangfuseTracingObserver(langfuse)])

        await agent.run("x")

        [trace] = langfuse.traces
        subgraph_span = trace.children[0]
        assert subgraph_span.name == "inner"
        assert names(subgraph_span) == ["step", "__finish__"]

    @pytest.mark.asyncio
    async def test_failed_llm_call_ends_generation(self, model, registry):
        class UnavailableLLM:
            async def execute(self, messages, model, tools):
                raise ConnectionError("provider down")

        langfuse = FakeLangfuse()
        observer = LangfuseTracingObserver(langfuse)
        agent = AIAgent(single_run_strategy(), UnavailableLLM(), model, registry, observers=[observer])

        with pytest.raises(LLMRequestError):
            await agent.run("x")

        [trace] = langfuse.traces
        [generation] = trace.children[0].children
        assert generation.ended == {"level": "ERROR", "status_message": "provider down"}
        assert observer._generations == {}
        assert observer._spans == {}

    def test_run_end_drops_open_observations(self):
        langfuse = FakeLangfuse()
        observer = LangfuseTracingObserver(langfuse)
        common = dict(run_id="r1", strategy="s", node_path=["s", "n"])

        observer.on_event(AgentEvent(event_type=AgentEventType.LLM_CALL_STARTED, sequence=0,
                                     payload={"request_id": "q1"}, **common))
        observer.on_event(AgentEvent(event_type=AgentEventType.TOOL_CALL_STARTED, sequence=1,
                                     payload={"tool": "add", "call_id": "c1"}, **common))
        observer.on_event(AgentEvent(event_type=AgentEventType.AGENT_FAILED, sequence=2,
                                     payload={"error": "cancelled"}, **common))

        assert observer._generations == {}
        assert observer._tool_spans == {}
