import pytest

from graphagent.domain.events import EventDispatcher
from graphagent.domain.graph.context import AgentContext, RunState
from graphagent.domain.llm.llm_client import LLMGateway, LLMModel
from graphagent.domain.session import AgentSession
from graphagent.domain.tool import ToolDescriptor, ToolExecutor, ToolParameter, ToolParameterType, ToolRegistry
from graphagent.testing import MockLLMClient


class RecordingObserver:
    def __init__(self):
        self.events = []

    def on_event(self, event):
        self.events.append(event)

    def types(self):
        return [e.event_type.value for e in self.events]


ADD_DESCRIPTOR = ToolDescriptor(
    name="add",
    description="Add two integers",
    required_parameters=[
        ToolParameter(name="a", type=ToolParameterType.INTEGER),
        ToolParameter(name="b", type=ToolParameterType.INTEGER),
    ],
)

WEATHER_DESCRIPTOR = ToolDescriptor(
    name="weather",
    description="Current weather for a city",
    required_parameters=[ToolParameter(name="city", type=ToolParameterType.STRING)],
    optional_parameters=[
        ToolParameter(name="unit", type=ToolParameterType.ENUM, enum_values=["celsius", "fahrenheit"]),
    ],
)

FAIL_DESCRIPTOR = ToolDescriptor(name="explode", description="Always fails")


def _explode():
    raise RuntimeError("boom")


async def _weather(city, unit="celsius"):
    return f"Sunny in {city} ({unit})"


@pytest.fixture
def model():
    return LLMModel(provider="mock", model_id="mock-model")


@pytest.fixture
def registry():
    registry = ToolRegistry()
    registry.register(ADD_DESCRIPTOR, lambda a, b: a + b)
    registry.register(WEATHER_DESCRIPTOR, _weather)
    registry.register(FAIL_DESCRIPTOR, _explode)
    return registry


@pytest.fixture
def mock_llm():
    return MockLLMClient(default_response="done")


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def make_context(registry, mock_llm, model):
    """Build a standalone AgentContext around a fresh session"""

    def factory(messages=None, llm=None, observers=None, max_iterations=50, checkpoint_store=None):
        events = EventDispatcher(observers or [], run_id="test-run", strategy="test")
        session = AgentSession(messages=messages, tools=registry.descriptors(), model=model)
        return AgentContext(
            session=session,
            tool_registry=registry,
            llm=LLMGateway(llm or mock_llm, events),
            tool_executor=ToolExecutor(registry, events),
            events=events,
            run=RunState("test-run", "test", max_iterations=max_iterations, checkpoint_store=checkpoint_store),
            path=["test"],
        )

    return factory
