"""History compression strategies

Every strategy summarises part of the history through the LLM and
rebuilds the prompt as: system messages, the first user message (unless
the strategy drops earlier history), memory messages when they are
preserved, then the compressed content. Memory messages are never part of
the summarisation input.
"""

from abc import ABC, abstractmethod
from typing import List, Sequence, TYPE_CHECKING

import structlog

from graphagent.domain.models.message import (
    AssistantMessage,
    BaseMessage,
    SystemMessage,
    UserMessage,
    is_memory,
)
from graphagent.infrastructure.observability.logging import AgentLogger
from .facts import Concept, FactType, MultipleFacts, SingleFact, parse_fact_values

if TYPE_CHECKING:
    from graphagent.domain.session import WriteSession

logger = structlog.get_logger(__name__)
agent_logger = AgentLogger(__name__)

SUMMARIZE_PROMPT = (
    "Create a concise summary (TL;DR) of the conversation above. Keep every "
    "decision, result and open task that is needed to continue the work. "
    "Answer with the summary only."
)

FACT_PROMPT_SINGLE = (
    "From the conversation above, extract the single most relevant fact about "
    "'{keyword}' ({description}). Answer with the fact only, or with an empty "
    "JSON list [] if there is none."
)

FACT_PROMPT_MULTIPLE = (
    "From the conversation above, extract all facts about '{keyword}' "
    "({description}). Answer with a JSON list of strings, one fact per item."
)


class HistoryCompressionStrategy(ABC):
    """Replaces the session history with a condensed form"""

    keep_first_user_message = True

    @abstractmethod
    async def compress(
        self,
        session: "WriteSession",
        preserve_memory: bool,
        memory_messages: List[BaseMessage]
    ) -> None:
        pass

    @staticmethod
    def summarization_input(
        messages: Sequence[BaseMessage],
        preserve_memory: bool,
        memory_messages: Sequence[BaseMessage]
    ) -> List[BaseMessage]:
        """Messages the LLM condenses; preserved memory is carried over verbatim instead"""
        if not preserve_memory:
            return list(messages)
        return [m for m in messages if not is_memory(m) and m not in memory_messages]

    async def ask_llm(self, session: "WriteSession", messages: Sequence[BaseMessage], instruction: str) -> str:
        """Run one tool-less request over the given messages, then put the prompt back"""

        current = list(session.messages)
        session.rewrite_prompt(list(messages) + [UserMessage(content=instruction)])
        try:
            response = await session.request_llm_without_tools()
        finally:
            session.rewrite_prompt(current)
        return response.content

    def compose(
        self,
        original: Sequence[BaseMessage],
        compressed: Sequence[BaseMessage],
        preserve_memory: bool,
        memory_messages: Sequence[BaseMessage]
    ) -> List[BaseMessage]:
        history: List[BaseMessage] = [m for m in original if isinstance(m, SystemMessage)]
        if self.keep_first_user_message:
            first_user = next(
                (m for m in original if isinstance(m, UserMessage) and not is_memory(m)),
                None,
            )
            if first_user is not None:
                history.append(first_user)
        if preserve_memory:
            history.extend(m for m in memory_messages if m not in history)
        history.extend(compressed)
        return history

    def apply(
        self,
        session: "WriteSession",
        original: Sequence[BaseMessage],
        compressed: Sequence[BaseMessage],
        preserve_memory: bool,
        memory_messages: Sequence[BaseMessage]
    ):
        history = self.compose(original, compressed, preserve_memory, memory_messages)
        session.replace_history(history, preserve_memory, memory_messages)
        agent_logger.log_context_update("history", "compress", {
            "strategy": type(self).__name__,
            "before": len(original),
            "after": len(history),
            "preserve_memory": preserve_memory,
        })


class WholeHistory(HistoryCompressionStrategy):
    """Summarise the entire history into one message"""

    async def compress(self, session, preserve_memory, memory_messages):
        original = list(session.messages)
        summary = await self.ask_llm(
            session, self.summarization_input(original, preserve_memory, memory_messages), SUMMARIZE_PROMPT
        )
        self.apply(session, original, [AssistantMessage(content=summary)], preserve_memory, memory_messages)


class FromLastNMessages(HistoryCompressionStrategy):
    """Summarise only the last n messages; everything earlier is dropped"""

    keep_first_user_message = False

    def __init__(self, n: int):
        if n <= 0:
            raise ValueError("n must be positive")
        self.n = n

    async def compress(self, session, preserve_memory, memory_messages):
        original = list(session.messages)
        candidates = self.summarization_input(original, preserve_memory, memory_messages)
        system = [m for m in candidates if isinstance(m, SystemMessage)]
        tail = [m for m in candidates if not isinstance(m, SystemMessage)][-self.n:]

        summary = await self.ask_llm(session, system + tail, SUMMARIZE_PROMPT)
        self.apply(session, original, [AssistantMessage(content=summary)], preserve_memory, memory_messages)


class Chunked(HistoryCompressionStrategy):
    """Summarise consecutive chunks of the history separately"""

    def __init__(self, chunk_size: int):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size

    async def compress(self, session, preserve_memory, memory_messages):
        original = list(session.messages)
        candidates = self.summarization_input(original, preserve_memory, memory_messages)
        system = [m for m in candidates if isinstance(m, SystemMessage)]
        body = [m for m in candidates if not isinstance(m, SystemMessage)]

        summaries = []
        for start in range(0, len(body), self.chunk_size):
            chunk = body[start:start + self.chunk_size]
            summary = await self.ask_llm(session, system + chunk, SUMMARIZE_PROMPT)
            summaries.append(AssistantMessage(content=summary))

        logger.debug("Compressed history in chunks", chunks=len(summaries), chunk_size=self.chunk_size)
        self.apply(session, original, summaries, preserve_memory, memory_messages)


class RetrieveFactsFromHistory(HistoryCompressionStrategy):
    """Replace the history with facts extracted per concept"""

    def __init__(self, *concepts: Concept):
        if not concepts:
            raise ValueError("At least one concept is required")
        self.concepts = list(concepts)

    async def compress(self, session, preserve_memory, memory_messages):
        original = list(session.messages)
        source = self.summarization_input(original, preserve_memory, memory_messages)

        fact_messages = []
        for concept in self.concepts:
            fact = await self.retrieve(session, source, concept)
            if fact is None:
                continue
            fact_messages.append(AssistantMessage(content=fact.render(), payload=fact.model_dump(mode="json")))

        self.apply(session, original, fact_messages, preserve_memory, memory_messages)

    async def retrieve(self, session, source: Sequence[BaseMessage], concept: Concept):
        template = FACT_PROMPT_MULTIPLE if concept.fact_type == FactType.MULTIPLE else FACT_PROMPT_SINGLE
        answer = await self.ask_llm(
            session, source, template.format(keyword=concept.keyword, description=concept.description)
        )
        values = parse_fact_values(answer)
        logger.debug("Retrieved facts", concept=concept.keyword, count=len(values))

        if not values:
            return None
        if concept.fact_type == FactType.SINGLE:
            return SingleFact(concept=concept, value=values[0])
        return MultipleFacts(concept=concept, values=values)