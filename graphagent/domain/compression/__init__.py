from .facts import Concept, Fact, FactType, MultipleFacts, SingleFact, parse_fact_values
from .strategies import (
    Chunked,
    FromLastNMessages,
    HistoryCompressionStrategy,
    RetrieveFactsFromHistory,
    WholeHistory,
)

__all__ = [
    "Concept",
    "Fact",
    "FactType",
    "MultipleFacts",
    "SingleFact",
    "parse_fact_values",
    "Chunked",
    "FromLastNMessages",
    "HistoryCompressionStrategy",
    "RetrieveFactsFromHistory",
    "WholeHistory",
]
