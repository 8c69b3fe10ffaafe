from typing import List
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import json
import re

from graphagent.domain.models.message import utc_now


class FactType(str, Enum):
    """How many facts a concept may yield"""
    SINGLE = "single"
    MULTIPLE = "multiple"


class Concept(BaseModel):
    """Named topic to extract facts about"""
    keyword: str
    description: str
    fact_type: FactType = FactType.SINGLE


class Fact(BaseModel):
    concept: Concept
    timestamp: datetime = Field(default_factory=utc_now)


class SingleFact(Fact):
    value: str

    def render(self) -> str:
        return f"{self.concept.keyword}: {self.value}"


class MultipleFacts(Fact):
    values: List[str] = Field(default_factory=list)

    def render(self) -> str:
        lines = "\n".join(f"- {value}" for value in self.values)
        return f"{self.concept.keyword}:\n{lines}"


_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


def parse_fact_values(text: str) -> List[str]:
    """Facts from an LLM answer: a JSON list of strings, else one fact per line"""

    text = text.strip()
    if not text:
        return []

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, list):
        return [str(item).strip() for item in parsed if str(item).strip()]
    if isinstance(parsed, str):
        return [parsed.strip()] if parsed.strip() else []

    values = []
    for line in text.splitlines():
        line = _BULLET.sub("", line).strip()
        if line:
            values.append(line)
    return values
