"""Structured responses: JSON answers validated against a pydantic model"""

from typing import Any, List, Sequence, Type
import json
import re
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from graphagent.domain.models.message import BaseMessage, SystemMessage, UserMessage

_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", re.DOTALL)

FIXING_SYSTEM_PROMPT = (
    "You repair malformed JSON. Reply with one JSON object that conforms to the "
    "given schema and keeps the information of the original answer. No prose."
)


class StructuredResponse(BaseModel):
    """A validated structured answer"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    data: Any = Field(description="Instance of the requested pydantic model")
    raw: str = Field(description="Text the data was parsed from")
    attempts: int = Field(1, description="LLM requests it took to get valid output")


def _schema(structure: Type[BaseModel]) -> str:
    return json.dumps(structure.model_json_schema(), indent=2)


def structure_instruction(structure: Type[BaseModel], examples: Sequence[BaseModel] = ()) -> str:
    lines = [
        f"Respond with a single JSON object describing {structure.__name__}. "
        "It must conform to this JSON schema:",
        _schema(structure),
    ]
    if examples:
        lines.append("Examples of valid answers:")
        lines.extend(example.model_dump_json() for example in examples)
    lines.append("Reply with the JSON object only.")
    return "\n".join(lines)


def correction_instruction(errors: Sequence[str]) -> str:
    return (
        "Your answer did not match the schema: " + "; ".join(errors)
        + ". Reply again with only the corrected JSON object."
    )


def fixing_prompt(structure: Type[BaseModel], raw: str, errors: Sequence[str]) -> List[BaseMessage]:
    """Standalone prompt for the fixing model; the conversation itself is not sent"""

    return [
        SystemMessage(content=FIXING_SYSTEM_PROMPT),
        UserMessage(content="\n".join([
            "Schema:", _schema(structure),
            "Answer to fix:", raw,
            "Problems: " + "; ".join(errors),
        ])),
    ]


def parse_structured(structure: Type[BaseModel], text: str) -> BaseModel:
    """Validate text (optionally wrapped in a markdown code fence) as the structure

    Raises pydantic.ValidationError.
    """
    text = text.strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    return structure.model_validate_json(text)


def validation_messages(error: ValidationError) -> List[str]:
    messages = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"])
        messages.append(f"{location}: {err['msg']}" if location else err["msg"])
    return messages
