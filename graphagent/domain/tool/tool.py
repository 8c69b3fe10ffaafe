from typing import Dict, Any, List, Optional, Callable, Type
from pydantic import BaseModel, Field, model_validator
from enum import Enum
import inspect
import json


class ToolParameterType(str, Enum):
    """Tool parameter types"""
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    ENUM = "enum"
    LIST = "list"
    OBJECT = "object"


class ToolParameter(BaseModel):
    """Single named, typed tool parameter"""
    name: str
    description: str = ""
    type: ToolParameterType
    enum_values: Optional[List[str]] = Field(None, description="Allowed values for enum parameters")
    item_type: Optional["ToolParameter"] = Field(None, description="Element type for list parameters")
    properties: List["ToolParameter"] = Field(default_factory=list, description="Fields of object parameters")
    required_properties: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_type_details(self) -> "ToolParameter":
        if self.type == ToolParameterType.ENUM and not self.enum_values:
            raise ValueError(f"enum parameter '{self.name}' needs enum_values")
        if self.type == ToolParameterType.LIST and self.item_type is None:
            raise ValueError(f"list parameter '{self.name}' needs item_type")
        return self

    def to_json_schema(self) -> Dict[str, Any]:
        """JSON Schema fragment for this parameter"""
        schema: Dict[str, Any]
        if self.type == ToolParameterType.FLOAT:
            schema = {"type": "number"}
        elif self.type == ToolParameterType.ENUM:
            schema = {"type": "string", "enum": list(self.enum_values or [])}
        elif self.type == ToolParameterType.LIST:
            schema = {"type": "array", "items": self.item_type.to_json_schema()}
        elif self.type == ToolParameterType.OBJECT:
            schema = {"type": "object"}
            if self.properties:
                schema["properties"] = {p.name: p.to_json_schema() for p in self.properties}
                schema["required"] = list(self.required_properties)
        else:
            schema = {"type": self.type.value}
        if self.description:
            schema["description"] = self.description
        return schema


class ToolDescriptor(BaseModel):
    """Name, description and ordered parameter lists of a tool"""
    name: str
    description: str = ""
    required_parameters: List[ToolParameter] = Field(default_factory=list)
    optional_parameters: List[ToolParameter] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_parameters(self) -> "ToolDescriptor":
        names = [p.name for p in self.required_parameters + self.optional_parameters]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"duplicate parameters in tool '{self.name}': {sorted(duplicates)}")
        return self

    def to_json_schema(self) -> Dict[str, Any]:
        """JSON Schema of the tool's argument object"""
        properties = {}
        for param in self.required_parameters + self.optional_parameters:
            properties[param.name] = param.to_json_schema()
        return {
            "type": "object",
            "properties": properties,
            "required": [p.name for p in self.required_parameters],
            "additionalProperties": False,
        }

    def to_function_spec(self) -> Dict[str, Any]:
        """OpenAI-style function specification"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.to_json_schema(),
            },
        }


class Tool:
    """A tool descriptor paired with the function that executes it

    The handler receives an instance of ``args_model`` when one is given,
    otherwise the validated arguments as keyword arguments. Handlers may be
    plain functions or coroutines.
    """

    def __init__(
        self,
        descriptor: ToolDescriptor,
        handler: Callable[..., Any],
        args_model: Optional[Type[BaseModel]] = None,
        result_formatter: Optional[Callable[[Any], str]] = None
    ):
        self.descriptor = descriptor
        self.handler = handler
        self.args_model = args_model
        self.result_formatter = result_formatter

    @property
    def name(self) -> str:
        return self.descriptor.name

    async def execute(self, args: Any) -> Any:
        """Run the handler with already validated arguments"""

        if isinstance(args, BaseModel):
            result = self.handler(args)
        else:
            result = self.handler(**args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def format_result(self, result: Any) -> str:
        """Text form of a result, as sent back to the LLM"""

        if self.result_formatter is not None:
            return self.result_formatter(result)
        if isinstance(result, str):
            return result
        if isinstance(result, BaseModel):
            return result.model_dump_json()
        if isinstance(result, (dict, list, tuple, int, float, bool)) or result is None:
            return json.dumps(result, default=str)
        return str(result)

    def __repr__(self) -> str:
        return f"Tool(name={self.name!r})"
