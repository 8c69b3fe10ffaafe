from typing import Dict, Any, List, Optional
import jsonschema
import pydantic

from graphagent.domain.errors import ToolValidationError
from .tool import Tool


class ToolParameterValidator:
    """Validates tool arguments against the tool's descriptor"""

    @staticmethod
    def validate_tool_call(tool: Tool, parameters: Optional[Dict[str, Any]]) -> Any:
        """Validate arguments and return them in the form the handler expects

        Raises ToolValidationError listing every problem found.
        """
        if not isinstance(parameters, dict):
            raise ToolValidationError(tool.name, ["arguments must be a JSON object"])

        schema = tool.descriptor.to_json_schema()
        validator = jsonschema.Draft202012Validator(schema)
        errors: List[str] = []
        for error in sorted(validator.iter_errors(parameters), key=lambda e: list(e.path)):
            location = ".".join(str(p) for p in error.path)
            errors.append(f"{location}: {error.message}" if location else error.message)
        if errors:
            raise ToolValidationError(tool.name, errors)

        if tool.args_model is None:
            return dict(parameters)

        try:
            return tool.args_model(**parameters)
        except pydantic.ValidationError as e:
            raise ToolValidationError(
                tool.name,
                [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            ) from e
