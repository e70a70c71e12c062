"""
JSON-schema checks for tool schemas and tool-call arguments.

Arguments come straight from the model, which gets one round to correct
them, so every problem is reported at once and each message names the
argument it concerns.
"""

from __future__ import annotations

import jsonschema
from jsonschema.validators import validator_for

from wrench.tools.base import Tool, parameter_schema


def _location(error: jsonschema.ValidationError) -> str:
    path = ".".join(str(p) for p in error.absolute_path)
    return path or "arguments"


class ToolValidator:
    @staticmethod
    def check_schema(tool: Tool) -> None:
        """Raise ``ValueError`` if the tool's parameter schema is itself invalid."""
        schema = parameter_schema(tool.parameters)
        try:
            validator_for(schema).check_schema(schema)
        except jsonschema.SchemaError as e:
            raise ValueError(f"Invalid parameter schema for {tool.name}: {e.message}") from e

    @staticmethod
    def validate(tool: Tool, arguments: dict) -> tuple[bool, str | None]:
        schema = parameter_schema(tool.parameters)
        validator = validator_for(schema)(schema)
        errors = sorted(
            validator.iter_errors(arguments),
            key=lambda e: [str(p) for p in e.absolute_path],
        )
        if not errors:
            return True, None
        return False, "; ".join(f"{_location(e)}: {e.message}" for e in errors)
