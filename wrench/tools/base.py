"""
Tool contract.

A tool is a named, schema-described async operation the model may call.
Its ``risk_level`` decides two things: whether the active policy allows it
at all, and which confirmation scope (file or shell) a prompt belongs to.
"""

from enum import IntEnum
from abc import ABC, abstractmethod

from wrench.types import OperationClass, ToolResult


class ToolRisk(IntEnum):
    READ_ONLY = 10
    WRITE = 20
    DESTRUCTIVE = 30
    SHELL = 40


def parameter_schema(schema: dict | None) -> dict:
    """Copy of *schema* as a closed JSON object schema unless it says otherwise."""
    closed = {"type": "object", "additionalProperties": False}
    closed.update(schema or {})
    return closed


class Tool(ABC):
    """
    Subclasses provide ``name``, ``description``, ``parameters`` and
    ``execute``.  ``execute`` receives the validated arguments as keyword
    arguments and reports failure through ``ToolResult`` rather than by
    raising, although raising is tolerated by the executor.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @property
    def risk_level(self) -> ToolRisk:
        return ToolRisk.READ_ONLY

    @property
    def operation_class(self) -> OperationClass | None:
        risk = self.risk_level
        if risk >= ToolRisk.SHELL:
            return OperationClass.SHELL
        return OperationClass.FILE if risk >= ToolRisk.WRITE else None

    def describe_call(self, arguments: dict) -> str:
        """One-line summary shown in confirmation prompts."""
        rendered = ", ".join(f"{key}={value!r}" for key, value in arguments.items())
        return f"{self.name}({rendered})"

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult: ...

    def to_openai_schema(self) -> dict:
        function = {
            "name": self.name,
            "description": self.description,
            "parameters": parameter_schema(self.parameters),
        }
        return {"type": "function", "function": function}
