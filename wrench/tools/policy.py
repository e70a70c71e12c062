import json
import re

from wrench.tools.base import Tool, ToolRisk
from wrench.types import OperationClass, PolicyDecision


class PolicyEngine:
    def __init__(
        self,
        *,
        max_risk: ToolRisk = ToolRisk.SHELL,
        confirm_file_edits: bool = True,
        confirm_shell: bool = True,
        blocked_patterns: list[str] | None = None,
    ):
        self.max_risk = max_risk
        self.confirm_file_edits = confirm_file_edits
        self.confirm_shell = confirm_shell
        self.blocked_patterns = blocked_patterns or []
        self._blocked = [re.compile(p) for p in self.blocked_patterns]

    def check(self, tool: Tool, kwargs: dict) -> PolicyDecision:
        op = tool.operation_class

        if tool.risk_level > self.max_risk:
            return PolicyDecision(
                False,
                f"risk_too_high:{tool.risk_level.name}>{self.max_risk.name}",
                operation_class=op,
            )

        if self._blocked:
            blob = json.dumps(kwargs, sort_keys=True, default=str)
            for rx in self._blocked:
                if rx.search(blob):
                    return PolicyDecision(False, "blocked_pattern", operation_class=op)

        needs_confirm = False
        if op is OperationClass.SHELL and self.confirm_shell:
            needs_confirm = True
        elif op is OperationClass.FILE and self.confirm_file_edits:
            needs_confirm = True

        if needs_confirm:
            return PolicyDecision(
                True, "requires_confirmation", requires_confirmation=True, operation_class=op
            )

        return PolicyDecision(True, "ok", operation_class=op)
