"""
Human-in-the-loop approval for side-effecting tool calls.

The gate itself is supplied by the UI.  What lives here is the boundary
contract and the per-session "don't ask again" flags, which are an explicit
``SessionContext`` value handed to the orchestrator rather than module state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from wrench.types import OperationClass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmationRequest:
    operation: OperationClass
    tool_name: str
    description: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConfirmationResult:
    approved: bool
    suppress_future_for_class: bool = False
    feedback: str | None = None


class ConfirmationGate(Protocol):
    async def request(self, request: ConfirmationRequest) -> ConfirmationResult: ...


class AutoApproveGate:
    """Approves everything.  For non-interactive runs with ``--yes``."""

    async def request(self, request: ConfirmationRequest) -> ConfirmationResult:
        return ConfirmationResult(approved=True)


class DenyAllGate:
    """Declines everything.  Used when no interactive gate is available."""

    async def request(self, request: ConfirmationRequest) -> ConfirmationResult:
        return ConfirmationResult(approved=False, feedback="No confirmation gate available")


class SessionContext:
    """
    Per-session confirmation flags.

    Each flag is read-modify-written under one coarse lock so concurrent
    turns sharing a session see a consistent answer: a second prompt for the
    same class waits for the first and is skipped if the user chose
    "don't ask again".
    """

    def __init__(self, *, skip_all: bool = False) -> None:
        self._suppressed: dict[OperationClass, bool] = {op: False for op in OperationClass}
        self._skip_all = skip_all
        self._lock = asyncio.Lock()

    def is_suppressed(self, operation: OperationClass) -> bool:
        return self._skip_all or self._suppressed[operation]

    def suppress(self, operation: OperationClass) -> None:
        self._suppressed[operation] = True

    def reset(self) -> None:
        self._suppressed = {op: False for op in OperationClass}
        self._skip_all = False

    def flags(self) -> dict[str, bool]:
        out = {op.value: self._suppressed[op] for op in OperationClass}
        out["all"] = self._skip_all
        return out

    async def confirm(
        self,
        gate: ConfirmationGate,
        request: ConfirmationRequest,
        timeout: float | None = None,
    ) -> ConfirmationResult:
        """
        Ask *gate* unless the request's class is already suppressed.

        A *timeout* (seconds) that expires counts as a decline.
        """
        async with self._lock:
            if self.is_suppressed(request.operation):
                logger.debug(
                    "Confirmation for %s skipped (%s suppressed)",
                    request.tool_name,
                    request.operation.value,
                )
                return ConfirmationResult(approved=True)

            try:
                if timeout:
                    result = await asyncio.wait_for(gate.request(request), timeout=timeout)
                else:
                    result = await gate.request(request)
            except asyncio.TimeoutError:
                logger.info("Confirmation for %s timed out", request.tool_name)
                return ConfirmationResult(approved=False, feedback="Confirmation timed out")

            if result.approved and result.suppress_future_for_class:
                self.suppress(request.operation)
            return result
