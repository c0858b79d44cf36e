"""Human-in-the-loop approval gate for tool calls.

Every tool call passes through ``ApprovalGate.resolve()`` before it may run.
A call starts PENDING and ends APPROVED or DENIED. It short-circuits to
APPROVED without asking anyone when:

- the tool is read-only,
- the session was started with auto-approve-all, or
- an earlier answer in this session granted a standing approval for the
  call's scope (see ``ApprovalScope``).

Otherwise the injected prompt is asked and may block for as long as the
human needs. Standing approvals live on the gate instance only, so a new
session never inherits them and nothing is written to disk.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .tools import ToolRisk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalDecision:
    approved: bool
    auto_approve_session: bool = False


class ApprovalScope(Enum):
    """What a standing ("auto") approval covers.

    TOOL: later calls of the same tool name.
    RISK: later calls of any tool in the same risk class.
    """

    TOOL = "tool"
    RISK = "risk"


class GateState(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


@dataclass(frozen=True)
class ApprovalRecord:
    tool_name: str
    arguments: Any
    state: GateState
    prompted: bool
    scope_key: str
    standing: bool = False


ApprovalPrompt = Callable[[str, Any], ApprovalDecision]


class ApprovalGate:
    def __init__(
        self,
        prompt: ApprovalPrompt,
        *,
        auto_approve_all: bool = False,
        scope: ApprovalScope = ApprovalScope.TOOL,
    ):
        self._prompt = prompt
        self.auto_approve_all = auto_approve_all
        self.scope = scope
        self.records: list[ApprovalRecord] = []
        self._standing: set[str] = set()
        self._pending = False

    def scope_key(self, tool_name: str, risk: ToolRisk) -> str:
        if self.scope is ApprovalScope.TOOL:
            return f"tool:{tool_name}"
        return f"risk:{risk.value}"

    def has_standing_approval(self, tool_name: str, risk: ToolRisk) -> bool:
        return self.scope_key(tool_name, risk) in self._standing

    def resolve(self, tool_name: str, arguments: Any, risk: ToolRisk) -> GateState:
        """Decide one call. Returns APPROVED or DENIED, never raises on denial."""
        if self._pending:
            raise RuntimeError("an approval prompt is already outstanding")

        key = self.scope_key(tool_name, risk)
        if (
            risk is ToolRisk.READ_ONLY
            or self.auto_approve_all
            or key in self._standing
        ):
            return self._record(tool_name, arguments, GateState.APPROVED, False, key)

        self._pending = True
        try:
            decision = self._prompt(tool_name, arguments)
        finally:
            self._pending = False

        if decision is None:
            decision = ApprovalDecision(approved=False)
        if not decision.approved:
            logger.info("tool call %s denied by user", tool_name)
            return self._record(tool_name, arguments, GateState.DENIED, True, key)

        standing = decision.auto_approve_session
        if standing:
            self._standing.add(key)
            logger.info("standing approval granted for %s", key)
        return self._record(
            tool_name, arguments, GateState.APPROVED, True, key, standing=standing
        )

    def _record(
        self,
        tool_name: str,
        arguments: Any,
        state: GateState,
        prompted: bool,
        key: str,
        standing: bool = False,
    ) -> GateState:
        self.records.append(
            ApprovalRecord(
                tool_name=tool_name,
                arguments=arguments,
                state=state,
                prompted=prompted,
                scope_key=key,
                standing=standing,
            )
        )
        return state
