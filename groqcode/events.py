"""Typed session events and the observer they are delivered to.

A session talks to exactly one observer. Notifications are the frozen event
dataclasses below; the two questions the loop must wait on (tool approval and
continuing past the iteration cap) are plain methods returning an answer.
Every method has a default, so an observer only overrides what it renders.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from .approval import ApprovalDecision
from .conversation import ToolResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageStats:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "UsageStats") -> "UsageStats":
        return UsageStats(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True)
class ToolStart:
    name: str
    arguments: Any


@dataclass(frozen=True)
class ToolEnd:
    name: str
    result: ToolResult


@dataclass(frozen=True)
class ThinkingText:
    content: str | None
    reasoning: str | None = None


@dataclass(frozen=True)
class FinalMessage:
    content: str
    reasoning: str | None = None


@dataclass(frozen=True)
class ApiUsage:
    """Usage of one model call plus the session's running total."""

    call: UsageStats
    total: UsageStats


Event = ToolStart | ToolEnd | ThinkingText | FinalMessage | ApiUsage


class SessionObserver:
    """Presentation-layer interface. Defaults do nothing, deny, and stop."""

    def on_tool_start(self, event: ToolStart) -> None:
        pass

    def on_tool_end(self, event: ToolEnd) -> None:
        pass

    def on_thinking_text(self, event: ThinkingText) -> None:
        pass

    def on_final_message(self, event: FinalMessage) -> None:
        pass

    def on_api_usage(self, event: ApiUsage) -> None:
        pass

    def approve_tool(self, tool_name: str, arguments: Any) -> ApprovalDecision:
        return ApprovalDecision(approved=False)

    def continue_after_max_iterations(self, limit: int) -> bool:
        return False


class CallbackObserver(SessionObserver):
    """Observer built from optional plain callbacks.

    Callbacks keep the argument shapes of the classic callback bag:
    ``on_tool_start(name, args)``, ``on_tool_end(name, result)``,
    ``on_thinking_text(content, reasoning)``,
    ``on_final_message(content, reasoning)``, ``on_api_usage(usage)``,
    ``on_tool_approval(name, args) -> ApprovalDecision`` and
    ``on_max_iterations(limit) -> bool``. The approval callback may also
    answer with a bool or a dict holding ``approved`` and
    ``auto_approve_session`` (or ``autoApproveSession``).
    """

    def __init__(
        self,
        *,
        on_tool_start: Callable | None = None,
        on_tool_end: Callable | None = None,
        on_thinking_text: Callable | None = None,
        on_final_message: Callable | None = None,
        on_api_usage: Callable | None = None,
        on_tool_approval: Callable | None = None,
        on_max_iterations: Callable | None = None,
    ):
        self._on_tool_start = on_tool_start
        self._on_tool_end = on_tool_end
        self._on_thinking_text = on_thinking_text
        self._on_final_message = on_final_message
        self._on_api_usage = on_api_usage
        self._on_tool_approval = on_tool_approval
        self._on_max_iterations = on_max_iterations

    def on_tool_start(self, event):
        if self._on_tool_start:
            self._on_tool_start(event.name, event.arguments)

    def on_tool_end(self, event):
        if self._on_tool_end:
            self._on_tool_end(event.name, event.result)

    def on_thinking_text(self, event):
        if self._on_thinking_text:
            self._on_thinking_text(event.content, event.reasoning)

    def on_final_message(self, event):
        if self._on_final_message:
            self._on_final_message(event.content, event.reasoning)

    def on_api_usage(self, event):
        if self._on_api_usage:
            self._on_api_usage(event.call)

    def approve_tool(self, tool_name, arguments):
        if self._on_tool_approval is None:
            return super().approve_tool(tool_name, arguments)
        answer = self._on_tool_approval(tool_name, arguments)
        if isinstance(answer, bool):
            return ApprovalDecision(approved=answer)
        if isinstance(answer, dict):
            standing = answer.get("auto_approve_session", answer.get("autoApproveSession"))
            return ApprovalDecision(
                approved=bool(answer.get("approved")),
                auto_approve_session=bool(standing),
            )
        return answer

    def continue_after_max_iterations(self, limit):
        if self._on_max_iterations is None:
            return super().continue_after_max_iterations(limit)
        return bool(self._on_max_iterations(limit))


class EventDispatcher:
    """Delivers events in order to the session's single observer."""

    _HANDLERS = {
        ToolStart: "on_tool_start",
        ToolEnd: "on_tool_end",
        ThinkingText: "on_thinking_text",
        FinalMessage: "on_final_message",
        ApiUsage: "on_api_usage",
    }

    def __init__(self, observer: SessionObserver | None = None):
        self.observer = observer or SessionObserver()

    def emit(self, event: Event) -> None:
        logger.debug("event %r", event)
        getattr(self.observer, self._HANDLERS[type(event)])(event)

    def request_approval(self, tool_name: str, arguments: Any) -> ApprovalDecision:
        return self.observer.approve_tool(tool_name, arguments)

    def request_continue(self, limit: int) -> bool:
        answer = self.observer.continue_after_max_iterations(limit)
        logger.debug("continue after %d iterations: %s", limit, answer)
        return answer is True
