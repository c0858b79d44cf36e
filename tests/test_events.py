"""Tests for session events, observers, and the dispatcher."""

from unittest.mock import MagicMock

import pytest

from groqcode.approval import ApprovalDecision, ApprovalGate, GateState
from groqcode.conversation import ToolResult
from groqcode.events import (
    ApiUsage,
    CallbackObserver,
    EventDispatcher,
    FinalMessage,
    SessionObserver,
    ThinkingText,
    ToolEnd,
    ToolStart,
    UsageStats,
)
from groqcode.tools import ToolRisk


def _all_events():
    usage = UsageStats(1, 2, 3)
    return [
        ToolStart("read_file", {"file_path": "a"}),
        ToolEnd("read_file", ToolResult.success("c1", "read_file", "text")),
        ThinkingText("looking", "because"),
        FinalMessage("done", None),
        ApiUsage(call=usage, total=usage + usage),
    ]


class TestUsageStats:
    def test_addition(self):
        total = UsageStats(1, 2, 3) + UsageStats(10, 20, 30)
        assert total == UsageStats(11, 22, 33)

    def test_defaults(self):
        assert UsageStats() == UsageStats(0, 0, 0)


class TestDefaultObserver:
    def test_notifications_are_noops(self):
        dispatcher = EventDispatcher()
        for event in _all_events():
            dispatcher.emit(event)

    def test_missing_approval_handler_denies(self):
        decision = EventDispatcher().request_approval("run_command", {})
        assert decision == ApprovalDecision(approved=False)

    def test_missing_continuation_handler_stops(self):
        assert EventDispatcher().request_continue(50) is False


class TestDispatcher:
    def test_routes_each_event_type(self):
        observer = MagicMock(spec=SessionObserver)
        dispatcher = EventDispatcher(observer)
        events = _all_events()
        for event in events:
            dispatcher.emit(event)
        observer.on_tool_start.assert_called_once_with(events[0])
        observer.on_tool_end.assert_called_once_with(events[1])
        observer.on_thinking_text.assert_called_once_with(events[2])
        observer.on_final_message.assert_called_once_with(events[3])
        observer.on_api_usage.assert_called_once_with(events[4])

    @pytest.mark.parametrize("answer", ["yes", 1, None])
    def test_continue_requires_true(self, answer):
        class Observer(SessionObserver):
            def continue_after_max_iterations(self, limit):
                return answer

        assert EventDispatcher(Observer()).request_continue(3) is False

    def test_events_are_frozen(self):
        event = ToolStart("x", {})
        with pytest.raises(AttributeError):
            event.name = "y"


class TestCallbackObserver:
    def test_callbacks_receive_classic_arguments(self):
        seen = []
        observer = CallbackObserver(
            on_tool_start=lambda name, args: seen.append(("start", name, args)),
            on_tool_end=lambda name, result: seen.append(("end", name, result.output)),
            on_thinking_text=lambda content, reasoning: seen.append(
                ("thinking", content, reasoning)
            ),
            on_final_message=lambda content, reasoning: seen.append(
                ("final", content, reasoning)
            ),
            on_api_usage=lambda usage: seen.append(("usage", usage.total_tokens)),
        )
        dispatcher = EventDispatcher(observer)
        for event in _all_events():
            dispatcher.emit(event)
        assert seen == [
            ("start", "read_file", {"file_path": "a"}),
            ("end", "read_file", "text"),
            ("thinking", "looking", "because"),
            ("final", "done", None),
            ("usage", 3),
        ]

    def test_missing_callbacks_keep_defaults(self):
        observer = CallbackObserver()
        dispatcher = EventDispatcher(observer)
        for event in _all_events():
            dispatcher.emit(event)
        assert dispatcher.request_approval("x", {}).approved is False
        assert dispatcher.request_continue(5) is False

    def test_approval_dict_is_coerced(self):
        observer = CallbackObserver(
            on_tool_approval=lambda name, args: {
                "approved": True,
                "auto_approve_session": True,
            }
        )
        decision = observer.approve_tool("run_command", {})
        assert decision == ApprovalDecision(approved=True, auto_approve_session=True)

    def test_approval_dict_camel_case_key(self):
        observer = CallbackObserver(
            on_tool_approval=lambda name, args: {
                "approved": True,
                "autoApproveSession": True,
            }
        )
        decision = observer.approve_tool("run_command", {})
        assert decision == ApprovalDecision(approved=True, auto_approve_session=True)

    @pytest.mark.parametrize("answer", [True, False])
    def test_approval_bool_is_coerced(self, answer):
        observer = CallbackObserver(on_tool_approval=lambda name, args: answer)
        assert observer.approve_tool("x", {}) == ApprovalDecision(approved=answer)

    def test_camel_case_standing_approval_reaches_gate(self):
        asked = []

        def on_approval(name, args):
            asked.append(name)
            return {"approved": True, "autoApproveSession": True}

        dispatcher = EventDispatcher(CallbackObserver(on_tool_approval=on_approval))
        gate = ApprovalGate(dispatcher.request_approval)
        for _ in range(2):
            assert gate.resolve("shell", {"cmd": "ls"}, ToolRisk.DANGEROUS) is GateState.APPROVED
        assert asked == ["shell"]

    def test_approval_decision_passed_through(self):
        observer = CallbackObserver(
            on_tool_approval=lambda name, args: ApprovalDecision(approved=True)
        )
        assert observer.approve_tool("x", {}).approved is True

    def test_max_iterations_callback(self):
        limits = []

        def on_max(limit):
            limits.append(limit)
            return True

        observer = CallbackObserver(on_max_iterations=on_max)
        assert EventDispatcher(observer).request_continue(7) is True
        assert limits == [7]
