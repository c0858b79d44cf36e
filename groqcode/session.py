"""Agent session: the conversation / tool-call loop.

A turn is an explicit state machine::

    AWAITING_MODEL -> EXECUTING_TOOLS -> AWAITING_MODEL
                                      -> AWAITING_CONTINUE -> AWAITING_MODEL | DONE
    AWAITING_MODEL -> DONE            (reply without tool calls)

Every tool call of a reply is handled in order, one at a time: arguments are
validated, ``ToolStart`` is emitted, the approval gate decides, the tool runs
only if approved, ``ToolEnd`` is emitted and the result message is appended.
"""

import dataclasses
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum

from .approval import ApprovalGate, ApprovalScope, GateState
from .client import DEFAULT_MODEL, LiteLLMClient, ModelClient, ModelReply
from .config import LocalSettings
from .conversation import ConversationState, Message, ToolCall, ToolResult
from .errors import AgentError, ConfigError, ModelCallError
from .events import (
    ApiUsage,
    EventDispatcher,
    FinalMessage,
    SessionObserver,
    ThinkingText,
    ToolEnd,
    ToolStart,
    UsageStats,
)
from .governor import DEFAULT_MAX_ITERATIONS, IterationGovernor
from .tools import ToolRegistry, default_registry

logger = logging.getLogger(__name__)

__all__ = [
    "AgentSession",
    "LoopState",
    "SessionConfig",
    "TurnResult",
    "UsageStats",
]


class LoopState(Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    AWAITING_CONTINUE = "awaiting_continue"
    DONE = "done"


@dataclass(frozen=True)
class SessionConfig:
    model: str = DEFAULT_MODEL
    temperature: float | None = 1.0
    system_prompt: str | None = None
    debug: bool = False
    auto_approve_all: bool = False
    approval_scope: ApprovalScope = ApprovalScope.TOOL
    max_iterations: int = DEFAULT_MAX_ITERATIONS


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one ``chat`` call.

    ``stopped`` is True when the human declined to continue past the
    iteration cap; ``answer`` then holds the last text the model produced
    during the turn, if any.
    """

    answer: str | None
    reasoning: str | None = None
    iterations: int = 0
    stopped: bool = False


class AgentSession:
    def __init__(
        self,
        config: SessionConfig,
        client: ModelClient,
        tools: ToolRegistry | None = None,
        observer: SessionObserver | None = None,
        settings: LocalSettings | None = None,
    ):
        self.config = config
        self.client = client
        self.tools = tools if tools is not None else ToolRegistry()
        self.settings = settings
        self._events = EventDispatcher(observer)
        self.gate = ApprovalGate(
            self._events.request_approval,
            auto_approve_all=config.auto_approve_all,
            scope=config.approval_scope,
        )
        self.governor = IterationGovernor(config.max_iterations)
        self.conversation = ConversationState(config.system_prompt)
        self.usage = UsageStats()
        self.model_calls = 0

    @classmethod
    def create(
        cls,
        *,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float | None = 1.0,
        system_prompt: str | None = None,
        debug: bool = False,
        proxy: str | None = None,
        auto_approve_all: bool = False,
        approval_scope: ApprovalScope = ApprovalScope.TOOL,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        base_dir: str = ".",
        observer: SessionObserver | None = None,
        settings: LocalSettings | None = None,
        tools: ToolRegistry | None = None,
        client: ModelClient | None = None,
    ) -> "AgentSession":
        """Build a ready session, or raise ConfigError.

        The API key is taken from ``api_key``, then ``GROQ_API_KEY``, then the
        persisted settings. Model and proxy fall back to the persisted
        settings as well.
        """
        settings = settings if settings is not None else LocalSettings()

        key = api_key or os.environ.get("GROQ_API_KEY") or settings.get_api_key()
        if not key:
            raise ConfigError(
                "no Groq API key found. Set GROQ_API_KEY or run /login "
                "in interactive mode."
            )
        if max_iterations < 1:
            raise ConfigError(f"max iterations must be at least 1, got {max_iterations}")

        model = model or settings.get_default_model() or DEFAULT_MODEL
        proxy = proxy or settings.get_proxy()
        if client is None:
            client = LiteLLMClient(key, proxy=proxy)
        if tools is None:
            tools = default_registry(base_dir)

        config = SessionConfig(
            model=model,
            temperature=temperature,
            system_prompt=system_prompt,
            debug=debug,
            auto_approve_all=auto_approve_all,
            approval_scope=approval_scope,
            max_iterations=max_iterations,
        )
        logger.info(
            "session created: model=%s tools=%s auto_approve_all=%s scope=%s",
            model,
            tools.names(),
            auto_approve_all,
            approval_scope.value,
        )
        return cls(config, client, tools=tools, observer=observer, settings=settings)

    # -- Public operations ---------------------------------------------------

    def chat(self, text: str) -> TurnResult:
        """Send a user message and run the loop until the turn ends.

        Raises ModelCallError when the model cannot be reached. The history
        then ends with the last message that was successfully appended and
        ``continue_turn()`` picks up from there.
        """
        self.conversation.append(Message.user(text))
        return self._run_turn()

    def continue_turn(self) -> TurnResult:
        """Re-enter the loop without a new user message."""
        messages = self.conversation.messages
        if not messages or messages[-1].role not in ("user", "tool"):
            raise AgentError("nothing to continue: the last turn already finished")
        return self._run_turn()

    def set_model(self, model: str) -> None:
        model = model.strip()
        if not model:
            raise ConfigError("model id must not be empty")
        logger.info("model changed: %s -> %s", self.config.model, model)
        self.config = dataclasses.replace(self.config, model=model)

    def get_current_model(self) -> str:
        return self.config.model

    def clear_history(self) -> int:
        dropped = self.conversation.clear()
        logger.info("history cleared (%d messages dropped)", dropped)
        return dropped

    def save_api_key(self, key: str) -> None:
        if self.settings is None:
            raise ConfigError("no settings store configured for this session")
        self.settings.set_api_key(key)
        self.client.api_key = key.strip()

    def close(self) -> None:
        """Release the model client's network resources."""
        self.client.close()

    @property
    def history(self) -> tuple[Message, ...]:
        return self.conversation.messages

    # -- Loop ----------------------------------------------------------------

    def _run_turn(self) -> TurnResult:
        self.governor.reset()
        state = LoopState.AWAITING_MODEL
        reply: ModelReply | None = None
        partial: ModelReply | None = None
        result: TurnResult | None = None
        iterations = 0

        while state is not LoopState.DONE:
            if state is LoopState.AWAITING_MODEL:
                reply = self._call_model()
                if reply.tool_calls:
                    state = LoopState.EXECUTING_TOOLS
                    continue
                content = reply.content or ""
                self._events.emit(FinalMessage(content, reply.reasoning))
                self.conversation.append(Message.assistant(content, reply.reasoning))
                result = TurnResult(
                    answer=content, reasoning=reply.reasoning, iterations=iterations
                )
                state = LoopState.DONE

            elif state is LoopState.EXECUTING_TOOLS:
                if reply.content or reply.reasoning:
                    partial = reply
                    self._events.emit(ThinkingText(reply.content, reply.reasoning))
                self.conversation.append(
                    Message.assistant(reply.content, reply.reasoning, reply.tool_calls)
                )
                try:
                    for call in reply.tool_calls:
                        self._run_tool_call(call)
                except BaseException:
                    self._answer_unresolved(reply.tool_calls)
                    raise
                self.governor.record_iteration()
                iterations += 1
                if self.governor.exhausted:
                    state = LoopState.AWAITING_CONTINUE
                else:
                    state = LoopState.AWAITING_MODEL

            elif state is LoopState.AWAITING_CONTINUE:
                if self._events.request_continue(self.governor.limit):
                    self.governor.reset()
                    state = LoopState.AWAITING_MODEL
                else:
                    logger.info("turn stopped at the iteration cap (%d)", iterations)
                    result = TurnResult(
                        answer=partial.content if partial else None,
                        reasoning=partial.reasoning if partial else None,
                        iterations=iterations,
                        stopped=True,
                    )
                    state = LoopState.DONE

        return result

    def _call_model(self) -> ModelReply:
        messages = self.conversation.snapshot()
        schemas = self.tools.schemas() or None
        if self.config.debug and logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "model call %d: %d messages, ~%d tokens",
                self.model_calls + 1,
                len(messages),
                self.conversation.estimate_tokens(schemas),
            )
        try:
            reply = self.client.complete(
                messages,
                model=self.config.model,
                temperature=self.config.temperature,
                tools=schemas,
            )
        except ModelCallError:
            raise
        except Exception as e:
            raise ModelCallError(f"LLM call failed: {e}") from e

        self.model_calls += 1
        self.usage = self.usage + reply.usage
        self._events.emit(ApiUsage(call=reply.usage, total=self.usage))
        return reply

    def _answer_unresolved(self, calls: tuple[ToolCall, ...]) -> None:
        """Give every call of an aborted batch a result so the history stays valid."""
        answered = set()
        for message in reversed(self.conversation.messages):
            if message.role != "tool":
                break
            answered.add(message.tool_call_id)
        for call in calls:
            if call.id not in answered:
                logger.info("tool call %s interrupted", call.name)
                self.conversation.append(
                    Message.tool(
                        ToolResult.failure(call.id, call.name, "interrupted by user")
                    )
                )

    def _run_tool_call(self, call: ToolCall) -> ToolResult:
        arguments, error = self.tools.parse_arguments(call)
        self._events.emit(
            ToolStart(call.name, arguments if arguments is not None else call.arguments)
        )

        if error is not None:
            logger.debug("rejected call %s: %s", call.name, error)
            result = ToolResult.failure(call.id, call.name, error)
        else:
            state = self.gate.resolve(call.name, arguments, self.tools.risk_of(call.name))
            if state is GateState.APPROVED:
                if self.config.debug:
                    logger.debug("running %s %s", call.name, json.dumps(arguments))
                result = self.tools.execute(call.id, call.name, arguments)
            else:
                result = ToolResult.refusal(call.id, call.name)

        self._events.emit(ToolEnd(call.name, result))
        self.conversation.append(Message.tool(result))
        return result
