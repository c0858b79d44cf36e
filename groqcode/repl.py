"""Interactive terminal front end: observer, slash commands and the REPL loop."""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable

from . import fmt
from .approval import ApprovalDecision
from .client import AVAILABLE_MODELS
from .errors import AgentError, ModelCallError
from .events import ApiUsage, FinalMessage, SessionObserver, ThinkingText, ToolEnd, ToolStart
from .session import AgentSession, TurnResult

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/q", "/exit", "/quit", "exit", "quit")


def _ask(message: str) -> str:
    from prompt_toolkit import prompt

    return prompt(message)


def _ask_secret(message: str) -> str:
    from prompt_toolkit import prompt

    return prompt(message, is_password=True)


def _format_args(arguments: Any) -> str:
    if isinstance(arguments, dict):
        return json.dumps(arguments, indent=2, ensure_ascii=False)
    return str(arguments or "")


def parse_approval(answer: str) -> ApprovalDecision:
    """Map a ``[y]es/[n]o/[a]uto`` answer to a decision. Anything else denies."""
    answer = answer.strip().lower()
    if answer in ("a", "auto"):
        return ApprovalDecision(approved=True, auto_approve_session=True)
    if answer in ("y", "yes"):
        return ApprovalDecision(approved=True)
    return ApprovalDecision(approved=False)


class TerminalObserver(SessionObserver):
    """Renders session events on stderr and asks the human on the terminal.

    ``ask`` reads one line of input; tests pass a stub.
    """

    def __init__(
        self,
        *,
        show_reasoning: bool = False,
        show_usage: bool = False,
        ask: Callable[[str], str] | None = None,
    ):
        self.show_reasoning = show_reasoning
        self.show_usage = show_usage
        self._ask = ask or _ask

    def on_tool_start(self, event: ToolStart) -> None:
        fmt.tool_start(event.name, _format_args(event.arguments))

    def on_tool_end(self, event: ToolEnd) -> None:
        result = event.result
        if result.refused:
            fmt.tool_refused(event.name)
        elif not result.succeeded:
            fmt.tool_error(event.name, result.error)
        else:
            fmt.tool_result(event.name, result.output or "")

    def on_thinking_text(self, event: ThinkingText) -> None:
        if self.show_reasoning and event.reasoning:
            fmt.reasoning(event.reasoning)
        if event.content:
            fmt.assistant_text(event.content)

    def on_final_message(self, event: FinalMessage) -> None:
        if self.show_reasoning and event.reasoning:
            fmt.reasoning(event.reasoning)

    def on_api_usage(self, event: ApiUsage) -> None:
        if self.show_usage:
            fmt.usage(
                event.call.prompt_tokens,
                event.call.completion_tokens,
                event.call.total_tokens,
            )

    def approve_tool(self, tool_name: str, arguments: Any) -> ApprovalDecision:
        fmt.approval_request(tool_name, _format_args(arguments))
        try:
            answer = self._ask("  [y]es/[n]o/[a]uto > ")
        except (EOFError, KeyboardInterrupt):
            return ApprovalDecision(approved=False)
        return parse_approval(answer)

    def continue_after_max_iterations(self, limit: int) -> bool:
        fmt.iteration_limit(limit)
        try:
            answer = self._ask("  Continue? [y/N] > ")
        except (EOFError, KeyboardInterrupt):
            return False
        return answer.strip().lower() in ("y", "yes")


# -- Slash commands ----------------------------------------------------------


def _repl_help() -> None:
    """Print available REPL commands."""
    fmt.info(
        "Available commands:\n"
        "  /help              Show this help message\n"
        "  /login [key]       Save a Groq API key\n"
        "  /model [name]      Show available models, or switch model\n"
        "  /clear             Reset conversation to the system prompt\n"
        "  /reasoning         Toggle display of model reasoning\n"
        "  /stats             Show session statistics\n"
        "  /continue          Resume the last interrupted or failed turn\n"
        "  /q, /exit, /quit   Exit the REPL"
    )


def _repl_login(
    session: AgentSession, arg: str, ask_secret: Callable[[str], str]
) -> None:
    key = arg.strip()
    if not key:
        try:
            key = ask_secret("  Groq API key: ").strip()
        except (EOFError, KeyboardInterrupt):
            fmt.warning("login cancelled")
            return
    if not key:
        fmt.warning("no key entered")
        return
    try:
        session.save_api_key(key)
    except AgentError as e:
        fmt.error(str(e))
        return
    fmt.info("API key saved")


def _repl_model(session: AgentSession, arg: str) -> None:
    name = arg.strip()
    current = session.get_current_model()
    if not name:
        lines = ["Available models:"]
        for model in AVAILABLE_MODELS:
            marker = "*" if model == current else " "
            lines.append(f"  {marker} {model}")
        if current not in AVAILABLE_MODELS:
            lines.append(f"  * {current}")
        fmt.info("\n".join(lines))
        return
    session.set_model(name)
    if session.settings is not None:
        session.settings.set_default_model(name)
    fmt.model_info(f"model: {current} -> {session.get_current_model()}")


def _repl_clear(session: AgentSession) -> None:
    dropped = session.clear_history()
    fmt.info(f"context cleared ({dropped} messages removed)")


def _repl_reasoning(observer: TerminalObserver) -> None:
    observer.show_reasoning = not observer.show_reasoning
    fmt.info(f"reasoning display {'on' if observer.show_reasoning else 'off'}")


def _repl_stats(
    session: AgentSession, observer: TerminalObserver, proxy: str | None
) -> None:
    usage = session.usage
    fmt.info(
        "Session statistics:\n"
        f"  model:       {session.get_current_model()}\n"
        f"  API key:     {'set' if session.client.api_key else 'not set'}\n"
        f"  proxy:       {proxy or 'none'}\n"
        f"  reasoning:   {'on' if observer.show_reasoning else 'off'}\n"
        f"  model calls: {session.model_calls}\n"
        f"  tokens:      prompt={usage.prompt_tokens}, "
        f"completion={usage.completion_tokens}, total={usage.total_tokens}"
    )
    fmt.context_stats(
        "Context", session.conversation.estimate_tokens(session.tools.schemas())
    )


def _run(turn: Callable[[], TurnResult]) -> None:
    """Run one turn, printing the answer to stdout and problems to stderr."""
    try:
        result = turn()
    except KeyboardInterrupt:
        fmt.warning("interrupted, use /continue to resume.")
        return
    except ModelCallError as e:
        fmt.error(str(e))
        fmt.info("use /continue to retry.")
        return
    except AgentError as e:
        fmt.error(str(e))
        return

    if result.answer:
        print(result.answer)
    if result.stopped:
        fmt.warning("stopped at the iteration limit for this question.")


def repl_loop(
    session: AgentSession,
    observer: TerminalObserver,
    *,
    proxy: str | None = None,
    history_path: Path | None = None,
    ask_secret: Callable[[str], str] | None = None,
) -> None:
    """Interactive read-eval-print loop."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory, InMemoryHistory

    if history_path is not None:
        history_path.parent.mkdir(parents=True, exist_ok=True)
        history = FileHistory(str(history_path))
    else:
        history = InMemoryHistory()
    prompt_session = PromptSession(history=history, enable_history_search=True)
    prompt_text = FormattedText([("bold fg:ansigreen", "groq> ")])
    ask_secret = ask_secret or _ask_secret

    fmt.repl_banner(session.get_current_model())

    while True:
        try:
            print(file=sys.stderr)  # blank line before prompt
            line = prompt_session.prompt(prompt_text)
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)  # newline after ^D / ^C
            break

        line = line.strip()
        if not line:
            continue
        if line.lower() in EXIT_COMMANDS:
            break

        cmd_parts = line.split(None, 1)
        cmd = cmd_parts[0].lower()
        cmd_arg = cmd_parts[1] if len(cmd_parts) > 1 else ""

        if cmd == "/help":
            _repl_help()
        elif cmd == "/login":
            _repl_login(session, cmd_arg, ask_secret)
        elif cmd == "/model":
            _repl_model(session, cmd_arg)
        elif cmd == "/clear":
            _repl_clear(session)
        elif cmd == "/reasoning":
            _repl_reasoning(observer)
        elif cmd == "/stats":
            _repl_stats(session, observer, proxy)
        elif cmd == "/continue":
            fmt.info("continuing agent loop...")
            _run(session.continue_turn)
        else:
            _run(lambda: session.chat(line))
