"""Suggest a single shell command for a goal, confirm it, then run it."""

import json
import logging
import re
import subprocess
from typing import Callable

from . import fmt
from .errors import AgentError
from .session import AgentSession
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

RECOMMEND_TEMPERATURE = 0.2
EXIT_DECLINED = 130

RECOMMEND_SYSTEM_PROMPT = "\n".join(
    [
        "You recommend shell commands for bash on a Linux system.",
        "Given a goal, propose the single safe command that achieves it most directly, with a short reason.",
        "Avoid destructive operations (deleting, overwriting, installing over the network, long-running daemons); "
        "add confirmation flags where appropriate.",
        "Keep the reason to one or two sentences.",
        'Output strictly this JSON and nothing else: {"cmd": "<command>", "reason": "<reason>"}',
    ]
)

_SEPARATORS = re.compile(r"\s*(&&|\|\||\||;)\s*")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def format_command(cmd: str) -> str:
    """Break a command line after each ``&&``, ``||``, ``|`` and ``;`` for display."""
    return _SEPARATORS.sub(lambda m: f" {m.group(1)}\n  ", cmd).strip()


def parse_recommendation(text: str) -> tuple[str, str]:
    """Extract (cmd, reason) from the model's reply.

    Accepts the bare JSON object or one wrapped in prose or a code fence.
    Raises ValueError when no usable object is found.
    """
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(text)
        if not match:
            raise ValueError("reply is not JSON") from None
        try:
            obj = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ValueError(f"reply is not JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ValueError("reply is not a JSON object")
    return str(obj.get("cmd") or "").strip(), str(obj.get("reason") or "").strip()


def _confirm(message: str) -> bool:
    from prompt_toolkit.shortcuts import confirm

    return confirm(message)


def run_recommendation(
    query: str,
    *,
    confirm: Callable[[str], bool] | None = None,
    **session_kwargs,
) -> int:
    """Ask the model for one command, show it, and run it if the user agrees.

    Returns the command's exit code, 1 on failure, or 130 when declined.
    """
    confirm = confirm or _confirm
    session_kwargs.setdefault("tools", ToolRegistry())
    try:
        session = AgentSession.create(
            temperature=RECOMMEND_TEMPERATURE,
            system_prompt=RECOMMEND_SYSTEM_PROMPT,
            **session_kwargs,
        )
    except AgentError as e:
        fmt.error(f"initialization failed: {e}")
        return 1

    try:
        return _recommend(session, query, confirm)
    finally:
        session.close()


def _recommend(session: AgentSession, query: str, confirm: Callable[[str], bool]) -> int:
    try:
        result = session.chat(f"Goal: {query}\nReply with exactly one JSON suggestion.")
    except AgentError as e:
        fmt.error(str(e))
        return 1

    if not result.answer:
        fmt.error("the model did not produce a suggestion")
        return 1

    try:
        cmd, reason = parse_recommendation(result.answer)
    except ValueError as e:
        fmt.error(f"malformed model output: {e}")
        fmt.info(result.answer)
        return 1
    if not cmd:
        fmt.error("the model did not produce a usable command")
        return 1

    fmt.recommendation(format_command(cmd), reason)
    try:
        approved = confirm("Run this command?")
    except (EOFError, KeyboardInterrupt):
        approved = False
    if not approved:
        fmt.warning("cancelled")
        return EXIT_DECLINED

    logger.info("running recommended command: %s", cmd)
    fmt.info(f"running: {cmd}")
    return subprocess.run(["bash", "-lc", cmd]).returncode
