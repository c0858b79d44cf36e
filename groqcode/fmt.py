"""ANSI-formatted stderr output using Rich."""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)

MAX_PREVIEW = 2000


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Tool calls --------------------------------------------------------------


def tool_start(name: str, args_json: str) -> None:
    header = Text()
    header.append("  ▶ ", style="bold magenta")
    header.append(name, style="bold magenta")
    _console.print(header)
    if args_json:
        for line in args_json.splitlines():
            _console.print(Text(f"    {line}", style="dim"))


def tool_result(name: str, preview: str) -> None:
    _console.print(Text(f"  ✓ {name}", style="green"))
    if preview:
        if len(preview) > MAX_PREVIEW:
            preview = preview[:MAX_PREVIEW] + "\n... (truncated)"
        for line in preview.splitlines():
            _console.print(Text(f"    {line}", style="dim"))


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


def tool_refused(name: str) -> None:
    _console.print(Text(f"  ✗ {name}  denied", style="yellow"))


def approval_request(name: str, args_json: str) -> None:
    line = Text()
    line.append("  ? ", style="bold yellow")
    line.append(f"Permission needed to run {name}", style="yellow")
    _console.print(line)
    for arg_line in args_json.splitlines():
        _console.print(Text(f"    {arg_line}", style="yellow"))


# -- Model output ------------------------------------------------------------


def reasoning(text: str) -> None:
    line = Text()
    line.append("  [reasoning] ", style="cyan")
    line.append(text, style="dim italic")
    _console.print(line)


def assistant_text(text: str) -> None:
    line = Text()
    line.append("  [assistant] ", style="blue")
    line.append(text, style="dim")
    _console.print(line)


def usage(prompt_tokens: int, completion_tokens: int, total_tokens: int) -> None:
    _console.print(
        Text(
            f"  tokens: prompt={prompt_tokens}, completion={completion_tokens}, "
            f"total={total_tokens}",
            style="dim",
        )
    )


def iteration_limit(limit: int) -> None:
    _console.print(
        Text(f"  ⚠ Reached the limit of {limit} tool iterations", style="yellow")
    )


# -- Command recommendation --------------------------------------------------


def recommendation(command: str, reason: str) -> None:
    _console.print(Rule("Command", style="blue"))
    for line in command.splitlines():
        _console.print(Text(f"  {line}", style="bold magenta"))
    _console.print(Rule("Reason", style="blue"))
    for line in reason.splitlines():
        _console.print(Text(f"  {line}", style="magenta"))
    _console.print(Rule(style="blue"))


# -- Diagnostics -------------------------------------------------------------


def model_info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def context_stats(label: str, tokens: int) -> None:
    _console.print(Text(f"  {label}: ~{tokens} tokens", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def repl_banner(model: str) -> None:
    _console.print(Rule(f"groq  model: {escape(model)}", style="cyan"))
    _console.print(
        Text("Interactive mode. Type /help for commands, /q or Ctrl-D to quit.", style="dim")
    )
