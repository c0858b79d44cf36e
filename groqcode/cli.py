"""Command-line entry point: ``groq``."""

import argparse
import logging
import os
import sys
from importlib import metadata
from pathlib import Path

from . import fmt
from .config import (
    APPROVAL_SCOPES,
    _UNSET,
    LocalSettings,
    apply_config_to_args,
    config_to_session_kwargs,
    generate_config,
    load_config,
)
from .errors import AgentError, ConfigError
from .recommend import run_recommendation
from .repl import TerminalObserver, _ask_secret, repl_loop
from .session import AgentSession

logger = logging.getLogger(__name__)

DEBUG_LOG = "debug-agent.log"
EXIT_STOPPED = 2


def setup_debug_log(path: str = DEBUG_LOG) -> logging.Handler:
    """Send DEBUG records from the groqcode package to ``path``."""
    pkg_logger = logging.getLogger("groqcode")
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    )
    pkg_logger.addHandler(handler)
    pkg_logger.setLevel(logging.DEBUG)
    return handler


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="groq",
        usage="%(prog)s [options] [query ...]\n       %(prog)s --recommend QUERY...",
        description="Chat with a tool-using Groq model from the terminal. "
        "Without a query, starts an interactive session.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "query",
        nargs="*",
        help="Run a single question and print the answer instead of starting the REPL.",
    )
    parser.add_argument(
        "--recommend",
        nargs="+",
        metavar="QUERY",
        default=None,
        help="Suggest one shell command for QUERY, confirm it, and run it.",
    )
    parser.add_argument(
        "-m",
        "--model",
        default=_UNSET,
        help="Model identifier (default: saved default or moonshotai/kimi-k2-instruct).",
    )
    parser.add_argument(
        "--save-model",
        action="store_true",
        help="Save the --model value as the default for future runs.",
    )
    parser.add_argument(
        "-t",
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: 1.0).",
    )
    parser.add_argument(
        "-s",
        "--system",
        default=_UNSET,
        metavar="PROMPT",
        help="System prompt for the session.",
    )
    parser.add_argument(
        "-p",
        "--proxy",
        default=_UNSET,
        metavar="URL",
        help="HTTP(S) proxy for requests to the model provider.",
    )
    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        default=_UNSET,
        help="Approve every tool call without asking, including the dangerous "
        "run_command and delete_file tools.",
    )
    parser.add_argument(
        "--approval-scope",
        choices=list(APPROVAL_SCOPES),
        default=_UNSET,
        help='What an "auto" approval covers: the same tool (default) '
        "or every tool of the same risk class.",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=_UNSET,
        metavar="N",
        help="Tool round trips per question before asking to continue (default: 50).",
    )
    parser.add_argument(
        "--reasoning",
        action="store_true",
        default=_UNSET,
        help="Show model reasoning.",
    )
    parser.add_argument(
        "--base-dir",
        default=_UNSET,
        help="Directory the built-in tools operate in (default: current directory).",
    )
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        default=_UNSET,
        help=f"Write a debug log to ./{DEBUG_LOG}.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented config template and exit.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )

    return parser


def main(argv: list[str] | None = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            version = metadata.version("groqcode")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config())
        sys.exit(0)

    if args.recommend and args.query:
        parser.error("--recommend cannot be combined with a query")

    config_dir = "." if args.base_dir is _UNSET else args.base_dir
    try:
        config = load_config(Path(config_dir))
    except ConfigError as e:
        fmt.error(str(e))
        sys.exit(1)
    apply_config_to_args(args, config)

    if args.max_iterations < 1:
        parser.error("--max-iterations must be at least 1")

    fmt.init(color=args.color, no_color=args.no_color)
    if args.debug:
        setup_debug_log()

    settings = LocalSettings()

    if args.recommend:
        sys.exit(
            run_recommendation(
                " ".join(args.recommend),
                model=args.model,
                proxy=args.proxy,
                settings=settings,
            )
        )

    try:
        sys.exit(_run_main(args, settings))
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


def _login_first(settings: LocalSettings) -> None:
    """Ask for an API key before the first interactive session."""
    fmt.warning("no Groq API key configured")
    try:
        key = _ask_secret("  Groq API key: ")
    except (EOFError, KeyboardInterrupt):
        raise ConfigError("no API key entered") from None
    settings.set_api_key(key)
    fmt.info(f"API key saved to {settings.path}")


def _run_main(args: argparse.Namespace, settings: LocalSettings) -> int:
    if args.save_model:
        if not args.model:
            raise ConfigError("--save-model requires --model")
        settings.set_default_model(args.model)
        fmt.info(f"default model saved: {args.model}")

    interactive = not args.query
    if (
        interactive
        and sys.stdin.isatty()
        and not (os.environ.get("GROQ_API_KEY") or settings.get_api_key())
    ):
        _login_first(settings)

    observer = TerminalObserver(show_reasoning=args.reasoning, show_usage=args.debug)
    session = AgentSession.create(
        observer=observer,
        settings=settings,
        **config_to_session_kwargs(args),
    )
    if args.debug:
        fmt.model_info(f"model: {session.get_current_model()}")

    try:
        return _run_session(session, observer, args, settings)
    finally:
        session.close()


def _run_session(
    session: AgentSession,
    observer: TerminalObserver,
    args: argparse.Namespace,
    settings: LocalSettings,
) -> int:
    if not args.query:
        repl_loop(
            session,
            observer,
            proxy=args.proxy or settings.get_proxy(),
            history_path=settings.path.parent / "repl_history",
        )
        return 0

    result = session.chat(" ".join(args.query))
    if result.answer:
        print(result.answer)
    if result.stopped:
        fmt.warning("stopped at the iteration limit")
        return EXIT_STOPPED
    return 0


if __name__ == "__main__":
    main()
