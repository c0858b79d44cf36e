"""Tool definitions, registry and built-in implementations."""

import json
import logging
import os
import subprocess
import sys
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from .conversation import ToolCall, ToolResult

logger = logging.getLogger(__name__)


class ToolRisk(Enum):
    """How much harm a tool can do, which decides how it is gated."""

    READ_ONLY = "read_only"
    MUTATING = "mutating"
    DANGEROUS = "dangerous"


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    parameters: dict
    handler: Callable[..., str]
    risk: ToolRisk = ToolRisk.MUTATING

    def schema(self) -> dict:
        """OpenAI function-calling schema for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Name -> Tool mapping that validates and executes calls.

    Handlers return a string. A string starting with ``error:`` or a raised
    exception is reported back to the model as a failed result.
    """

    def __init__(self, tools=()):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"tool {tool.name!r} is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def schemas(self) -> list[dict]:
        return [t.schema() for t in self._tools.values()]

    def risk_of(self, name: str) -> ToolRisk:
        tool = self._tools.get(name)
        # Unknown tools never reach execution, but be strict anyway.
        return tool.risk if tool else ToolRisk.DANGEROUS

    def parse_arguments(self, call: ToolCall) -> tuple[dict | None, str | None]:
        """Validate a model-issued call. Returns (arguments, error)."""
        tool = self._tools.get(call.name)
        if tool is None:
            available = ", ".join(self.names()) or "(none)"
            return None, f"unknown tool {call.name!r}. Available tools: {available}"

        raw = call.arguments
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            raw = "{}"
        try:
            args = json.loads(raw) if isinstance(raw, str) else raw
        except json.JSONDecodeError as e:
            return None, f"invalid JSON in tool arguments: {e}"
        if not isinstance(args, dict):
            return None, (
                f"tool arguments must be a JSON object, got {type(args).__name__}"
            )

        missing = [
            key for key in tool.parameters.get("required", []) if key not in args
        ]
        if missing:
            return None, f"missing required argument(s): {', '.join(missing)}"

        properties = tool.parameters.get("properties", {})
        for key, value in args.items():
            expected = properties.get(key, {}).get("type")
            if expected and not _matches_type(value, expected):
                return None, (
                    f"argument {key!r} expected {expected}, got {type(value).__name__}"
                )
        return args, None

    def execute(self, call_id: str, name: str, arguments: dict) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.failure(call_id, name, f"unknown tool {name!r}")
        try:
            output = tool.handler(**arguments)
        except Exception as e:
            logger.debug("tool %s raised", name, exc_info=True)
            return ToolResult.failure(call_id, name, f"{type(e).__name__}: {e}")
        if not isinstance(output, str):
            output = json.dumps(output, default=str)
        if output.startswith("error:"):
            return ToolResult.failure(call_id, name, output[len("error:") :].strip())
        return ToolResult.success(call_id, name, output)


_JSON_TYPES: dict[str, type | tuple[type, ...]] = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "array": list,
    "object": dict,
}


def _matches_type(value: Any, expected: str) -> bool:
    py_type = _JSON_TYPES.get(expected)
    if py_type is None:
        return True
    # bool is a subclass of int in Python; reject it for numeric fields.
    if isinstance(value, bool) and expected != "boolean":
        return False
    return isinstance(value, py_type)


# ---------------------------------------------------------------------------
# Built-in tools
# ---------------------------------------------------------------------------

MAX_OUTPUT_BYTES = 50 * 1024  # 50 KB
MAX_LINE_LENGTH = 2000
BINARY_CHECK_BYTES = 8 * 1024  # 8 KB
MAX_LIST_RESULTS = 100
MAX_TIMEOUT = 120
_KILL_WAIT_TIMEOUT = 5


def safe_resolve(file_path: str, base_dir: str) -> Path:
    """Resolve a file path, ensuring it stays within base_dir.

    Raises:
        ValueError: If the resolved path escapes the base directory.
    """
    base = Path(base_dir).resolve()
    if Path(file_path).is_absolute():
        resolved = Path(file_path).resolve()
    else:
        resolved = (base / file_path).resolve()

    if resolved.is_relative_to(base):
        return resolved
    raise ValueError(
        f"Path {file_path!r} resolves to {resolved}, "
        f"which is outside base directory {base}"
    )


def _read_file(
    file_path: str, base_dir: str, offset: int = 1, limit: int = 2000
) -> str:
    """Read a file with line numbers, or list a directory."""
    try:
        resolved = safe_resolve(file_path, base_dir)
    except ValueError as exc:
        return f"error: {exc}"

    if not resolved.exists():
        return f"error: path does not exist: {file_path}"

    if resolved.is_dir():
        try:
            names = [
                child.name + ("/" if child.is_dir() else "")
                for child in sorted(resolved.iterdir())
            ]
        except PermissionError as exc:
            return f"error: {exc}"
        return "\n".join(names) if names else "(empty directory)"

    try:
        with open(resolved, "rb") as f:
            chunk = f.read(BINARY_CHECK_BYTES)
    except PermissionError as exc:
        return f"error: {exc}"
    if b"\x00" in chunk:
        return f"error: binary file detected: {file_path}"

    try:
        text = resolved.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        return f"error: failed to decode {file_path} as UTF-8: {exc}"

    lines = text.splitlines()
    start = max(offset - 1, 0)
    selected = lines[start : start + limit]

    output_parts = []
    total_bytes = 0
    for i, line in enumerate(selected, start=start + 1):
        numbered = f"{i}: {line[:MAX_LINE_LENGTH]}"
        encoded_len = len(numbered.encode("utf-8")) + 1
        if total_bytes + encoded_len > MAX_OUTPUT_BYTES:
            break
        output_parts.append(numbered)
        total_bytes += encoded_len

    remaining = len(lines) - (start + len(output_parts))
    result = "\n".join(output_parts)
    if remaining > 0:
        next_offset = start + len(output_parts) + 1
        result += f"\n[{remaining} more lines, use offset={next_offset} to continue]"
    return result


def _list_files(pattern: str, base_dir: str, path: str = ".") -> str:
    """Recursively list files matching a glob pattern, newest first."""
    if Path(pattern).is_absolute() or ".." in Path(pattern).parts:
        return f"error: pattern {pattern!r} must be relative and must not contain '..'"
    try:
        root = safe_resolve(path, base_dir)
    except ValueError as exc:
        return f"error: {exc}"
    if not root.is_dir():
        return f"error: path is not a directory: {path}"

    base = Path(base_dir).resolve()
    matched = [
        p
        for p in root.glob(pattern)
        if p.is_file() and ".git" not in p.relative_to(root).parts
    ]
    if not matched:
        return "No files matched the pattern."

    matched.sort(key=lambda f: f.stat().st_mtime, reverse=True)
    truncated = len(matched) > MAX_LIST_RESULTS
    result = "\n".join(str(p.relative_to(base)) for p in matched[:MAX_LIST_RESULTS])
    if truncated:
        result += (
            f"\n(Results truncated: showing first {MAX_LIST_RESULTS} results. "
            "Use a more specific pattern or path.)"
        )
    return result


def _write_file(file_path: str, content: str, base_dir: str) -> str:
    """Create or overwrite a file with content."""
    try:
        resolved = safe_resolve(file_path, base_dir)
    except ValueError as exc:
        return f"error: {exc}"
    if resolved.is_dir():
        return f"error: path is a directory: {file_path}"

    resolved.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8")
    resolved.write_bytes(data)
    return f"Wrote {len(data)} bytes to {file_path}"


def _edit_file(
    file_path: str,
    old_string: str,
    new_string: str,
    base_dir: str,
    replace_all: bool = False,
) -> str:
    """Replace old_string with new_string in an existing file."""
    try:
        resolved = safe_resolve(file_path, base_dir)
    except ValueError as exc:
        return f"error: {exc}"
    if not resolved.is_file():
        return f"error: file does not exist: {file_path}"
    if not old_string:
        return "error: old_string must not be empty"

    try:
        content = resolved.read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError) as exc:
        return f"error: {exc}"

    count = content.count(old_string)
    if count == 0:
        return f"error: old_string not found in {file_path}"
    if count > 1 and not replace_all:
        return (
            f"error: old_string occurs {count} times in {file_path}; "
            "add surrounding context or set replace_all=true"
        )

    if replace_all:
        new_content = content.replace(old_string, new_string)
    else:
        new_content = content.replace(old_string, new_string, 1)
    resolved.write_text(new_content, encoding="utf-8")
    return f"Edited {file_path} ({count if replace_all else 1} replacement(s))"


def _delete_file(file_path: str, base_dir: str) -> str:
    """Delete a single file (never a directory)."""
    try:
        resolved = safe_resolve(file_path, base_dir)
    except ValueError as exc:
        return f"error: {exc}"
    if resolved == Path(base_dir).resolve():
        return "error: refusing to delete the base directory"
    if not resolved.exists():
        return f"error: path does not exist: {file_path}"
    if resolved.is_dir():
        return f"error: {file_path} is a directory; only files can be deleted"
    resolved.unlink()
    return f"Deleted {file_path}"


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill a process and its descendants, then wait for exit."""
    if sys.platform != "win32":
        import signal

        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            pass  # already exited
    try:
        proc.kill()
    except OSError:
        pass
    try:
        proc.wait(timeout=_KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.warning("process %d did not exit after SIGKILL", proc.pid)


def _capture_process(proc: subprocess.Popen, timeout: int) -> str:
    """Capture output from a running subprocess with timeout enforcement."""
    output_chunks: list[bytes] = []
    output_total = 0
    truncated = False

    def _reader():
        nonlocal output_total, truncated
        try:
            while True:
                chunk = proc.stdout.read(4096)
                if not chunk:
                    break
                if truncated:
                    continue  # keep draining to prevent pipe backpressure
                remaining = MAX_OUTPUT_BYTES - output_total
                output_chunks.append(chunk[:remaining])
                output_total += len(output_chunks[-1])
                if output_total >= MAX_OUTPUT_BYTES:
                    truncated = True
        except (OSError, ValueError):
            pass  # pipe closed after kill

    reader_thread = threading.Thread(target=_reader, daemon=True)
    reader_thread.start()

    timed_out = False
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_process_tree(proc)
    except BaseException:
        _kill_process_tree(proc)
        reader_thread.join(timeout=2)
        proc.stdout.close()
        raise

    reader_thread.join(timeout=2)
    proc.stdout.close()

    raw_output = b"".join(output_chunks).decode("utf-8", errors="replace")
    parts: list[str] = []
    if timed_out:
        parts.append(f"error: command timed out after {timeout}s")
    elif proc.returncode != 0:
        parts.append(f"Exit code: {proc.returncode}")
    if raw_output:
        parts.append(raw_output)
    if truncated:
        parts.append(f"[output truncated at {MAX_OUTPUT_BYTES // 1024}KB]")
    return "\n".join(parts) if parts else "(no output)"


def _run_command(command: str, base_dir: str, timeout: int = 30) -> str:
    """Execute a shell string via sh -c (Unix) or cmd.exe /c (Windows)."""
    if not command.strip():
        return "error: command is empty"
    base_path = Path(base_dir)
    if not base_path.is_dir():
        return f"error: base directory does not exist: {base_dir}"

    timeout = max(1, min(timeout, MAX_TIMEOUT))
    if sys.platform == "win32":
        shell_cmd = ["cmd.exe", "/c", command]
    else:
        shell_cmd = ["/bin/sh", "-c", command]

    popen_kwargs: dict = dict(
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        cwd=base_dir,
    )
    if sys.platform != "win32":
        popen_kwargs["start_new_session"] = True
    try:
        proc = subprocess.Popen(shell_cmd, **popen_kwargs)
    except OSError as e:
        return f"error: failed to start shell command: {e}"

    return _capture_process(proc, timeout)


def default_registry(base_dir: str = ".") -> ToolRegistry:
    """Build the registry of built-in tools bound to base_dir."""

    def read_file(file_path: str, offset: int = 1, limit: int = 2000) -> str:
        return _read_file(file_path, base_dir, offset=offset, limit=limit)

    def list_files(pattern: str, path: str = ".") -> str:
        return _list_files(pattern, base_dir, path=path)

    def write_file(file_path: str, content: str) -> str:
        return _write_file(file_path, content, base_dir)

    def edit_file(
        file_path: str, old_string: str, new_string: str, replace_all: bool = False
    ) -> str:
        return _edit_file(
            file_path, old_string, new_string, base_dir, replace_all=replace_all
        )

    def delete_file(file_path: str) -> str:
        return _delete_file(file_path, base_dir)

    def run_command(command: str, timeout: int = 30) -> str:
        return _run_command(command, base_dir, timeout=timeout)

    return ToolRegistry(
        [
            Tool(
                name="read_file",
                description=(
                    "Read the contents of a file or list a directory. "
                    "For files, returns lines prefixed with line numbers. "
                    "Use offset/limit to paginate."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "file_path": {
                            "type": "string",
                            "description": "Path to the file or directory to read.",
                        },
                        "offset": {
                            "type": "integer",
                            "description": "1-based line number to start reading from.",
                            "default": 1,
                        },
                        "limit": {
                            "type": "integer",
                            "description": "Maximum number of lines to return.",
                            "default": 2000,
                        },
                    },
                    "required": ["file_path"],
                },
                handler=read_file,
                risk=ToolRisk.READ_ONLY,
            ),
            Tool(
                name="list_files",
                description=(
                    "Recursively list files matching a glob pattern "
                    '(e.g. "**/*.py"), newest first.'
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "pattern": {
                            "type": "string",
                            "description": "Glob pattern relative to path.",
                        },
                        "path": {
                            "type": "string",
                            "description": "Directory to search from. Defaults to the base directory.",
                            "default": ".",
                        },
                    },
                    "required": ["pattern"],
                },
                handler=list_files,
                risk=ToolRisk.READ_ONLY,
            ),
            Tool(
                name="write_file",
                description=(
                    "Create or overwrite a file with the given content, "
                    "creating parent directories as needed."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "file_path": {
                            "type": "string",
                            "description": "Path to the file to write.",
                        },
                        "content": {
                            "type": "string",
                            "description": "The content to write to the file.",
                        },
                    },
                    "required": ["file_path", "content"],
                },
                handler=write_file,
                risk=ToolRisk.MUTATING,
            ),
            Tool(
                name="edit_file",
                description=(
                    "Make a targeted edit to an existing file by replacing "
                    "old_string with new_string. old_string must be unique "
                    "unless replace_all is set."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "file_path": {
                            "type": "string",
                            "description": "Path to the file to edit.",
                        },
                        "old_string": {
                            "type": "string",
                            "description": "The exact text to find and replace.",
                        },
                        "new_string": {
                            "type": "string",
                            "description": "The replacement text.",
                        },
                        "replace_all": {
                            "type": "boolean",
                            "description": "Replace all occurrences.",
                            "default": False,
                        },
                    },
                    "required": ["file_path", "old_string", "new_string"],
                },
                handler=edit_file,
                risk=ToolRisk.MUTATING,
            ),
            Tool(
                name="delete_file",
                description="Delete a single file. Directories are never deleted.",
                parameters={
                    "type": "object",
                    "properties": {
                        "file_path": {
                            "type": "string",
                            "description": "Path to the file to delete.",
                        },
                    },
                    "required": ["file_path"],
                },
                handler=delete_file,
                risk=ToolRisk.DANGEROUS,
            ),
            Tool(
                name="run_command",
                description=(
                    "Run a shell command in the base directory and return its "
                    "combined stdout/stderr. Supports pipes, redirects, && etc."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "command": {
                            "type": "string",
                            "description": 'Shell command string, e.g. "ls -la | head".',
                        },
                        "timeout": {
                            "type": "integer",
                            "description": f"Timeout in seconds (1-{MAX_TIMEOUT}). Defaults to 30.",
                            "default": 30,
                        },
                    },
                    "required": ["command"],
                },
                handler=run_command,
                risk=ToolRisk.DANGEROUS,
            ),
        ]
    )
