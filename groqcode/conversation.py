"""Conversation log: messages, tool calls and tool results."""

import json
from dataclasses import dataclass, field

import tiktoken

_encoder = tiktoken.get_encoding("cl100k_base")


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    ``arguments`` is the raw JSON text the model produced. It is untrusted
    and must go through ``ToolRegistry.parse_arguments`` before use.
    """

    id: str
    name: str
    arguments: str

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool call: an output, an error, or a refusal."""

    tool_call_id: str
    name: str
    output: str | None = None
    error: str | None = None
    refused: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, tool_call_id: str, name: str, output: str) -> "ToolResult":
        return cls(tool_call_id=tool_call_id, name=name, output=output)

    @classmethod
    def failure(cls, tool_call_id: str, name: str, error: str) -> "ToolResult":
        return cls(tool_call_id=tool_call_id, name=name, error=error)

    @classmethod
    def refusal(cls, tool_call_id: str, name: str) -> "ToolResult":
        return cls(
            tool_call_id=tool_call_id,
            name=name,
            error=(
                f"the user denied permission to run `{name}`. "
                "Do not repeat the same call; explain what you wanted to do "
                "or choose a different approach."
            ),
            refused=True,
        )

    @property
    def content(self) -> str:
        """Text fed back to the model."""
        if self.error is not None:
            return f"error: {self.error}"
        return self.output or ""


@dataclass(frozen=True)
class Message:
    role: str
    content: str | None = None
    reasoning: str | None = None
    tool_calls: tuple[ToolCall, ...] = field(default_factory=tuple)
    tool_call_id: str | None = None
    refused: bool = False

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls,
        content: str | None,
        reasoning: str | None = None,
        tool_calls=(),
    ) -> "Message":
        return cls(
            role="assistant",
            content=content,
            reasoning=reasoning,
            tool_calls=tuple(tool_calls),
        )

    @classmethod
    def tool(cls, result: ToolResult) -> "Message":
        return cls(
            role="tool",
            content=result.content,
            tool_call_id=result.tool_call_id,
            refused=result.refused,
        )

    def to_api(self) -> dict:
        """Provider wire format. Reasoning and refusal flags stay local."""
        msg: dict = {"role": self.role, "content": self.content or ""}
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_api() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            msg["tool_call_id"] = self.tool_call_id
        return msg


class ConversationState:
    """Ordered message log forming the model's context.

    Append-only apart from ``clear()``, which goes back to the system prompt
    the state was created with (or to nothing).
    """

    def __init__(self, system_prompt: str | None = None):
        self.system_prompt = system_prompt
        self._messages: list[Message] = []
        self.clear()

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def snapshot(self) -> list[dict]:
        """Return a fresh list of provider-format dicts for the next request."""
        return [m.to_api() for m in self._messages]

    def clear(self) -> int:
        """Reset to the configured system prompt. Returns the number of messages dropped."""
        dropped = len(self._messages)
        self._messages = []
        if self.system_prompt:
            self._messages.append(Message.system(self.system_prompt))
            dropped -= 1
        return max(dropped, 0)

    def estimate_tokens(self, tools: list | None = None) -> int:
        """Count tokens across all messages using tiktoken."""
        total = 0
        for m in self._messages:
            content = m.content or ""
            for tc in m.tool_calls:
                content += tc.name + (tc.arguments or "")
            total += len(_encoder.encode(content))
        if tools:
            total += len(_encoder.encode(json.dumps(tools)))
        # Per-message overhead (role, separators), ~4 tokens each
        total += 4 * len(self._messages)
        return total
