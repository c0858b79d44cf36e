"""Terminal agent for Groq-hosted models with human-approved tool calls."""

from .approval import ApprovalDecision, ApprovalScope
from .errors import AgentError, ConfigError, ModelCallError
from .events import CallbackObserver, SessionObserver
from .session import AgentSession, SessionConfig, TurnResult, UsageStats

__all__ = [
    "AgentError",
    "AgentSession",
    "ApprovalDecision",
    "ApprovalScope",
    "CallbackObserver",
    "ConfigError",
    "ModelCallError",
    "SessionConfig",
    "SessionObserver",
    "TurnResult",
    "UsageStats",
]
