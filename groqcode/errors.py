"""Exception types shared by the session, client and CLI."""


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (missing API key, bad config file, etc.)."""


class ModelCallError(AgentError):
    """Raised when the model provider call fails (network, auth, bad request)."""
