"""
Application errors for clean API error handling.

Use ServiceUnavailableError when a dependency (vector store, embeddings, LLM)
is misconfigured or unreachable so the API can return 503 with a user-facing message.
Agent errors are raised by the loop and its entry points; the API maps them to 400/500.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. vector store, embeddings API) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AgentError(Exception):
    """Base class for failures surfaced by the agent to its caller."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidQueryError(AgentError, ValueError):
    """Query or thread id rejected before the loop starts."""


class ModelCapabilityError(AgentError):
    """The model call failed during an agent step (provider error, timeout, bad response)."""


class CheckpointStoreError(AgentError):
    """The checkpoint store could not be built or read."""
