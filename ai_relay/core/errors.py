"""
Domain exceptions for AI Relay.

Validation problems are plain ValueErrors; these cover the failures
callers are expected to handle explicitly.
"""


class RelayError(Exception):
    """Base class for AI Relay errors."""


class UsageRecordError(RelayError):
    """Raised when a usage record could not be made durable.

    Losing a record corrupts later free-tier decisions, so this is never
    swallowed by the quota tracker.
    """

    def __init__(self, message: str, backend_name: str, attempts: int):
        super().__init__(message)
        self.backend_name = backend_name
        self.attempts = attempts


class NoBackendAvailableError(RelayError):
    """Raised by the chat pipeline when no backend can serve a capability."""

    def __init__(self, capability: str):
        super().__init__(
            f"No configured backend supports '{capability}'. "
            "Set an API key for at least one backend and try again."
        )
        self.capability = capability


class BackendNotAvailableError(RelayError):
    """Raised when a backend requested by name is not configured or reachable."""

    def __init__(self, backend_name: str):
        super().__init__(f'Backend "{backend_name}" is not available')
        self.backend_name = backend_name
