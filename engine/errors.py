"""Error taxonomy shared by the client and the engine components."""

from __future__ import annotations

from typing import Optional


class ConsoleError(Exception):
    """Base class for every error the console engine raises."""


class NetworkError(ConsoleError):
    """The data service could not be reached; the operator may retry the action."""


class CancellationError(ConsoleError):
    """A request was superseded or torn down. Never shown to the operator."""


class ValidationError(ConsoleError):
    """Input was rejected before anything was sent to the server."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class ServerError(ConsoleError):
    """The data service answered with a non-2xx status."""

    def __init__(self, status_code: int, message: Optional[str] = None) -> None:
        self.status_code = status_code
        self.message = message or f"HTTP {status_code}"
        super().__init__(self.message)


class JobTimeoutError(ConsoleError, TimeoutError):
    """A background job did not reach a terminal state within its allowed number of status polls."""
