"""voxstream exception hierarchy.

All voxstream-specific exceptions inherit from VoxStreamError.
"""

from __future__ import annotations


class VoxStreamError(Exception):
    """Base exception for all voxstream errors."""


class StreamError(VoxStreamError):
    """The response stream could not be opened or read."""


class StreamRequestError(StreamError):
    """The outgoing query is invalid and was never sent."""


class StreamHTTPError(StreamError):
    """The agent service answered with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by the service.
        body: Response body text (truncated).
    """

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body[:500]
        super().__init__(f"API request failed: {status_code} {self.body}".rstrip())


class SessionError(VoxStreamError):
    """Base for session reconciliation errors."""


class SessionCreateError(SessionError):
    """Creating a chat session failed.

    Carries the text the user tried to send so the front end can put it
    back into the input field.
    """

    def __init__(self, unsent_text: str = "", reason: str = "") -> None:
        self.unsent_text = unsent_text
        self.reason = reason
        message = "Failed to create chat session"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SessionStateError(SessionError):
    """An illegal session transition was requested."""

    def __init__(self, current: str, attempted: str) -> None:
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot move from {current} to {attempted}")
