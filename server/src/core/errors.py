from __future__ import annotations

from typing import Optional


class DashboardError(Exception):
    """Base class for failures raised while aggregating node data."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class SourceUnreachable(DashboardError):
    """A node could not be reached or answered with a non-success status."""


class MalformedResponse(DashboardError):
    """A node answered, but the payload could not be decoded into the expected shape."""
