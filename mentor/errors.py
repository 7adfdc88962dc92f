from __future__ import annotations

from typing import List, Optional


class MentorError(Exception):
    status_code = 500
    # set by TurnCoordinator when a chat turn fails
    stage: Optional[str] = None
    trace: Optional[List[str]] = None


class InvalidRequest(MentorError):
    """Missing or malformed caller input."""
    status_code = 400


class NotFound(MentorError):
    """Referenced user does not exist."""


class StoreUnavailable(MentorError):
    """Persistence layer unreachable or the query failed."""


class ModelUnavailable(MentorError):
    """Generation call failed, timed out or returned nothing usable."""
