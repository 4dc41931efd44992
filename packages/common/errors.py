"""Error taxonomy shared by the forum store and its HTTP surface.

- `ValidationError`: a required field is missing or empty (client fault).
- `NotFoundError`: a referenced post or reply does not exist (client fault).
- `BackendError`: the underlying store failed for infrastructure reasons (server fault).
"""

from __future__ import annotations


class ForumError(Exception):
    """Base class for every error raised by the forum core."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ForumError):
    """A required field is missing, not a string, or empty."""

    status_code = 400


class NotFoundError(ForumError):
    """A referenced entity does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: str | None = None) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class BackendError(ForumError):
    """The backing store is unreachable or an operation failed inside it."""

    status_code = 500
