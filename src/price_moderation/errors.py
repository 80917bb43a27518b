"""
Error kinds raised by the moderation core.

Every error carries a short ``kind`` string so that request boundaries
(the Datasette routes, the CLI) can report it without inspecting classes.
"""


class CatalogError(Exception):
    """Base class for all recoverable moderation errors."""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidInput(CatalogError):
    """Malformed identifier, non-positive price or missing field."""

    kind = "invalid_input"


class NotFound(CatalogError):
    """Referenced contribution, client or blacklist entry is absent."""

    kind = "not_found"


class Forbidden(CatalogError):
    """Blocked client, or a principal without the required role."""

    kind = "forbidden"


class AlreadyDecided(CatalogError):
    """The contribution has already been approved or rejected."""

    kind = "already_decided"


class Conflict(CatalogError):
    """Registration refused (blacklisted contact, duplicate login or email)."""

    kind = "conflict"


class Unavailable(CatalogError):
    """The persistence layer could not be reached. Callers may retry."""

    kind = "unavailable"
