"""
Domain errors raised by the access-control engine.

The API layer maps each kind to a stable HTTP status; nothing here knows
about HTTP.
"""


class AccessControlError(Exception):
    """Base class for access-control domain errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AccessControlError):
    """A referenced permission, role or user does not exist."""


class DuplicateNameError(AccessControlError):
    """A create or update collides with an existing unique name."""


class AlreadyAssignedError(AccessControlError):
    """The link being created already exists."""


class NotAssignedError(AccessControlError):
    """The link being removed does not exist."""


class ReferentialError(AccessControlError):
    """A link references an endpoint that vanished before it was written."""
