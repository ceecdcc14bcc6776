"""
Errors raised by the re-identification core.

"No match above threshold" is not an error: it is the normal outcome that
leads to a new identity being created.
"""


class IdentityMatcherError(Exception):
    """Base class for identity matcher failures."""


class InvalidVectorError(IdentityMatcherError, ValueError):
    """Feature vector is empty, non-finite, all-zero or has the wrong dimension."""


class IdentityNotFoundError(IdentityMatcherError, KeyError):
    """Reference to a global ID the registry has never known."""

    def __init__(self, global_id: str):
        super().__init__(global_id)
        self.global_id = global_id

    def __str__(self) -> str:
        return f"Identity {self.global_id} not found"
