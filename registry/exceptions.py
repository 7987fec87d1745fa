"""
UniChat Profile - Registry Exceptions

This module defines the failures raised by the profile registry logic.
"""

from proxy.exceptions import AuthorizationFailure, NotFound, PreconditionViolation


class AlreadyHasProfile(PreconditionViolation):
    """Raised when an account that already holds a profile tries to mint another."""
    pass


class NotOwner(AuthorizationFailure):
    """Raised when a caller acts on a profile held by another account."""
    pass


class ProfileNotFound(NotFound):
    """Raised when a token ID does not refer to an active profile."""
    pass
