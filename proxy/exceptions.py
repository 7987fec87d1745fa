"""
UniChat Profile - Error Taxonomy

This module defines the exception hierarchy shared by the proxy shell and the
logic contracts it forwards to. Every failure is reported by kind so callers
can branch on it.
"""


class ProfileRegistryError(Exception):
    """Base exception for all call failures."""
    pass


class PreconditionViolation(ProfileRegistryError):
    """Raised when a call is made in a state that does not allow it."""
    pass


class AuthorizationFailure(ProfileRegistryError):
    """Raised when the caller lacks the capability required by a call."""
    pass


class NotFound(ProfileRegistryError):
    """Raised when a call refers to something that does not exist."""
    pass


class AlreadyInitialized(PreconditionViolation):
    """Raised when an initializer runs a second time."""
    pass


class InvalidAddressError(PreconditionViolation):
    """Raised when an account address is malformed or the zero address."""
    pass


class StorageLayoutError(PreconditionViolation):
    """Raised when a new implementation would reinterpret existing storage."""
    pass


class NotAuthorized(AuthorizationFailure):
    """Raised when a non-owner attempts a privileged operation."""
    pass


class UnknownImplementation(NotFound):
    """Raised when an implementation address is not in the catalog."""
    pass


class UnknownFunction(NotFound):
    """Raised when a call targets a function the implementation does not export."""
    pass


class ProxyError(ProfileRegistryError):
    """Raised on proxy deployment misuse."""
    pass
