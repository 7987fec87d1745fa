"""
UniChat Profile - Upgradeable Proxy Module

This module provides the storage-owning proxy shell that logic contracts run
behind, including:
- Durable JSON storage with a separate implementation slot
- Call forwarding that preserves the original caller
- One-time initialization and owner-gated upgrades
- The shared error taxonomy

Dependencies:
- pydantic: Storage models and event records
"""

from .exceptions import (
    ProfileRegistryError,
    PreconditionViolation,
    AuthorizationFailure,
    NotFound,
    AlreadyInitialized,
    InvalidAddressError,
    StorageLayoutError,
    NotAuthorized,
    UnknownImplementation,
    UnknownFunction,
    ProxyError,
)

from .storage import (
    ProxyStorage,
    JSONStorage,
    FileLock,
    StorageError,
    LockTimeoutError,
    IntegrityError,
)

from .implementation import (
    ZERO_ADDRESS,
    CallContext,
    EventRecord,
    Implementation,
    ImplementationCatalog,
    ImplementationState,
    check_layout_compatible,
    derive_address,
    external,
    normalize_address,
    view,
)

from .core import UpgradeableProxy, ProxyClient, encode_call

__all__ = [
    "ProfileRegistryError",
    "PreconditionViolation",
    "AuthorizationFailure",
    "NotFound",
    "AlreadyInitialized",
    "InvalidAddressError",
    "StorageLayoutError",
    "NotAuthorized",
    "UnknownImplementation",
    "UnknownFunction",
    "ProxyError",
    "ProxyStorage",
    "JSONStorage",
    "FileLock",
    "StorageError",
    "LockTimeoutError",
    "IntegrityError",
    "ZERO_ADDRESS",
    "CallContext",
    "EventRecord",
    "Implementation",
    "ImplementationCatalog",
    "ImplementationState",
    "check_layout_compatible",
    "derive_address",
    "external",
    "normalize_address",
    "view",
    "UpgradeableProxy",
    "ProxyClient",
    "encode_call",
]
