"""
UniChat Profile - Implementation Contracts

This module provides the pieces a logic contract needs to run behind the
proxy: the call context carrying the original caller and a handle on the
proxy's storage, the exported-function markers, the initializer guard, the
owner capability check and the catalog that maps implementation addresses to
logic classes.
"""

import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, Field

from .exceptions import (
    AlreadyInitialized, InvalidAddressError, NotAuthorized,
    ProxyError, StorageLayoutError, UnknownImplementation
)
from .storage import STATE_SECTION


logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')

MUTABILITY_ATTR = "__proxy_mutability__"


def normalize_address(value: Any, allow_zero: bool = True) -> str:
    """Validate an account address and return its lowercase form."""
    if not isinstance(value, str) or not _ADDRESS_PATTERN.match(value):
        raise InvalidAddressError(f"Invalid address: {value!r}")

    address = value.lower()
    if not allow_zero and address == ZERO_ADDRESS:
        raise InvalidAddressError("Zero address is not allowed")
    return address


def derive_address(seed: str) -> str:
    """Derive a deterministic 20-byte address from a seed string."""
    return "0x" + hashlib.sha256(seed.encode('utf-8')).hexdigest()[:40]


def external(func: Callable) -> Callable:
    """Export a state-changing function through the proxy."""
    setattr(func, MUTABILITY_ATTR, "nonpayable")
    return func


def view(func: Callable) -> Callable:
    """Export a read-only function through the proxy."""
    setattr(func, MUTABILITY_ATTR, "view")
    return func


class EventRecord(BaseModel):
    """Event emitted by a committed call."""

    sequence: int = Field(default=0, ge=0)
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    sender: str
    implementation: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ImplementationState(BaseModel):
    """Storage fields every implementation shares. Subclasses append to them."""

    initialized_version: int = Field(default=0, ge=0)
    owner: str = Field(default=ZERO_ADDRESS)


class CallContext:
    """Caller context and storage handle for a single forwarded call."""

    def __init__(
        self,
        sender: str,
        document: Dict[str, Any],
        implementation: str,
        catalog: "ImplementationCatalog"
    ):
        self.sender = normalize_address(sender)
        self.document = document
        self.implementation = implementation
        self.catalog = catalog
        self.events: List[EventRecord] = []
        self.new_implementation: Optional[str] = None

    @property
    def storage(self) -> Dict[str, Any]:
        return self.document[STATE_SECTION]

    def emit(self, name: str, **args: Any) -> EventRecord:
        """Record an event. It is persisted only if the call commits."""
        event = EventRecord(
            name=name,
            args=args,
            sender=self.sender,
            implementation=self.implementation
        )
        self.events.append(event)
        logger.debug(f"Event {name} {args}")
        return event

    def set_implementation(self, address: str) -> None:
        self.new_implementation = address


class Implementation:
    """
    Base class for logic contracts executed behind an UpgradeableProxy.

    Subclasses declare STATE_MODEL, a pydantic model of their storage, and
    export functions with the ``external`` and ``view`` decorators. The
    instance works on a parsed copy of the proxy's state and writes it back
    through ``commit`` when the call succeeds.
    """

    STATE_MODEL: Type[ImplementationState] = ImplementationState
    VERSION: int = 1

    def __init__(self, ctx: CallContext):
        self.ctx = ctx
        self.state = self.STATE_MODEL.model_validate(ctx.storage)

    @property
    def sender(self) -> str:
        return self.ctx.sender

    @classmethod
    def address(cls) -> str:
        return derive_address(f"{cls.__module__}:{cls.__qualname__}")

    @classmethod
    def storage_layout(cls) -> List[str]:
        """Ordered storage field names."""
        return list(cls.STATE_MODEL.model_fields)

    @classmethod
    def exported_functions(cls) -> Dict[str, str]:
        """Map exported function names to their mutability."""
        exported = {}
        for name in dir(cls):
            if name.startswith('_'):
                continue
            mutability = getattr(getattr(cls, name), MUTABILITY_ATTR, None)
            if mutability is not None:
                exported[name] = mutability
        return exported

    def commit(self) -> None:
        """Write the state back into the proxy's storage."""
        self.ctx.document[STATE_SECTION] = self.state.model_dump(mode="json")

    def _emit(self, name: str, **args: Any) -> EventRecord:
        return self.ctx.emit(name, **args)

    def _initializer(self, version: int = 1) -> None:
        """Guard an initializer so it runs once per version."""
        if self.state.initialized_version >= version:
            raise AlreadyInitialized(
                f"Contract already initialized (version {self.state.initialized_version})"
            )
        self.state.initialized_version = version
        self._emit("Initialized", version=version)

    def _require_owner(self) -> None:
        """Capability check: only the privileged owner may proceed."""
        if self.sender != self.state.owner:
            raise NotAuthorized(f"Account {self.sender} is not the owner")

    @view
    def version(self) -> int:
        return self.VERSION

    @view
    def owner(self) -> str:
        return self.state.owner

    @external
    def transfer_ownership(self, new_owner: str) -> None:
        """Hand the owner capability to another account."""
        self._require_owner()
        new_owner = normalize_address(new_owner, allow_zero=False)
        previous = self.state.owner
        self.state.owner = new_owner
        self._emit("OwnershipTransferred", previous_owner=previous, new_owner=new_owner)

    @external
    def upgrade_to(self, new_implementation: str) -> None:
        """Install a new logic contract behind the proxy."""
        self._require_owner()
        address = normalize_address(new_implementation)
        target = self.ctx.catalog.resolve(address)
        check_layout_compatible(type(self), target)

        self.ctx.set_implementation(address)
        self._emit("Upgraded", implementation=address)


def check_layout_compatible(current: Type[Implementation], target: Type[Implementation]) -> None:
    """Require ``target`` to keep every field of ``current`` in place."""
    current_layout = current.storage_layout()
    target_layout = target.storage_layout()

    if target_layout[:len(current_layout)] != current_layout:
        raise StorageLayoutError(
            f"{target.__name__} does not preserve the storage layout of "
            f"{current.__name__}: {current_layout} -> {target_layout}"
        )


class ImplementationCatalog:
    """Registry of logic contracts keyed by implementation address."""

    def __init__(self, implementations: Optional[List[Type[Implementation]]] = None):
        self._implementations: Dict[str, Type[Implementation]] = {}
        for implementation in implementations or []:
            self.register(implementation)

    def register(self, implementation: Type[Implementation]) -> str:
        """Register a logic class and return its address."""
        address = implementation.address()
        existing = self._implementations.get(address)
        if existing is not None and existing is not implementation:
            raise ProxyError(f"Address {address} already registered to {existing.__name__}")

        self._implementations[address] = implementation
        return address

    def resolve(self, address: str) -> Type[Implementation]:
        """Get the logic class installed at an address."""
        implementation = self._implementations.get(address.lower())
        if implementation is None:
            raise UnknownImplementation(f"No implementation at address {address}")
        return implementation

    def __contains__(self, address: str) -> bool:
        return address.lower() in self._implementations

    def list_implementations(self) -> List[Dict[str, Any]]:
        """Describe every registered implementation."""
        return [
            {
                'address': address,
                'name': implementation.__name__,
                'version': implementation.VERSION,
                'functions': sorted(implementation.exported_functions()),
            }
            for address, implementation in self._implementations.items()
        ]
