"""
UniChat Profile - Upgradeable Proxy

This module provides the forwarding shell that owns durable storage and runs
every call against whichever logic contract is currently installed in its
implementation slot, keeping the original caller as the call's sender.
"""

import logging
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, List, Optional, Tuple, Type

from .exceptions import ProfileRegistryError, ProxyError, UnknownFunction
from .implementation import (
    CallContext, EventRecord, Implementation, ImplementationCatalog,
    normalize_address
)
from .storage import EVENT_INDEX, EVENT_LOG, IMPLEMENTATION_SLOT, ProxyStorage


logger = logging.getLogger(__name__)


def encode_call(function: str, *args: Any, **kwargs: Any) -> Dict[str, Any]:
    """Encode a function call as an initialization payload."""
    return {'function': function, 'args': list(args), 'kwargs': kwargs}


class UpgradeableProxy:
    """Storage-owning shell that delegates calls to the installed implementation."""

    def __init__(self, storage: ProxyStorage, catalog: ImplementationCatalog):
        self.storage = storage
        self.catalog = catalog
        self._lock = RLock()

    @classmethod
    def deploy(
        cls,
        storage: ProxyStorage,
        catalog: ImplementationCatalog,
        implementation: str,
        init_payload: Optional[Dict[str, Any]] = None,
        deployer: Optional[str] = None
    ) -> "UpgradeableProxy":
        """
        Install an implementation and run its initialization payload.

        Both steps land in a single write: if the initializer fails, the
        storage is left exactly as it was.

        Args:
            storage: Empty proxy storage
            catalog: Catalog the implementation address resolves against
            implementation: Address of the logic contract to install
            init_payload: Call produced by ``encode_call``, run as ``deployer``
            deployer: Account deploying the proxy

        Returns:
            Proxy bound to the storage
        """
        proxy = cls(storage, catalog)
        address = normalize_address(implementation)
        catalog.resolve(address)

        if init_payload is not None and deployer is None:
            raise ProxyError("An initialization payload needs a deployer account")

        def apply(document: Dict[str, Any]) -> Any:
            if document[IMPLEMENTATION_SLOT]:
                raise ProxyError(
                    f"Storage already has an implementation at {document[IMPLEMENTATION_SLOT]['address']}"
                )

            document[IMPLEMENTATION_SLOT] = {
                'address': address,
                'updated_at': datetime.now(timezone.utc).isoformat(),
                'history': [address],
            }

            if init_payload is None:
                return None
            return proxy._execute(
                document, deployer, init_payload['function'],
                tuple(init_payload.get('args', ())), init_payload.get('kwargs', {})
            )

        with proxy._lock:
            storage.transact(apply)

        logger.info(f"Deployed proxy at {storage.storage_dir} with implementation {address}")
        return proxy

    def _resolve(self, document: Dict[str, Any]) -> Tuple[str, Type[Implementation]]:
        slot = document[IMPLEMENTATION_SLOT]
        if not slot:
            raise ProxyError("Proxy has not been deployed")
        return slot['address'], self.catalog.resolve(slot['address'])

    def _execute(
        self,
        document: Dict[str, Any],
        sender: str,
        function: str,
        args: tuple,
        kwargs: Dict[str, Any]
    ) -> Any:
        """Run one function of the installed implementation against ``document``."""
        address, implementation = self._resolve(document)
        mutability = implementation.exported_functions().get(function)
        if mutability is None:
            raise UnknownFunction(f"{implementation.__name__} does not export {function}")

        ctx = CallContext(sender, document, address, self.catalog)
        instance = implementation(ctx)
        result = getattr(instance, function)(*args, **kwargs)

        if mutability == "view":
            return result

        instance.commit()

        for event in ctx.events:
            event.sequence = ProxyStorage.next_event_sequence(document)
            document[EVENT_LOG].append(event.model_dump(mode="json"))

        if ctx.new_implementation is not None:
            slot = document[IMPLEMENTATION_SLOT]
            slot['address'] = ctx.new_implementation
            slot['updated_at'] = datetime.now(timezone.utc).isoformat()
            slot['history'].append(ctx.new_implementation)
            logger.info(f"Upgraded implementation {address} -> {ctx.new_implementation}")

        return result

    def call(self, sender: str, function: str, *args: Any, **kwargs: Any) -> Any:
        """
        Forward a call from ``sender`` to the installed implementation.

        View functions read storage and never write. Every other function
        commits its state changes, events and implementation-slot changes in
        one atomic write, or raises and leaves storage untouched.
        """
        with self._lock:
            document = self.storage.load()
            _, implementation = self._resolve(document)
            mutability = implementation.exported_functions().get(function)
            if mutability is None:
                raise UnknownFunction(f"{implementation.__name__} does not export {function}")

            if mutability == "view":
                return self._execute(document, sender, function, args, kwargs)

            try:
                result = self.storage.transact(
                    lambda doc: self._execute(doc, sender, function, args, kwargs),
                    create_backup=(function == "upgrade_to")
                )
            except ProfileRegistryError as e:
                logger.info(f"Reverted {function} from {sender}: {type(e).__name__}: {e}")
                raise

            logger.debug(f"Committed {function} from {sender}")
            return result

    def connect(self, account: str) -> "ProxyClient":
        """Bind a client that sends every call as ``account``."""
        return ProxyClient(self, account)

    def implementation(self) -> str:
        """Address of the installed implementation."""
        address, _ = self._resolve(self.storage.load())
        return address

    def implementation_history(self) -> List[str]:
        slot = self.storage.get_implementation_slot()
        return list(slot['history']) if slot else []

    def events(self, name: Optional[str] = None) -> List[EventRecord]:
        """List emitted events, optionally filtered by name."""
        records = [EventRecord.model_validate(e) for e in self.storage.read_events()]
        if name:
            records = [r for r in records if r.name == name]
        return records

    def info(self) -> Dict[str, Any]:
        """Summarize the deployment."""
        document = self.storage.load()
        address, implementation = self._resolve(document)
        return {
            'implementation': address,
            'implementation_name': implementation.__name__,
            'implementation_version': implementation.VERSION,
            'upgrades': len(document[IMPLEMENTATION_SLOT]['history']) - 1,
            'event_count': document[EVENT_INDEX]['count'],
            'storage': self.storage.get_storage_info(),
        }


class ProxyClient:
    """Caller-bound handle: attribute access forwards to the proxy as ``account``."""

    def __init__(self, proxy: UpgradeableProxy, account: str):
        self.proxy = proxy
        self.account = normalize_address(account)

    def __getattr__(self, function: str):
        if function.startswith('_'):
            raise AttributeError(function)

        def forward(*args: Any, **kwargs: Any) -> Any:
            return self.proxy.call(self.account, function, *args, **kwargs)

        forward.__name__ = function
        return forward

    def __repr__(self) -> str:
        return f"ProxyClient(account={self.account!r})"
