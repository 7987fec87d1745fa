"""
UniChat Profile - Deployment Helpers

Deploys the registry behind a fresh proxy, running the initializer in the
proxy's own storage, and reopens existing deployments.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from proxy.core import UpgradeableProxy, encode_call
from proxy.implementation import ImplementationCatalog
from proxy.storage import ProxyStorage

from .logic import ProfileRegistry, default_catalog


logger = logging.getLogger(__name__)

DEFAULT_NAME = "UniChat Profile"
DEFAULT_SYMBOL = "UCHP"
DEFAULT_AVATAR_CID = "QmDefaultAvatarCid"


def deploy_profile_registry(
    storage_dir: Union[str, Path],
    deployer: str,
    default_avatar_cid: str = DEFAULT_AVATAR_CID,
    name: str = DEFAULT_NAME,
    symbol: str = DEFAULT_SYMBOL,
    initial_owner: Optional[str] = None,
    implementation: Optional[str] = None,
    catalog: Optional[ImplementationCatalog] = None,
    compressed: bool = False,
    backup_count: int = 5,
    lock_timeout: float = 30.0
) -> UpgradeableProxy:
    """
    Deploy a profile registry proxy and initialize it.

    Args:
        storage_dir: Directory for the proxy's storage
        deployer: Account deploying the proxy
        default_avatar_cid: Fallback avatar for default-tracking profiles
        name: Collection name
        symbol: Collection symbol
        initial_owner: Privileged upgrader (defaults to the deployer)
        implementation: Logic address to install (defaults to ProfileRegistry)
        catalog: Implementation catalog (defaults to the built-in versions)

    Returns:
        Deployed proxy
    """
    catalog = catalog or default_catalog()
    storage = ProxyStorage(
        storage_dir,
        compressed=compressed,
        backup_count=backup_count,
        lock_timeout=lock_timeout
    )

    init_payload = encode_call(
        "initialize", name, symbol, default_avatar_cid, initial_owner or deployer
    )
    proxy = UpgradeableProxy.deploy(
        storage,
        catalog,
        implementation or ProfileRegistry.address(),
        init_payload=init_payload,
        deployer=deployer
    )
    logger.info(f"Profile registry {symbol} deployed to {storage_dir}")
    return proxy


def open_profile_registry(
    storage_dir: Union[str, Path],
    catalog: Optional[ImplementationCatalog] = None,
    compressed: bool = False,
    backup_count: int = 5,
    lock_timeout: float = 30.0
) -> UpgradeableProxy:
    """Open an existing profile registry deployment."""
    storage = ProxyStorage(
        storage_dir,
        compressed=compressed,
        backup_count=backup_count,
        lock_timeout=lock_timeout
    )
    return UpgradeableProxy(storage, catalog or default_catalog())
