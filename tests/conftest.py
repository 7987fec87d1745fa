"""
Pytest configuration and fixtures for UniChat Profile tests.
"""

import pytest

from proxy.storage import ProxyStorage
from registry.deployment import deploy_profile_registry
from registry.logic import default_catalog


DEFAULT_AVATAR = "QmDefaultAvatarCid_XXXX"

OWNER = "0x" + "a1" * 20
USER = "0x" + "b2" * 20
OTHER = "0x" + "c3" * 20


@pytest.fixture
def accounts():
    """Deployer/owner, profile user and an unrelated account."""
    return {"owner": OWNER, "user": USER, "other": OTHER}


@pytest.fixture
def storage_dir(tmp_path):
    """Directory holding the proxy's storage."""
    return tmp_path / "registry"


@pytest.fixture
def proxy_storage(storage_dir):
    """Empty proxy storage."""
    return ProxyStorage(storage_dir)


@pytest.fixture
def catalog():
    """Catalog with the built-in registry versions."""
    return default_catalog()


@pytest.fixture
def registry_proxy(storage_dir):
    """Deployed and initialized profile registry proxy."""
    return deploy_profile_registry(
        storage_dir,
        deployer=OWNER,
        default_avatar_cid=DEFAULT_AVATAR,
        name="UniChat Profile",
        symbol="UCHP",
    )


@pytest.fixture
def owner_client(registry_proxy):
    return registry_proxy.connect(OWNER)


@pytest.fixture
def user_client(registry_proxy):
    return registry_proxy.connect(USER)


@pytest.fixture
def other_client(registry_proxy):
    return registry_proxy.connect(OTHER)


@pytest.fixture
def minted_profile(user_client):
    """Profile minted by the user with the default avatar."""
    token_id = user_client.mint_profile(
        "Huahua",
        "BSC/Arb UniChat builder",
        True,
        "",
        "ipfs://QmMetadataCid_123",
    )
    return token_id


# Test markers for different test categories
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "concurrency: mark test as a concurrency test"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers based on test paths and names."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)

        if "concurrent" in item.name or "thread" in item.name:
            item.add_marker(pytest.mark.concurrency)
