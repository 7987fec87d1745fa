"""
UniChat Profile - Profile Registry Module

This module provides the profile token registry: one profile per address,
field-level updates, burns that retire token IDs, and live default avatars.
The logic runs behind an upgradeable proxy.
"""

from .exceptions import AlreadyHasProfile, NotOwner, ProfileNotFound
from .schema import Profile, ProfileUpdate, ProfileView, RegistryState
from .logic import ProfileRegistry, ProfileRegistryV2, default_catalog
from .deployment import (
    DEFAULT_AVATAR_CID,
    DEFAULT_NAME,
    DEFAULT_SYMBOL,
    deploy_profile_registry,
    open_profile_registry,
)

__all__ = [
    "AlreadyHasProfile",
    "NotOwner",
    "ProfileNotFound",
    "Profile",
    "ProfileUpdate",
    "ProfileView",
    "RegistryState",
    "ProfileRegistry",
    "ProfileRegistryV2",
    "default_catalog",
    "DEFAULT_AVATAR_CID",
    "DEFAULT_NAME",
    "DEFAULT_SYMBOL",
    "deploy_profile_registry",
    "open_profile_registry",
]
