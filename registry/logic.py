"""
UniChat Profile - Profile Registry Logic

This module provides the logic contracts installed behind the proxy. Each
address may hold at most one profile token. Profiles are minted, updated
field by field and burned here. Token IDs are never reused.
"""

import logging
from typing import Optional

from proxy.exceptions import InvalidAddressError
from proxy.implementation import (
    ZERO_ADDRESS, Implementation, ImplementationCatalog,
    external, normalize_address, view
)

from .exceptions import AlreadyHasProfile, NotOwner, ProfileNotFound
from .schema import Profile, ProfileUpdate, ProfileView, RegistryState


logger = logging.getLogger(__name__)


class ProfileRegistry(Implementation):
    """Profile token registry, first logic version."""

    STATE_MODEL = RegistryState
    VERSION = 1

    state: RegistryState

    def _require_profile(self, token_id: int) -> Profile:
        profile = self.state.get_profile(token_id)
        if profile is None:
            raise ProfileNotFound(f"Profile {token_id} does not exist")
        return profile

    def _require_holder(self, token_id: int) -> Profile:
        profile = self._require_profile(token_id)
        if profile.owner != self.sender:
            raise NotOwner(f"Account {self.sender} does not own profile {token_id}")
        return profile

    @external
    def initialize(
        self,
        name: str,
        symbol: str,
        default_avatar_cid: str,
        initial_owner: str
    ) -> None:
        """
        One-time setup of collection metadata, default avatar and owner.

        Raises:
            AlreadyInitialized: If the registry has been initialized before
            InvalidAddressError: If ``initial_owner`` is malformed or zero
        """
        self._initializer(1)
        self.state.owner = normalize_address(initial_owner, allow_zero=False)
        self.state.name = name
        self.state.symbol = symbol
        self.state.default_avatar_cid = default_avatar_cid
        self._emit("OwnershipTransferred", previous_owner=ZERO_ADDRESS, new_owner=self.state.owner)

    @external
    def mint_profile(
        self,
        name: str,
        description: str,
        use_default_avatar: bool,
        avatar_cid_or_empty: str,
        token_uri: str
    ) -> int:
        """
        Mint the caller's profile token.

        With ``use_default_avatar`` the profile tracks the registry default
        and ``avatar_cid_or_empty`` is ignored. Otherwise the given avatar is
        stored verbatim, empty meaning no avatar.

        Returns:
            The new token ID

        Raises:
            AlreadyHasProfile: If the caller already holds a profile
            InvalidAddressError: If the caller is the zero address
        """
        owner = normalize_address(self.sender, allow_zero=False)
        existing = self.state.token_of(owner)
        if existing is not None:
            raise AlreadyHasProfile(f"Account {owner} already holds profile {existing}")

        token_id = self.state.next_token_id
        self.state.next_token_id += 1

        profile = Profile(
            token_id=token_id,
            owner=owner,
            name=name,
            description=description,
            avatar_cid="" if use_default_avatar else avatar_cid_or_empty,
            token_uri=token_uri,
            use_default_avatar=use_default_avatar,
        )
        self.state.add_profile(profile)

        self._emit("Transfer", from_address=ZERO_ADDRESS, to_address=owner, token_id=token_id)
        self._emit("ProfileMinted", token_id=token_id, owner=owner)
        logger.debug(f"Minted profile {token_id} for {owner}")
        return token_id

    @external
    def update_profile(
        self,
        token_id: int,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        avatar_cid: Optional[str] = None,
        token_uri: Optional[str] = None
    ) -> None:
        """
        Replace selected profile fields. None keeps a field unchanged.

        Fields are keyword-only: the positional form with empty strings for
        unchanged fields is ``update_profile_legacy``.

        Raises:
            ProfileNotFound: If the token does not exist
            NotOwner: If the caller does not hold the token
        """
        update = ProfileUpdate(
            name=name,
            description=description,
            avatar_cid=avatar_cid,
            token_uri=token_uri,
        )
        self._apply_update(token_id, update)

    @external
    def update_profile_legacy(
        self,
        token_id: int,
        new_name: str,
        new_description: str,
        new_avatar_cid: str,
        new_token_uri: str
    ) -> None:
        """Update where an empty string leaves the field unchanged."""
        update = ProfileUpdate.from_legacy(new_name, new_description, new_avatar_cid, new_token_uri)
        self._apply_update(token_id, update)

    def _apply_update(self, token_id: int, update: ProfileUpdate) -> None:
        profile = self._require_holder(token_id)
        update.apply(profile)
        self._emit("ProfileUpdated", token_id=token_id, fields=update.changed_fields())

    @external
    def burn_profile(self, token_id: int) -> None:
        """
        Destroy the caller's profile. The token ID is retired for good.

        Raises:
            ProfileNotFound: If the token does not exist
            NotOwner: If the caller does not hold the token
        """
        profile = self._require_holder(token_id)
        self.state.remove_profile(token_id)

        self._emit("Transfer", from_address=profile.owner, to_address=ZERO_ADDRESS, token_id=token_id)
        self._emit("ProfileBurned", token_id=token_id, owner=profile.owner)

    @external
    def set_default_avatar_cid(self, default_avatar_cid: str) -> None:
        """Change the fallback avatar seen by default-tracking profiles."""
        self._require_owner()
        previous = self.state.default_avatar_cid
        self.state.default_avatar_cid = default_avatar_cid
        self._emit("DefaultAvatarChanged", previous=previous, current=default_avatar_cid)

    @view
    def get_profile(self, token_id: int) -> ProfileView:
        return self._require_profile(token_id).to_view(self.state.default_avatar_cid)

    @view
    def has_profile(self, account: str) -> bool:
        """Whether ``account`` holds a profile. Malformed addresses hold none."""
        try:
            account = normalize_address(account)
        except InvalidAddressError:
            return False
        return self.state.token_of(account) is not None

    @view
    def token_of_owner(self, account: str) -> int:
        token_id = self.state.token_of(normalize_address(account))
        if token_id is None:
            raise ProfileNotFound(f"Account {account} holds no profile")
        return token_id

    @view
    def owner_of(self, token_id: int) -> str:
        return self._require_profile(token_id).owner

    @view
    def balance_of(self, account: str) -> int:
        return self.state.balances.get(normalize_address(account), 0)

    @view
    def token_uri(self, token_id: int) -> str:
        return self._require_profile(token_id).token_uri

    @view
    def name(self) -> str:
        return self.state.name

    @view
    def symbol(self) -> str:
        return self.state.symbol

    @view
    def default_avatar_cid(self) -> str:
        return self.state.default_avatar_cid

    @view
    def total_supply(self) -> int:
        """Number of active profiles."""
        return len(self.state.profiles)

    @view
    def next_token_id(self) -> int:
        return self.state.next_token_id


class ProfileRegistryV2(ProfileRegistry):
    """Second logic version: same storage, adds a lookup by holder."""

    VERSION = 2

    @view
    def profile_of(self, account: str) -> ProfileView:
        return self.get_profile(self.token_of_owner(account))


def default_catalog() -> ImplementationCatalog:
    """Catalog holding the built-in registry versions."""
    return ImplementationCatalog([ProfileRegistry, ProfileRegistryV2])
