"""
UniChat Profile - Registry Schema Models

This module defines the Pydantic models for profiles, their read views,
field-level updates and the registry storage layout held by the proxy.
"""

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from proxy.implementation import ImplementationState


_ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')


def _validate_address(v: str) -> str:
    if not _ADDRESS_PATTERN.match(v):
        raise ValueError('Address must be 0x followed by 40 hex characters')
    return v.lower()


class Profile(BaseModel):
    """Profile record stored for a minted token."""

    token_id: int = Field(..., gt=0, description="Token identifier")
    owner: str = Field(..., description="Holder address")
    name: str = Field(default="", description="Display name")
    description: str = Field(default="", description="Free-form bio")
    avatar_cid: str = Field(default="", description="Explicit avatar content reference")
    token_uri: str = Field(default="", description="Metadata pointer")
    use_default_avatar: bool = Field(default=False, description="Track the registry default avatar")

    @field_validator('owner')
    @classmethod
    def validate_owner(cls, v):
        """Validate owner address format."""
        return _validate_address(v)

    def resolve_avatar(self, default_avatar_cid: str) -> str:
        """
        Resolve the avatar shown for this profile.

        A default-tracking profile without an explicit override follows the
        registry default at read time.
        """
        if self.use_default_avatar and not self.avatar_cid:
            return default_avatar_cid
        return self.avatar_cid

    def to_view(self, default_avatar_cid: str) -> "ProfileView":
        return ProfileView(
            token_id=self.token_id,
            owner=self.owner,
            name=self.name,
            description=self.description,
            avatar_cid=self.resolve_avatar(default_avatar_cid),
            token_uri=self.token_uri,
        )


class ProfileView(BaseModel):
    """Read-only view of a profile with its avatar resolved."""

    model_config = ConfigDict(frozen=True)

    token_id: int
    owner: str
    name: str
    description: str
    avatar_cid: str
    token_uri: str


class ProfileUpdate(BaseModel):
    """
    Field-level profile update.

    Each field is either kept (None) or replaced with the given string, which
    may legitimately be empty.
    """

    name: Optional[str] = None
    description: Optional[str] = None
    avatar_cid: Optional[str] = None
    token_uri: Optional[str] = None

    @classmethod
    def from_legacy(
        cls,
        name: str = "",
        description: str = "",
        avatar_cid: str = "",
        token_uri: str = ""
    ) -> "ProfileUpdate":
        """Build an update from the empty-string-means-unchanged convention."""
        return cls(
            name=name or None,
            description=description or None,
            avatar_cid=avatar_cid or None,
            token_uri=token_uri or None,
        )

    def changed_fields(self) -> List[str]:
        return [field for field, value in self if value is not None]

    def apply(self, profile: Profile) -> Profile:
        """Apply replacements to ``profile`` in place."""
        for field in self.changed_fields():
            setattr(profile, field, getattr(self, field))
        return profile


class RegistryState(ImplementationState):
    """Registry storage layout. New fields may only be appended."""

    name: str = Field(default="", description="Collection name")
    symbol: str = Field(default="", description="Collection symbol")
    default_avatar_cid: str = Field(default="", description="Fallback avatar reference")
    next_token_id: int = Field(default=1, ge=1, description="Next token ID to assign")
    owner_to_token_id: Dict[str, int] = Field(default_factory=dict)
    profiles: Dict[int, Profile] = Field(default_factory=dict)
    balances: Dict[str, int] = Field(default_factory=dict)

    def get_profile(self, token_id: int) -> Optional[Profile]:
        """Get an active profile by token ID."""
        return self.profiles.get(token_id)

    def token_of(self, owner: str) -> Optional[int]:
        """Get the token ID held by an address."""
        return self.owner_to_token_id.get(owner.lower())

    def add_profile(self, profile: Profile) -> None:
        """Record a newly minted profile in both mappings."""
        if profile.owner in self.owner_to_token_id:
            raise ValueError(f"Owner {profile.owner} already holds a profile")
        if profile.token_id in self.profiles:
            raise ValueError(f"Token {profile.token_id} already exists")

        self.profiles[profile.token_id] = profile
        self.owner_to_token_id[profile.owner] = profile.token_id
        self.balances[profile.owner] = self.balances.get(profile.owner, 0) + 1

    def remove_profile(self, token_id: int) -> Profile:
        """Clear a profile from both mappings."""
        profile = self.profiles.pop(token_id)
        self.owner_to_token_id.pop(profile.owner, None)

        remaining = self.balances.get(profile.owner, 0) - 1
        if remaining > 0:
            self.balances[profile.owner] = remaining
        else:
            self.balances.pop(profile.owner, None)
        return profile
