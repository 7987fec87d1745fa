"""
Unit tests for registry schema models.
"""

import pytest
from pydantic import ValidationError

from registry.schema import Profile, ProfileUpdate, ProfileView, RegistryState


OWNER = "0x" + "b2" * 20


def make_profile(**overrides):
    fields = {
        'token_id': 1,
        'owner': OWNER,
        'name': "Huahua",
        'description': "builder",
        'avatar_cid': "",
        'token_uri': "ipfs://QmMeta",
        'use_default_avatar': True,
    }
    fields.update(overrides)
    return Profile(**fields)


class TestProfile:
    """Test profile model validation and avatar resolution."""

    def test_profile_creation(self):
        profile = make_profile()

        assert profile.token_id == 1
        assert profile.owner == OWNER
        assert profile.use_default_avatar

    def test_owner_is_lowercased(self):
        profile = make_profile(owner="0x" + "B2" * 20)

        assert profile.owner == OWNER

    def test_invalid_owner_rejected(self):
        with pytest.raises(ValidationError):
            make_profile(owner="0x1234")

    def test_token_id_must_be_positive(self):
        with pytest.raises(ValidationError):
            make_profile(token_id=0)

    def test_default_avatar_resolution(self):
        profile = make_profile()

        assert profile.resolve_avatar("QmDefault") == "QmDefault"
        assert profile.resolve_avatar("QmOther") == "QmOther"

    def test_explicit_avatar_wins(self):
        profile = make_profile(avatar_cid="QmMine")

        assert profile.resolve_avatar("QmDefault") == "QmMine"

    def test_custom_empty_avatar_stays_empty(self):
        profile = make_profile(use_default_avatar=False)

        assert profile.resolve_avatar("QmDefault") == ""

    def test_to_view(self):
        view = make_profile().to_view("QmDefault")

        assert view == ProfileView(
            token_id=1,
            owner=OWNER,
            name="Huahua",
            description="builder",
            avatar_cid="QmDefault",
            token_uri="ipfs://QmMeta",
        )

    def test_view_is_frozen(self):
        view = make_profile().to_view("QmDefault")

        with pytest.raises(ValidationError):
            view.name = "changed"


class TestProfileUpdate:
    """Test keep-or-replace updates."""

    def test_none_keeps_fields(self):
        update = ProfileUpdate(description="new")
        profile = update.apply(make_profile())

        assert update.changed_fields() == ["description"]
        assert profile.name == "Huahua"
        assert profile.description == "new"

    def test_empty_string_replaces(self):
        profile = ProfileUpdate(name="").apply(make_profile())

        assert profile.name == ""

    def test_from_legacy_maps_empty_to_keep(self):
        update = ProfileUpdate.from_legacy("", "X", "", "")

        assert update.name is None
        assert update.description == "X"
        assert update.changed_fields() == ["description"]

    def test_changed_fields_order(self):
        update = ProfileUpdate(token_uri="u", name="n")

        assert update.changed_fields() == ["name", "token_uri"]


class TestRegistryState:
    """Test the registry storage model."""

    def test_defaults(self):
        state = RegistryState()

        assert state.next_token_id == 1
        assert state.initialized_version == 0
        assert state.profiles == {}

    def test_add_and_remove_profile(self):
        state = RegistryState()
        state.add_profile(make_profile())

        assert state.token_of(OWNER) == 1
        assert state.token_of(OWNER.upper().replace("0X", "0x")) == 1
        assert state.balances == {OWNER: 1}

        removed = state.remove_profile(1)

        assert removed.token_id == 1
        assert state.token_of(OWNER) is None
        assert state.get_profile(1) is None
        assert state.balances == {}

    def test_duplicate_owner_rejected(self):
        state = RegistryState()
        state.add_profile(make_profile())

        with pytest.raises(ValueError):
            state.add_profile(make_profile(token_id=2))

    def test_duplicate_token_rejected(self):
        state = RegistryState()
        state.add_profile(make_profile())

        with pytest.raises(ValueError):
            state.add_profile(make_profile(owner="0x" + "c3" * 20))

    def test_state_survives_json_storage(self):
        """Integer token keys come back as integers after a JSON dump."""
        state = RegistryState(name="UniChat Profile", symbol="UCHP")
        state.add_profile(make_profile())

        restored = RegistryState.model_validate(state.model_dump(mode="json"))

        assert restored.get_profile(1) == state.get_profile(1)
        assert restored.owner_to_token_id == {OWNER: 1}

    def test_next_token_id_must_be_positive(self):
        with pytest.raises(ValidationError):
            RegistryState(next_token_id=0)
