"""Tests for the user domain: creation, tiers and auto-creation on first request."""
from uuid import uuid4

import pytest

from writeclub.core.errors import NotFoundError, ValidationError
from writeclub.features.users.service import (
    get_or_create_user,
    get_user,
    get_user_tier,
    normalize_display_name,
    set_user_tier,
)
from writeclub.features.usage.service import peek


def test_get_or_create_idempotent():
    uid = f"user-{uuid4()}"
    u1 = get_or_create_user(uid)
    u2 = get_or_create_user(uid, tier="premium")
    assert u1.user_id == u2.user_id
    assert u2.tier == "free"


def test_display_name_normalization_deterministic():
    uid = "deterministic-user"
    handle1 = normalize_display_name(uid, None)
    handle2 = normalize_display_name(uid, "   ")
    assert handle1 == handle2
    assert handle1.startswith("@w_")
    assert normalize_display_name(uid, " Ada ") == "Ada"


def test_tier_change_raises_limits():
    get_or_create_user("upgrader")
    assert peek("upgrader", "2025-03").limits.stories_created == 3

    user = set_user_tier("upgrader", "basic")
    assert user.tier == "basic"
    assert get_user_tier("upgrader") == "basic"
    assert peek("upgrader", "2025-03").limits.stories_created == 30


def test_unknown_tier_rejected():
    get_or_create_user("tiered")
    with pytest.raises(ValidationError):
        set_user_tier("tiered", "platinum")
    with pytest.raises(ValidationError):
        get_or_create_user("new-user", tier="platinum")


def test_set_tier_for_missing_user():
    with pytest.raises(NotFoundError):
        set_user_tier("ghost", "basic")
    assert get_user_tier("ghost") == "free"


def test_api_requests_auto_create_users(client, frozen_clock):
    creator = f"creator-{uuid4()}"
    resp = client.get("/v1/usage", headers={"X-User-Id": creator})
    assert resp.status_code == 200

    user = get_user(creator)
    assert user is not None
    assert user.tier == "free"
