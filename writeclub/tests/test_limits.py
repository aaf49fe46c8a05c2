from datetime import datetime, timezone
from decimal import Decimal

import pytest

from writeclub.core.errors import ValidationError
from writeclub.features.limits.service import (
    QUOTA_PACK_BONUS,
    base_limits_for_tier,
    compute_limits,
    effective_limits_for,
    month_key_for,
    month_start_for,
)
from writeclub.features.purchases.service import record_purchase
from writeclub.models.purchase import PurchaseRecord
from writeclub.models.usage import EffectiveLimits

MARCH = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _purchase(when, **bonuses):
    return PurchaseRecord(
        user_id="u1",
        purchase_type="quota_pack",
        amount=Decimal("15.00"),
        purchase_date=when,
        **bonuses,
    )


def test_free_tier_base_limits():
    """Free tier: 3 stories, 9 assessments, 9 attempts, entry cap 3."""
    limits = base_limits_for_tier("free")
    assert limits.stories_created == 3
    assert limits.assessment_uploads == 9
    assert limits.total_assessment_attempts == 9
    assert limits.competition_entries == 3


def test_unknown_tier_falls_back_to_free():
    assert base_limits_for_tier("mystery") == base_limits_for_tier("free")


def test_quota_pack_adds_bonus_for_this_month():
    """A quota pack bought this month lifts 3/9/9 to 8/24/24."""
    purchases = [_purchase(datetime(2025, 3, 5, tzinfo=timezone.utc), **QUOTA_PACK_BONUS)]
    limits = compute_limits(base_limits_for_tier("free"), purchases, MARCH)
    assert limits.stories_created == 8
    assert limits.assessment_uploads == 24
    assert limits.total_assessment_attempts == 24
    assert limits.competition_entries == 3


def test_purchases_before_month_start_are_ignored():
    purchases = [_purchase(datetime(2025, 2, 28, 23, 59, tzinfo=timezone.utc), stories_added=5)]
    limits = compute_limits(base_limits_for_tier("free"), purchases, MARCH)
    assert limits.stories_created == 3


def test_purchase_exactly_at_month_start_counts():
    purchases = [_purchase(MARCH, stories_added=2)]
    assert compute_limits(base_limits_for_tier("free"), purchases, MARCH).stories_created == 5


def test_missing_bonus_fields_count_as_zero():
    purchases = [_purchase(datetime(2025, 3, 2, tzinfo=timezone.utc), stories_added=1)]
    limits = compute_limits(base_limits_for_tier("free"), purchases, MARCH)
    assert limits.stories_created == 4
    assert limits.assessment_uploads == 9


def test_unlimited_base_stays_unlimited():
    base = EffectiveLimits(
        stories_created=-1,
        assessment_uploads=9,
        competition_entries=3,
        total_assessment_attempts=9,
    )
    purchases = [_purchase(datetime(2025, 3, 2, tzinfo=timezone.utc), stories_added=5)]
    assert compute_limits(base, purchases, MARCH).stories_created == -1


def test_compute_limits_is_deterministic():
    purchases = [
        _purchase(datetime(2025, 3, 2, tzinfo=timezone.utc), stories_added=5, entries_added=1),
        _purchase(datetime(2025, 3, 20, tzinfo=timezone.utc), attempts_added=3),
    ]
    first = compute_limits(base_limits_for_tier("basic"), purchases, MARCH)
    second = compute_limits(base_limits_for_tier("basic"), purchases, MARCH)
    assert first == second
    assert first.competition_entries == 4
    assert first.total_assessment_attempts == 33


def test_month_key_helpers():
    assert month_key_for(datetime(2025, 3, 31, 23, 59, tzinfo=timezone.utc)) == "2025-03"
    assert month_start_for("2025-12") == datetime(2025, 12, 1, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        month_start_for("2025-13")


def test_effective_limits_reads_tier_and_month_purchases(make_user):
    make_user("buyer", tier="basic")
    record_purchase("buyer", "quota_pack", "15.00", purchase_date=datetime(2025, 3, 3, tzinfo=timezone.utc))
    record_purchase("buyer", "quota_pack", "15.00", purchase_date=datetime(2025, 4, 3, tzinfo=timezone.utc))

    march = effective_limits_for("buyer", "2025-03")
    assert march.stories_created == 35
    assert march.assessment_uploads == 45

    may = effective_limits_for("buyer", "2025-05")
    assert may.stories_created == 30
