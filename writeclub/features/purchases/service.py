"""
Purchase recording.

The payment collaborator reports completed payments; each becomes one
purchases row. Bonus fields extend the buyer's limits for the calendar month
of purchase_date. Redelivered events (same external_ref) are returned as-is.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError

from writeclub.core.clock import resolve_now
from writeclub.core.database import get_db_session, purchases, as_utc
from writeclub.core.errors import ValidationError
from writeclub.features.limits.service import BONUS_FIELDS, QUOTA_PACK_BONUS
from writeclub.models.purchase import PurchaseRecord

logger = logging.getLogger("writeclub.purchases")

PURCHASE_TYPES = ("quota_pack", "individual_story")


def _row_to_purchase(row) -> PurchaseRecord:
    return PurchaseRecord(
        id=row.id,
        user_id=row.user_id,
        purchase_type=row.purchase_type,
        amount=row.amount,
        purchase_date=as_utc(row.purchase_date),
        stories_added=row.stories_added,
        assessments_added=row.assessments_added,
        attempts_added=row.attempts_added,
        entries_added=row.entries_added,
        external_ref=row.external_ref,
    )


def get_purchase_by_ref(external_ref: str) -> Optional[PurchaseRecord]:
    with get_db_session() as session:
        row = session.execute(select(purchases).where(purchases.c.external_ref == external_ref)).first()
    return _row_to_purchase(row) if row else None


def record_purchase(
    user_id: str,
    purchase_type: str,
    amount,
    *,
    purchase_date: Optional[datetime] = None,
    stories_added: Optional[int] = None,
    assessments_added: Optional[int] = None,
    attempts_added: Optional[int] = None,
    entries_added: Optional[int] = None,
    external_ref: Optional[str] = None,
) -> PurchaseRecord:
    """
    Store a completed purchase.

    quota_pack purchases without explicit bonuses get QUOTA_PACK_BONUS.
    Negative bonuses are rejected here; compute_limits trusts stored rows.
    """
    if purchase_type not in PURCHASE_TYPES:
        raise ValidationError(f"Unknown purchase type: {purchase_type}", code="invalid_purchase_type")
    try:
        amount_value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid amount: {amount}", code="invalid_amount") from e
    if amount_value < 0:
        raise ValidationError("Amount must be >= 0", code="invalid_amount")

    bonuses = {
        "stories_added": stories_added,
        "assessments_added": assessments_added,
        "attempts_added": attempts_added,
        "entries_added": entries_added,
    }
    if purchase_type == "quota_pack" and all(v is None for v in bonuses.values()):
        bonuses = dict(QUOTA_PACK_BONUS)
    for field_name in BONUS_FIELDS:
        value = bonuses[field_name]
        if value is not None and value < 0:
            raise ValidationError(
                f"{field_name} must not be negative",
                code="negative_bonus",
                details={"field": field_name, "value": value},
            )

    if external_ref:
        existing = get_purchase_by_ref(external_ref)
        if existing:
            logger.info("purchase.duplicate", extra={"user_id": user_id, "external_ref": external_ref})
            return existing

    when = resolve_now(purchase_date)
    try:
        with get_db_session() as session:
            result = session.execute(
                insert(purchases).values(
                    user_id=user_id,
                    purchase_type=purchase_type,
                    amount=amount_value,
                    purchase_date=when,
                    external_ref=external_ref,
                    created_at=datetime.now(timezone.utc),
                    **bonuses,
                )
            )
            purchase_id = result.inserted_primary_key[0]
    except IntegrityError:
        if external_ref:
            existing = get_purchase_by_ref(external_ref)
            if existing:
                return existing
        raise

    logger.info(
        "purchase.recorded",
        extra={"user_id": user_id, "purchase_type": purchase_type, "purchase_id": purchase_id},
    )
    return PurchaseRecord(
        id=purchase_id,
        user_id=user_id,
        purchase_type=purchase_type,
        amount=amount_value,
        purchase_date=when,
        external_ref=external_ref,
        **bonuses,
    )
