"""
Date helpers for Stripe timestamps and billing anchors.

Stripe sends and accepts times as Unix epoch seconds.
"""

from __future__ import annotations

import datetime as dt

from django.utils import timezone

from madrasa.core.exceptions import ValidationError

MAX_BILLING_ANCHOR_DAYS = 365


def from_timestamp(value: int | None) -> dt.datetime | None:
    if value is None:
        return None
    return dt.datetime.fromtimestamp(int(value), tz=dt.UTC)


def to_timestamp(value: dt.datetime) -> int:
    return int(value.timestamp())


def billing_cycle_anchor(start_date: dt.date | dt.datetime) -> int:
    """
    Convert a billing start date to a ``billing_cycle_anchor`` timestamp.

    Plain dates anchor at midnight in the project time zone.

    Raises:
        ValidationError: If the anchor is not in the future or is more than
            a year away.
    """
    if isinstance(start_date, dt.datetime):
        start = start_date if timezone.is_aware(start_date) else timezone.make_aware(start_date)
    else:
        start = timezone.make_aware(dt.datetime.combine(start_date, dt.time.min))

    anchor = to_timestamp(start)
    validate_billing_cycle_anchor(anchor)
    return anchor


def validate_billing_cycle_anchor(anchor: int) -> None:
    now = to_timestamp(timezone.now())
    if anchor <= now:
        raise ValidationError("Billing start date must be in the future")
    if anchor > now + MAX_BILLING_ANCHOR_DAYS * 24 * 60 * 60:
        raise ValidationError("Billing start date must be within 1 year")
