"""
Condition evaluation for ``conditional`` action nodes.

``evaluate_condition`` is pure: one typed condition against one contact
snapshot.  ``evaluate_conditions`` folds a node's ordered condition list
with ``and`` / ``or`` short-circuiting, re-fetching the contact before each
condition because an earlier step of the same run may have mutated it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from autoflow.types import (
    BusinessHoursCondition,
    Condition,
    Contact,
    ContactFieldCondition,
    ContactTagCondition,
    ConversationWindowCondition,
)

logger = logging.getLogger(__name__)

_WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


# ── Single condition ──────────────────────────────────────────────────────────


def _field_value(contact: Contact, field: str) -> Any:
    """First-class attribute first, then custom field; None when absent."""
    if field in Contact.model_fields:
        return getattr(contact, field)
    return contact.custom_fields.get(field)


def _check_contact_field(condition: ContactFieldCondition, contact: Contact) -> bool:
    raw = _field_value(contact, condition.field)
    expected = condition.value.lower()
    if raw is None:
        # absent compares unequal to everything and contains nothing
        return condition.operator == "is_not"
    actual = str(raw).lower()
    if condition.operator == "is":
        return actual == expected
    if condition.operator == "is_not":
        return actual != expected
    return expected in actual


def in_business_hours(condition: BusinessHoursCondition, now: datetime) -> bool:
    """True when *now* falls on a listed weekday within [start_time, end_time].

    Times are compared as zero-padded ``HH:MM`` strings, inclusive at both
    ends, so 18:00 is inside an 09:00-18:00 window but 18:01 is not.
    """
    day = _WEEKDAYS[now.weekday()]
    current = now.strftime("%H:%M")
    return day in condition.days and condition.start_time <= current <= condition.end_time


def evaluate_condition(
    condition: Condition,
    contact: Contact,
    now: Optional[datetime] = None,
    timezone: str = "UTC",
) -> bool:
    """
    Evaluate one condition against a contact.

    Args:
        condition: Any member of the ``Condition`` union.
        contact:   Freshly fetched contact snapshot.
        now:       Clock override for ``business_hours``; aware datetimes are
                   converted into *timezone*, naive ones are used as-is.
        timezone:  IANA zone name the business-hours window is expressed in.
    """
    if isinstance(condition, ContactTagCondition):
        has_tag = condition.value in contact.tags
        return has_tag if condition.operator == "contains" else not has_tag

    if isinstance(condition, ContactFieldCondition):
        return _check_contact_field(condition, contact)

    if isinstance(condition, ConversationWindowCondition):
        is_open = contact.is_24h_window_open
        return is_open if condition.operator == "is_open" else not is_open

    if isinstance(condition, BusinessHoursCondition):
        zone = ZoneInfo(timezone)
        if now is None:
            local = datetime.now(zone)
        elif now.tzinfo is not None:
            local = now.astimezone(zone)
        else:
            local = now
        inside = in_business_hours(condition, local)
        return inside if condition.operator == "is_within" else not inside

    raise TypeError(f"Unsupported condition: {type(condition).__name__}")


# ── Condition groups ──────────────────────────────────────────────────────────


async def evaluate_conditions(
    logic: str,
    conditions: list[Condition],
    fetch_contact: Callable[[], Awaitable[Optional[Contact]]],
    now: Optional[datetime] = None,
    timezone: str = "UTC",
) -> bool:
    """
    Fold *conditions* under ``and`` / ``or`` with short-circuiting.

    ``and`` starts from True and stops at the first false condition; ``or``
    starts from False and stops at the first true one.  An empty list therefore
    yields True for ``and`` and False for ``or``.

    ``fetch_contact`` is awaited before every condition.  If the contact has
    disappeared mid-evaluation the fold stops and the current seed is
    returned.  Store errors propagate.
    """
    result = logic == "and"
    for condition in conditions:
        contact = await fetch_contact()
        if contact is None:
            logger.warning("Contact vanished during condition evaluation; using %s", result)
            break
        matched = evaluate_condition(condition, contact, now=now, timezone=timezone)
        if logic == "and" and not matched:
            return False
        if logic == "or" and matched:
            return True
    return result
