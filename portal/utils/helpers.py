"""Shared utility functions used by services and blueprints.

parse_date:          returns None on bad input
parse_datetime:      returns None on bad input, always timezone-aware
add_business_days:   SLA due-date arithmetic (Mon–Fri)
commit_or_conflict:  commit, mapping optimistic-lock and constraint failures to 409
"""
import logging
from datetime import date, datetime, timedelta, timezone

from portal.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_datetime(value):
    """Parse an ISO datetime string; naive values are taken as UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except (ValueError, TypeError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def add_business_days(start: date, days: int) -> date:
    """Return the date ``days`` working days after ``start`` (weekends skipped)."""
    current = start
    remaining = days
    while remaining > 0:
        current += timedelta(days=1)
        if current.weekday() < 5:
            remaining -= 1
    return current


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_conflict(resource: str, resource_id, current_status=None):
    """Commit the current session, translating store conflicts to ConflictingState.

    Usage::

        delivery.status = "approved"
        commit_or_conflict("Delivery", delivery.id, "delivered")

    StaleDataError   → ConflictingState (another writer bumped version_id)
    IntegrityError   → ConflictingState (e.g. a second open revision request)
    Other            → rollback and re-raise

    The session is always rolled back before anything is raised.
    """
    from sqlalchemy.exc import IntegrityError
    from sqlalchemy.orm.exc import StaleDataError

    from portal.core.exceptions import ConflictingState

    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Concurrent modification of %s %s", resource, resource_id)
        raise ConflictingState(resource, resource_id, current_status,
                               reason="modified concurrently; refresh and retry")
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on %s %s: %s", resource, resource_id, exc.orig)
        raise ConflictingState(resource, resource_id, current_status,
                               reason="conflicts with an existing record")
    except Exception:
        db.session.rollback()
        raise
