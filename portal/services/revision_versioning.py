"""
Client Engagement Portal
Revision Versioning — derives the title a delivery carries after a revision.

The instance number is never stored: it is recomputed from the titles that
already exist. Given the delivery's current title:

    1. base   = title up to the first " - Revised" marker
    2. N      = number of existing titles containing ``base`` as a substring
    3. result = f"{base} - Revised {N}"

The first revision of "Resume" with no other matching title is therefore
"Resume - Revised 0". Client-facing titles already depend on that numbering.

Which titles count as "existing" is decided by ``titles_in_scope``:
    - every other delivery in the scope (all clients, or only the owner,
      depending on REVISION_TITLE_SCOPE)
    - plus the titles this delivery carried after each earlier revision
      (its DeliveryVersion rows written by a fulfillment)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import select

from portal.models import db
from portal.models.delivery import Delivery, DeliveryVersion

logger = logging.getLogger(__name__)

REVISION_MARKER = " - Revised"

TITLE_SCOPES = ("global", "client")


def split_base_title(title: str) -> str:
    """Return the title with any previous revision suffix removed."""
    return title.split(REVISION_MARKER, 1)[0]


def count_matching(base_title: str, existing_titles: Iterable[str]) -> int:
    return sum(1 for t in existing_titles if t and base_title in t)


def next_revision_title(title: str, existing_titles: Iterable[str]) -> str:
    """Compute the next revision title from a fixed list of existing titles.

    Pure function: the same inputs always give the same title.

    >>> next_revision_title("Resume", [])
    'Resume - Revised 0'
    >>> next_revision_title("Resume - Revised 0", ["Resume - Revised 0"])
    'Resume - Revised 1'
    """
    base = split_base_title(title)
    n = count_matching(base, existing_titles)
    return f"{base}{REVISION_MARKER} {n}"


def titles_in_scope(delivery: Delivery, scope: str = "global") -> list[str]:
    """Collect the titles the instance count is computed over.

    Args:
        delivery: The delivery being revised (its own current row is excluded).
        scope: "global" scans every client's deliveries, "client" only the owner's.
    """
    if scope not in TITLE_SCOPES:
        raise ValueError(f"Unknown revision title scope: {scope!r}")

    stmt = select(Delivery.document_title).where(Delivery.id != delivery.id)
    if scope == "client":
        stmt = stmt.where(Delivery.client_id == delivery.client_id)
    titles = list(db.session.execute(stmt).scalars())

    revised = select(DeliveryVersion.document_title).where(
        DeliveryVersion.delivery_id == delivery.id,
        DeliveryVersion.revision_request_id.isnot(None),
    )
    titles.extend(db.session.execute(revised).scalars())
    return titles


def compute_revision_title(delivery: Delivery, scope: str = "global", new_title: str | None = None) -> str:
    """Title the delivery will carry once the pending revision is fulfilled.

    ``new_title`` (when staff supply one) replaces the current title as the
    source of the base title; the suffix is still derived.
    """
    source = new_title.strip() if new_title and new_title.strip() else delivery.document_title
    title = next_revision_title(source, titles_in_scope(delivery, scope))
    logger.debug("Revision title for delivery %s: %r", delivery.id, title,
                 extra={"delivery_id": delivery.id})
    return title
