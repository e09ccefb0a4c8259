"""
Client Engagement Portal
Scheduled Jobs.

Jobs:
    - orphaned_identity_retry: re-attempts identity provider deletion for
      identities left behind by a teardown whose Phase 2 failed
"""

from __future__ import annotations

import logging
from typing import Any

from portal.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("orphaned_identity_retry")
def retry_orphaned_identities_job(app) -> dict[str, Any]:
    """Drain the orphaned identity queue."""
    from portal.services.teardown_service import retry_orphaned_identities

    return retry_orphaned_identities()
