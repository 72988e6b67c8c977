"""
Liveness probe for the service.
"""

from __future__ import annotations

import gc
import logging
import resource
from datetime import datetime, timezone

from ldss.db import DbClient
from ldss.errors import DurableStoreError

logger = logging.getLogger(__name__)


def _memory_usage() -> dict:
    # ru_maxrss is reported in kilobytes on Linux.
    max_rss_kb = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    return {
        "max_rss": f"{round(max_rss_kb / 1024)} MB",
        "gc_objects": len(gc.get_objects()),
    }


def health_check(db: DbClient) -> dict:
    checks = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": "ok",
        "services": {},
    }
    try:
        db.ping()
        checks["services"]["database"] = "connected"
    except DurableStoreError as exc:
        logger.warning("Health check: database offline: %s", exc)
        checks["services"]["database"] = "offline"
        checks["status"] = "degraded"
    checks["memory"] = _memory_usage()
    return checks
