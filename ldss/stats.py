"""
Storage statistics for projects.
"""

from __future__ import annotations

import logging

from ldss.db import DbClient

logger = logging.getLogger(__name__)

_BYTE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_bytes(num_bytes: int) -> str:
    """
    Render a byte count for display, e.g. ``1536 -> "1.5 KB"``.

    Zero renders as ``"0 KB"``. Anything past the GB range stays in GB.
    """
    if num_bytes <= 0:
        return "0 KB"
    index = 0
    while index < len(_BYTE_UNITS) - 1 and num_bytes >= 1024 ** (index + 1):
        index += 1
    value = round(num_bytes / 1024**index, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {_BYTE_UNITS[index]}"


class StatsAggregator:
    """Recomputes derived per-project statistics from the stored records."""

    def __init__(self, db: DbClient):
        self.db = db

    def recompute_storage(self, project_id: str) -> int:
        # Full recompute from the stored per-row sizes.
        total = self.db.sum_payload_bytes(project_id)
        self.db.set_storage_bytes(project_id, total)
        logger.debug("Project %s storage recomputed: %d bytes", project_id, total)
        return total
