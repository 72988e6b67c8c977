"""
Collection sync engine: project-scoped storage of opaque JSON records.

Records are partitioned by a free-form collection name, but identity is
project-wide: the upsert key is ``(project_id, id)``. Writing ``{"id": "x"}``
into collection "a" and then into collection "b" leaves one record, in "b".

Concurrent stores of the same id are last-writer-wins on the row, and the
storage total recomputed afterwards may reflect either write.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, List, Optional

from ldss.db import DataRecord, DbClient
from ldss.errors import ValidationError
from ldss.projects import ProjectRegistry, new_id
from ldss.stats import StatsAggregator

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 100
# Largest LIMIT a 64-bit SQL integer parameter can carry.
MAX_QUERY_LIMIT = 2**63 - 1


def coerce_limit(value: Any, default: int = DEFAULT_QUERY_LIMIT) -> int:
    """Best-effort integer limit; anything unusable falls back to ``default``."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        try:
            limit = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return default
    if limit < 0:
        return default
    return min(limit, MAX_QUERY_LIMIT)


def serialize_item(item: Any) -> str:
    try:
        return json.dumps(item, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Item is not JSON serializable: {exc}") from exc


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class CollectionSyncEngine:
    def __init__(
        self,
        db: DbClient,
        projects: ProjectRegistry,
        stats: StatsAggregator,
        *,
        recompute_stats: bool = True,
        default_limit: int = DEFAULT_QUERY_LIMIT,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.projects = projects
        self.stats = stats
        self.recompute_stats = recompute_stats
        self.default_limit = default_limit
        self.clock = clock

    def query(
        self,
        owner_id: str,
        project_id: str,
        collection: Optional[str] = None,
        limit: Any = None,
    ) -> List[DataRecord]:
        """Newest-created records first, optionally within one collection."""
        self.projects.require_project(owner_id, project_id)
        return self.db.query_data(
            project_id, collection or None, coerce_limit(limit, self.default_limit)
        )

    def store(
        self, owner_id: str, project_id: str, collection: Any, items: Any
    ) -> dict:
        self.projects.require_project(owner_id, project_id)
        if not collection or not isinstance(collection, str):
            raise ValidationError("Invalid data format")
        if not isinstance(items, (list, tuple)):
            raise ValidationError("Invalid data format")

        # Serialize everything up front so a bad item rejects the whole batch.
        records = [self._to_record(project_id, collection, item) for item in items]
        for record in records:
            self.db.upsert_data(record)

        if self.recompute_stats:
            self.stats.recompute_storage(project_id)
        logger.info(
            "Stored %d items in %s/%s", len(records), project_id, collection
        )
        return {"stored": len(records)}

    def _to_record(self, project_id: str, collection: str, item: Any) -> DataRecord:
        fields = item if isinstance(item, dict) else {}
        record_id = _optional_str(fields.get("id")) or new_id("data_")
        now = self.clock()
        return DataRecord(
            id=record_id,
            project_id=project_id,
            collection=collection,
            data=serialize_item(item),
            created_at=now,
            updated_at=now,
            device_id=_optional_str(fields.get("deviceId")),
            end_user_id=_optional_str(fields.get("endUserId")),
        )
