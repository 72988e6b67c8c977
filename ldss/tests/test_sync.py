import json
import unittest

from ldss.db import InMemoryDbClient, SqlDbClient
from ldss.errors import NotFoundError, ValidationError
from ldss.projects import ProjectRegistry
from ldss.stats import StatsAggregator
from ldss.sync import MAX_QUERY_LIMIT, CollectionSyncEngine, coerce_limit


class Clock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        self.now += 1.0
        return self.now


def _stored_size(item):
    return len(json.dumps(item, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


class CoerceLimitTests(unittest.TestCase):
    def test_coercion(self):
        self.assertEqual(coerce_limit(None), 100)
        self.assertEqual(coerce_limit("10"), 10)
        self.assertEqual(coerce_limit(7), 7)
        self.assertEqual(coerce_limit("2.9"), 2)
        self.assertEqual(coerce_limit("abc"), 100)
        self.assertEqual(coerce_limit(-5), 100)
        self.assertEqual(coerce_limit(5000), 5000)

    def test_oversized_limits_are_clamped(self):
        self.assertEqual(coerce_limit("99999999999999999999"), MAX_QUERY_LIMIT)
        self.assertEqual(coerce_limit("1e30"), MAX_QUERY_LIMIT)
        self.assertEqual(coerce_limit(2**64), MAX_QUERY_LIMIT)
        self.assertEqual(coerce_limit(MAX_QUERY_LIMIT), MAX_QUERY_LIMIT)
        self.assertEqual(coerce_limit("inf"), 100)


class CollectionSyncEngineTests(unittest.TestCase):
    def make_db(self):
        return InMemoryDbClient()

    def setUp(self):
        self.db = self.make_db()
        clock = Clock()
        self.projects = ProjectRegistry(self.db, clock=clock)
        self.engine = CollectionSyncEngine(
            self.db, self.projects, StatsAggregator(self.db), clock=clock
        )
        self.project = self.projects.create_project("owner", "Inventory")

    def _query(self, collection=None, limit=None):
        return self.engine.query("owner", self.project.id, collection, limit)

    def _total_bytes(self):
        return self.projects.get_project("owner", self.project.id).total_storage_bytes

    def test_store_and_query_newest_first(self):
        result = self.engine.store(
            "owner",
            self.project.id,
            "skus",
            [{"id": "a"}, {"id": "b"}, {"id": "c"}],
        )
        self.assertEqual(result, {"stored": 3})
        records = self._query("skus", 10)
        self.assertEqual([r.id for r in records], ["c", "b", "a"])

    def test_query_limit_and_collection_filter(self):
        self.engine.store("owner", self.project.id, "a", [{"n": i} for i in range(5)])
        self.engine.store("owner", self.project.id, "b", [{"n": 9}])
        self.assertEqual(len(self._query("a", 2)), 2)
        self.assertEqual(len(self._query("a")), 5)
        self.assertEqual(len(self._query()), 6)
        self.assertEqual([r.payload for r in self._query("b")], [{"n": 9}])

    def test_upsert_same_collection_keeps_one_record(self):
        self.engine.store("owner", self.project.id, "c", [{"id": "x", "v": 1}])
        self.engine.store("owner", self.project.id, "c", [{"id": "x", "v": 2}])
        records = self._query("c")
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].payload, {"id": "x", "v": 2})

    def test_same_id_in_another_collection_overwrites(self):
        self.engine.store("owner", self.project.id, "a", [{"id": "x"}])
        self.engine.store("owner", self.project.id, "b", [{"id": "x"}])
        records = self._query()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].collection, "b")
        self.assertEqual(self._query("a"), [])

    def test_generated_ids_and_device_fields(self):
        self.engine.store(
            "owner",
            self.project.id,
            "events",
            [{"deviceId": "dev-1", "endUserId": "eu-9", "kind": "open"}],
        )
        (record,) = self._query("events")
        self.assertTrue(record.id.startswith("data_"))
        self.assertEqual(record.device_id, "dev-1")
        self.assertEqual(record.end_user_id, "eu-9")
        self.assertEqual(
            record.payload, {"deviceId": "dev-1", "endUserId": "eu-9", "kind": "open"}
        )

    def test_numeric_ids_are_stringified(self):
        self.engine.store("owner", self.project.id, "c", [{"id": 42}])
        self.assertEqual(self._query("c")[0].id, "42")

    def test_stats_match_stored_payloads(self):
        first = [{"id": "x", "name": "café"}, {"id": "y", "n": 1}]
        self.engine.store("owner", self.project.id, "c", first)
        self.assertEqual(self._total_bytes(), sum(_stored_size(i) for i in first))

        replacement = {"id": "x", "name": "short"}
        self.engine.store("owner", self.project.id, "c", [replacement])
        self.assertEqual(
            self._total_bytes(), _stored_size(replacement) + _stored_size(first[1])
        )

    def test_stats_self_heal_from_drift(self):
        self.engine.store("owner", self.project.id, "c", [{"id": "x"}])
        self.db.set_storage_bytes(self.project.id, 999999)
        self.engine.store("owner", self.project.id, "c", [])
        self.assertEqual(self._total_bytes(), _stored_size({"id": "x"}))

    def test_recompute_can_be_disabled(self):
        self.engine.recompute_stats = False
        self.engine.store("owner", self.project.id, "c", [{"id": "x"}])
        self.assertEqual(self._total_bytes(), 0)
        StatsAggregator(self.db).recompute_storage(self.project.id)
        self.assertEqual(self._total_bytes(), _stored_size({"id": "x"}))

    def test_invalid_payloads_rejected(self):
        for collection, items in [
            (None, []),
            ("", [{"id": "x"}]),
            ("c", None),
            ("c", {"id": "x"}),
            ("c", "items"),
        ]:
            with self.subTest(collection=collection, items=items):
                with self.assertRaises(ValidationError):
                    self.engine.store("owner", self.project.id, collection, items)
        self.assertEqual(self._query(), [])

    def test_foreign_owner_cannot_read_or_write(self):
        with self.assertRaises(NotFoundError):
            self.engine.query("intruder", self.project.id)
        with self.assertRaises(NotFoundError):
            self.engine.store("intruder", self.project.id, "c", [{"id": "x"}])
        self.assertEqual(self._query(), [])

    def test_query_after_delete_is_not_found(self):
        self.engine.store("owner", self.project.id, "c", [{"id": "x"}])
        self.projects.delete_project("owner", self.project.id)
        with self.assertRaises(NotFoundError):
            self._query("c")
        self.assertEqual(self.db.sum_payload_bytes(self.project.id), 0)

    def test_records_are_isolated_per_project(self):
        other = self.projects.create_project("owner", "Other")
        self.engine.store("owner", self.project.id, "c", [{"id": "x", "v": 1}])
        self.engine.store("owner", other.id, "c", [{"id": "x", "v": 2}])
        self.assertEqual(self._query("c")[0].payload, {"id": "x", "v": 1})

    def test_oversized_limit_returns_everything(self):
        self.engine.store("owner", self.project.id, "c", [{"id": "a"}, {"id": "b"}])
        for limit in ("99999999999999999999", "1e30"):
            self.assertEqual(len(self._query("c", limit)), 2)


class SqlCollectionSyncEngineTests(CollectionSyncEngineTests):
    """Same behaviour against the SQLAlchemy store."""

    def make_db(self):
        return SqlDbClient("sqlite+pysqlite:///:memory:")

    def tearDown(self):
        self.db.close()


if __name__ == "__main__":
    unittest.main()
