import threading
import time
import unittest
from unittest.mock import patch

from ldss import dependencies
from ldss.config import Settings
from ldss.db import InMemoryDbClient
from ldss.providers import ProviderRegistry


def call_concurrently(fn, workers=8):
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def run():
        barrier.wait()
        value = fn()
        with lock:
            results.append(value)

    threads = [threading.Thread(target=run) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results


class SingletonTests(unittest.TestCase):
    def setUp(self):
        settings = Settings(use_in_memory_backends=True)
        patches = [
            patch("ldss.dependencies.get_settings", return_value=settings),
            patch("ldss.dependencies._db_client", None),
            patch("ldss.dependencies._provider_registry", None),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)

    def test_concurrent_first_requests_share_one_db_client(self):
        built = []

        def slow_client():
            # Widen the window between the None check and the assignment.
            time.sleep(0.02)
            client = InMemoryDbClient()
            built.append(client)
            return client

        with patch("ldss.dependencies.InMemoryDbClient", side_effect=slow_client):
            results = call_concurrently(dependencies.get_db_client)

        self.assertEqual(len(built), 1)
        self.assertTrue(all(result is built[0] for result in results))
        self.assertIs(dependencies.get_db_client(), built[0])

    def test_concurrent_first_requests_share_one_provider_registry(self):
        built = []
        real_default = ProviderRegistry.default

        def slow_default(**kwargs):
            time.sleep(0.02)
            registry = real_default(**kwargs)
            built.append(registry)
            return registry

        with patch.object(ProviderRegistry, "default", side_effect=slow_default):
            results = call_concurrently(dependencies.get_provider_registry)

        self.assertEqual(len(built), 1)
        self.assertTrue(all(result is built[0] for result in results))

    def test_sql_client_selected_when_database_url_set(self):
        settings = Settings(
            database_url="sqlite+pysqlite:///:memory:", use_in_memory_backends=False
        )
        with patch("ldss.dependencies.get_settings", return_value=settings):
            client = dependencies.get_db_client()
        self.addCleanup(client.close)
        self.assertEqual(type(client).__name__, "SqlDbClient")
        client.ping()


if __name__ == "__main__":
    unittest.main()
