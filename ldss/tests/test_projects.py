import unittest

from ldss.db import InMemoryDbClient
from ldss.errors import NotFoundError, ValidationError
from ldss.projects import ProjectRegistry


class Clock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        self.now += 1.0
        return self.now


class ProjectRegistryTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.registry = ProjectRegistry(self.db, clock=Clock())

    def test_create_then_get(self):
        created = self.registry.create_project("user_a", "Inventory", "stock")
        fetched = self.registry.get_project("user_a", created.id)
        self.assertEqual(fetched.name, "Inventory")
        self.assertEqual(fetched.description, "stock")
        self.assertEqual(fetched.backend_provider, "none")
        self.assertEqual(fetched.backend_status, "not_configured")
        self.assertTrue(fetched.id.startswith("project_"))
        self.assertTrue(fetched.token.startswith("ldss_"))

    def test_ids_and_tokens_are_unique(self):
        a = self.registry.create_project("user_a", "A")
        b = self.registry.create_project("user_a", "B")
        self.assertNotEqual(a.id, b.id)
        self.assertNotEqual(a.token, b.token)

    def test_blank_name_rejected(self):
        for name in ["", "   ", None]:
            with self.subTest(name=name):
                with self.assertRaises(ValidationError):
                    self.registry.create_project("user_a", name)
        self.assertEqual(self.db.projects, {})

    def test_list_newest_first_and_scoped_to_owner(self):
        first = self.registry.create_project("user_a", "First")
        second = self.registry.create_project("user_a", "Second")
        self.registry.create_project("user_b", "Theirs")
        ids = [p.id for p in self.registry.list_projects("user_a")]
        self.assertEqual(ids, [second.id, first.id])
        self.assertEqual(self.registry.list_projects("nobody"), [])

    def test_other_owner_gets_not_found(self):
        project = self.registry.create_project("user_a", "Mine")
        with self.assertRaises(NotFoundError):
            self.registry.get_project("user_b", project.id)
        with self.assertRaises(NotFoundError):
            self.registry.delete_project("user_b", project.id)
        self.assertIn(project.id, self.db.projects)

    def test_missing_and_foreign_projects_look_the_same(self):
        project = self.registry.create_project("user_a", "Mine")
        with self.assertRaises(NotFoundError) as foreign:
            self.registry.get_project("user_b", project.id)
        with self.assertRaises(NotFoundError) as missing:
            self.registry.get_project("user_b", "project_missing")
        self.assertEqual(foreign.exception.message, missing.exception.message)

    def test_delete(self):
        project = self.registry.create_project("user_a", "Doomed")
        self.registry.delete_project("user_a", project.id)
        with self.assertRaises(NotFoundError):
            self.registry.get_project("user_a", project.id)


if __name__ == "__main__":
    unittest.main()
