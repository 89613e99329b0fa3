import unittest

from crm.config import Settings
from crm.db import InMemoryCustomerStore
from crm.dependencies import build_customer_store
from crm.relational import SqlCustomerStore


class BuildCustomerStoreTests(unittest.TestCase):
    def test_memory_is_the_default(self):
        store = build_customer_store(Settings(_env_file=None))
        self.assertIsInstance(store, InMemoryCustomerStore)

    def test_in_memory_toggle_wins(self):
        settings = Settings(
            _env_file=None, storage_backend="relational", use_in_memory_backends=True
        )
        self.assertIsInstance(build_customer_store(settings), InMemoryCustomerStore)

    def test_relational_backend(self):
        settings = Settings(
            _env_file=None,
            storage_backend="relational",
            database_url="sqlite+pysqlite:///:memory:",
        )
        store = build_customer_store(settings)
        self.assertIsInstance(store, SqlCustomerStore)
        store.check_connection()

    def test_relational_backend_requires_url(self):
        settings = Settings(_env_file=None, storage_backend="relational")
        with self.assertRaises(ValueError):
            build_customer_store(settings)

    def test_document_backend_requires_uri(self):
        settings = Settings(_env_file=None, storage_backend="document")
        with self.assertRaises(ValueError):
            build_customer_store(settings)


if __name__ == "__main__":
    unittest.main()
