import unittest
from datetime import datetime, timedelta, timezone

from crm.query import count_by_status, filter_customers
from crm.types import CustomerRecord, CustomerStatus

BASE = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _customer(idx, name, email, company=None, phone=None, status=CustomerStatus.LEAD):
    created = BASE + timedelta(days=idx)
    return CustomerRecord(
        id=f"c{idx}",
        user_id="u1",
        name=name,
        email=email,
        phone=phone,
        company=company,
        status=status,
        created_at=created,
        updated_at=created,
    )


class FilterCustomersTests(unittest.TestCase):
    def setUp(self):
        self.customers = [
            _customer(1, "bob", "bob@example.com", "Zeta", "555-1111"),
            _customer(2, "Alice", "alice@example.com", None, None, CustomerStatus.ACTIVE),
            _customer(3, "carol", "carol@globex.com", "globex", None, CustomerStatus.INACTIVE),
        ]

    def _ids(self, customers):
        return [c.id for c in customers]

    def test_defaults_to_newest_first(self):
        self.assertEqual(self._ids(filter_customers(self.customers)), ["c3", "c2", "c1"])

    def test_status_filter(self):
        active = filter_customers(self.customers, status="Active")
        self.assertEqual(self._ids(active), ["c2"])
        self.assertEqual(len(filter_customers(self.customers, status="all")), 3)

    def test_search_is_case_insensitive_across_fields(self):
        self.assertEqual(self._ids(filter_customers(self.customers, search="GLOBEX")), ["c3"])
        self.assertEqual(self._ids(filter_customers(self.customers, search="555-11")), ["c1"])
        self.assertEqual(self._ids(filter_customers(self.customers, search="alice@")), ["c2"])
        self.assertEqual(len(filter_customers(self.customers, search="   ")), 3)

    def test_sort_by_name_ignores_case(self):
        result = filter_customers(self.customers, sort_by="name", order="asc")
        self.assertEqual([c.name for c in result], ["Alice", "bob", "carol"])

    def test_sort_by_company_treats_missing_as_empty(self):
        result = filter_customers(self.customers, sort_by="company", order="asc")
        self.assertEqual(self._ids(result), ["c2", "c3", "c1"])

    def test_sort_by_status_descending(self):
        result = filter_customers(self.customers, sort_by="status", order="desc")
        self.assertEqual([c.status.value for c in result], ["Lead", "Inactive", "Active"])

    def test_rejects_unknown_sort_and_status(self):
        with self.assertRaises(ValueError):
            filter_customers(self.customers, sort_by="phone")
        with self.assertRaises(ValueError):
            filter_customers(self.customers, order="sideways")
        with self.assertRaises(ValueError):
            filter_customers(self.customers, status="Prospect")


class CountByStatusTests(unittest.TestCase):
    def test_counts(self):
        customers = [
            _customer(1, "a", "a@example.com"),
            _customer(2, "b", "b@example.com"),
            _customer(3, "c", "c@example.com", status=CustomerStatus.ACTIVE),
        ]
        self.assertEqual(
            count_by_status(customers),
            {"total": 3, "leads": 2, "active": 1, "inactive": 0},
        )

    def test_empty(self):
        self.assertEqual(
            count_by_status([]), {"total": 0, "leads": 0, "active": 0, "inactive": 0}
        )


if __name__ == "__main__":
    unittest.main()
