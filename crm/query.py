"""
Search, filter and sort helpers for a user's customer list.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from crm.types import CustomerRecord, CustomerStatus

SORT_FIELDS = ("name", "email", "company", "status", "createdAt")
SORT_ORDERS = ("asc", "desc")

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)

_SORT_KEYS: dict[str, Callable[[CustomerRecord], object]] = {
    "name": lambda c: c.name.lower(),
    "email": lambda c: c.email.lower(),
    "company": lambda c: (c.company or "").lower(),
    "status": lambda c: c.status.value,
    "createdAt": lambda c: c.created_at or _EPOCH,
}


def _matches(customer: CustomerRecord, needle: str) -> bool:
    haystacks = (customer.name, customer.email, customer.company, customer.phone)
    return any(value and needle in value.lower() for value in haystacks)


def filter_customers(
    customers: Iterable[CustomerRecord],
    *,
    search: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = "createdAt",
    order: str = "desc",
) -> list[CustomerRecord]:
    """
    Narrow and order a customer list the way the customers page does.

    ``status`` of ``None`` or ``"all"`` keeps every status. ``search`` is a
    case-insensitive substring match over name, email, company and phone.
    """
    if sort_by not in _SORT_KEYS:
        raise ValueError(f"Unsupported sort field: {sort_by}")
    if order not in SORT_ORDERS:
        raise ValueError(f"Unsupported sort order: {order}")

    result = list(customers)
    if status and status != "all":
        wanted = CustomerStatus(status)
        result = [c for c in result if c.status == wanted]

    needle = (search or "").strip().lower()
    if needle:
        result = [c for c in result if _matches(c, needle)]

    result.sort(key=_SORT_KEYS[sort_by], reverse=order == "desc")
    return result


def count_by_status(customers: Iterable[CustomerRecord]) -> dict[str, int]:
    counts = {"total": 0, "leads": 0, "active": 0, "inactive": 0}
    keys = {
        CustomerStatus.LEAD: "leads",
        CustomerStatus.ACTIVE: "active",
        CustomerStatus.INACTIVE: "inactive",
    }
    for customer in customers:
        counts["total"] += 1
        counts[keys[customer.status]] += 1
    return counts
