"""
Storage contract for users and customers, plus an in-memory implementation.

The relational and document implementations live in ``crm.relational`` and
``crm.document``; all three satisfy :class:`CustomerStore` and are chosen at
startup by ``crm.dependencies``.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Mapping, Optional, Protocol

from crm.types import (
    CUSTOMER_FIELDS,
    USER_PROFILE_FIELDS,
    CustomerRecord,
    CustomerStatus,
    NewCustomer,
    UserRecord,
)

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for storage failures callers are expected to handle."""


class UniquenessViolation(StoreError):
    """An email is already taken within its uniqueness scope."""

    def __init__(self, email: str, user_id: Optional[str] = None):
        self.email = email
        self.user_id = user_id
        if user_id is None:
            message = f"Email {email!r} already belongs to another user"
        else:
            message = f"Customer email {email!r} already exists for user {user_id!r}"
        super().__init__(message)


class UnknownOwner(StoreError):
    """A customer write referenced a user that does not exist."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id!r} does not exist")


class BackendUnavailable(StoreError):
    """The persistence engine could not be reached."""


class CustomerStore(Protocol):
    """Interface every persistence backend must satisfy."""

    def check_connection(self) -> None:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def upsert_user(self, user_id: str, profile: Mapping[str, object]) -> UserRecord:
        ...

    def delete_user(self, user_id: str) -> bool:
        ...

    def get_customers_by_user_id(self, user_id: str) -> list[CustomerRecord]:
        ...

    def get_customer_by_id(
        self, customer_id: str, user_id: str
    ) -> Optional[CustomerRecord]:
        ...

    def create_customer(self, data: NewCustomer, user_id: str) -> CustomerRecord:
        ...

    def update_customer(
        self, customer_id: str, user_id: str, changes: Mapping[str, object]
    ) -> Optional[CustomerRecord]:
        ...

    def delete_customer(self, customer_id: str, user_id: str) -> bool:
        ...

    def is_email_unique_for_user(
        self, email: str, user_id: str, exclude_id: Optional[str] = None
    ) -> bool:
        ...


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Current UTC time truncated to milliseconds, the precision every backend keeps."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def as_utc(value: datetime) -> datetime:
    # SQLite and some Mongo clients hand back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_timestamp(previous: datetime) -> datetime:
    """Return an update time strictly later than ``previous``."""
    now = utcnow()
    previous = as_utc(previous)
    if now <= previous:
        return previous + timedelta(milliseconds=1)
    return now


class CreationClock:
    """
    Hands out strictly increasing creation times.

    Rows created within the same millisecond would otherwise tie on
    ``created_at`` and lose their newest-first order.
    """

    def __init__(self):
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            now = utcnow()
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(milliseconds=1)
            self._last = now
            return now


def email_is_available(
    matching_ids: Iterable[str], exclude_id: Optional[str] = None
) -> bool:
    """
    Decide uniqueness from the ids of customers sharing ``(email, user_id)``.

    Callers select rows by email and owner only; the excluded customer (the
    one being updated) is dropped here, and the email is available iff no
    other row remains.
    """
    return not [cid for cid in matching_ids if cid != exclude_id]


def normalize_changes(changes: Mapping[str, object]) -> dict:
    unknown = set(changes) - set(CUSTOMER_FIELDS)
    if unknown:
        raise ValueError(f"Unknown customer fields: {', '.join(sorted(unknown))}")
    normalized = dict(changes)
    if "status" in normalized:
        normalized["status"] = CustomerStatus(normalized["status"])
    for required in ("name", "email", "status"):
        if required in normalized and normalized[required] is None:
            raise ValueError(f"Customer field {required!r} cannot be cleared")
    return normalized


def normalize_profile(profile: Mapping[str, object]) -> dict:
    unknown = set(profile) - set(USER_PROFILE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown user fields: {', '.join(sorted(unknown))}")
    return dict(profile)


class InMemoryCustomerStore:
    """
    Simple in-memory store for development and tests.

    Route handlers run in a threadpool, so every read and every
    check-then-write holds ``_lock``.
    """

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.customers: Dict[str, CustomerRecord] = {}
        self.clock = CreationClock()
        self._lock = threading.RLock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.customers.clear()

    def check_connection(self) -> None:
        return None

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def upsert_user(self, user_id: str, profile: Mapping[str, object]) -> UserRecord:
        fields = normalize_profile(profile)
        email = fields.get("email")
        with self._lock:
            if email is not None:
                for other in self.users.values():
                    if other.id != user_id and other.email == email:
                        raise UniquenessViolation(email)

            user = self.users.get(user_id)
            if user is None:
                now = self.clock.now()
                user = UserRecord(
                    id=user_id,
                    email=None,
                    first_name=None,
                    last_name=None,
                    profile_image_url=None,
                    created_at=now,
                    updated_at=now,
                )
                self.users[user_id] = user
            else:
                user.updated_at = next_timestamp(user.updated_at)
            for key, value in fields.items():
                setattr(user, key, value)
            return replace(user)

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            if user_id not in self.users:
                return False
            owned = [cid for cid, c in self.customers.items() if c.user_id == user_id]
            for cid in owned:
                del self.customers[cid]
            del self.users[user_id]
        logger.info("Deleted user %s and %d customers", user_id, len(owned))
        return True

    def get_customers_by_user_id(self, user_id: str) -> list[CustomerRecord]:
        with self._lock:
            owned = [
                replace(c) for c in self.customers.values() if c.user_id == user_id
            ]
        owned.sort(key=lambda c: c.created_at, reverse=True)
        return owned

    def get_customer_by_id(
        self, customer_id: str, user_id: str
    ) -> Optional[CustomerRecord]:
        with self._lock:
            customer = self.customers.get(customer_id)
            if not customer or customer.user_id != user_id:
                return None
            return replace(customer)

    def create_customer(self, data: NewCustomer, user_id: str) -> CustomerRecord:
        with self._lock:
            if user_id not in self.users:
                raise UnknownOwner(user_id)
            if not self.is_email_unique_for_user(data.email, user_id):
                raise UniquenessViolation(data.email, user_id)
            now = self.clock.now()
            customer = CustomerRecord(
                id=new_id(),
                user_id=user_id,
                name=data.name,
                email=data.email,
                phone=data.phone,
                company=data.company,
                status=CustomerStatus(data.status),
                created_at=now,
                updated_at=now,
            )
            self.customers[customer.id] = customer
            return replace(customer)

    def update_customer(
        self, customer_id: str, user_id: str, changes: Mapping[str, object]
    ) -> Optional[CustomerRecord]:
        fields = normalize_changes(changes)
        with self._lock:
            customer = self.customers.get(customer_id)
            if not customer or customer.user_id != user_id:
                return None
            email = fields.get("email")
            if email is not None and not self.is_email_unique_for_user(
                email, user_id, exclude_id=customer_id
            ):
                raise UniquenessViolation(email, user_id)
            for key, value in fields.items():
                setattr(customer, key, value)
            customer.updated_at = next_timestamp(customer.updated_at)
            return replace(customer)

    def delete_customer(self, customer_id: str, user_id: str) -> bool:
        with self._lock:
            customer = self.customers.get(customer_id)
            if not customer or customer.user_id != user_id:
                return False
            del self.customers[customer_id]
            return True

    def is_email_unique_for_user(
        self, email: str, user_id: str, exclude_id: Optional[str] = None
    ) -> bool:
        with self._lock:
            matching = [
                c.id
                for c in self.customers.values()
                if c.email == email and c.user_id == user_id
            ]
        return email_is_available(matching, exclude_id)
