"""
Document CustomerStore backed by MongoDB.

Users and customers are independent collections keyed by string ``_id``.
The per-user email check runs in application code; a compound unique index
on ``(email, user_id)`` backs it up against concurrent writers. Nothing in
MongoDB cascades, so ``delete_user`` removes the owned customers itself.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError

from crm.db import (
    BackendUnavailable,
    CreationClock,
    UniquenessViolation,
    UnknownOwner,
    as_utc,
    email_is_available,
    new_id,
    next_timestamp,
    normalize_changes,
    normalize_profile,
)
from crm.types import (
    USER_PROFILE_FIELDS,
    CustomerRecord,
    CustomerStatus,
    NewCustomer,
    UserRecord,
)

logger = logging.getLogger(__name__)


class MongoCustomerStore:
    """
    pymongo implementation of ``CustomerStore``.

    Pass ``client`` to reuse an existing (or mock) client instead of
    connecting to ``uri``.
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        db_name: str = "crm",
        *,
        client: Optional[MongoClient] = None,
        server_selection_timeout_ms: int = 5000,
        socket_timeout_ms: int = 45000,
    ):
        if client is None:
            if not uri:
                raise ValueError(
                    "MONGODB_URI must be set. Did you forget to add your "
                    "MongoDB connection string?"
                )
            client = MongoClient(
                uri,
                serverSelectionTimeoutMS=server_selection_timeout_ms,
                socketTimeoutMS=socket_timeout_ms,
                tz_aware=True,
            )
        self.client = client
        self.database = client[db_name]
        self.users = self.database["users"]
        self.customers = self.database["customers"]
        self.clock = CreationClock()
        with self._guard():
            self._ensure_indexes()

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except ConnectionFailure as exc:
            logger.exception("MongoDB operation failed")
            raise BackendUnavailable(f"MongoDB operation failed: {exc}") from exc

    def _ensure_indexes(self) -> None:
        # Users without an email claim store null; only string emails must be unique.
        self.users.create_index(
            [("email", ASCENDING)],
            unique=True,
            partialFilterExpression={"email": {"$type": "string"}},
            name="email_unique",
        )
        self.customers.create_index(
            [("email", ASCENDING), ("user_id", ASCENDING)],
            unique=True,
            name="email_user_unique",
        )
        self.customers.create_index(
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            name="user_created_at",
        )

    def _to_user_record(self, doc: dict) -> UserRecord:
        return UserRecord(
            id=doc["_id"],
            email=doc.get("email"),
            first_name=doc.get("first_name"),
            last_name=doc.get("last_name"),
            profile_image_url=doc.get("profile_image_url"),
            created_at=as_utc(doc["created_at"]),
            updated_at=as_utc(doc["updated_at"]),
        )

    def _to_customer_record(self, doc: dict) -> CustomerRecord:
        return CustomerRecord(
            id=doc["_id"],
            user_id=doc["user_id"],
            name=doc["name"],
            email=doc["email"],
            phone=doc.get("phone"),
            company=doc.get("company"),
            status=CustomerStatus(doc["status"]),
            created_at=as_utc(doc["created_at"]),
            updated_at=as_utc(doc["updated_at"]),
        )

    def _user_email_taken(self, email: str, user_id: str) -> bool:
        query = {"email": email, "_id": {"$ne": user_id}}
        return self.users.find_one(query, {"_id": 1}) is not None

    def check_connection(self) -> None:
        with self._guard():
            self.client.admin.command("ping")

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._guard():
            doc = self.users.find_one({"_id": user_id})
        return self._to_user_record(doc) if doc else None

    def upsert_user(self, user_id: str, profile: Mapping[str, object]) -> UserRecord:
        fields = normalize_profile(profile)
        email = fields.get("email")
        with self._guard():
            if email is not None and self._user_email_taken(email, user_id):
                raise UniquenessViolation(email)

            existing = self.users.find_one({"_id": user_id})
            if existing is None:
                now = self.clock.now()
                doc = {key: None for key in USER_PROFILE_FIELDS}
                doc.update(fields)
                doc.update({"_id": user_id, "created_at": now, "updated_at": now})
                try:
                    self.users.insert_one(doc)
                except DuplicateKeyError as exc:
                    raise UniquenessViolation(email or "") from exc
                return self._to_user_record(doc)

            updates = dict(fields)
            updates["updated_at"] = next_timestamp(existing["updated_at"])
            try:
                doc = self.users.find_one_and_update(
                    {"_id": user_id},
                    {"$set": updates},
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError as exc:
                raise UniquenessViolation(email or "") from exc
        return self._to_user_record(doc)

    def delete_user(self, user_id: str) -> bool:
        with self._guard():
            if self.users.find_one({"_id": user_id}, {"_id": 1}) is None:
                return False
            removed = self.customers.delete_many({"user_id": user_id}).deleted_count
            self.users.delete_one({"_id": user_id})
        logger.info("Deleted user %s and %d customers", user_id, removed)
        return True

    def get_customers_by_user_id(self, user_id: str) -> list[CustomerRecord]:
        with self._guard():
            cursor = self.customers.find({"user_id": user_id}).sort(
                "created_at", DESCENDING
            )
            return [self._to_customer_record(doc) for doc in cursor]

    def get_customer_by_id(
        self, customer_id: str, user_id: str
    ) -> Optional[CustomerRecord]:
        with self._guard():
            doc = self.customers.find_one({"_id": customer_id, "user_id": user_id})
        return self._to_customer_record(doc) if doc else None

    def create_customer(self, data: NewCustomer, user_id: str) -> CustomerRecord:
        now = self.clock.now()
        doc = {
            "_id": new_id(),
            "user_id": user_id,
            "name": data.name,
            "email": data.email,
            "phone": data.phone,
            "company": data.company,
            "status": CustomerStatus(data.status).value,
            "created_at": now,
            "updated_at": now,
        }
        with self._guard():
            if self.users.find_one({"_id": user_id}, {"_id": 1}) is None:
                raise UnknownOwner(user_id)
            if not self.is_email_unique_for_user(data.email, user_id):
                raise UniquenessViolation(data.email, user_id)
            try:
                self.customers.insert_one(doc)
            except DuplicateKeyError as exc:
                logger.warning(
                    "Unique index rejected customer %s for user %s",
                    data.email,
                    user_id,
                )
                raise UniquenessViolation(data.email, user_id) from exc
        return self._to_customer_record(doc)

    def update_customer(
        self, customer_id: str, user_id: str, changes: Mapping[str, object]
    ) -> Optional[CustomerRecord]:
        fields = normalize_changes(changes)
        if "status" in fields:
            fields["status"] = fields["status"].value
        query = {"_id": customer_id, "user_id": user_id}
        with self._guard():
            existing = self.customers.find_one(query)
            if existing is None:
                return None
            email = fields.get("email")
            if email is not None and not self.is_email_unique_for_user(
                email, user_id, exclude_id=customer_id
            ):
                raise UniquenessViolation(email, user_id)
            fields["updated_at"] = next_timestamp(existing["updated_at"])
            try:
                doc = self.customers.find_one_and_update(
                    query,
                    {"$set": fields},
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError as exc:
                logger.warning(
                    "Unique index rejected update of customer %s", customer_id
                )
                raise UniquenessViolation(email or existing["email"], user_id) from exc
        return self._to_customer_record(doc) if doc else None

    def delete_customer(self, customer_id: str, user_id: str) -> bool:
        with self._guard():
            result = self.customers.delete_one({"_id": customer_id, "user_id": user_id})
        return result.deleted_count == 1

    def is_email_unique_for_user(
        self, email: str, user_id: str, exclude_id: Optional[str] = None
    ) -> bool:
        # Select by (email, user_id) only; the excluded id is dropped afterwards.
        with self._guard():
            matching = [
                doc["_id"]
                for doc in self.customers.find(
                    {"email": email, "user_id": user_id}, {"_id": 1}
                )
            ]
        return email_is_available(matching, exclude_id)
