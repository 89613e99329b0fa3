"""
Relational CustomerStore backed by SQLAlchemy.

Accepts any SQLAlchemy URL: Postgres in production, SQLite for tests. The
``(email, user_id)`` unique constraint and the cascading foreign key from
customers to users are declared on the tables, so the database backs up the
application-level checks.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

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
from crm.types import CustomerRecord, CustomerStatus, NewCustomer, UserRecord

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless enabled per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SqlCustomerStore:
    """
    SQLAlchemy-backed implementation of ``CustomerStore``.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlCustomerStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.clock = CreationClock()
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        try:
            Base.metadata.create_all(self.engine)
        except OperationalError as exc:
            raise BackendUnavailable(f"Cannot reach database: {exc}") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except OperationalError as exc:
            logger.exception("Database operation failed")
            raise BackendUnavailable(f"Database operation failed: {exc}") from exc

    def _to_user_record(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            email=row.email,
            first_name=row.first_name,
            last_name=row.last_name,
            profile_image_url=row.profile_image_url,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _to_customer_record(self, row: "CustomerRow") -> CustomerRecord:
        return CustomerRecord(
            id=row.id,
            user_id=row.user_id,
            name=row.name,
            email=row.email,
            phone=row.phone,
            company=row.company,
            status=CustomerStatus(row.status),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def _email_available(
        self,
        session: Session,
        email: str,
        user_id: str,
        exclude_id: Optional[str] = None,
    ) -> bool:
        stmt = select(CustomerRow.id).where(
            CustomerRow.email == email, CustomerRow.user_id == user_id
        )
        return email_is_available(session.execute(stmt).scalars(), exclude_id)

    def _user_email_taken(self, session: Session, email: str, user_id: str) -> bool:
        stmt = select(UserRow.id).where(UserRow.email == email, UserRow.id != user_id)
        return session.execute(stmt).first() is not None

    def check_connection(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError as exc:
            raise BackendUnavailable(f"Cannot reach database: {exc}") from exc

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            return self._to_user_record(row)

    def upsert_user(self, user_id: str, profile: Mapping[str, object]) -> UserRecord:
        fields = normalize_profile(profile)
        email = fields.get("email")
        with self._session() as session:
            if email is not None and self._user_email_taken(session, email, user_id):
                raise UniquenessViolation(email)

            row = session.get(UserRow, user_id)
            if row:
                row.updated_at = next_timestamp(row.updated_at)
            else:
                now = self.clock.now()
                row = UserRow(id=user_id, created_at=now, updated_at=now)
                session.add(row)
            for key, value in fields.items():
                setattr(row, key, value)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise UniquenessViolation(email or "") from exc
            return self._to_user_record(row)

    def delete_user(self, user_id: str) -> bool:
        with self._session() as session:
            # customers rows go with it through ON DELETE CASCADE
            result = session.execute(delete(UserRow).where(UserRow.id == user_id))
            session.commit()
            deleted = bool(result.rowcount)
        if deleted:
            logger.info("Deleted user %s", user_id)
        return deleted

    def get_customers_by_user_id(self, user_id: str) -> list[CustomerRecord]:
        with self._session() as session:
            stmt = (
                select(CustomerRow)
                .where(CustomerRow.user_id == user_id)
                .order_by(CustomerRow.created_at.desc())
            )
            rows = session.execute(stmt).scalars().all()
            return [self._to_customer_record(row) for row in rows]

    def get_customer_by_id(
        self, customer_id: str, user_id: str
    ) -> Optional[CustomerRecord]:
        with self._session() as session:
            stmt = select(CustomerRow).where(
                CustomerRow.id == customer_id, CustomerRow.user_id == user_id
            )
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                return None
            return self._to_customer_record(row)

    def create_customer(self, data: NewCustomer, user_id: str) -> CustomerRecord:
        now = self.clock.now()
        with self._session() as session:
            if session.get(UserRow, user_id) is None:
                raise UnknownOwner(user_id)
            if not self._email_available(session, data.email, user_id):
                raise UniquenessViolation(data.email, user_id)
            row = CustomerRow(
                id=new_id(),
                user_id=user_id,
                name=data.name,
                email=data.email,
                phone=data.phone,
                company=data.company,
                status=CustomerStatus(data.status).value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if session.get(UserRow, user_id) is None:
                    raise UnknownOwner(user_id) from exc
                logger.warning(
                    "Unique constraint rejected customer %s for user %s",
                    data.email,
                    user_id,
                )
                raise UniquenessViolation(data.email, user_id) from exc
            return self._to_customer_record(row)

    def update_customer(
        self, customer_id: str, user_id: str, changes: Mapping[str, object]
    ) -> Optional[CustomerRecord]:
        fields = normalize_changes(changes)
        with self._session() as session:
            stmt = select(CustomerRow).where(
                CustomerRow.id == customer_id, CustomerRow.user_id == user_id
            )
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                return None
            email = fields.get("email")
            if email is not None and not self._email_available(
                session, email, user_id, exclude_id=customer_id
            ):
                raise UniquenessViolation(email, user_id)
            for key, value in fields.items():
                if key == "status":
                    value = value.value
                setattr(row, key, value)
            row.updated_at = next_timestamp(row.updated_at)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                logger.warning(
                    "Unique constraint rejected update of customer %s", customer_id
                )
                raise UniquenessViolation(email or row.email, user_id) from exc
            return self._to_customer_record(row)

    def delete_customer(self, customer_id: str, user_id: str) -> bool:
        with self._session() as session:
            result = session.execute(
                delete(CustomerRow).where(
                    CustomerRow.id == customer_id, CustomerRow.user_id == user_id
                )
            )
            session.commit()
            return bool(result.rowcount)

    def is_email_unique_for_user(
        self, email: str, user_id: str, exclude_id: Optional[str] = None
    ) -> bool:
        with self._session() as session:
            return self._email_available(session, email, user_id, exclude_id)


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=True, unique=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    profile_image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class CustomerRow(Base):
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("email", "user_id", name="uq_customers_email_user"),
        CheckConstraint(
            "status IN ('Lead', 'Active', 'Inactive')", name="ck_customers_status"
        ),
    )

    id = Column(String, primary_key=True)
    user_id = Column(
        String,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    company = Column(String(255), nullable=True)
    status = Column(String(16), nullable=False, default=CustomerStatus.LEAD.value)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
