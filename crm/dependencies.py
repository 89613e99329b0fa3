"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request

from crm.config import Settings, get_settings
from crm.db import CustomerStore, InMemoryCustomerStore, UniquenessViolation
from crm.document import MongoCustomerStore
from crm.relational import SqlCustomerStore

logger = logging.getLogger(__name__)

_customer_store: CustomerStore | None = None

# Profile claims forwarded by the authentication proxy alongside the user id.
PROFILE_HEADERS = {
    "email": "X-User-Email",
    "first_name": "X-User-First-Name",
    "last_name": "X-User-Last-Name",
    "profile_image_url": "X-User-Profile-Image",
}


def build_customer_store(settings: Settings) -> CustomerStore:
    """Construct the store selected by ``settings.storage_backend``."""
    if settings.use_in_memory_backends or settings.storage_backend == "memory":
        logger.info("Using in-memory customer store")
        return InMemoryCustomerStore()
    if settings.storage_backend == "document":
        logger.info("Using MongoDB customer store (db=%s)", settings.mongodb_db_name)
        return MongoCustomerStore(
            settings.mongodb_uri,
            settings.mongodb_db_name,
            server_selection_timeout_ms=settings.mongodb_server_selection_timeout_ms,
            socket_timeout_ms=settings.mongodb_socket_timeout_ms,
        )
    logger.info("Using relational customer store")
    return SqlCustomerStore(settings.database_url or "")


def get_customer_store() -> CustomerStore:
    """
    Return a singleton store so every request shares one connection pool.
    """
    global _customer_store
    if _customer_store:
        return _customer_store

    _customer_store = build_customer_store(get_settings())
    return _customer_store


def get_current_user_id(
    request: Request, store: CustomerStore = Depends(get_customer_store)
) -> str:
    """
    Resolve the caller from the identity header set by the auth proxy.

    The user is recorded on first sight, and any profile claim the proxy
    forwards that differs from the stored value is written back, so
    profile changes at the identity provider reach the store.
    """
    settings = get_settings()
    user_id = request.headers.get(settings.auth_user_header)
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")

    claims = {
        field: request.headers[header]
        for field, header in PROFILE_HEADERS.items()
        if request.headers.get(header)
    }
    user = store.get_user(user_id)
    if user is None:
        changed = claims
    else:
        changed = {
            field: value
            for field, value in claims.items()
            if getattr(user, field) != value
        }
        if not changed:
            return user_id

    try:
        store.upsert_user(user_id, changed)
    except UniquenessViolation:
        logger.warning(
            "Email claim for user %s already taken; storing without it", user_id
        )
        changed.pop("email", None)
        if user is None or changed:
            store.upsert_user(user_id, changed)
    return user_id
