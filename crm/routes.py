"""
HTTP routes for the CRM backend API.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from crm.db import CustomerStore, UniquenessViolation
from crm.dependencies import get_current_user_id, get_customer_store
from crm.query import count_by_status, filter_customers
from crm.schemas import (
    CustomerResponse,
    CustomerStatsResponse,
    CustomerValidationError,
    MessageResponse,
    UserResponse,
    validate_customer,
    validate_customer_patch,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DUPLICATE_EMAIL_MESSAGE = "A customer with this email already exists"


def _validation_failed(exc: CustomerValidationError) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={
            "message": "Validation error",
            "errors": [v.as_dict() for v in exc.violations],
        },
    )


def _duplicate_email(exc: UniquenessViolation) -> HTTPException:
    logger.info("Rejected duplicate customer email for user %s", exc.user_id)
    return HTTPException(status_code=400, detail=DUPLICATE_EMAIL_MESSAGE)


def _customer_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Customer not found")


@router.get("/auth/user", response_model=UserResponse)
def get_auth_user(
    user_id: str = Depends(get_current_user_id),
    store: CustomerStore = Depends(get_customer_store),
):
    user = store.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse.from_record(user)


@router.get("/customers", response_model=list[CustomerResponse])
def list_customers(
    search: str | None = Query(None, max_length=255),
    status: str | None = Query(None, pattern="^(all|Lead|Active|Inactive)$"),
    sort: str = Query("createdAt", pattern="^(name|email|company|status|createdAt)$"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    user_id: str = Depends(get_current_user_id),
    store: CustomerStore = Depends(get_customer_store),
):
    """
    List the caller's customers, newest first unless another sort is given.
    """
    customers = store.get_customers_by_user_id(user_id)
    customers = filter_customers(
        customers, search=search, status=status, sort_by=sort, order=order
    )
    return [CustomerResponse.from_record(c) for c in customers]


@router.get("/customers/stats", response_model=CustomerStatsResponse)
def customer_stats(
    user_id: str = Depends(get_current_user_id),
    store: CustomerStore = Depends(get_customer_store),
):
    customers = store.get_customers_by_user_id(user_id)
    return CustomerStatsResponse(**count_by_status(customers))


@router.get("/customers/{customer_id}", response_model=CustomerResponse)
def get_customer(
    customer_id: str,
    user_id: str = Depends(get_current_user_id),
    store: CustomerStore = Depends(get_customer_store),
):
    customer = store.get_customer_by_id(customer_id, user_id)
    if not customer:
        raise _customer_not_found()
    return CustomerResponse.from_record(customer)


@router.post("/customers", response_model=CustomerResponse, status_code=201)
def create_customer(
    payload: Any = Body(None),
    user_id: str = Depends(get_current_user_id),
    store: CustomerStore = Depends(get_customer_store),
):
    try:
        data = validate_customer(payload)
    except CustomerValidationError as exc:
        raise _validation_failed(exc) from exc
    try:
        customer = store.create_customer(data, user_id)
    except UniquenessViolation as exc:
        raise _duplicate_email(exc) from exc
    return CustomerResponse.from_record(customer)


@router.put("/customers/{customer_id}", response_model=CustomerResponse)
def replace_customer(
    customer_id: str,
    payload: Any = Body(None),
    user_id: str = Depends(get_current_user_id),
    store: CustomerStore = Depends(get_customer_store),
):
    if not store.get_customer_by_id(customer_id, user_id):
        raise _customer_not_found()
    try:
        data = validate_customer(payload)
    except CustomerValidationError as exc:
        raise _validation_failed(exc) from exc
    try:
        customer = store.update_customer(customer_id, user_id, data.as_changes())
    except UniquenessViolation as exc:
        raise _duplicate_email(exc) from exc
    if not customer:
        raise _customer_not_found()
    return CustomerResponse.from_record(customer)


@router.patch("/customers/{customer_id}", response_model=CustomerResponse)
def patch_customer(
    customer_id: str,
    payload: Any = Body(None),
    user_id: str = Depends(get_current_user_id),
    store: CustomerStore = Depends(get_customer_store),
):
    try:
        changes = validate_customer_patch(payload)
    except CustomerValidationError as exc:
        raise _validation_failed(exc) from exc
    try:
        customer = store.update_customer(customer_id, user_id, changes)
    except UniquenessViolation as exc:
        raise _duplicate_email(exc) from exc
    if not customer:
        raise _customer_not_found()
    return CustomerResponse.from_record(customer)


@router.delete("/customers/{customer_id}", response_model=MessageResponse)
def delete_customer(
    customer_id: str,
    user_id: str = Depends(get_current_user_id),
    store: CustomerStore = Depends(get_customer_store),
):
    if not store.delete_customer(customer_id, user_id):
        raise _customer_not_found()
    return MessageResponse(message="Customer deleted successfully")
