"""
Pydantic schemas for the CRM backend.

``CustomerInput`` and ``CustomerPatch`` validate untrusted payloads before
they reach a store; the response models serialize records with the camelCase
keys the web client expects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

from crm.types import CustomerRecord, CustomerStatus, NewCustomer, UserRecord

EMAIL_MAX_LENGTH = 255


@dataclass
class FieldViolation:
    field: str
    message: str

    def as_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class CustomerValidationError(ValueError):
    """Raised when a customer payload fails validation."""

    def __init__(self, violations: list[FieldViolation]):
        self.violations = violations
        summary = "; ".join(f"{v.field}: {v.message}" for v in violations)
        super().__init__(f"Invalid customer payload: {summary}")

    @classmethod
    def from_pydantic(cls, exc: ValidationError) -> "CustomerValidationError":
        violations = [
            FieldViolation(
                field=".".join(str(part) for part in error["loc"]) or "payload",
                message=error["msg"],
            )
            for error in exc.errors()
        ]
        return cls(violations)


def _check_email_length(value: Optional[str]) -> Optional[str]:
    if value is not None and len(value) > EMAIL_MAX_LENGTH:
        raise ValueError(f"Email must be at most {EMAIL_MAX_LENGTH} characters")
    return value


class CustomerInput(BaseModel):
    """Full customer payload, used for create and replace."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=50)
    company: Optional[str] = Field(default=None, max_length=255)
    status: CustomerStatus = CustomerStatus.LEAD

    @field_validator("email")
    @classmethod
    def _email_length(cls, value: str) -> str:
        return _check_email_length(value)

    @field_validator("phone", "company")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class CustomerPatch(BaseModel):
    """Partial customer payload: absent fields stay unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    company: Optional[str] = Field(default=None, max_length=255)
    status: Optional[CustomerStatus] = None

    @field_validator("name", "email", "status")
    @classmethod
    def _not_null(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value

    @field_validator("email")
    @classmethod
    def _email_length(cls, value: Optional[str]) -> Optional[str]:
        return _check_email_length(value)

    @field_validator("phone", "company")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


def validate_customer(payload: Any) -> NewCustomer:
    """Validate a create/replace payload into a normalized field set."""
    try:
        parsed = CustomerInput.model_validate(payload)
    except ValidationError as exc:
        raise CustomerValidationError.from_pydantic(exc) from exc
    return NewCustomer(**parsed.model_dump())


def validate_customer_patch(payload: Any) -> dict:
    """Validate a partial payload; only the keys the caller sent are returned."""
    try:
        parsed = CustomerPatch.model_validate(payload)
    except ValidationError as exc:
        raise CustomerValidationError.from_pydantic(exc) from exc
    return parsed.model_dump(exclude_unset=True)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserResponse(CamelModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: UserRecord) -> "UserResponse":
        return cls(**record.as_dict())


class CustomerResponse(CamelModel):
    id: str
    user_id: str
    name: str
    email: str
    phone: Optional[str] = None
    company: Optional[str] = None
    status: CustomerStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: CustomerRecord) -> "CustomerResponse":
        return cls(**record.as_dict())


class CustomerStatsResponse(BaseModel):
    total: int
    leads: int
    active: int
    inactive: int


class MessageResponse(BaseModel):
    message: str
