"""
Plain records shared by the storage backends and the API layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class CustomerStatus(str, Enum):
    LEAD = "Lead"
    ACTIVE = "Active"
    INACTIVE = "Inactive"


# Keys a partial customer update may carry.
CUSTOMER_FIELDS = ("name", "email", "phone", "company", "status")

# Keys an identity-provider profile may carry.
USER_PROFILE_FIELDS = ("email", "first_name", "last_name", "profile_image_url")


@dataclass
class UserRecord:
    id: str
    email: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    profile_image_url: Optional[str]
    created_at: datetime
    updated_at: datetime

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "profile_image_url": self.profile_image_url,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class NewCustomer:
    """Validated field set for creating (or fully replacing) a customer."""

    name: str
    email: str
    phone: Optional[str] = None
    company: Optional[str] = None
    status: CustomerStatus = CustomerStatus.LEAD

    def as_changes(self) -> dict:
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "status": self.status,
        }


@dataclass
class CustomerRecord:
    id: str
    user_id: str
    name: str
    email: str
    phone: Optional[str]
    company: Optional[str]
    status: CustomerStatus
    created_at: datetime
    updated_at: datetime

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
