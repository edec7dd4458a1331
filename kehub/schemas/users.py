import re
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

from ..models.models import ROLES, USER_STATUSES


SRI_LANKAN_MOBILE = re.compile(r"^(?:\+94|0)?7[0-9]{8}$")


def clean_phone(value: Optional[str]) -> str:
    return re.sub(r"[\s-]", "", value or "")


def is_sri_lankan_phone(value: Optional[str]) -> bool:
    if not value:
        return False
    return bool(SRI_LANKAN_MOBILE.match(clean_phone(value)))


def is_valid_full_name(value: Optional[str]) -> bool:
    """At least two characters and not mostly digits."""
    if not value or not value.strip():
        return False
    name = value.strip()
    if name.isdigit():
        return False
    compact = re.sub(r"\s", "", name)
    digits = sum(1 for ch in compact if ch.isdigit())
    if compact and digits / len(compact) > 0.7:
        return False
    return len(name) >= 2


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)
    full_name: str
    phone: str
    role: str
    employee_code: Optional[str] = None
    skills: Optional[str] = None
    certifications: Optional[str] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return str(v).strip().lower()

    @field_validator('full_name')
    @classmethod
    def valid_full_name(cls, v):
        if not is_valid_full_name(v):
            raise ValueError("Full name cannot be only numbers and must be at least 2 characters long")
        return v.strip()

    @field_validator('phone')
    @classmethod
    def valid_phone(cls, v):
        if not is_sri_lankan_phone(v):
            raise ValueError("Please enter a valid Sri Lankan mobile number (07X XXX XXXX)")
        return clean_phone(v)

    @field_validator('role')
    @classmethod
    def valid_role(cls, v):
        if v not in ROLES:
            raise ValueError("Invalid role")
        return v

    @field_validator('employee_code', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class UserUpdate(BaseModel):
    full_name: str
    phone: Optional[str] = None
    status: str
    skills: Optional[str] = None
    certifications: Optional[str] = None

    @field_validator('full_name')
    @classmethod
    def valid_full_name(cls, v):
        if not is_valid_full_name(v):
            raise ValueError("Full name cannot be only numbers and must be at least 2 characters long")
        return v.strip()

    @field_validator('phone')
    @classmethod
    def valid_phone(cls, v):
        if v is None or not v.strip():
            return None
        if not is_sri_lankan_phone(v):
            raise ValueError("Please enter a valid Sri Lankan mobile number (07X XXX XXXX)")
        return clean_phone(v)

    @field_validator('status')
    @classmethod
    def valid_status(cls, v):
        if v not in USER_STATUSES:
            raise ValueError("Invalid status")
        return v


class PasswordReset(BaseModel):
    new_password: str = Field(alias="newPassword")

    model_config = {"populate_by_name": True}
