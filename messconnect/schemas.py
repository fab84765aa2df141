"""
Pydantic request schemas and the response envelope.

Field names are camelCase to match the JSON the web client sends.
"""

from __future__ import annotations

import re
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from messconnect.entities import WEEKDAYS

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def ok(data: Any) -> dict:
    return {"success": True, "data": data}


def _email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email address")
    return value


def _month(value: Optional[str]) -> Optional[str]:
    if value is not None and not MONTH_PATTERN.match(value):
        raise ValueError("Month must be in YYYY-MM format")
    return value


class RegisterRequest(BaseModel):
    name: str
    email: str
    phone: str
    password: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Name must be at least 2 characters")
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _email(value)

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 10:
            raise ValueError("Phone number must be at least 10 digits")
        return value

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _email(value)


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _email(value)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters")
        return value


class MenuDay(BaseModel):
    day: str
    breakfast: str = ""
    lunch: str = ""
    dinner: str = ""


class MenuUpdateRequest(BaseModel):
    days: List[MenuDay]

    @field_validator("days")
    @classmethod
    def _check_days(cls, days: List[MenuDay]) -> List[MenuDay]:
        by_day = {day.day.strip().capitalize(): day for day in days}
        if len(days) != len(WEEKDAYS) or set(by_day) != set(WEEKDAYS):
            raise ValueError("Menu must contain each day of the week exactly once")
        ordered = []
        for name in WEEKDAYS:
            entry = by_day[name]
            ordered.append(entry.model_copy(update={"day": name}))
        return ordered


class FeedbackRequest(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def _check_text(cls, value: str) -> str:
        # Length is judged on the trimmed text; the submitted text is stored as sent.
        if len(value.strip()) < 10:
            raise ValueError("Text must be at least 10 characters long.")
        return value


class ComplaintRequest(FeedbackRequest):
    imageUrl: Optional[str] = None


class ReplyRequest(BaseModel):
    reply: str

    @field_validator("reply")
    @classmethod
    def _check_reply(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Reply cannot be empty.")
        return value


class MessageRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)


class NoteCreateRequest(BaseModel):
    text: str = Field(..., min_length=1)


class NoteUpdateRequest(BaseModel):
    text: Optional[str] = Field(default=None, min_length=1)
    completed: Optional[bool] = None


class FeeRequest(BaseModel):
    monthlyFee: float

    @field_validator("monthlyFee")
    @classmethod
    def _check_fee(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Fee must be a positive number.")
        return value


class RulesRequest(BaseModel):
    messRules: str


class GuestDetails(BaseModel):
    name: str = Field(..., min_length=2)
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        return _email(value) if value else None


class CreateOrderRequest(BaseModel):
    amount: Optional[float] = Field(default=None, gt=0)
    month: Optional[str] = None
    guest: Optional[GuestDetails] = None

    @field_validator("month")
    @classmethod
    def _check_month(cls, value: Optional[str]) -> Optional[str]:
        return _month(value)


class VerifyPaymentRequest(BaseModel):
    orderId: str = Field(..., min_length=1)
    paymentId: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    month: Optional[str] = None
    guest: Optional[GuestDetails] = None

    @field_validator("month")
    @classmethod
    def _check_month(cls, value: Optional[str]) -> Optional[str]:
        return _month(value)


class MarkAsPaidRequest(BaseModel):
    studentId: str = Field(..., min_length=1)
    month: str
    amount: Optional[float] = Field(default=None, gt=0)

    @field_validator("month")
    @classmethod
    def _check_month(cls, value: str) -> str:
        return _month(value)
