"""
Database Schemas for the Sales Tracker

Each Pydantic model is the canonical shape of one MongoDB collection:
- Product -> "products"
- Sale -> "sales"
- Leave -> "leaves"
- User -> "users"

Attributes are snake_case in Python and camelCase in stored documents and
JSON payloads (``item_code`` <-> ``itemCode``). Request models accept either.
"""
from datetime import date as calendar_date, datetime
from typing import Annotated, Any, Literal, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel


def _as_text(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


def _as_optional_text(value: Any) -> Any:
    value = _as_text(value)
    if value == "":
        return None
    return value


def _date_to_text(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, calendar_date):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip()
    return value


def _check_calendar_date(value: str) -> str:
    try:
        return calendar_date.fromisoformat(value).isoformat()
    except ValueError:
        raise ValueError(f"'{value}' is not a YYYY-MM-DD calendar date")


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


Text = Annotated[str, BeforeValidator(_as_text)]
OptionalText = Annotated[Optional[str], BeforeValidator(_as_optional_text)]
CalendarDate = Annotated[str, BeforeValidator(_date_to_text), AfterValidator(_check_calendar_date)]
Username = Annotated[str, BeforeValidator(_as_text), AfterValidator(str.lower)]

LeaveStatus = Annotated[Literal["pending", "approved", "rejected"], BeforeValidator(_lower)]
LeaveType = Annotated[Literal["sick", "personal", "vacation", "emergency", "other"], BeforeValidator(_lower)]
Role = Annotated[Literal["admin", "salesman"], BeforeValidator(_lower)]


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """Dump to the stored shape: camelCase keys, unset optionals dropped."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Product(Document):
    brand: Text = ""
    item_code: OptionalText = Field(None, description="Catalogue code, unique when present")
    model_number: Text = ""
    ean: Text = ""
    description: Text = ""
    price: float = Field(0, ge=0, description="Retail price including VAT")
    cost: Optional[float] = Field(None, ge=0)
    rsp: Optional[float] = Field(None, ge=0, description="Retail price before VAT")
    margin: Optional[float] = None
    department: OptionalText = None
    category: OptionalText = None
    status: Text = "Active"
    stock: Optional[int] = Field(None, ge=0)


class ProductUpdate(Document):
    brand: OptionalText = None
    model_number: OptionalText = None
    ean: OptionalText = None
    description: OptionalText = None
    price: Optional[float] = Field(None, ge=0)
    cost: Optional[float] = Field(None, ge=0)
    rsp: Optional[float] = Field(None, ge=0)
    margin: Optional[float] = None
    department: OptionalText = None
    category: OptionalText = None
    status: OptionalText = None
    stock: Optional[int] = Field(None, ge=0)


class Sale(Document):
    salesman_id: Text = Field(..., min_length=1)
    salesman_name: Text = Field(..., min_length=1)
    date: CalendarDate
    brand: Text = Field(..., min_length=1)
    item_code: Text = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    total_amount: Optional[float] = Field(None, ge=0, description="Derived as quantity x price when absent")
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _derive_total_amount(self) -> "Sale":
        if self.total_amount is None:
            self.total_amount = round(self.quantity * self.price, 2)
        return self


class Leave(Document):
    salesman_id: Text = Field(..., min_length=1)
    salesman_name: Text = Field(..., min_length=1)
    from_date: CalendarDate
    to_date: Optional[CalendarDate] = None
    reason: OptionalText = None
    status: LeaveStatus = "approved"
    is_critical: bool = False
    leave_type: LeaveType = "other"
    date: Optional[CalendarDate] = Field(None, description="Mirror of fromDate for single-day queries")
    approved_by: OptionalText = None
    approved_at: Optional[datetime] = None
    rejection_reason: OptionalText = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _reconcile_dates(self) -> "Leave":
        if self.to_date is None:
            self.to_date = self.from_date
        if self.to_date < self.from_date:
            raise ValueError("toDate must not be before fromDate")
        self.date = self.from_date
        return self

    @property
    def duration_days(self) -> int:
        return leave_duration(self.from_date, self.to_date)


def leave_duration(from_date: str, to_date: str) -> int:
    """Inclusive number of days between two ``YYYY-MM-DD`` dates."""
    start = calendar_date.fromisoformat(from_date)
    end = calendar_date.fromisoformat(to_date)
    return (end - start).days + 1


class LeaveRequest(Document):
    salesman_id: Text = Field(..., min_length=1)
    salesman_name: Text = Field(..., min_length=1)
    from_date: Optional[CalendarDate] = None
    to_date: Optional[CalendarDate] = None
    date: Optional[CalendarDate] = None
    reason: OptionalText = None
    is_critical: bool = False
    leave_type: LeaveType = "other"
    status: Optional[LeaveStatus] = None

    @model_validator(mode="after")
    def _require_start(self) -> "LeaveRequest":
        # single-day clients only send ``date``
        if self.from_date is None:
            self.from_date = self.date
        if self.from_date is None:
            raise ValueError("fromDate is required")
        if self.to_date is not None and self.to_date < self.from_date:
            raise ValueError("toDate must not be before fromDate")
        return self


class LeaveDecision(Document):
    status: Annotated[Literal["approved", "rejected"], BeforeValidator(_lower)]
    rejection_reason: OptionalText = None


class UserFields(Document):
    username: Username = Field(..., min_length=1)
    name: Text = Field(..., min_length=1)
    role: Role
    salesman_id: OptionalText = None
    email: Optional[EmailStr] = None

    @model_validator(mode="after")
    def _bind_salesman_id(self):
        if self.role == "salesman" and not self.salesman_id:
            raise ValueError("salesmanId is required for salesman accounts")
        if self.role == "admin":
            self.salesman_id = None
        return self


class User(UserFields):
    password_hash: str
    created_at: Optional[datetime] = None


class UserCreate(UserFields):
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    username: Username
    password: str


class PasswordReset(BaseModel):
    password: str = Field(..., min_length=1)
