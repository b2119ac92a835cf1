from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from categories import CATEGORIES
from config import get_settings
from models import Owner, RecurrenceFrequency, SplitType


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


def _coerce_date_only(value):
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, datetime.min.time())
    if isinstance(value, str) and len(value.strip()) == 10:
        return datetime.combine(date.fromisoformat(value.strip()), datetime.min.time())
    return value


def _to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Stored dates are naive local time; aware input is converted first."""
    if value is None or value.tzinfo is None:
        return value
    local = value.astimezone(ZoneInfo(get_settings().timezone))
    return local.replace(tzinfo=None)


def _check_category(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in CATEGORIES:
        raise ValueError(f"Unknown category '{value}'")
    return value


class TransactionIn(ApiModel):
    date: datetime
    vendor: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    category: str
    owner: Owner = Owner.combined
    is_shared: bool = False
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_recurring: bool = False
    recurrence_frequency: Optional[RecurrenceFrequency] = None
    split_type: Optional[SplitType] = None
    member1_share: Optional[int] = Field(default=None, ge=0, le=100)
    member2_share: Optional[int] = Field(default=None, ge=0, le=100)
    statement_id: Optional[int] = None

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, value):
        return _coerce_date_only(value)

    @field_validator("date")
    @classmethod
    def local_date(cls, value):
        return _to_local_naive(value)

    @field_validator("category")
    @classmethod
    def known_category(cls, value):
        return _check_category(value)

    @model_validator(mode="after")
    def recurring_needs_frequency(self) -> "TransactionIn":
        if self.is_recurring and self.recurrence_frequency is None:
            raise ValueError("Recurring transactions need a recurrence frequency")
        return self


class TransactionUpdate(ApiModel):
    date: Optional[datetime] = None
    vendor: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=10, decimal_places=2
    )
    category: Optional[str] = None
    owner: Optional[Owner] = None
    is_shared: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_recurring: Optional[bool] = None
    recurrence_frequency: Optional[RecurrenceFrequency] = None
    split_type: Optional[SplitType] = None
    member1_share: Optional[int] = Field(default=None, ge=0, le=100)
    member2_share: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, value):
        return _coerce_date_only(value)

    @field_validator("date")
    @classmethod
    def local_date(cls, value):
        return _to_local_naive(value)

    @field_validator("category")
    @classmethod
    def known_category(cls, value):
        return _check_category(value)


class TransactionOut(ApiModel):
    id: int
    statement_id: Optional[int]
    account_id: str
    owner: str
    date: datetime
    vendor: str
    amount: Decimal
    category: str
    is_shared: bool
    notes: Optional[str]
    is_recurring: bool
    recurrence_frequency: Optional[str]
    split_type: Optional[str]
    member1_share: Optional[int]
    member2_share: Optional[int]
    created_at: datetime


class BulkDeleteIn(ApiModel):
    ids: list[int] = Field(default_factory=list)


class StatementOut(ApiModel):
    id: int
    account_id: str
    owner: str
    filename: str
    status: str
    created_at: datetime


class StatementDetailOut(StatementOut):
    raw_content: Optional[str]
    transactions: list[TransactionOut] = Field(default_factory=list)


class ExtractedTransaction(ApiModel):
    """One candidate row returned by the statement extraction service."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    date: datetime
    vendor: str = Field(..., min_length=1, max_length=200)
    amount: Decimal
    category: Optional[str] = None
    is_shared: bool = False
    notes: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, value):
        return _coerce_date_only(value)

    @field_validator("date")
    @classmethod
    def local_date(cls, value):
        return _to_local_naive(value)

    @field_validator("is_shared", mode="before")
    @classmethod
    def null_is_not_shared(cls, value):
        return False if value is None else value


class HouseholdIn(ApiModel):
    name: str = Field(..., min_length=1, max_length=120)
    member1_name: str = Field(..., min_length=1, max_length=80)
    member2_name: Optional[str] = Field(default=None, max_length=80)


class HouseholdUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    member1_name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    member2_name: Optional[str] = Field(default=None, max_length=80)


class HouseholdOut(ApiModel):
    id: int
    account_id: str
    name: str
    member1_name: str
    member2_name: Optional[str]


class CategoryAmount(ApiModel):
    category: str
    amount: float


class StatsOut(ApiModel):
    total_spending: float
    category_breakdown: list[CategoryAmount]


class TrendPoint(ApiModel):
    month: str
    amount: float


class CategoryOut(ApiModel):
    name: str
    keywords: list[str]
