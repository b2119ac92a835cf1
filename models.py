from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

CENT = Decimal("0.01")


class Owner(str, Enum):
    combined = "combined"
    member1 = "member1"
    member2 = "member2"
    # legacy aliases of member1 / member2 kept for previously persisted rows
    noble = "noble"
    maria = "maria"


class StatementStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    processed = "processed"
    failed = "failed"


class RecurrenceFrequency(str, Enum):
    weekly = "weekly"
    bi_weekly = "bi-weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class SplitType(str, Enum):
    even = "50-50"
    custom = "custom"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Household(Base, TimestampMixin):
    __tablename__ = "households"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    member1_name: Mapped[str] = mapped_column(String(80), nullable=False)
    member2_name: Mapped[Optional[str]] = mapped_column(String(80))


class Statement(Base, TimestampMixin):
    __tablename__ = "statements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Owner.combined.value
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_content: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StatementStatus.pending.value
    )

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="statement"
    )

    __table_args__ = (
        Index("ix_statements_account_created", "account_id", "created_at"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    statement_id: Mapped[Optional[int]] = mapped_column(ForeignKey("statements.id"))
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # stored as a plain string so rows written with legacy owner tags still load
    owner: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Owner.combined.value
    )
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    vendor: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    is_shared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurrence_frequency: Mapped[Optional[str]] = mapped_column(String(20))
    split_type: Mapped[Optional[str]] = mapped_column(String(20))
    member1_share: Mapped[Optional[int]] = mapped_column(Integer)
    member2_share: Mapped[Optional[int]] = mapped_column(Integer)
    # calendar date of a recurring row; null for one-off transactions
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)

    statement: Mapped[Optional["Statement"]] = relationship(
        "Statement", back_populates="transactions"
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "vendor",
            "amount_cents",
            "recurrence_frequency",
            "owner",
            "occurrence_date",
            name="uq_txn_lineage_occurrence",
        ),
        Index("ix_transactions_account_date", "account_id", "date"),
        Index(
            "ix_transactions_account_category_date", "account_id", "category", "date"
        ),
        Index("ix_transactions_recurring", "is_recurring"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "member1_share IS NULL OR (member1_share >= 0 AND member1_share <= 100)",
            name="ck_transactions_member1_share_range",
        ),
        CheckConstraint(
            "member2_share IS NULL OR (member2_share >= 0 AND member2_share <= 100)",
            name="ck_transactions_member2_share_range",
        ),
    )

    @property
    def amount(self) -> Decimal:
        return (Decimal(self.amount_cents) / 100).quantize(CENT)
