from datetime import datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

import services
from config import get_settings
from database import Base
from models import Transaction
from schemas import TransactionIn, TransactionUpdate
from services import NotFoundError, TransactionFilters, TransactionService


def _payload(**overrides) -> TransactionIn:
    values = dict(
        date="2024-01-15",
        vendor="Costco",
        amount=Decimal("120.50"),
        category="Groceries",
        owner="combined",
    )
    values.update(overrides)
    return TransactionIn(**values)


def test_create_completes_the_other_share() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        txn = TransactionService(session).create(_payload(member1_share=30))
        assert txn.amount_cents == 12050
        assert txn.amount == Decimal("120.50")
        assert txn.date == datetime(2024, 1, 15)
        assert (txn.split_type, txn.member1_share, txn.member2_share) == (
            "custom",
            30,
            70,
        )
        assert txn.account_id == "local"


def test_create_rejects_unbalanced_shares() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(ValueError, match="add up to 100"):
            TransactionService(session).create(
                _payload(member1_share=60, member2_share=60)
            )
        assert session.scalar(select(func.count(Transaction.id))) == 0


def test_member_expense_has_no_split() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        txn = TransactionService(session).create(
            _payload(owner="member2", split_type="custom", member1_share=40)
        )
        assert txn.split_type is None
        assert txn.member1_share is None and txn.member2_share is None


def test_payload_validation() -> None:
    with pytest.raises(ValidationError):
        _payload(category="Food")
    with pytest.raises(ValidationError):
        _payload(amount=Decimal("0"))
    with pytest.raises(ValidationError):
        _payload(owner="roommate")
    with pytest.raises(ValidationError):
        _payload(is_recurring=True)


def test_recurring_create_expands_up_to_now(monkeypatch) -> None:
    monkeypatch.setattr(services, "local_now", lambda: datetime(2024, 4, 20))
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        txn = TransactionService(session).create(
            _payload(
                vendor="Netflix",
                amount=Decimal("15.00"),
                category="Subscriptions",
                is_recurring=True,
                recurrence_frequency="monthly",
            )
        )
        assert txn.occurrence_date == datetime(2024, 1, 15).date()
        dates = session.scalars(
            select(Transaction.date)
            .where(Transaction.vendor == "Netflix")
            .order_by(Transaction.date)
        ).all()
        assert dates == [
            datetime(2024, 1, 15),
            datetime(2024, 2, 15),
            datetime(2024, 3, 15),
            datetime(2024, 4, 15),
        ]


def test_recurring_duplicate_date_is_rejected(monkeypatch) -> None:
    monkeypatch.setattr(services, "local_now", lambda: datetime(2024, 1, 20))
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    recurring = dict(
        vendor="Gym",
        amount=Decimal("40.00"),
        category="Fitness & Sports",
        is_recurring=True,
        recurrence_frequency="monthly",
    )
    with Session(engine) as session:
        service = TransactionService(session)
        service.create(_payload(**recurring))
        with pytest.raises(ValueError, match="already has an entry"):
            service.create(_payload(**recurring))


def test_list_filters_by_owner_alias_month_and_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add_all(
            [
                Transaction(
                    account_id="local",
                    owner=owner,
                    date=when,
                    vendor=vendor,
                    amount_cents=1000,
                    category=category,
                )
                for owner, when, vendor, category in [
                    ("member1", datetime(2024, 1, 5), "Esso", "Fuel"),
                    ("noble", datetime(2024, 1, 20), "Shell", "Fuel"),
                    ("maria", datetime(2024, 1, 7), "Spa", "Self Care"),
                    ("combined", datetime(2024, 2, 1), "Hydro", "Utilities"),
                ]
            ]
        )
        session.commit()
        service = TransactionService(session)

        member1 = service.list(TransactionFilters(owner="member1"))
        assert [t.vendor for t in member1] == ["Shell", "Esso"]

        member2 = service.list(TransactionFilters(owner="member2"))
        assert [t.vendor for t in member2] == ["Spa"]

        combined = service.list(TransactionFilters(owner="combined"))
        assert len(combined) == 4

        january = service.list(TransactionFilters(month="2024-01", category="Fuel"))
        assert [t.vendor for t in january] == ["Shell", "Esso"]

        ranged = service.list(TransactionFilters(month_from="2024-02"))
        assert [t.vendor for t in ranged] == ["Hydro"]

        with pytest.raises(ValueError):
            service.list(TransactionFilters(month="January"))


def test_update_recomputes_the_counterpart_share() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        txn = service.create(_payload(member1_share=30))

        updated = service.update(
            txn.id, TransactionUpdate(member2_share=40, notes="bulk buy")
        )
        assert (updated.member1_share, updated.member2_share) == (60, 40)
        assert updated.notes == "bulk buy"

        updated = service.update(
            txn.id, TransactionUpdate(amount=Decimal("99.99"), category="Household")
        )
        assert updated.amount_cents == 9999
        assert updated.category == "Household"
        assert updated.member1_share == 60

        updated = service.update(txn.id, TransactionUpdate(owner="member1"))
        assert updated.member1_share is None and updated.split_type is None


def test_update_requires_frequency_for_recurring() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        txn = service.create(_payload())
        with pytest.raises(ValueError, match="frequency"):
            service.update(txn.id, TransactionUpdate(is_recurring=True))
        assert service.get(txn.id).is_recurring is False


def test_missing_or_foreign_transactions_are_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        txn = TransactionService(session, "household-a").create(_payload())
        other = TransactionService(session, "household-b")
        with pytest.raises(NotFoundError):
            other.get(txn.id)
        with pytest.raises(NotFoundError):
            other.update(txn.id, TransactionUpdate(vendor="Sneaky"))
        with pytest.raises(NotFoundError):
            other.delete(999)


def test_delete_many_is_scoped_to_account() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mine = TransactionService(session, "household-a")
        theirs = TransactionService(session, "household-b")
        a1 = mine.create(_payload(vendor="One"))
        a2 = mine.create(_payload(vendor="Two"))
        b1 = theirs.create(_payload(vendor="Three"))

        assert mine.delete_many([a1.id, a2.id, b1.id]) == 2
        assert mine.list() == []
        assert [t.vendor for t in theirs.list()] == ["Three"]
        assert mine.delete_many([]) == 0


def test_share_edit_on_even_split_becomes_custom() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = TransactionService(session)
        txn = service.create(_payload(split_type="50-50"))
        assert (txn.split_type, txn.member1_share) == ("50-50", 50)

        updated = service.update(txn.id, TransactionUpdate(member1_share=30))
        assert (updated.split_type, updated.member1_share, updated.member2_share) == (
            "custom",
            30,
            70,
        )

        updated = service.update(txn.id, TransactionUpdate(split_type="50-50"))
        assert (updated.member1_share, updated.member2_share) == (50, 50)


def test_aware_dates_are_stored_as_local_time(monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "timezone", "America/Toronto")

    created = _payload(date="2024-01-01T00:00:00.000Z")
    assert created.date == datetime(2023, 12, 31, 19, 0)
    assert created.date.tzinfo is None

    changed = TransactionUpdate(date="2024-06-01T12:00:00+00:00")
    assert changed.date == datetime(2024, 6, 1, 8, 0)
    assert TransactionUpdate(date="2024-06-01").date == datetime(2024, 6, 1)


def test_create_with_unknown_statement_is_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(NotFoundError):
            TransactionService(session).create(_payload(statement_id=42))
