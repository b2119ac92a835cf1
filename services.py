from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from categories import resolve_category
from config import get_settings
from extraction import StatementExtractor
from models import (
    CENT,
    Household,
    Owner,
    SplitType,
    Statement,
    StatementStatus,
    Transaction,
)
from ownership import alias_set, is_combined
from periods import MonthRange, month_key, months_between, resolve_month_range
from recurrence import RecurrenceReconciler, local_now
from schemas import (
    ExtractedTransaction,
    HouseholdIn,
    HouseholdUpdate,
    TransactionIn,
    TransactionUpdate,
)
from shares import ZERO, effective_amount
from statement_files import check_statement_file, extract_statement_text

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


def get_current_account_id() -> str:
    return get_settings().default_account_id


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def money(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def _value(item) -> Optional[str]:
    if item is None:
        return None
    return getattr(item, "value", item)


def normalize_split(
    owner: str,
    split_type: Optional[str],
    member1_share: Optional[int],
    member2_share: Optional[int],
) -> tuple[Optional[str], Optional[int], Optional[int]]:
    """Return ``(split_type, member1_share, member2_share)`` ready to store.

    Split fields only apply to combined expenses. A single share gets its
    complement; two shares that do not add up to 100 are rejected. Unset
    shares are left unset and count as 50 when spending is computed.
    """
    if not is_combined(owner):
        return None, None, None
    if split_type == SplitType.even.value:
        return split_type, 50, 50
    if member1_share is None and member2_share is None:
        return split_type, None, None
    if member1_share is None:
        member1_share = 100 - member2_share
    elif member2_share is None:
        member2_share = 100 - member1_share
    elif member1_share + member2_share != 100:
        raise ValueError("Member shares must add up to 100")
    return split_type or SplitType.custom.value, member1_share, member2_share


_CLEARABLE_FIELDS = frozenset(
    {"notes", "split_type", "member1_share", "member2_share"}
)


@dataclass
class TransactionFilters:
    month: Optional[str] = None
    month_from: Optional[str] = None
    month_to: Optional[str] = None
    category: Optional[str] = None
    owner: Optional[str] = None


class HouseholdService:
    def __init__(self, session: Session, account_id: Optional[str] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def get(self) -> Optional[Household]:
        return self.session.scalar(
            select(Household).where(Household.account_id == self.account_id)
        )

    def save(self, data: HouseholdIn) -> tuple[Household, bool]:
        household = self.get()
        created = household is None
        if created:
            household = Household(account_id=self.account_id)
            self.session.add(household)
        household.name = data.name
        household.member1_name = data.member1_name
        household.member2_name = data.member2_name or None
        self.session.commit()
        self.session.refresh(household)
        return household, created

    def update(self, data: HouseholdUpdate) -> Household:
        household = self.get()
        if not household:
            raise NotFoundError("Household not found")
        for field, value in data.model_dump(exclude_unset=True).items():
            if field != "member2_name" and value is None:
                continue
            setattr(household, field, value)
        self.session.commit()
        self.session.refresh(household)
        return household


class TransactionService:
    def __init__(self, session: Session, account_id: Optional[str] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def create(self, data: TransactionIn) -> Transaction:
        if data.statement_id is not None:
            statement = self.session.get(Statement, data.statement_id)
            if not statement or statement.account_id != self.account_id:
                raise NotFoundError("Statement not found")

        owner = data.owner.value
        split_type, member1_share, member2_share = normalize_split(
            owner, _value(data.split_type), data.member1_share, data.member2_share
        )
        txn = Transaction(
            statement_id=data.statement_id,
            account_id=self.account_id,
            owner=owner,
            date=data.date,
            vendor=data.vendor.strip(),
            amount_cents=to_cents(data.amount),
            category=data.category,
            is_shared=data.is_shared,
            notes=data.notes or None,
            is_recurring=data.is_recurring,
            recurrence_frequency=_value(data.recurrence_frequency),
            split_type=split_type,
            member1_share=member1_share,
            member2_share=member2_share,
            occurrence_date=data.date.date() if data.is_recurring else None,
        )
        self.session.add(txn)
        self._flush_or_reject()
        self.session.commit()

        if txn.is_recurring:
            reconciler = RecurrenceReconciler(self.session)
            created = reconciler.catch_up(
                txn, local_now(), reconciler.existing_dates(txn)
            )
            self.session.commit()
            if created:
                logger.info(
                    f"recurring_expanded: transaction={txn.id} instances={created}"
                )
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.account_id != self.account_id:
            raise NotFoundError("Transaction not found")
        return txn

    def list(self, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .where(Transaction.account_id == self.account_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if filters.month or filters.month_from or filters.month_to:
            period = resolve_month_range(
                filters.month_from, filters.month_to, month=filters.month
            )
            stmt = _within(stmt, period)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category)
        # the combined household view lists every owner
        if filters.owner and not is_combined(filters.owner):
            stmt = stmt.where(Transaction.owner.in_(alias_set(filters.owner)))
        return list(self.session.scalars(stmt).all())

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None or field in _CLEARABLE_FIELDS
        }

        owner = _value(changes.get("owner", txn.owner))
        is_recurring = changes.get("is_recurring", txn.is_recurring)
        frequency = _value(
            changes.get("recurrence_frequency", txn.recurrence_frequency)
        )
        if is_recurring and not frequency:
            raise ValueError("Recurring transactions need a recurrence frequency")

        member1_share = changes.get("member1_share", txn.member1_share)
        member2_share = changes.get("member2_share", txn.member2_share)
        # an edited share drags its counterpart along
        if "member1_share" in changes and "member2_share" not in changes:
            member2_share = None
        if "member2_share" in changes and "member1_share" not in changes:
            member1_share = None
        split_type = _value(changes.get("split_type", txn.split_type))
        # an explicit share edit turns an even split into a custom one
        if "split_type" not in changes and (
            "member1_share" in changes or "member2_share" in changes
        ):
            split_type = SplitType.custom.value
        split = normalize_split(
            owner,
            split_type,
            member1_share,
            member2_share,
        )

        txn.owner = owner
        txn.is_recurring = is_recurring
        txn.recurrence_frequency = frequency
        txn.split_type, txn.member1_share, txn.member2_share = split
        if "date" in changes:
            txn.date = changes["date"]
        if "vendor" in changes:
            txn.vendor = changes["vendor"].strip()
        if "amount" in changes:
            txn.amount_cents = to_cents(changes["amount"])
        if "category" in changes:
            txn.category = changes["category"]
        if "is_shared" in changes:
            txn.is_shared = changes["is_shared"]
        if "notes" in changes:
            txn.notes = changes["notes"] or None
        txn.occurrence_date = txn.date.date() if txn.is_recurring else None

        self._flush_or_reject()
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def delete_many(self, ids: list[int]) -> int:
        if not ids:
            return 0
        result = self.session.execute(
            delete(Transaction).where(
                Transaction.id.in_(ids),
                Transaction.account_id == self.account_id,
            )
        )
        self.session.commit()
        return int(result.rowcount or 0)

    def _flush_or_reject(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError(
                "This recurring expense already has an entry on that date"
            ) from exc


class StatementService:
    def __init__(self, session: Session, account_id: Optional[str] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def upload(self, filename: str, content: bytes, owner: str) -> Statement:
        try:
            owner_value = Owner(owner or Owner.combined.value).value
        except ValueError as exc:
            raise ValueError(f"Invalid owner '{owner}'") from exc
        check_statement_file(filename, content, get_settings().max_upload_bytes)
        text = extract_statement_text(filename, content)

        statement = Statement(
            account_id=self.account_id,
            owner=owner_value,
            filename=filename,
            raw_content=text,
            status=StatementStatus.pending.value,
        )
        self.session.add(statement)
        self.session.commit()
        self.session.refresh(statement)
        logger.info(
            f"statement_uploaded: id={statement.id} owner={owner_value} "
            f"bytes={len(content)}"
        )
        return statement

    def list(self) -> list[Statement]:
        stmt = (
            select(Statement)
            .where(Statement.account_id == self.account_id)
            .order_by(Statement.created_at.desc(), Statement.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, statement_id: int) -> Statement:
        stmt = (
            select(Statement)
            .options(selectinload(Statement.transactions))
            .where(
                Statement.id == statement_id,
                Statement.account_id == self.account_id,
            )
        )
        statement = self.session.scalar(stmt)
        if not statement:
            raise NotFoundError("Statement not found")
        return statement

    def process(self, statement_id: int, extractor: StatementExtractor) -> bool:
        """Extract and store the statement's transactions.

        Returns ``False`` when the statement was already processed. On any
        failure the statement ends up ``failed`` without transactions and the
        error is re-raised.
        """
        statement = self.get(statement_id)
        if statement.status == StatementStatus.processed.value:
            return False

        statement.status = StatementStatus.processing.value
        self.session.commit()

        try:
            candidates = extractor.extract(statement.raw_content or "")
            rows = [self._transaction_from(statement, c) for c in candidates]
            self.session.add_all(rows)
            statement.status = StatementStatus.processed.value
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            failed = self.session.get(Statement, statement_id)
            failed.status = StatementStatus.failed.value
            self.session.commit()
            logger.warning(
                f"statement_processing_failed: id={statement_id} error={exc}"
            )
            raise

        logger.info(
            f"statement_processed: id={statement_id} transactions={len(rows)}"
        )
        return True

    def delete(self, statement_id: int) -> None:
        statement = self.get(statement_id)
        self.session.execute(
            delete(Transaction).where(Transaction.statement_id == statement.id)
        )
        self.session.execute(delete(Statement).where(Statement.id == statement.id))
        self.session.commit()

    def _transaction_from(
        self, statement: Statement, candidate: ExtractedTransaction
    ) -> Transaction:
        return Transaction(
            statement_id=statement.id,
            account_id=self.account_id,
            owner=statement.owner,
            date=candidate.date.replace(tzinfo=None),
            vendor=candidate.vendor.strip(),
            amount_cents=to_cents(abs(candidate.amount)),
            category=resolve_category(candidate.category, candidate.vendor),
            is_shared=candidate.is_shared,
            notes=candidate.notes or None,
            is_recurring=False,
        )


def _within(stmt, period: MonthRange):
    if period.start is not None:
        stmt = stmt.where(Transaction.date >= period.start)
    if period.end is not None:
        stmt = stmt.where(Transaction.date <= period.end)
    return stmt


class StatsService:
    def __init__(self, session: Session, account_id: Optional[str] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def _transactions(self, period: MonthRange, viewpoint) -> list[Transaction]:
        stmt = _within(
            select(Transaction).where(Transaction.account_id == self.account_id),
            period,
        )
        # member views need every owner to work out shares of combined rows
        if is_combined(viewpoint):
            stmt = stmt.where(Transaction.owner == Owner.combined.value)
        return list(self.session.scalars(stmt).all())

    def compute_stats(
        self,
        month_from: Optional[str] = None,
        month_to: Optional[str] = None,
        viewpoint=None,
    ) -> dict[str, object]:
        viewpoint = _value(viewpoint)
        period = resolve_month_range(month_from, month_to)
        total = ZERO
        by_category: dict[str, Decimal] = {}
        for txn in self._transactions(period, viewpoint):
            amount = effective_amount(txn, viewpoint)
            if amount == ZERO:
                continue
            total += amount
            by_category[txn.category] = by_category.get(txn.category, ZERO) + amount

        breakdown = [
            {"category": category, "amount": money(amount)}
            for category, amount in sorted(
                by_category.items(), key=lambda item: item[1], reverse=True
            )
        ]
        return {"total_spending": money(total), "category_breakdown": breakdown}

    def monthly_trend(
        self,
        month_from: Optional[str] = None,
        month_to: Optional[str] = None,
        viewpoint=None,
        category: Optional[str] = None,
    ) -> list[dict[str, object]]:
        viewpoint = _value(viewpoint)
        if not month_from and not month_to:
            month_from = month_to = month_key(local_now())
        month_from = month_from or month_to
        month_to = month_to or month_from
        keys = months_between(month_from, month_to)

        totals: dict[str, Decimal] = {key: ZERO for key in keys}
        period = resolve_month_range(keys[0], keys[-1])
        for txn in self._transactions(period, viewpoint):
            if category and txn.category != category:
                continue
            key = month_key(txn.date)
            if key in totals:
                totals[key] += effective_amount(txn, viewpoint)
        return [{"month": key, "amount": money(totals[key])} for key in keys]
