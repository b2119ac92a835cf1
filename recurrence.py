import logging
from datetime import date, datetime, timedelta
from typing import Collection, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import get_settings
from models import RecurrenceFrequency, Transaction

logger = logging.getLogger(__name__)

# Upper bound of instances materialized per lineage and invocation. A gap of
# more periods than this is only partially caught up by a single run.
MAX_CATCH_UP = 52

LineageKey = tuple[str, str, int, str, str]


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: datetime, months: int) -> datetime:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def next_recurring_date(value: datetime, frequency: Optional[str]) -> datetime:
    """Advance ``value`` by one period; unknown frequencies step monthly."""
    if frequency == RecurrenceFrequency.weekly.value:
        return value + timedelta(weeks=1)
    if frequency == RecurrenceFrequency.bi_weekly.value:
        return value + timedelta(weeks=2)
    if frequency == RecurrenceFrequency.quarterly.value:
        return _add_months(value, 3)
    if frequency == RecurrenceFrequency.yearly.value:
        return _add_months(value, 12)
    return _add_months(value, 1)


def lineage_key(txn: Transaction) -> LineageKey:
    return (
        txn.account_id,
        txn.vendor,
        txn.amount_cents,
        txn.recurrence_frequency,
        txn.owner,
    )


def _instance_from(template: Transaction, when: datetime) -> Transaction:
    return Transaction(
        statement_id=None,
        account_id=template.account_id,
        owner=template.owner,
        date=when,
        vendor=template.vendor,
        amount_cents=template.amount_cents,
        category=template.category,
        is_shared=template.is_shared,
        notes=template.notes,
        is_recurring=True,
        recurrence_frequency=template.recurrence_frequency,
        split_type=template.split_type,
        member1_share=template.member1_share,
        member2_share=template.member2_share,
        occurrence_date=when.date(),
    )


def expand(
    template: Transaction,
    as_of: datetime,
    existing_dates: Collection[date] = (),
) -> list[Transaction]:
    """Build the not yet materialized instances of ``template`` up to ``as_of``.

    Candidates whose calendar date is already in ``existing_dates`` are
    skipped and do not count toward ``MAX_CATCH_UP``. The returned rows are
    not added to any session.
    """
    if not template.is_recurring or not template.recurrence_frequency:
        return []

    skip = set(existing_dates)
    frequency = template.recurrence_frequency
    instances: list[Transaction] = []
    candidate = next_recurring_date(template.date, frequency)
    while candidate <= as_of and len(instances) < MAX_CATCH_UP:
        if candidate.date() not in skip:
            instances.append(_instance_from(template, candidate))
            skip.add(candidate.date())
        candidate = next_recurring_date(candidate, frequency)
    return instances


class RecurrenceReconciler:
    def __init__(self, session: Session) -> None:
        self.session = session

    def reconcile(
        self, as_of: Optional[datetime] = None, account_id: Optional[str] = None
    ) -> int:
        as_of = as_of or local_now()
        stmt = (
            select(Transaction)
            .where(
                Transaction.is_recurring.is_(True),
                Transaction.recurrence_frequency.is_not(None),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if account_id is not None:
            stmt = stmt.where(Transaction.account_id == account_id)
        rows = self.session.scalars(stmt).all()

        lineages: dict[LineageKey, list[Transaction]] = {}
        for txn in rows:
            lineages.setdefault(lineage_key(txn), []).append(txn)

        inserted = 0
        for members in lineages.values():
            latest = max(members, key=lambda t: t.date)
            existing = {t.date.date() for t in members}
            inserted += self.catch_up(latest, as_of, existing)
        self.session.commit()
        logger.info(
            f"recurring_reconciled: lineages={len(lineages)} inserted={inserted}"
        )
        return inserted

    def catch_up(
        self,
        template: Transaction,
        as_of: datetime,
        existing_dates: Collection[date] = (),
    ) -> int:
        count = 0
        for instance in expand(template, as_of, existing_dates):
            if self._insert(instance):
                count += 1
        return count

    def existing_dates(self, template: Transaction) -> set[date]:
        stmt = select(Transaction.date).where(
            Transaction.is_recurring.is_(True),
            Transaction.account_id == template.account_id,
            Transaction.vendor == template.vendor,
            Transaction.amount_cents == template.amount_cents,
            Transaction.recurrence_frequency == template.recurrence_frequency,
            Transaction.owner == template.owner,
        )
        return {value.date() for value in self.session.scalars(stmt)}

    def _insert(self, instance: Transaction) -> bool:
        # Another request may have written the same instance since the lineage
        # was loaded; the unique constraint is the final arbiter.
        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.account_id == instance.account_id,
                Transaction.vendor == instance.vendor,
                Transaction.amount_cents == instance.amount_cents,
                Transaction.recurrence_frequency == instance.recurrence_frequency,
                Transaction.owner == instance.owner,
                Transaction.occurrence_date == instance.occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return False
        try:
            with self.session.begin_nested():
                self.session.add(instance)
        except IntegrityError:
            logger.info(
                f"recurring_duplicate_skipped: vendor={instance.vendor} "
                f"date={instance.occurrence_date}"
            )
            return False
        return True


def reconcile_quietly(
    session: Session,
    account_id: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> int:
    """Run reconciliation without letting a failure reach the read path."""
    try:
        return RecurrenceReconciler(session).reconcile(as_of, account_id=account_id)
    except Exception:
        logger.exception(f"recurring_reconcile_failed: account={account_id}")
        session.rollback()
        return 0
