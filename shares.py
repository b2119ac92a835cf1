from decimal import Decimal
from typing import Optional, Protocol

from ownership import alias_set, is_combined, is_member1, is_member2

DEFAULT_SHARE_PERCENT = 50

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class Shareable(Protocol):
    owner: str
    amount_cents: int
    member1_share: Optional[int]
    member2_share: Optional[int]


def share_percent(transaction: Shareable, viewpoint) -> int:
    """Percentage of a combined expense carried by the member ``viewpoint``."""
    if is_member1(viewpoint):
        share = transaction.member1_share
    else:
        share = transaction.member2_share
    return DEFAULT_SHARE_PERCENT if share is None else share


def effective_amount(transaction: Shareable, viewpoint=None) -> Decimal:
    """Amount of ``transaction`` attributable to ``viewpoint``.

    ``None`` means no owner filter and yields the full amount. ``combined``
    only counts pool expenses. A member gets their own expenses in full and
    their share of combined ones; everything else counts as zero.
    """
    amount = abs(Decimal(transaction.amount_cents)) / HUNDRED
    if viewpoint is None:
        return amount

    if is_combined(viewpoint):
        return amount if is_combined(transaction.owner) else ZERO

    if transaction.owner in alias_set(viewpoint):
        return amount

    if is_combined(transaction.owner) and (
        is_member1(viewpoint) or is_member2(viewpoint)
    ):
        return amount * share_percent(transaction, viewpoint) / HUNDRED

    return ZERO
