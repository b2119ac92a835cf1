"""Owner identifiers and their legacy aliases.

Rows written before households could name their members carry ``noble`` and
``maria`` instead of ``member1`` and ``member2``. Every owner comparison that
is meant to select "this member's expenses" has to go through ``alias_set``
so both spellings match.
"""

from types import MappingProxyType
from typing import Mapping, Optional

from models import Owner

OWNER_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        Owner.member1.value: Owner.noble.value,
        Owner.noble.value: Owner.member1.value,
        Owner.member2.value: Owner.maria.value,
        Owner.maria.value: Owner.member2.value,
    }
)

_CANONICAL: Mapping[str, str] = MappingProxyType(
    {
        Owner.noble.value: Owner.member1.value,
        Owner.maria.value: Owner.member2.value,
    }
)


def _raw(owner) -> str:
    if isinstance(owner, Owner):
        return owner.value
    return str(owner)


def alias_set(owner) -> frozenset[str]:
    """Return every raw owner value equivalent to ``owner`` for filtering.

    Unknown values resolve to themselves only, ``combined`` is never aliased.
    """
    raw = _raw(owner)
    alias = OWNER_ALIASES.get(raw)
    if alias is None:
        return frozenset({raw})
    return frozenset({raw, alias})


def canonical_owner(owner) -> str:
    raw = _raw(owner)
    return _CANONICAL.get(raw, raw)


def is_member1(owner: Optional[object]) -> bool:
    return owner is not None and _raw(owner) in alias_set(Owner.member1)


def is_member2(owner: Optional[object]) -> bool:
    return owner is not None and _raw(owner) in alias_set(Owner.member2)


def is_combined(owner: Optional[object]) -> bool:
    return owner is not None and _raw(owner) == Owner.combined.value
