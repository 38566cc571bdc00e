"""Merge extracted traffic into per-entity totals."""

from __future__ import annotations

from typing import AbstractSet, Mapping, MutableMapping

from .models import Record


def add(
    totals: MutableMapping[str, int],
    record: Record,
    known_entities: AbstractSet[str],
) -> bool:
    """Add a record's bytes to its entity's total.

    Records for entities outside ``known_entities`` are ignored and never
    create an entry. A total seeded by the caller is added to, not replaced.

    Returns:
        True if the record was counted
    """
    if record.entity not in known_entities:
        return False
    totals[record.entity] = totals.get(record.entity, 0) + record.total
    return True


def merge(totals: MutableMapping[str, int], delta: Mapping[str, int]) -> None:
    """Fold a per-run delta into the caller's totals."""
    for entity, amount in delta.items():
        totals[entity] = totals.get(entity, 0) + amount
