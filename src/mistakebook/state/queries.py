"""Read-only views over tracked items."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from mistakebook.timeutils import ensure_utc

from .models import ItemType, TrackedItem


def due_items(
    items: Iterable[TrackedItem],
    now: datetime,
    *,
    include_frozen: bool = False,
    item_type: ItemType | None = "mistake",
) -> list[TrackedItem]:
    """Return items due for training at ``now``, earliest due date first.

    Args:
        items: Candidate items.
        now: Reference time.
        include_frozen: When False, frozen items are never resurfaced.
        item_type: Restrict to one item type; None keeps every type.

    Returns:
        list[TrackedItem]: Due items sorted by ``next_training_date``.
    """
    now = ensure_utc(now)
    selected = [
        item
        for item in items
        if item.is_due(now)
        and (include_frozen or not item.is_frozen)
        and (item_type is None or item.item_type == item_type)
    ]
    return sorted(selected, key=lambda item: (item.next_training_date, item.id))


def training_history(items: Iterable[TrackedItem]) -> list[TrackedItem]:
    """Return items with at least one review, most recently trained first."""
    trained = [item for item in items if item.training_records]
    return sorted(trained, key=lambda item: item.training_records[-1].date, reverse=True)


__all__ = ["due_items", "training_history"]
