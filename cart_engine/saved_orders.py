"""
Saved-Orders Queue ("save and add another").

Each saved order keeps a private deep copy of a SelectionState taken at the
moment the customer pressed save. Readers only ever get copies of it, so a
saved order cannot change after creation. Orders are grouped by variant id
(all packs share one group) and are materialized together, in creation
order, by the order builder.
"""

import itertools
import logging
from datetime import datetime, timezone
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from .config import PACK_QUEUE_KEY
from .selection import SelectionState

logger = logging.getLogger(__name__)


def queue_key(selection: SelectionState) -> str:
    if selection.is_special_pack:
        return PACK_QUEUE_KEY
    return selection.variant_id or ""


class SavedOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sequence: int = 0

    _selection: SelectionState = PrivateAttr()

    def __init__(self, selection: SelectionState, **data):
        super().__init__(**data)
        self._selection = selection.snapshot()

    @property
    def selection(self) -> SelectionState:
        """Copy of the staged selection; changing it does not touch the saved order."""
        return self._selection.snapshot()

    @property
    def variant_key(self) -> str:
        return queue_key(self._selection)

    def export(self) -> SelectionState:
        """A fresh copy of the staged selection."""
        return self._selection.snapshot()


class SavedOrdersQueue:
    def __init__(self) -> None:
        self._orders: Dict[str, List[SavedOrder]] = {}
        self._sequence = itertools.count()

    def save(self, selection: SelectionState) -> SavedOrder:
        saved = SavedOrder(selection, sequence=next(self._sequence))
        self._orders.setdefault(saved.variant_key, []).append(saved)
        logger.info(
            "Saved order #%d for %s (variant group %r)",
            saved.sequence, selection.menu_item_id, saved.variant_key,
        )
        return saved

    def remove(self, variant_id: str, index: int) -> bool:
        orders = self._orders.get(variant_id)
        if not orders or index < 0 or index >= len(orders):
            return False
        orders.pop(index)
        if not orders:
            del self._orders[variant_id]
        return True

    def list(self, variant_id: str) -> List[SavedOrder]:
        return list(self._orders.get(variant_id, []))

    def all(self) -> List[SavedOrder]:
        orders = [o for group in self._orders.values() for o in group]
        return sorted(orders, key=lambda o: o.sequence)

    def has_any(self) -> bool:
        return any(self._orders.values())

    def clear(self) -> None:
        self._orders.clear()

    def __len__(self) -> int:
        return sum(len(group) for group in self._orders.values())
