"""
Cart line items and the Cart Store contract.

A CartLineItem is one row of the customer's cart. Line items that share a
restaurant_id form an implicit restaurant order; the item with the earliest
creation order (lowest numeric id prefix) is that order's payer.

The Cart Store is an external collaborator. CartStore describes the
contract the engine relies on; InMemoryCartStore is the reference
implementation used by tests and by single-process deployments, and
services.sql_cart_store.SqlCartStore persists to the database.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pydantic import BaseModel, Field, field_validator

from .payload import CustomizationsPayload, migrate_payload

logger = logging.getLogger(__name__)


class LineItemNotFoundError(KeyError):
    """Raised when a line item id is not in the cart."""

    def __init__(self, line_item_id: str):
        self.line_item_id = line_item_id
        super().__init__(line_item_id)

    def __str__(self) -> str:
        return f"Cart line item not found: {self.line_item_id}"


def creation_order(line_item_id: str) -> Tuple[int, int, str]:
    """Sort key: numeric id prefix first, ids without one after all others."""
    prefix = line_item_id.split("_", 1)[0]
    if prefix.isdigit():
        return (0, int(prefix), line_item_id)
    return (1, 0, line_item_id)


class CartLineItem(BaseModel):
    id: str
    name: str
    unit_price: float
    quantity: int = 1
    restaurant_id: str
    menu_item_id: str = ""
    customizations: CustomizationsPayload = Field(default_factory=CustomizationsPayload)
    drink_quantities: Dict[str, int] = Field(default_factory=dict)
    special_instructions: str = ""

    @field_validator("customizations", mode="before")
    @classmethod
    def _migrate_customizations(cls, value: Any) -> Any:
        if isinstance(value, CustomizationsPayload):
            return value
        return migrate_payload(value)

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity

    @property
    def creation_order(self) -> Tuple[int, int, str]:
        return creation_order(self.id)

    @property
    def is_special_pack(self) -> bool:
        return self.customizations.is_special_pack

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"customizations"})
        data["customizations"] = self.customizations.to_json()
        return data


class CartChangeSet(BaseModel):
    """Line item writes that must become visible together."""

    added: List[CartLineItem] = Field(default_factory=list)
    updated: List[CartLineItem] = Field(default_factory=list)
    removed_ids: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.removed_ids)


class CartStore(Protocol):
    def add_line_item(self, item: CartLineItem) -> None: ...

    def update_line_item(self, line_item_id: str, item: CartLineItem) -> None: ...

    def remove_line_item(self, line_item_id: str) -> None: ...

    def get_line_item(self, line_item_id: str) -> Optional[CartLineItem]: ...

    def list_by_restaurant(self, restaurant_id: str) -> List[CartLineItem]: ...

    def apply_changes(self, changes: CartChangeSet) -> None: ...


class InMemoryCartStore:
    """Dictionary-backed cart. Items are copied on the way in and out."""

    def __init__(self) -> None:
        self._items: Dict[str, CartLineItem] = {}
        self._lock = threading.Lock()

    def add_line_item(self, item: CartLineItem) -> None:
        with self._lock:
            self._items[item.id] = item.model_copy(deep=True)

    def update_line_item(self, line_item_id: str, item: CartLineItem) -> None:
        with self._lock:
            if line_item_id not in self._items:
                raise LineItemNotFoundError(line_item_id)
            self._items[line_item_id] = item.model_copy(deep=True)

    def remove_line_item(self, line_item_id: str) -> None:
        with self._lock:
            if self._items.pop(line_item_id, None) is None:
                raise LineItemNotFoundError(line_item_id)

    def get_line_item(self, line_item_id: str) -> Optional[CartLineItem]:
        with self._lock:
            item = self._items.get(line_item_id)
            return item.model_copy(deep=True) if item else None

    def list_by_restaurant(self, restaurant_id: str) -> List[CartLineItem]:
        with self._lock:
            items = [i.model_copy(deep=True) for i in self._items.values() if i.restaurant_id == restaurant_id]
        return sorted(items, key=lambda i: i.creation_order)

    def list_all(self) -> List[CartLineItem]:
        with self._lock:
            items = [i.model_copy(deep=True) for i in self._items.values()]
        return sorted(items, key=lambda i: i.creation_order)

    def apply_changes(self, changes: CartChangeSet) -> None:
        """Apply a change set all-or-nothing."""
        with self._lock:
            staged = dict(self._items)
            for item in changes.added:
                staged[item.id] = item.model_copy(deep=True)
            for item in changes.updated:
                if item.id not in staged:
                    raise LineItemNotFoundError(item.id)
                staged[item.id] = item.model_copy(deep=True)
            for line_item_id in changes.removed_ids:
                if staged.pop(line_item_id, None) is None:
                    raise LineItemNotFoundError(line_item_id)
            self._items = staged
        logger.info(
            "Cart changes applied: %d added, %d updated, %d removed",
            len(changes.added), len(changes.updated), len(changes.removed_ids),
        )
