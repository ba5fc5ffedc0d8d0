"""
SQLAlchemy-backed Cart Store.

Line items are stored one row each in cart_line_items, with the
customizations payload and the drink map in JSON columns. Payloads are
normalized through migrate_payload when rows are read, so rows written by
older releases load the same way as fresh ones.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..cart_store import CartChangeSet, CartLineItem, LineItemNotFoundError
from ..models import CartLineItemRecord

logger = logging.getLogger(__name__)


def _from_record(record: CartLineItemRecord) -> CartLineItem:
    return CartLineItem(
        id=record.id,
        name=record.name,
        unit_price=record.unit_price,
        quantity=record.quantity,
        restaurant_id=record.restaurant_id,
        menu_item_id=record.menu_item_id or "",
        customizations=record.customizations or {},
        drink_quantities=record.drink_quantities or {},
        special_instructions=record.special_instructions or "",
    )


def _write_record(record: CartLineItemRecord, item: CartLineItem) -> None:
    record.restaurant_id = item.restaurant_id
    record.menu_item_id = item.menu_item_id
    record.name = item.name
    record.unit_price = item.unit_price
    record.quantity = item.quantity
    record.customizations = item.customizations.to_json()
    record.drink_quantities = dict(item.drink_quantities)
    record.special_instructions = item.special_instructions


class SqlCartStore:
    def __init__(self, db: Session):
        self.db = db

    def _require(self, line_item_id: str) -> CartLineItemRecord:
        record = self.db.get(CartLineItemRecord, line_item_id)
        if record is None:
            raise LineItemNotFoundError(line_item_id)
        return record

    def add_line_item(self, item: CartLineItem) -> None:
        self.apply_changes(CartChangeSet(added=[item]))

    def update_line_item(self, line_item_id: str, item: CartLineItem) -> None:
        record = self._require(line_item_id)
        _write_record(record, item)
        self.db.commit()

    def remove_line_item(self, line_item_id: str) -> None:
        self.apply_changes(CartChangeSet(removed_ids=[line_item_id]))

    def get_line_item(self, line_item_id: str) -> Optional[CartLineItem]:
        record = self.db.get(CartLineItemRecord, line_item_id)
        return _from_record(record) if record else None

    def list_by_restaurant(self, restaurant_id: str) -> List[CartLineItem]:
        records = (
            self.db.query(CartLineItemRecord)
            .filter(CartLineItemRecord.restaurant_id == restaurant_id)
            .all()
        )
        return sorted((_from_record(r) for r in records), key=lambda i: i.creation_order)

    def list_all(self) -> List[CartLineItem]:
        records = self.db.query(CartLineItemRecord).all()
        return sorted((_from_record(r) for r in records), key=lambda i: i.creation_order)

    def apply_changes(self, changes: CartChangeSet) -> None:
        """Write a change set in one transaction; nothing is kept if any write fails."""
        try:
            for item in changes.added:
                record = CartLineItemRecord(id=item.id)
                _write_record(record, item)
                self.db.add(record)
            for item in changes.updated:
                _write_record(self._require(item.id), item)
            for line_item_id in changes.removed_ids:
                self.db.delete(self._require(line_item_id))
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Cart change set rolled back")
            raise
        logger.info(
            "Cart changes committed: %d added, %d updated, %d removed",
            len(changes.added), len(changes.updated), len(changes.removed_ids),
        )
