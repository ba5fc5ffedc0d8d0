"""
Cart Service
============

Orchestrates the engine components against a Cart Store:

- start_order: open an ordering session (selection, drink pool, saved-orders
  queue) for one menu item
- commit: build line items from the session and add them to the cart
- open_edit / save_edit: restore an existing line item and write back an edit
- remove_line_item: delete a line item, moving paid drinks to the next payer
- update_quantity: change a line item's quantity in place (0 or less removes it)
- clear_restaurant: drop every line item of one restaurant

Thread Safety:
--------------
Every read-modify-write across a restaurant's line items runs under that
restaurant's lock, taken from a lock registry guarded by its own lock. While
a commit or reconciliation runs, the catalog update coalescer is held so
display updates wait until the write is done.

One Payer Per Restaurant:
-------------------------
When a commit adds items to a restaurant that already has line items, the
new items are never the payer. Their paid drinks are merged into the
existing payer's paid drinks, and the payer's price moves by the difference.
"""

import logging
import threading
import uuid
from contextlib import nullcontext
from typing import Dict, List, Optional

from ..builder import LineItemIdFactory, OrderBuilder
from ..cart_store import CartChangeSet, CartLineItem, CartStore, LineItemNotFoundError
from ..catalog import MenuCatalog
from ..config import PRICE_BASELINE_POLICY
from ..drinks import GlobalDrinkPool, find_payer
from ..notifications import CatalogUpdateCoalescer
from ..pricing import PriceBaselinePolicy
from ..reconciler import EditReconciler, EditSession
from ..saved_orders import SavedOrdersQueue
from ..selection import SelectionState
from ..tracing import DecisionTrace

logger = logging.getLogger(__name__)


# =============================================================================
# Restaurant Locks
# =============================================================================

_restaurant_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def restaurant_lock(restaurant_id: str) -> threading.Lock:
    with _locks_guard:
        lock = _restaurant_locks.get(restaurant_id)
        if lock is None:
            lock = threading.Lock()
            _restaurant_locks[restaurant_id] = lock
        return lock


class OrderingSession:
    """State of one open ordering popup. Discarding it has no side effects."""

    def __init__(self, selection: SelectionState, session_id: Optional[str] = None):
        self.selection = selection
        self.pool = GlobalDrinkPool()
        self.queue = SavedOrdersQueue()
        self.session_id = session_id or uuid.uuid4().hex

    def save_and_add_another(self) -> None:
        """Stage the live form and start a fresh one for the same item."""
        self.queue.save(self.selection)
        fresh = SelectionState(
            menu_item_id=self.selection.menu_item_id,
            restaurant_id=self.selection.restaurant_id,
            is_special_pack=self.selection.is_special_pack,
            is_limited_offer=self.selection.is_limited_offer,
            pricing_id=self.selection.pricing_id,
        )
        self.selection = fresh


class CartService:
    def __init__(
        self,
        catalog: MenuCatalog,
        store: CartStore,
        policy: Optional[PriceBaselinePolicy] = None,
        coalescer: Optional[CatalogUpdateCoalescer] = None,
        trace: Optional[DecisionTrace] = None,
        id_factory: Optional[LineItemIdFactory] = None,
    ):
        self.catalog = catalog
        self.store = store
        self.coalescer = coalescer
        self.trace = trace if trace is not None else DecisionTrace()
        self.builder = OrderBuilder(catalog, id_factory=id_factory, trace=self.trace)
        self.reconciler = EditReconciler(
            catalog,
            builder=self.builder,
            policy=policy or PriceBaselinePolicy.from_setting(PRICE_BASELINE_POLICY),
            trace=self.trace,
        )

    def _held(self):
        return self.coalescer.hold() if self.coalescer is not None else nullcontext()

    # ------------------------------------------------------------------
    # New orders
    # ------------------------------------------------------------------

    def start_order(self, menu_item_id: str) -> OrderingSession:
        item = self.catalog.require_menu_item(menu_item_id)
        selection = SelectionState.for_menu_item(item, self.catalog.default_pricing_option(menu_item_id))
        return OrderingSession(selection)

    def commit(self, session: OrderingSession) -> List[CartLineItem]:
        items = self.commit_selection(session.selection, session.queue, session.pool, session.session_id)
        session.queue.clear()
        return items

    def commit_selection(
        self,
        selection: Optional[SelectionState],
        queue: Optional[SavedOrdersQueue],
        pool: GlobalDrinkPool,
        session_id: Optional[str] = None,
    ) -> List[CartLineItem]:
        staged = queue.all() if queue is not None else []
        source = staged[0].selection if staged else selection
        if source is None:
            return []
        restaurant_id = self.catalog.require_menu_item(source.menu_item_id).restaurant_id

        with restaurant_lock(restaurant_id), self._held():
            existing = self.store.list_by_restaurant(restaurant_id)
            items = self.builder.commit(
                selection, queue, pool, payer_claimed=bool(existing), session_id=session_id,
            )
            changes = CartChangeSet(added=items)
            if existing and pool.paid_drink_quantities:
                changes.updated = self._merge_paid_into_payer(existing, pool)
            self.store.apply_changes(changes)
        return items

    def _merge_paid_into_payer(self, existing: List[CartLineItem], pool: GlobalDrinkPool) -> List[CartLineItem]:
        payer = find_payer(existing)
        merged = dict(payer.customizations.paid_drink_quantities)
        for drink_id, qty in pool.paid_drink_quantities.items():
            merged[drink_id] = merged.get(drink_id, 0) + qty
        sizes = dict(payer.customizations.drink_sizes)
        sizes.update(pool.drink_size_by_id)
        rebalance = self.builder.synchronizer.rebalance(existing, merged, sizes)
        originals = {item.id: item for item in existing}
        logger.info(
            "New paid drinks merged into payer %s (+%.2f)", rebalance.payer_id, rebalance.delta,
        )
        return [item for item in rebalance.items if item != originals[item.id]]

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def _require(self, line_item_id: str) -> CartLineItem:
        item = self.store.get_line_item(line_item_id)
        if item is None:
            raise LineItemNotFoundError(line_item_id)
        return item

    def get_line_item(self, line_item_id: str) -> CartLineItem:
        return self._require(line_item_id)

    def open_edit(self, line_item_id: str) -> EditSession:
        target = self._require(line_item_id)
        return self.reconciler.restore(target, self.store.list_by_restaurant(target.restaurant_id))

    def save_edit(
        self, line_item_id: str, selection: SelectionState, pool: GlobalDrinkPool
    ) -> CartChangeSet:
        """Re-restore under the lock, apply the edited state and write the result."""
        target = self._require(line_item_id)
        with restaurant_lock(target.restaurant_id), self._held():
            target = self._require(line_item_id)
            siblings = self.store.list_by_restaurant(target.restaurant_id)
            session = self.reconciler.restore(target, siblings)
            session.selection = selection.model_copy(
                update={
                    "menu_item_id": session.selection.menu_item_id,
                    "restaurant_id": session.selection.restaurant_id,
                    "is_special_pack": session.selection.is_special_pack,
                    "is_limited_offer": session.selection.is_limited_offer,
                },
                deep=True,
            )
            session.pool = pool.copy_pool()
            changes = self.reconciler.reconcile(session, siblings)
            self.store.apply_changes(changes)
        return changes

    def remove_line_item(self, line_item_id: str) -> CartChangeSet:
        target = self._require(line_item_id)
        with restaurant_lock(target.restaurant_id), self._held():
            target = self._require(line_item_id)
            siblings = self.store.list_by_restaurant(target.restaurant_id)
            changes = self.reconciler.reconcile_removal(target, siblings)
            self.store.apply_changes(changes)
        return changes

    def update_quantity(self, line_item_id: str, quantity: int) -> CartChangeSet:
        """
        Set a line item's quantity from the cart screen.

        A quantity of 0 or less removes the item. Otherwise the item is
        repriced for the new quantity with paid drinks billed once, and for a
        pack unit the number of units of its commit is changed.
        """
        if quantity <= 0:
            return self.remove_line_item(line_item_id)
        target = self._require(line_item_id)
        with restaurant_lock(target.restaurant_id), self._held():
            target = self._require(line_item_id)
            siblings = self.store.list_by_restaurant(target.restaurant_id)
            changes = self.reconciler.reconcile_quantity(target, siblings, quantity)
            self.store.apply_changes(changes)
        return changes

    def clear_restaurant(self, restaurant_id: str) -> int:
        """Remove every line item of a restaurant. Returns how many were removed."""
        with restaurant_lock(restaurant_id), self._held():
            items = self.store.list_by_restaurant(restaurant_id)
            changes = CartChangeSet(removed_ids=[i.id for i in items])
            if not changes.is_empty():
                self.store.apply_changes(changes)
        logger.info("Cleared %d line item(s) for restaurant %s", len(items), restaurant_id)
        return len(items)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_items(self, restaurant_id: str) -> List[CartLineItem]:
        return self.store.list_by_restaurant(restaurant_id)

    def restaurant_total(self, restaurant_id: str) -> float:
        return sum(item.line_total for item in self.store.list_by_restaurant(restaurant_id))
