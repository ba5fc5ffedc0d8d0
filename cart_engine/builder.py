"""
Order Builder
=============

Turns committed selections into cart line items.

Commit Algorithm:
-----------------
1. If the saved-orders queue holds anything, only the saved orders are
   materialized; the live form is a draft of the next order and is ignored.
2. The restaurant and item kind come from the catalog entry, never from
   the client. An unknown menu item raises UnknownMenuItemError.
3. Every selection must be complete, otherwise the whole commit is rejected
   with IncompleteSelectionError and nothing is produced.
4. A pack with quantity N becomes N line items of quantity 1. Each unit
   carries the same pack configuration and its own free-drink allocation.
5. A regular or limited-offer selection becomes one line item with the
   selection's quantity. Its stored unit price is the line total divided by
   the quantity, so unit_price * quantity bills the paid drinks once.
6. Paid drinks go to the first item produced in the batch, unless the
   caller says a payer already exists (the restaurant already has items).

Line Item Ids:
--------------
Ids are "{epoch_millis}_{suffix}". LineItemIdFactory guarantees strictly
increasing prefixes, so sorting by prefix reproduces creation order even
for items created within the same millisecond. Builders share one factory
per process unless a factory is passed in.
"""

import logging
import threading
import time
import uuid
from typing import Callable, Dict, List, Optional

from .cart_store import CartLineItem
from .catalog import CatalogAdapter, MenuItemEntry, UnknownMenuItemError, format_pack_name
from .config import GLOBAL_SUPPLEMENT_PREFIX
from .drinks import DrinkSynchronizer, GlobalDrinkPool
from .payload import CustomizationsPayload, SupplementEntry
from .pricing import PriceCalculator
from .saved_orders import SavedOrdersQueue
from .selection import SelectionState
from .tracing import DecisionTrace

logger = logging.getLogger(__name__)


class IncompleteSelectionError(Exception):
    """Raised when a selection still has unfilled requirements at commit time."""

    def __init__(self, selection: SelectionState, missing: List[str]):
        self.selection = selection
        self.missing = missing
        super().__init__(
            f"Selection for {selection.menu_item_id} is incomplete: missing {', '.join(missing)}"
        )


class LineItemIdFactory:
    """Creates line item ids whose numeric prefixes strictly increase."""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._last = 0
        self._lock = threading.Lock()

    def next_id(self, suffix: str) -> str:
        with self._lock:
            millis = max(self._clock(), self._last + 1)
            self._last = millis
        return f"{millis}_{suffix}"


default_id_factory = LineItemIdFactory()


class OrderBuilder:
    def __init__(
        self,
        catalog: CatalogAdapter,
        calculator: Optional[PriceCalculator] = None,
        synchronizer: Optional[DrinkSynchronizer] = None,
        id_factory: Optional[LineItemIdFactory] = None,
        trace: Optional[DecisionTrace] = None,
    ):
        self.catalog = catalog
        self.trace = trace if trace is not None else DecisionTrace()
        self.calculator = calculator or PriceCalculator(catalog, self.trace)
        self.synchronizer = synchronizer or DrinkSynchronizer(catalog, self.trace)
        self.id_factory = id_factory or default_id_factory

    def commit(
        self,
        selection: Optional[SelectionState],
        queue: Optional[SavedOrdersQueue],
        pool: GlobalDrinkPool,
        payer_claimed: bool = False,
        session_id: Optional[str] = None,
    ) -> List[CartLineItem]:
        """
        Materialize the live selection, or the saved orders if any are queued.

        Args:
            selection: The live form, may be None when only saved orders exist.
            queue: Staged "save and add another" orders.
            pool: Drinks chosen during this session.
            payer_claimed: True when another line item already pays for drinks,
                in which case no produced item receives paid drinks.
            session_id: Correlation id; a new one is generated if omitted.

        Raises:
            IncompleteSelectionError: if any selection to materialize is incomplete.
            UnknownMenuItemError: if a selection names a menu item the catalog lacks.
        """
        if queue is not None and queue.has_any():
            selections = [saved.export() for saved in queue.all()]
            if selection is not None:
                logger.debug("Saved orders queued; live form for %s not committed", selection.menu_item_id)
        elif selection is not None:
            selections = [selection.snapshot()]
        else:
            return []

        for candidate in selections:
            self.bind_to_catalog(candidate)
            missing = candidate.missing_requirements(self.catalog)
            if missing:
                self.trace.record(
                    "commit.rejected", menu_item_id=candidate.menu_item_id, missing=missing,
                )
                logger.info("Commit rejected for %s: missing %s", candidate.menu_item_id, missing)
                raise IncompleteSelectionError(candidate, missing)

        pool = pool.copy_pool()
        pool.normalize()
        session_id = session_id or uuid.uuid4().hex
        payer_available = not payer_claimed

        items: List[CartLineItem] = []
        for candidate in selections:
            if candidate.is_special_pack:
                produced = self.build_pack_units(
                    candidate, pool, candidate.quantity, session_id, payer=payer_available,
                )
            else:
                produced = [self.build_regular_item(candidate, pool, session_id, payer=payer_available)]
            if produced:
                payer_available = False
            items.extend(produced)

        self.trace.record(
            "commit.materialized", popup_session_id=session_id,
            line_item_ids=[i.id for i in items], selections=len(selections),
        )
        logger.info(
            "Committed %d selection(s) into %d line item(s), session %s",
            len(selections), len(items), session_id,
        )
        return items

    def bind_to_catalog(self, selection: SelectionState) -> SelectionState:
        """Take restaurant and item kind from the catalog entry of the selected item."""
        item = self.catalog.get_menu_item(selection.menu_item_id)
        if item is None:
            self.trace.record("commit.rejected", menu_item_id=selection.menu_item_id, missing=["menu item"])
            raise UnknownMenuItemError(selection.menu_item_id)
        if selection.restaurant_id and selection.restaurant_id != item.restaurant_id:
            logger.warning(
                "Selection for %s named restaurant %r, using catalog restaurant %r",
                selection.menu_item_id, selection.restaurant_id, item.restaurant_id,
            )
        selection.restaurant_id = item.restaurant_id
        selection.is_special_pack = item.is_special_pack
        selection.is_limited_offer = item.is_limited_offer
        return selection

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------

    def build_regular_item(
        self,
        selection: SelectionState,
        pool: GlobalDrinkPool,
        session_id: str,
        payer: bool,
    ) -> CartLineItem:
        item = self.catalog.get_menu_item(selection.menu_item_id)
        pricing = self.catalog.get_pricing_option(selection.menu_item_id, selection.pricing_id)
        quantity = selection.quantity

        free = self.synchronizer.free_allocation(pool, pricing, quantity, is_pack=False)
        paid = dict(pool.paid_drink_quantities) if payer else {}
        paid_total = self.synchronizer.paid_total(selection.restaurant_id, paid)
        total = self.calculator.total_for_line_item(
            self.calculator.unit_price(selection), quantity, 0.0, paid_total,
        )

        line_item = CartLineItem(
            id=self.id_factory.next_id("addtocart"),
            name=self.regular_name(item, selection),
            unit_price=total / quantity,
            quantity=quantity,
            restaurant_id=selection.restaurant_id,
            menu_item_id=selection.menu_item_id,
            customizations=self.build_payload(selection, session_id),
            special_instructions=selection.note,
        )
        line_item = self.synchronizer.apply_drinks(line_item, free, paid, pool.drink_size_by_id)
        if payer and paid:
            self.trace.record("payer.selected", line_item_id=line_item.id, restaurant_id=line_item.restaurant_id)
        return line_item

    def build_pack_units(
        self,
        selection: SelectionState,
        pool: GlobalDrinkPool,
        count: int,
        session_id: str,
        payer: bool,
        start_index: int = 0,
    ) -> List[CartLineItem]:
        """Decompose a pack into `count` line items of quantity 1."""
        pricing = self.catalog.get_pricing_option(selection.menu_item_id, selection.pricing_id)
        unit_price = self.calculator.unit_price(selection)
        pack_supplements = self.calculator.pack_supplement_total(selection)
        free = self.synchronizer.free_allocation(pool, pricing, 1, is_pack=True)
        payload = self.build_payload(selection, session_id)
        name = self.pack_name(selection)

        units: List[CartLineItem] = []
        for i in range(count):
            is_payer = payer and i == 0
            paid = dict(pool.paid_drink_quantities) if is_payer else {}
            paid_total = self.synchronizer.paid_total(selection.restaurant_id, paid)
            line_item = CartLineItem(
                id=self.id_factory.next_id(f"addtocart_pack_{start_index + i}"),
                name=name,
                unit_price=self.calculator.total_for_line_item(unit_price, 1, pack_supplements, paid_total),
                quantity=1,
                restaurant_id=selection.restaurant_id,
                menu_item_id=selection.menu_item_id,
                customizations=payload.model_copy(deep=True),
                special_instructions=selection.note,
            )
            units.append(self.synchronizer.apply_drinks(line_item, free, paid, pool.drink_size_by_id))
            if is_payer and paid:
                self.trace.record("payer.selected", line_item_id=line_item.id, restaurant_id=line_item.restaurant_id)
        return units

    def build_payload(self, selection: SelectionState, session_id: Optional[str]) -> CustomizationsPayload:
        """Customizations payload without drinks; drinks are applied per line item."""
        menu_item_id = selection.menu_item_id
        variant = self.catalog.get_variant(menu_item_id, selection.variant_id)
        pricing = self.catalog.get_pricing_option(menu_item_id, selection.pricing_id)
        names: Dict[str, str] = {v.id: v.name for v in self.catalog.get_variants(menu_item_id)}

        def by_name(data: Dict[str, dict]) -> Dict[str, dict]:
            return {names.get(variant_id, variant_id): slots for variant_id, slots in data.items()}

        supplements = [
            SupplementEntry(id=f"{GLOBAL_SUPPLEMENT_PREFIX}{name}", name=name, price=price)
            for name, price in self.calculator.global_supplement_prices(selection).items()
        ]
        return CustomizationsPayload(
            menu_item_id=menu_item_id,
            restaurant_id=selection.restaurant_id,
            main_item_quantity=selection.quantity,
            variant=variant.name if variant else None,
            variant_id=selection.variant_id,
            pricing_id=selection.pricing_id,
            size=pricing.size if pricing else None,
            portion=pricing.portion if pricing else None,
            supplements=supplements,
            removed_ingredients=sorted(selection.removed_ingredients),
            ingredient_preferences={k: v.value for k, v in selection.ingredient_preferences.items()},
            note=selection.note,
            pack_selections=by_name({k: dict(v) for k, v in selection.pack_selections.items()}),
            pack_ingredient_preferences=by_name({
                variant_id: {
                    slot: {ingredient: pref.value for ingredient, pref in prefs.items()}
                    for slot, prefs in slots.items()
                }
                for variant_id, slots in selection.pack_ingredient_preferences.items()
            }),
            pack_supplement_selections=by_name({
                variant_id: {slot: list(supps) for slot, supps in slots.items()}
                for variant_id, slots in selection.pack_supplement_selections.items()
            }),
            pack_supplement_prices=by_name(self.calculator.pack_supplement_prices(selection)),
            is_special_pack=selection.is_special_pack,
            is_limited_offer=selection.is_limited_offer,
            popup_session_id=session_id,
        )

    def regular_name(self, item: Optional[MenuItemEntry], selection: SelectionState) -> str:
        base = item.name if item else selection.menu_item_id
        variant = self.catalog.get_variant(selection.menu_item_id, selection.variant_id)
        return f"{base} - {variant.name}" if variant else base

    def pack_name(self, selection: SelectionState) -> str:
        item = self.catalog.get_menu_item(selection.menu_item_id)
        if item is None:
            return selection.menu_item_id
        return format_pack_name(item.name, self.catalog.get_variants(selection.menu_item_id))
