"""
Drink Synchronizer
==================

Drinks are not owned by a single line item. One ordering or editing session
keeps a GlobalDrinkPool shared by every line item it produces for a
restaurant:

- **Free drinks** are entitlements of a pricing option. They are chosen per
  consumed unit for regular items (and scaled by the quantity), and per pack
  instance for packs (every decomposed pack unit gets one allocation).
- **Paid drinks** are extras billed exactly once per restaurant order, to the
  payer: the line item with the earliest creation order.

Rules:
------
1. A drink with a paid quantity is paid, even if it was free before. The
   pool never holds a positive quantity for the same id in both maps.
2. A quantity of 0 means absent; it is pruned rather than stored.
3. The payer is derived from the current set of line items every time it is
   needed. Nothing stores an "is payer" flag.
4. When the paid pool changes, only the payer's price moves, by the delta
   between its old and new paid contribution. Non-payers keep their price
   and carry only their own free drinks.

Unknown drink ids resolve to a zero-price placeholder so a stale reference
cannot abort a commit; the substitution is logged and traced.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, Field, model_validator

from .cart_store import CartLineItem
from .catalog import CatalogAdapter, Drink, PricingOption
from .payload import DrinkEntry
from .pricing import prices_differ
from .tracing import DecisionTrace

logger = logging.getLogger(__name__)


class DrinkKind(str, Enum):
    FREE = "free"
    PAID = "paid"


class GlobalDrinkPool(BaseModel):
    free_drink_quantities: Dict[str, int] = Field(default_factory=dict)
    paid_drink_quantities: Dict[str, int] = Field(default_factory=dict)
    drink_size_by_id: Dict[str, str] = Field(default_factory=dict)
    selected_drinks: Set[str] = Field(default_factory=set)

    @model_validator(mode="after")
    def _normalize(self) -> "GlobalDrinkPool":
        self.normalize()
        return self

    def normalize(self) -> None:
        self.paid_drink_quantities = {k: v for k, v in self.paid_drink_quantities.items() if v > 0}
        self.free_drink_quantities = {
            k: v for k, v in self.free_drink_quantities.items()
            if v > 0 and k not in self.paid_drink_quantities
        }
        self.selected_drinks = set(self.free_drink_quantities) | set(self.paid_drink_quantities)

    def set_free_quantity(self, drink_id: str, quantity: int) -> None:
        if drink_id in self.paid_drink_quantities and quantity > 0:
            logger.debug("Drink %s is paid; free quantity ignored", drink_id)
            return
        if quantity > 0:
            self.free_drink_quantities[drink_id] = quantity
            self.selected_drinks.add(drink_id)
        else:
            self.free_drink_quantities.pop(drink_id, None)
            self.selected_drinks.discard(drink_id)

    def set_paid_quantity(self, drink_id: str, quantity: int) -> None:
        if quantity > 0:
            self.paid_drink_quantities[drink_id] = quantity
            self.free_drink_quantities.pop(drink_id, None)
            self.selected_drinks.add(drink_id)
        else:
            self.paid_drink_quantities.pop(drink_id, None)
            if drink_id not in self.free_drink_quantities:
                self.selected_drinks.discard(drink_id)

    def set_drink_size(self, drink_id: str, size: Optional[str]) -> None:
        if size:
            self.drink_size_by_id[drink_id] = size
        else:
            self.drink_size_by_id.pop(drink_id, None)

    def has_paid(self) -> bool:
        return bool(self.paid_drink_quantities)

    def copy_pool(self) -> "GlobalDrinkPool":
        return self.model_copy(deep=True)


class DrinkRebalance(BaseModel):
    """Outcome of redistributing the paid pool over a restaurant's line items."""

    payer_id: Optional[str] = None
    old_total: float = 0.0
    new_total: float = 0.0
    delta: float = 0.0
    items: List[CartLineItem] = Field(default_factory=list)


def find_payer(items: Iterable[CartLineItem]) -> Optional[CartLineItem]:
    """The line item with the earliest creation order, or None for an empty set."""
    ordered = sorted(items, key=lambda item: item.creation_order)
    return ordered[0] if ordered else None


def stored_paid_prices(item: CartLineItem) -> Dict[str, float]:
    return {e.id: e.price for e in item.customizations.drinks if not e.is_free}


class DrinkSynchronizer:
    def __init__(self, catalog: CatalogAdapter, trace: Optional[DecisionTrace] = None):
        self.catalog = catalog
        self.trace = trace if trace is not None else DecisionTrace()

    def classify(self, pool: GlobalDrinkPool, drink_id: str) -> Optional[DrinkKind]:
        if pool.paid_drink_quantities.get(drink_id, 0) > 0:
            kind = DrinkKind.PAID
        elif pool.free_drink_quantities.get(drink_id, 0) > 0:
            kind = DrinkKind.FREE
        else:
            return None
        self.trace.record("drink.classified", drink_id=drink_id, kind=kind.value)
        return kind

    def resolve_drink(self, restaurant_id: str, drink_id: str) -> Drink:
        for drink in self.catalog.get_restaurant_drinks(restaurant_id):
            if drink.id == drink_id:
                return drink
        logger.warning(
            "Unknown drink %s for restaurant %s, using zero-price placeholder",
            drink_id, restaurant_id,
        )
        self.trace.record("drink.unknown_reference", drink_id=drink_id, restaurant_id=restaurant_id)
        return Drink.placeholder(drink_id)

    def free_allocation(
        self,
        pool: GlobalDrinkPool,
        pricing: Optional[PricingOption],
        quantity: int,
        is_pack: bool,
    ) -> Dict[str, int]:
        """
        Free drinks for one line item.

        The pool holds the per-unit choice. Regular items multiply it by their
        quantity; each pack unit gets it once. Drinks outside the pricing
        option's free list, or beyond its allowance, are dropped.
        """
        if pricing is None or pricing.free_drink_allowance == 0:
            for drink_id in pool.free_drink_quantities:
                self.trace.record("drink.free_dropped", drink_id=drink_id, reason="no_entitlement")
            return {}

        multiplier = 1 if is_pack else max(1, quantity)
        budget = pricing.free_drink_allowance * multiplier
        allowed = set(pricing.free_drink_ids)
        allocation: Dict[str, int] = {}
        for drink_id, per_unit in pool.free_drink_quantities.items():
            if self.classify(pool, drink_id) != DrinkKind.FREE:
                continue
            if allowed and drink_id not in allowed:
                logger.info("Drink %s is not a free choice for pricing %s", drink_id, pricing.id)
                self.trace.record("drink.free_dropped", drink_id=drink_id, reason="not_offered")
                continue
            granted = min(per_unit * multiplier, budget)
            if granted <= 0:
                self.trace.record("drink.free_dropped", drink_id=drink_id, reason="allowance_used")
                continue
            allocation[drink_id] = granted
            budget -= granted
        return allocation

    def paid_total(
        self,
        restaurant_id: str,
        paid_quantities: Dict[str, int],
        price_hints: Optional[Dict[str, float]] = None,
    ) -> float:
        """Sum of price x quantity over the paid pool. Hints override catalog prices."""
        hints = price_hints or {}
        total = 0.0
        for drink_id, qty in paid_quantities.items():
            if qty <= 0:
                continue
            price = hints[drink_id] if drink_id in hints else self.resolve_drink(restaurant_id, drink_id).price
            total += price * qty
        return total

    def paid_contribution(self, item: CartLineItem) -> float:
        """Paid-drink cost currently carried by a line item."""
        return self.paid_total(
            item.restaurant_id,
            item.customizations.paid_drink_quantities,
            stored_paid_prices(item),
        )

    def drink_entries(
        self,
        restaurant_id: str,
        free_quantities: Dict[str, int],
        paid_quantities: Dict[str, int],
        sizes: Dict[str, str],
        existing: Optional[List[DrinkEntry]] = None,
        price_hints: Optional[Dict[str, float]] = None,
    ) -> List[DrinkEntry]:
        """Display list for one line item: paid drinks first, then free ones."""
        known = {e.id: e for e in existing or []}
        hints = price_hints or {}
        entries: List[DrinkEntry] = []

        def describe(drink_id: str, is_free: bool) -> DrinkEntry:
            previous = known.get(drink_id)
            drink = None
            if previous is None or not previous.name:
                drink = self.resolve_drink(restaurant_id, drink_id)
            name = drink.name if drink else previous.name
            size = drink.size if drink else previous.size

            price = 0.0
            if not is_free:
                if drink_id in hints:
                    price = hints[drink_id]
                elif previous is not None and not previous.is_free:
                    price = previous.price
                else:
                    price = (drink or self.resolve_drink(restaurant_id, drink_id)).price
            return DrinkEntry(
                id=drink_id,
                name=name,
                size=sizes.get(drink_id) or size,
                price=price,
                is_free=is_free,
            )

        for drink_id, qty in paid_quantities.items():
            if qty > 0:
                entries.append(describe(drink_id, False))
        for drink_id, qty in free_quantities.items():
            if qty > 0 and drink_id not in paid_quantities:
                entries.append(describe(drink_id, True))
        return sorted(entries, key=lambda e: e.is_free)

    def apply_drinks(
        self,
        item: CartLineItem,
        free_quantities: Dict[str, int],
        paid_quantities: Dict[str, int],
        sizes: Dict[str, str],
        price_hints: Optional[Dict[str, float]] = None,
    ) -> CartLineItem:
        """Copy of the item with its drink bookkeeping replaced."""
        updated = item.model_copy(deep=True)
        payload = updated.customizations
        free = {k: v for k, v in free_quantities.items() if v > 0 and k not in paid_quantities}
        paid = {k: v for k, v in paid_quantities.items() if v > 0}
        merged = dict(free)
        for drink_id, qty in paid.items():
            merged[drink_id] = merged.get(drink_id, 0) + qty

        payload.drinks = self.drink_entries(
            item.restaurant_id, free, paid, sizes, item.customizations.drinks, price_hints,
        )
        payload.free_drink_quantities = free
        payload.paid_drink_quantities = paid
        payload.drink_quantities = merged
        payload.drink_sizes = {k: v for k, v in sizes.items() if k in merged}
        updated.drink_quantities = dict(merged)
        return updated

    def rebalance(
        self,
        items: List[CartLineItem],
        paid_quantities: Dict[str, int],
        sizes: Dict[str, str],
        payer_id: Optional[str] = None,
        price_hints: Optional[Dict[str, float]] = None,
    ) -> DrinkRebalance:
        """
        Redistribute the paid pool over a restaurant's line items.

        The payer (earliest item unless payer_id names another item, which may
        be outside `items`) receives the paid drinks and its unit price moves by
        the delta between its old and new paid contribution. Every other item
        keeps its price and its own free drinks only.
        """
        ordered = sorted(items, key=lambda i: i.creation_order)
        if payer_id is None and ordered:
            payer_id = ordered[0].id
        result = DrinkRebalance(payer_id=payer_id)

        for item in ordered:
            own_free = item.customizations.free_drink_quantities
            item_sizes = {**item.customizations.drink_sizes, **sizes}
            if item.id != payer_id:
                if item.customizations.paid_drink_quantities:
                    logger.info("Clearing paid drinks from non-payer %s", item.id)
                result.items.append(self.apply_drinks(item, own_free, {}, item_sizes))
                continue

            hints = stored_paid_prices(item)
            hints.update(price_hints or {})
            result.old_total = self.paid_contribution(item)
            result.new_total = self.paid_total(item.restaurant_id, paid_quantities, hints)
            result.delta = result.new_total - result.old_total
            updated = self.apply_drinks(item, own_free, paid_quantities, item_sizes, hints)
            self.trace.record("payer.selected", line_item_id=item.id, restaurant_id=item.restaurant_id)
            if prices_differ(result.delta, 0.0):
                updated.unit_price = item.unit_price + result.delta / max(1, item.quantity)
                logger.info(
                    "Paid drinks moved payer %s by %.2f (%.2f -> %.2f)",
                    item.id, result.delta, result.old_total, result.new_total,
                )
                self.trace.record(
                    "price.delta_applied", line_item_id=item.id, delta=result.delta,
                    old_paid_total=result.old_total, new_paid_total=result.new_total,
                )
            result.items.append(updated)
        return result
