"""
Price Calculator
================

Pure price arithmetic for one selection, independent of how the result is
stored. Drink costs are not computed here; the drink synchronizer supplies
the paid-drink contribution, which is non-zero only for the payer item.

Price Components:
-----------------
- **Base price / size surcharge**, by item type:
    regular        base 0, surcharge = chosen pricing option price
    limited offer  base = item price, surcharge = pricing price (size optional)
    pack           base = pricing price (or item price), no surcharge
- **Global supplements**: priced from the pricing option's supplement list,
  part of the unit price and therefore scaled by the line quantity.
- **Pack-scoped supplements**: priced from the pack variant description,
  charged once per decomposed pack unit and never multiplied again.

    total = unit_price * quantity + pack_supplement_total + paid_drinks_contribution

Numeric Semantics:
------------------
Totals keep full float precision. Two prices closer than PRICE_EPSILON are
the same price (prices_differ), which keeps reconciliation from reacting to
floating point jitter.
"""

import logging
from enum import Enum
from typing import Dict, Optional

from .catalog import CatalogAdapter, ItemType, MenuItemEntry, PricingOption, Variant
from .config import PACK_SUPPLEMENT_PREFIX, PRICE_EPSILON
from .selection import SelectionState
from .tracing import DecisionTrace

logger = logging.getLogger(__name__)


class PriceBaselinePolicy(str, Enum):
    """How the edit reconciler treats a stored price that drifted from recalculation."""

    RECOMPUTE = "recompute"
    PRESERVE_STORED = "preserve_stored"

    @classmethod
    def from_setting(cls, value: Optional[str]) -> "PriceBaselinePolicy":
        try:
            return cls((value or cls.RECOMPUTE.value).strip().lower())
        except ValueError:
            logger.warning("Unknown price baseline policy %r, using recompute", value)
            return cls.RECOMPUTE


def prices_differ(a: float, b: float, epsilon: float = PRICE_EPSILON) -> bool:
    return abs(a - b) > epsilon


class PriceCalculator:
    def __init__(self, catalog: CatalogAdapter, trace: Optional[DecisionTrace] = None):
        self.catalog = catalog
        self.trace = trace if trace is not None else DecisionTrace()

    def _pricing_for(self, selection: SelectionState) -> Optional[PricingOption]:
        if not selection.pricing_id:
            return None
        for option in self.catalog.get_pricing_options(selection.menu_item_id):
            if option.id == selection.pricing_id:
                return option
        logger.warning(
            "Pricing option %s not found for menu item %s",
            selection.pricing_id, selection.menu_item_id,
        )
        self.trace.record(
            "catalog.unknown_reference", kind="pricing",
            menu_item_id=selection.menu_item_id, reference=selection.pricing_id,
        )
        return None

    def _menu_item(self, selection: SelectionState) -> Optional[MenuItemEntry]:
        item = self.catalog.get_menu_item(selection.menu_item_id)
        if item is None:
            logger.warning("Menu item %s not found, pricing at zero", selection.menu_item_id)
            self.trace.record(
                "catalog.unknown_reference", kind="menu_item", reference=selection.menu_item_id,
            )
        return item

    def base_price(self, selection: SelectionState) -> float:
        item = self._menu_item(selection)
        if item is None:
            return 0.0
        pricing = self._pricing_for(selection)
        item_type = item.item_type
        if item_type == ItemType.SPECIAL_PACK:
            return pricing.price if pricing else item.price
        if item_type == ItemType.LIMITED_OFFER:
            return item.price
        return 0.0

    def size_surcharge(self, selection: SelectionState) -> float:
        item = self._menu_item(selection)
        if item is None or item.item_type == ItemType.SPECIAL_PACK:
            return 0.0
        pricing = self._pricing_for(selection)
        if pricing is not None:
            return pricing.price
        if item.item_type == ItemType.REGULAR:
            # Regular item without a size: the item's own price is all we have
            return item.price
        return 0.0

    def global_supplement_prices(self, selection: SelectionState) -> Dict[str, float]:
        """Price of each selected global supplement; pack-scoped names are excluded."""
        available = self.catalog.get_global_supplements(
            self._pricing_for(selection), selection.menu_item_id
        )
        prices: Dict[str, float] = {}
        for name in selection.supplements:
            if name.startswith(PACK_SUPPLEMENT_PREFIX):
                continue
            if name not in available:
                logger.warning("Supplement %s is not offered for %s", name, selection.menu_item_id)
                self.trace.record(
                    "catalog.unknown_reference", kind="supplement",
                    menu_item_id=selection.menu_item_id, reference=name,
                )
            prices[name] = available.get(name, 0.0)
        return prices

    def global_supplement_total(self, selection: SelectionState) -> float:
        return sum(self.global_supplement_prices(selection).values())

    def unit_price(self, selection: SelectionState) -> float:
        """Base price plus size surcharge plus global supplements, for one unit."""
        return (
            self.base_price(selection)
            + self.size_surcharge(selection)
            + self.global_supplement_total(selection)
        )

    def pack_supplement_prices(self, selection: SelectionState) -> Dict[str, Dict[int, Dict[str, float]]]:
        """variant id -> slot -> supplement -> price, as declared by each pack variant."""
        variants: Dict[str, Variant] = {
            v.id: v for v in self.catalog.get_variants(selection.menu_item_id)
        }
        result: Dict[str, Dict[int, Dict[str, float]]] = {}
        for variant_id, slots in selection.pack_supplement_selections.items():
            variant = variants.get(variant_id)
            declared = self.catalog.parse_pack_supplements(variant.description) if variant else {}
            if variant is None:
                self.trace.record(
                    "catalog.unknown_reference", kind="variant",
                    menu_item_id=selection.menu_item_id, reference=variant_id,
                )
            for slot, names in slots.items():
                slot_prices = {}
                for name in names:
                    if name not in declared:
                        logger.warning("Pack supplement %s not declared on variant %s", name, variant_id)
                    slot_prices[name] = declared.get(name, 0.0)
                if slot_prices:
                    result.setdefault(variant_id, {})[slot] = slot_prices
        return result

    def pack_supplement_total(self, selection: SelectionState) -> float:
        """Pack-scoped supplements for one decomposed unit."""
        return self.sum_pack_supplement_prices(self.pack_supplement_prices(selection))

    @staticmethod
    def sum_pack_supplement_prices(prices: Dict[str, Dict[int, Dict[str, float]]]) -> float:
        return sum(
            price
            for slots in prices.values()
            for slot_prices in slots.values()
            for price in slot_prices.values()
        )

    @staticmethod
    def total_for_line_item(
        unit_price: float,
        quantity: int,
        pack_supplement_total: float = 0.0,
        paid_drinks_contribution: float = 0.0,
    ) -> float:
        return unit_price * quantity + pack_supplement_total + paid_drinks_contribution

    def line_total(self, selection: SelectionState, paid_drinks_contribution: float = 0.0) -> float:
        """Total for the line item this selection produces (one unit for packs)."""
        if selection.is_special_pack:
            return self.total_for_line_item(
                self.unit_price(selection), 1,
                self.pack_supplement_total(selection), paid_drinks_contribution,
            )
        return self.total_for_line_item(
            self.unit_price(selection), selection.quantity, 0.0, paid_drinks_contribution,
        )
