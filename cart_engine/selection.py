"""
Selection Model
===============

In-memory representation of what the customer has chosen so far for one
order instance: variant, size/portion, quantity, global supplements,
ingredient adjustments, a note, and for packs the per-slot options,
ingredient preferences and pack-scoped supplements.

Pack data is keyed by variant id and then by an integer slot index. Slot
keys arriving as strings from JSON are coerced to integers by pydantic when
the model is validated, so business logic never sees mixed key types.

All mutators are total except set_quantity, which rejects values below 1.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from .catalog import CatalogAdapter, ItemType, MenuItemEntry, PricingOption

logger = logging.getLogger(__name__)


class IngredientPreference(str, Enum):
    WANTED = "wanted"
    LESS = "less"
    NONE = "none"
    NEUTRAL = "neutral"

    @classmethod
    def parse(cls, value: Any) -> "IngredientPreference":
        """Lenient parse: legacy "unwanted" means none, anything unknown is neutral."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text == "unwanted":
            return cls.NONE
        try:
            return cls(text)
        except ValueError:
            return cls.NEUTRAL


class InvalidQuantityError(ValueError):
    """Raised when a quantity below 1 is requested."""

    def __init__(self, quantity: int):
        self.quantity = quantity
        super().__init__(f"Quantity must be at least 1, got {quantity}")


class SelectionState(BaseModel):
    menu_item_id: str
    restaurant_id: str = ""
    is_special_pack: bool = False
    is_limited_offer: bool = False
    variant_id: Optional[str] = None
    pricing_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    supplements: List[str] = Field(default_factory=list)
    removed_ingredients: Set[str] = Field(default_factory=set)
    ingredient_preferences: Dict[str, IngredientPreference] = Field(default_factory=dict)
    note: str = ""
    pack_selections: Dict[str, Dict[int, str]] = Field(default_factory=dict)
    pack_ingredient_preferences: Dict[str, Dict[int, Dict[str, IngredientPreference]]] = Field(
        default_factory=dict
    )
    pack_supplement_selections: Dict[str, Dict[int, List[str]]] = Field(default_factory=dict)

    @classmethod
    def for_menu_item(
        cls, item: MenuItemEntry, default_pricing: Optional[PricingOption] = None
    ) -> "SelectionState":
        return cls(
            menu_item_id=item.id,
            restaurant_id=item.restaurant_id,
            is_special_pack=item.is_special_pack,
            is_limited_offer=item.is_limited_offer,
            pricing_id=default_pricing.id if default_pricing else None,
        )

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def set_variant(self, variant_id: Optional[str]) -> None:
        self.variant_id = variant_id or None

    def set_pricing(self, pricing_id: Optional[str]) -> None:
        self.pricing_id = pricing_id or None

    def set_quantity(self, quantity: int) -> None:
        if quantity < 1:
            raise InvalidQuantityError(quantity)
        self.quantity = quantity

    def set_note(self, note: Optional[str]) -> None:
        self.note = (note or "").strip()

    def toggle_supplement(self, name: str) -> bool:
        """Toggle a global supplement. Returns True if it is now selected."""
        if name in self.supplements:
            self.supplements.remove(name)
            return False
        self.supplements.append(name)
        return True

    def set_ingredient_preference(self, ingredient: str, preference: Any) -> None:
        pref = IngredientPreference.parse(preference)
        if pref == IngredientPreference.NEUTRAL:
            self.ingredient_preferences.pop(ingredient, None)
            self.removed_ingredients.discard(ingredient)
            return
        self.ingredient_preferences[ingredient] = pref
        if pref == IngredientPreference.NONE:
            self.removed_ingredients.add(ingredient)
        else:
            self.removed_ingredients.discard(ingredient)

    def set_pack_slot_option(self, variant_id: str, slot: int, value: Optional[str]) -> None:
        slots = self.pack_selections.setdefault(variant_id, {})
        if value:
            slots[slot] = value
        else:
            slots.pop(slot, None)
        if not slots:
            self.pack_selections.pop(variant_id, None)

    def set_pack_ingredient_preference(
        self, variant_id: str, slot: int, ingredient: str, preference: Any
    ) -> None:
        pref = IngredientPreference.parse(preference)
        slots = self.pack_ingredient_preferences.setdefault(variant_id, {})
        prefs = slots.setdefault(slot, {})
        if pref == IngredientPreference.NEUTRAL:
            prefs.pop(ingredient, None)
        else:
            prefs[ingredient] = pref
        if not prefs:
            slots.pop(slot, None)
        if not slots:
            self.pack_ingredient_preferences.pop(variant_id, None)

    def toggle_pack_supplement(self, variant_id: str, slot: int, name: str) -> bool:
        """Toggle a pack-scoped supplement on one slot. Returns True if now selected."""
        slots = self.pack_supplement_selections.setdefault(variant_id, {})
        names = slots.setdefault(slot, [])
        if name in names:
            names.remove(name)
            selected = False
        else:
            names.append(name)
            selected = True
        if not names:
            slots.pop(slot, None)
        if not slots:
            self.pack_supplement_selections.pop(variant_id, None)
        return selected

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_pack_data(self) -> bool:
        return bool(
            self.pack_selections
            or self.pack_ingredient_preferences
            or self.pack_supplement_selections
        )

    def missing_requirements(self, catalog: CatalogAdapter) -> List[str]:
        """Human-readable list of what still blocks a commit."""
        item = catalog.get_menu_item(self.menu_item_id)
        if item is None:
            return [f"menu item {self.menu_item_id}"]

        missing: List[str] = []
        variants = catalog.get_variants(self.menu_item_id)
        pricing_ids = {p.id for p in catalog.get_pricing_options(self.menu_item_id)}

        if pricing_ids and item.item_type != ItemType.LIMITED_OFFER:
            if self.pricing_id not in pricing_ids:
                missing.append("size")
        elif self.pricing_id is not None and self.pricing_id not in pricing_ids:
            missing.append("size")

        if item.is_special_pack:
            for variant in variants:
                if not variant.options:
                    continue
                chosen = self.pack_selections.get(variant.id, {})
                for slot in range(variant.slot_count):
                    if not chosen.get(slot):
                        missing.append(f"{variant.name} #{slot + 1}")
        elif variants and item.item_type == ItemType.REGULAR:
            if self.variant_id not in {v.id for v in variants}:
                missing.append("variant")
        return missing

    def is_complete(self, catalog: CatalogAdapter) -> bool:
        return not self.missing_requirements(catalog)

    def snapshot(self) -> "SelectionState":
        """Deep copy; later mutation of this selection cannot reach the copy."""
        return self.model_copy(deep=True)
