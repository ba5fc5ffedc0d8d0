"""
Catalog Adapter for the Cart Engine
===================================

This module is the read-only view of a restaurant menu that the rest of the
engine prices against. It exposes menu items, their variants and pricing
options, the restaurant's drink list, and the supplement price lists.

Menu Item Types:
----------------
- **Special pack**: a composite item (category contains "pack", "combo" or
  "special") made of several sub-item slots. Each variant of a pack is one
  kind of sub-item; its description declares how many slots it fills.
- **Limited-time offer**: an item with its own price where choosing a size is
  optional and only adds a surcharge.
- **Regular**: an item whose price comes entirely from the chosen pricing
  option (size/portion).

Variant Description Format:
---------------------------
Pack variants carry their configuration in the description field:

    qty:2|options:Poulet,Viande|ingredients:Tomate,Salade|supplements:Cheddar:50.0,Oignons

- qty: number of slots this variant fills in one pack (default 1)
- options: choices offered for each slot
- ingredients: ingredients the customer can adjust per slot
- supplements: pack-scoped add-ons, "name:price" (price defaults to 0)
- hidden_supplements: supplements temporarily not offered

Global Supplements:
-------------------
Global supplements apply to the whole item and scale with its quantity.
They are read from the pricing option's offer_details["global_supplements"]
(a name->price map, or a legacy list of names priced at 0). When the pricing
option declares none, the item's offer details and supplement list are used.

Display Updates:
----------------
The real-time channel can mark entries unavailable or announce a new price.
Those updates only touch display fields (is_available, price_changed,
announced_price); the price used for calculation never changes underneath an
open ordering session.

Usage:
------
    catalog = MenuCatalog(menu_data)
    item = catalog.require_menu_item("m1")
    variants = catalog.get_variants("m1")
    drinks = catalog.get_restaurant_drinks(item.restaurant_id)
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from .config import PACK_CATEGORY_KEYWORDS

logger = logging.getLogger(__name__)


class UnknownMenuItemError(LookupError):
    """Raised when a session is opened for a menu item the catalog does not know."""

    def __init__(self, menu_item_id: str):
        self.menu_item_id = menu_item_id
        super().__init__(f"Unknown menu item: {menu_item_id}")


class ItemType(str, Enum):
    SPECIAL_PACK = "special_pack"
    LIMITED_OFFER = "limited_offer"
    REGULAR = "regular"


class Drink(BaseModel):
    id: str
    name: str
    price: float = 0.0
    size: Optional[str] = None
    is_available: bool = True

    @classmethod
    def placeholder(cls, drink_id: str) -> "Drink":
        """Zero-price stand-in for a drink id the catalog no longer has."""
        return cls(id=drink_id, name=drink_id, price=0.0, is_available=False)


class VariantDescription(BaseModel):
    quantity: int = 1
    options: List[str] = Field(default_factory=list)
    ingredients: List[str] = Field(default_factory=list)
    supplements: Dict[str, float] = Field(default_factory=dict)
    hidden_supplements: List[str] = Field(default_factory=list)

    @property
    def selectable_supplements(self) -> Dict[str, float]:
        hidden = set(self.hidden_supplements)
        return {name: price for name, price in self.supplements.items() if name not in hidden}


def _split_names(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_variant_description(description: Optional[str]) -> VariantDescription:
    """Parse the pipe-separated variant description mini-format."""
    parsed = VariantDescription()
    if not description:
        return parsed

    for segment in description.split("|"):
        key, sep, value = segment.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        if key == "qty":
            try:
                parsed.quantity = max(1, int(value.strip()))
            except ValueError:
                parsed.quantity = 1
        elif key == "options":
            parsed.options = _split_names(value)
        elif key == "ingredients":
            parsed.ingredients = _split_names(value)
        elif key == "hidden_supplements":
            parsed.hidden_supplements = _split_names(value)
        elif key == "supplements":
            for entry in _split_names(value):
                name, _, price = entry.partition(":")
                name = name.strip()
                if name:
                    parsed.supplements[name] = _to_float(price) if price else 0.0
    return parsed


def parse_supplement_map(value: Any, hidden: Optional[List[str]] = None) -> Dict[str, float]:
    """Normalize a global supplement declaration (map or legacy list) to name->price."""
    hidden_names = set(hidden or [])
    result: Dict[str, float] = {}
    if isinstance(value, dict):
        for name, price in value.items():
            result[str(name)] = _to_float(price)
    elif isinstance(value, list):
        for entry in value:
            if isinstance(entry, dict) and entry.get("name"):
                result[str(entry["name"])] = _to_float(entry.get("price", 0.0))
            elif entry is not None:
                result[str(entry)] = 0.0
    return {name: price for name, price in result.items() if name not in hidden_names}


class Variant(BaseModel):
    id: str
    menu_item_id: str = ""
    name: str
    description: str = ""
    is_available: bool = True
    display_order: int = 0

    @property
    def parsed(self) -> VariantDescription:
        return parse_variant_description(self.description)

    @property
    def slot_count(self) -> int:
        return self.parsed.quantity

    @property
    def options(self) -> List[str]:
        return self.parsed.options

    @property
    def ingredients(self) -> List[str]:
        return self.parsed.ingredients


class PricingOption(BaseModel):
    id: str
    menu_item_id: str = ""
    variant_id: Optional[str] = None
    size: Optional[str] = None
    portion: Optional[str] = None
    price: float = 0.0
    is_default: bool = False
    display_order: int = 0
    free_drinks_included: bool = False
    free_drink_ids: List[str] = Field(default_factory=list)
    free_drinks_quantity: int = 1
    global_supplements: Dict[str, float] = Field(default_factory=dict)
    # Display-only fields driven by the notification channel
    price_changed: bool = False
    announced_price: Optional[float] = None

    @property
    def label(self) -> str:
        parts = [p for p in (self.size, self.portion) if p]
        return " / ".join(parts)

    @property
    def free_drink_allowance(self) -> int:
        """Free drinks included per unit (or per pack instance)."""
        if not self.free_drinks_included:
            return 0
        return max(0, self.free_drinks_quantity)


class MenuItemEntry(BaseModel):
    id: str
    restaurant_id: str
    name: str
    category: str = ""
    price: float = 0.0
    is_limited_offer: bool = False
    is_available: bool = True
    main_ingredients: List[str] = Field(default_factory=list)
    price_changed: bool = False
    announced_price: Optional[float] = None

    @property
    def is_special_pack(self) -> bool:
        category = self.category.lower()
        return any(keyword in category for keyword in PACK_CATEGORY_KEYWORDS)

    @property
    def item_type(self) -> ItemType:
        if self.is_special_pack:
            return ItemType.SPECIAL_PACK
        if self.is_limited_offer:
            return ItemType.LIMITED_OFFER
        return ItemType.REGULAR


class CatalogAdapter(Protocol):
    """Read-only menu access consumed by the pricing and building components."""

    def get_menu_item(self, menu_item_id: str) -> Optional[MenuItemEntry]: ...

    def get_variants(self, menu_item_id: str) -> List[Variant]: ...

    def get_pricing_options(self, menu_item_id: str) -> List[PricingOption]: ...

    def get_variant(self, menu_item_id: str, variant_id: Optional[str]) -> Optional[Variant]: ...

    def get_pricing_option(self, menu_item_id: str, pricing_id: Optional[str]) -> Optional[PricingOption]: ...

    def get_restaurant_drinks(self, restaurant_id: str) -> List[Drink]: ...

    def get_global_supplements(
        self, pricing: Optional[PricingOption], menu_item_id: Optional[str] = None
    ) -> Dict[str, float]: ...

    def parse_pack_supplements(self, variant_description: Optional[str]) -> Dict[str, float]: ...


def format_pack_name(name: str, variants: List[Variant]) -> str:
    """
    Build the display name of a pack from its variants.

    Example: "Pack Familial (2)x Burger, Frites et Boisson"
    """
    if not variants:
        return name
    if " et " in name or ")x " in name or any(v.name and v.name in name for v in variants):
        return name

    parts = []
    for variant in variants:
        if not variant.name:
            continue
        qty = variant.slot_count
        parts.append(f"({qty})x {variant.name}" if qty > 1 else variant.name)
    if not parts:
        return name
    if len(parts) == 1:
        return f"{name} {parts[0]}"
    return f"{name} {', '.join(parts[:-1])} et {parts[-1]}"


class MenuCatalog:
    """
    In-memory CatalogAdapter built from a menu_data dict.

    Expected shape:

        {
          "menu_items": [
            {"id": "m1", "restaurant_id": "r1", "name": "Burger", "category": "Burgers",
             "price": 0.0, "is_limited_offer": false, "offer_details": {...},
             "supplements": [{"name": "Cheese", "price": 1.0}],
             "variants": [{"id": "v1", "name": "Classic", "description": ""}],
             "pricing": [{"id": "p1", "size": "M", "price": 8.0, "is_default": true,
                          "free_drinks_included": true, "free_drinks_list": ["d1"],
                          "free_drinks_quantity": 1, "offer_details": {...}}]}
          ],
          "drinks": {"r1": [{"id": "d1", "name": "Cola", "price": 2.5}]}
        }
    """

    def __init__(self, menu_data: Optional[Dict[str, Any]] = None):
        menu_data = menu_data or {}
        self._items: Dict[str, MenuItemEntry] = {}
        self._variants: Dict[str, List[Variant]] = {}
        self._pricing: Dict[str, List[PricingOption]] = {}
        self._item_supplements: Dict[str, Dict[str, float]] = {}
        self._drinks: Dict[str, List[Drink]] = {}

        for raw_item in menu_data.get("menu_items", []):
            self._load_item(raw_item)
        for restaurant_id, drinks in (menu_data.get("drinks") or {}).items():
            self._drinks[str(restaurant_id)] = [
                Drink(
                    id=str(d["id"]),
                    name=d.get("name", ""),
                    price=_to_float(d.get("price", 0.0)),
                    size=d.get("size"),
                    is_available=bool(d.get("is_available", True)),
                )
                for d in drinks
            ]

        logger.info(
            "Catalog loaded: %d menu items, %d restaurants with drinks",
            len(self._items), len(self._drinks),
        )

    def _load_item(self, raw: Dict[str, Any]) -> None:
        item_id = str(raw["id"])
        offer_details = raw.get("offer_details") or {}
        item_supplements = parse_supplement_map(raw.get("supplements") or [])
        item_supplements.update(parse_supplement_map(
            offer_details.get("global_supplements"),
            offer_details.get("hidden_global_supplements"),
        ))

        self._items[item_id] = MenuItemEntry(
            id=item_id,
            restaurant_id=str(raw.get("restaurant_id", "")),
            name=raw.get("name", ""),
            category=raw.get("category") or "",
            price=_to_float(raw.get("price", 0.0)),
            is_limited_offer=bool(raw.get("is_limited_offer", False)),
            is_available=bool(raw.get("is_available", True)),
            main_ingredients=list(raw.get("main_ingredients") or []),
        )
        self._item_supplements[item_id] = item_supplements

        variants = [
            Variant(
                id=str(rv["id"]),
                menu_item_id=item_id,
                name=rv.get("name", ""),
                description=rv.get("description") or "",
                is_available=bool(rv.get("is_available", True)),
                display_order=int(rv.get("display_order", 0) or 0),
            )
            for rv in raw.get("variants") or []
        ]
        self._variants[item_id] = sorted(variants, key=lambda v: v.display_order)

        options = []
        for rp in raw.get("pricing") or []:
            details = rp.get("offer_details") or {}
            declared = details.get("global_supplements")
            supplements = (
                parse_supplement_map(declared, details.get("hidden_global_supplements"))
                if declared is not None else dict(item_supplements)
            )
            options.append(PricingOption(
                id=str(rp["id"]),
                menu_item_id=item_id,
                variant_id=str(rp["variant_id"]) if rp.get("variant_id") is not None else None,
                size=rp.get("size"),
                portion=rp.get("portion"),
                price=_to_float(rp.get("price", 0.0)),
                is_default=bool(rp.get("is_default", False)),
                display_order=int(rp.get("display_order", 0) or 0),
                free_drinks_included=bool(rp.get("free_drinks_included", False)),
                free_drink_ids=[str(d) for d in rp.get("free_drinks_list") or []],
                free_drinks_quantity=int(rp.get("free_drinks_quantity") or 1),
                global_supplements=supplements,
            ))
        self._pricing[item_id] = sorted(options, key=lambda p: p.display_order)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_menu_item(self, menu_item_id: str) -> Optional[MenuItemEntry]:
        return self._items.get(menu_item_id)

    def require_menu_item(self, menu_item_id: str) -> MenuItemEntry:
        item = self._items.get(menu_item_id)
        if item is None:
            raise UnknownMenuItemError(menu_item_id)
        return item

    def list_menu_items(self, restaurant_id: Optional[str] = None) -> List[MenuItemEntry]:
        items = list(self._items.values())
        if restaurant_id is not None:
            items = [i for i in items if i.restaurant_id == restaurant_id]
        return items

    def get_variants(self, menu_item_id: str) -> List[Variant]:
        return list(self._variants.get(menu_item_id, []))

    def get_variant(self, menu_item_id: str, variant_id: Optional[str]) -> Optional[Variant]:
        if not variant_id:
            return None
        for variant in self._variants.get(menu_item_id, []):
            if variant.id == variant_id:
                return variant
        return None

    def find_variant(self, menu_item_id: str, key: Optional[str]) -> Optional[Variant]:
        """Find a variant by id, falling back to its display name."""
        variant = self.get_variant(menu_item_id, key)
        if variant is not None or not key:
            return variant
        for candidate in self._variants.get(menu_item_id, []):
            if candidate.name == key:
                return candidate
        return None

    def get_pricing_options(self, menu_item_id: str) -> List[PricingOption]:
        return list(self._pricing.get(menu_item_id, []))

    def get_pricing_option(self, menu_item_id: str, pricing_id: Optional[str]) -> Optional[PricingOption]:
        if not pricing_id:
            return None
        for option in self._pricing.get(menu_item_id, []):
            if option.id == pricing_id:
                return option
        return None

    def default_pricing_option(self, menu_item_id: str) -> Optional[PricingOption]:
        for option in self._pricing.get(menu_item_id, []):
            if option.is_default:
                return option
        return None

    def get_restaurant_drinks(self, restaurant_id: str) -> List[Drink]:
        return list(self._drinks.get(restaurant_id, []))

    def get_drink(self, restaurant_id: str, drink_id: str) -> Optional[Drink]:
        for drink in self._drinks.get(restaurant_id, []):
            if drink.id == drink_id:
                return drink
        return None

    def get_global_supplements(
        self, pricing: Optional[PricingOption], menu_item_id: Optional[str] = None
    ) -> Dict[str, float]:
        if pricing is not None:
            return dict(pricing.global_supplements)
        if menu_item_id is not None:
            return dict(self._item_supplements.get(menu_item_id, {}))
        return {}

    def parse_pack_supplements(self, variant_description: Optional[str]) -> Dict[str, float]:
        return parse_variant_description(variant_description).selectable_supplements

    def display_name(self, menu_item_id: str) -> str:
        item = self.require_menu_item(menu_item_id)
        if item.is_special_pack:
            return format_pack_name(item.name, self.get_variants(menu_item_id))
        return item.name

    # ------------------------------------------------------------------
    # Display-only updates
    # ------------------------------------------------------------------

    def mark_availability(self, kind: str, target_id: str, is_available: bool) -> bool:
        """Flip the availability flag on a menu item, variant or drink."""
        if kind == "menu_item" and target_id in self._items:
            self._items[target_id].is_available = is_available
            return True
        if kind == "variant":
            for variants in self._variants.values():
                for variant in variants:
                    if variant.id == target_id:
                        variant.is_available = is_available
                        return True
        if kind == "drink":
            for drinks in self._drinks.values():
                for drink in drinks:
                    if drink.id == target_id:
                        drink.is_available = is_available
                        return True
        logger.warning("Availability update for unknown %s %s ignored", kind, target_id)
        return False

    def mark_price_change(self, kind: str, target_id: str, price: float) -> bool:
        """Announce a new price without changing the price used for calculation."""
        entry = None
        if kind == "menu_item":
            entry = self._items.get(target_id)
        elif kind == "pricing":
            for options in self._pricing.values():
                for option in options:
                    if option.id == target_id:
                        entry = option
        if entry is None:
            logger.warning("Price update for unknown %s %s ignored", kind, target_id)
            return False
        entry.price_changed = abs(entry.price - price) > 0
        entry.announced_price = price
        return True
