"""
Customizations Payload
======================

Every cart line item carries a JSON-compatible customizations payload that
records what was ordered: variant, size/portion, supplements, ingredient
adjustments, pack slot data, the drinks list and the free/paid drink maps.

This module owns the single strongly-typed representation of that payload
(CustomizationsPayload) and the one place where stored payloads of any age
are normalized into it (migrate_payload). Business logic only ever sees the
migrated model.

Payload Versions:
-----------------
- Version 1 (no "payload_version" key): written by older clients. Slot maps
  may use string keys or plain lists, drinks may only be described by the
  "drinks" list with is_free flags, supplements may be bare names, and
  ingredient preferences may say "unwanted".
- Version 2 (current): explicit free/paid quantity maps, supplement entries
  with namespaced ids, integer slot keys in memory.

Coercion Policy:
----------------
Each field is coerced on its own. A field that cannot be coerced (for
example a map stored where a list is expected and no sensible reading
exists) is treated as absent and reported through the decision trace; it
never aborts loading the rest of the payload.

Wire Format:
------------
to_json() produces the persisted shape, with pack slot keys as strings:

    {"pack_selections": {"Burger": {"0": "Poulet", "1": "Viande"}}, ...}
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .selection import IngredientPreference
from .tracing import DecisionTrace

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = 2

PACK_FIELDS = (
    "pack_selections",
    "pack_ingredient_preferences",
    "pack_supplement_selections",
    "pack_supplement_prices",
)


class DrinkEntry(BaseModel):
    id: str
    name: str = ""
    size: Optional[str] = None
    price: float = 0.0
    is_free: bool = False


class SupplementEntry(BaseModel):
    id: str
    name: str
    price: float = 0.0


def _positive_quantities(value: Dict[str, int]) -> Dict[str, int]:
    return {k: v for k, v in value.items() if v > 0}


class CustomizationsPayload(BaseModel):
    payload_version: int = PAYLOAD_VERSION
    menu_item_id: str = ""
    restaurant_id: str = ""
    main_item_quantity: int = 1
    variant: Optional[str] = None
    variant_id: Optional[str] = None
    pricing_id: Optional[str] = None
    size: Optional[str] = None
    portion: Optional[str] = None
    supplements: List[SupplementEntry] = Field(default_factory=list)
    removed_ingredients: List[str] = Field(default_factory=list)
    ingredient_preferences: Dict[str, str] = Field(default_factory=dict)
    note: str = ""
    drinks: List[DrinkEntry] = Field(default_factory=list)
    drink_quantities: Dict[str, int] = Field(default_factory=dict)
    free_drink_quantities: Dict[str, int] = Field(default_factory=dict)
    paid_drink_quantities: Dict[str, int] = Field(default_factory=dict)
    drink_sizes: Dict[str, str] = Field(default_factory=dict)
    pack_selections: Dict[str, Dict[int, str]] = Field(default_factory=dict)
    pack_ingredient_preferences: Dict[str, Dict[int, Dict[str, str]]] = Field(default_factory=dict)
    pack_supplement_selections: Dict[str, Dict[int, List[str]]] = Field(default_factory=dict)
    pack_supplement_prices: Dict[str, Dict[int, Dict[str, float]]] = Field(default_factory=dict)
    is_special_pack: bool = False
    is_limited_offer: bool = False
    popup_session_id: Optional[str] = None

    @field_validator("drink_quantities", "free_drink_quantities", "paid_drink_quantities")
    @classmethod
    def _drop_empty_quantities(cls, value: Dict[str, int]) -> Dict[str, int]:
        return _positive_quantities(value)

    def to_json(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        for key in PACK_FIELDS:
            data[key] = {
                variant: {str(slot): value for slot, value in slots.items()}
                for variant, slots in data[key].items()
            }
        return data


# ---------------------------------------------------------------------------
# Field coercers
# ---------------------------------------------------------------------------

def _as_str(value: Any) -> str:
    if isinstance(value, (dict, list, tuple, set)):
        raise TypeError(f"expected a scalar, got {type(value).__name__}")
    return str(value)


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    return int(float(value))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes"):
            return True
        if text in ("false", "0", "no", ""):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if isinstance(value, (dict, list)):
        raise TypeError("expected a boolean")
    return bool(value)


def _as_float(value: Any) -> float:
    if isinstance(value, (dict, list)):
        raise TypeError("expected a number")
    return float(value)


def _as_str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, dict):
        # Legacy {"Tomato": true} sets
        return [str(k) for k, v in value.items() if v]
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v is not None and not isinstance(v, (dict, list))]
    raise TypeError(f"expected a list, got {type(value).__name__}")


def _as_quantity_map(value: Any) -> Dict[str, int]:
    result: Dict[str, int] = {}
    if isinstance(value, dict):
        for key, qty in value.items():
            try:
                result[str(key)] = _as_int(qty)
            except (TypeError, ValueError):
                continue
    elif isinstance(value, list):
        # Legacy list of ids (one each) or of {"id", "quantity"} records
        for entry in value:
            if isinstance(entry, dict) and entry.get("id") is not None:
                drink_id = str(entry["id"])
                result[drink_id] = result.get(drink_id, 0) + _as_int(entry.get("quantity", 1))
            elif entry is not None and not isinstance(entry, (dict, list)):
                result[str(entry)] = result.get(str(entry), 0) + 1
    else:
        raise TypeError(f"expected a quantity map, got {type(value).__name__}")
    return _positive_quantities(result)


def _as_str_map(value: Any) -> Dict[str, str]:
    if not isinstance(value, dict):
        raise TypeError(f"expected a map, got {type(value).__name__}")
    return {str(k): str(v) for k, v in value.items() if v is not None}


def _as_preference_map(value: Any) -> Dict[str, str]:
    if isinstance(value, list):
        # Legacy list of removed ingredient names
        return {str(name): IngredientPreference.NONE.value for name in value if name}
    if not isinstance(value, dict):
        raise TypeError(f"expected a map, got {type(value).__name__}")
    result = {}
    for ingredient, raw_pref in value.items():
        pref = IngredientPreference.parse(raw_pref)
        if pref != IngredientPreference.NEUTRAL:
            result[str(ingredient)] = pref.value
    return result


def _as_supplements(value: Any) -> List[SupplementEntry]:
    entries: List[SupplementEntry] = []
    if isinstance(value, dict):
        for name, price in value.items():
            entries.append(SupplementEntry(id=str(name), name=str(name), price=_as_float(price or 0)))
        return entries
    if not isinstance(value, list):
        raise TypeError(f"expected a supplement list, got {type(value).__name__}")
    for raw in value:
        if isinstance(raw, dict):
            name = raw.get("name") or raw.get("id")
            if not name:
                continue
            entries.append(SupplementEntry(
                id=str(raw.get("id") or name),
                name=str(name),
                price=_as_float(raw.get("price") or 0),
            ))
        elif raw is not None:
            entries.append(SupplementEntry(id=str(raw), name=str(raw), price=0.0))
    return entries


def _as_drinks(value: Any) -> List[DrinkEntry]:
    if not isinstance(value, list):
        raise TypeError(f"expected a drinks list, got {type(value).__name__}")
    entries: List[DrinkEntry] = []
    for raw in value:
        if not isinstance(raw, dict) or raw.get("id") is None:
            continue
        entries.append(DrinkEntry(
            id=str(raw["id"]),
            name=str(raw.get("name") or raw["id"]),
            size=str(raw["size"]) if raw.get("size") else None,
            price=_as_float(raw.get("price") or 0),
            is_free=_as_bool(raw.get("is_free", False)),
        ))
    return entries


def _slot_map(inner: Callable[[Any], Any]) -> Callable[[Any], Dict[str, Dict[int, Any]]]:
    """Coercer for variant -> slot -> value maps; slots may be maps or lists."""

    def coerce(value: Any) -> Dict[str, Dict[int, Any]]:
        if not isinstance(value, dict):
            raise TypeError(f"expected a slot map, got {type(value).__name__}")
        result: Dict[str, Dict[int, Any]] = {}
        for variant, slots in value.items():
            if isinstance(slots, list):
                pairs = list(enumerate(slots))
            elif isinstance(slots, dict):
                pairs = list(slots.items())
            else:
                continue
            coerced: Dict[int, Any] = {}
            for slot, raw in pairs:
                try:
                    coerced[_as_int(slot)] = inner(raw)
                except (TypeError, ValueError):
                    continue
            if coerced:
                result[str(variant)] = coerced
        return result

    return coerce


def _as_price_map(value: Any) -> Dict[str, float]:
    if not isinstance(value, dict):
        raise TypeError("expected a price map")
    return {str(k): _as_float(v or 0) for k, v in value.items()}


_FIELD_COERCERS: Dict[str, tuple] = {
    # field: (coercer, legacy aliases)
    "menu_item_id": (_as_str, ()),
    "restaurant_id": (_as_str, ()),
    "main_item_quantity": (_as_int, ("quantity",)),
    "variant_id": (_as_str, ()),
    "pricing_id": (_as_str, ()),
    "size": (_as_str, ()),
    "portion": (_as_str, ()),
    "supplements": (_as_supplements, ()),
    "removed_ingredients": (_as_str_list, ()),
    "ingredient_preferences": (_as_preference_map, ()),
    "note": (_as_str, ("special_instructions", "notes")),
    "drinks": (_as_drinks, ()),
    "drink_quantities": (_as_quantity_map, ()),
    "free_drink_quantities": (_as_quantity_map, ()),
    "paid_drink_quantities": (_as_quantity_map, ()),
    "drink_sizes": (_as_str_map, ("drink_size_by_id",)),
    "pack_selections": (_slot_map(_as_str), ()),
    "pack_ingredient_preferences": (_slot_map(_as_preference_map), ()),
    "pack_supplement_selections": (_slot_map(_as_str_list), ()),
    "pack_supplement_prices": (_slot_map(_as_price_map), ()),
    "is_special_pack": (_as_bool, ()),
    "is_limited_offer": (_as_bool, ()),
    "popup_session_id": (_as_str, ()),
}


def _upgrade_v1(fields: Dict[str, Any]) -> None:
    """Derive the free/paid maps that version 1 payloads only kept in the drinks list."""
    if fields.get("free_drink_quantities") or fields.get("paid_drink_quantities"):
        return
    drinks: List[DrinkEntry] = fields.get("drinks") or []
    if not drinks:
        return
    quantities = fields.get("drink_quantities") or {}
    free: Dict[str, int] = {}
    paid: Dict[str, int] = {}
    for entry in drinks:
        qty = quantities.get(entry.id, 1)
        target = free if entry.is_free else paid
        target[entry.id] = target.get(entry.id, 0) + qty
    fields["free_drink_quantities"] = free
    fields["paid_drink_quantities"] = paid


def migrate_payload(raw: Any, trace: Optional[DecisionTrace] = None) -> CustomizationsPayload:
    """
    Normalize a stored customizations payload of any version.

    Accepts a dict, a JSON string, an existing CustomizationsPayload or None.
    Never raises for malformed content: unusable fields are dropped.
    """
    if isinstance(raw, CustomizationsPayload):
        return raw.model_copy(deep=True)
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Customizations payload is not valid JSON; treating as empty")
            raw = {}
    if not isinstance(raw, dict):
        raw = {}

    try:
        version = _as_int(raw.get("payload_version") or 1)
    except (TypeError, ValueError):
        version = 1

    fields: Dict[str, Any] = {}
    for name, (coercer, aliases) in _FIELD_COERCERS.items():
        for key in (name,) + aliases:
            if raw.get(key) is None:
                continue
            try:
                fields[name] = coercer(raw[key])
            except (TypeError, ValueError) as exc:
                logger.warning("Dropping payload field %s: %s", key, exc)
                if trace is not None:
                    trace.record("payload.field_dropped", field=key, reason=str(exc))
            break

    # Older clients stored the variant as {"id": ..., "name": ...} or as its name
    variant = raw.get("variant")
    if isinstance(variant, dict):
        fields.setdefault("variant_id", str(variant["id"]) if variant.get("id") else None)
        if variant.get("name"):
            fields["variant"] = str(variant["name"])
    elif variant is not None and not isinstance(variant, list):
        fields["variant"] = str(variant)

    if fields.get("main_item_quantity", 1) < 1:
        fields["main_item_quantity"] = 1

    if version < PAYLOAD_VERSION:
        _upgrade_v1(fields)

    fields["payload_version"] = PAYLOAD_VERSION
    return CustomizationsPayload(**fields)
