"""
Menu Schemas
============

Read-only catalog view for the ordering popup, and the body of catalog
display updates pushed by the real-time channel.
"""

from typing import List

from pydantic import BaseModel

from ..catalog import PricingOption, Variant
from ..notifications import CatalogUpdateKind


class VariantOut(BaseModel):
    id: str
    name: str
    description: str = ""
    is_available: bool = True
    slot_count: int = 1
    options: List[str] = []
    ingredients: List[str] = []
    supplements: dict = {}

    @classmethod
    def from_variant(cls, variant: Variant) -> "VariantOut":
        parsed = variant.parsed
        return cls(
            id=variant.id,
            name=variant.name,
            description=variant.description,
            is_available=variant.is_available,
            slot_count=parsed.quantity,
            options=parsed.options,
            ingredients=parsed.ingredients,
            supplements=parsed.selectable_supplements,
        )


class MenuItemOut(BaseModel):
    id: str
    restaurant_id: str
    name: str
    display_name: str
    category: str
    item_type: str
    price: float
    is_available: bool
    price_changed: bool = False
    announced_price: float | None = None
    variants: List[VariantOut]
    pricing_options: List[PricingOption]


class CatalogUpdateRequest(BaseModel):
    kind: CatalogUpdateKind
    target_type: str
    target_id: str
    is_available: bool | None = None
    price: float | None = None


class CatalogFlushResponse(BaseModel):
    applied: int
    pending: int
