"""
Cart Schemas
============

Endpoint Coverage:
------------------
- POST /cart/orders: CommitRequest -> List[CartLineItemOut]
- GET /cart/restaurants/{restaurant_id}/items: RestaurantCartResponse
- GET /cart/items/{id}/edit: EditStateResponse
- PUT /cart/items/{id}: EditRequest -> RestaurantCartResponse
- DELETE /cart/items/{id}
- PATCH /cart/items/{id}/quantity: QuantityUpdateRequest -> RestaurantCartResponse
- DELETE /cart/restaurants/{restaurant_id}/items

Pack slot maps in selections may be sent with string slot keys ("0");
pydantic coerces them to integers.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from ..cart_store import CartLineItem
from ..drinks import GlobalDrinkPool
from ..selection import SelectionState


class CartLineItemOut(BaseModel):
    id: str
    name: str
    unit_price: float
    quantity: int
    line_total: float
    restaurant_id: str
    menu_item_id: str
    customizations: Dict[str, Any]
    drink_quantities: Dict[str, int]
    special_instructions: str = ""

    @classmethod
    def from_line_item(cls, item: CartLineItem) -> "CartLineItemOut":
        return cls(
            id=item.id,
            name=item.name,
            unit_price=item.unit_price,
            quantity=item.quantity,
            line_total=item.line_total,
            restaurant_id=item.restaurant_id,
            menu_item_id=item.menu_item_id,
            customizations=item.customizations.to_json(),
            drink_quantities=item.drink_quantities,
            special_instructions=item.special_instructions,
        )


class CommitRequest(BaseModel):
    selection: SelectionState | None = None
    saved_orders: List[SelectionState] = Field(default_factory=list)
    drinks: GlobalDrinkPool = Field(default_factory=GlobalDrinkPool)


class EditRequest(BaseModel):
    selection: SelectionState
    drinks: GlobalDrinkPool = Field(default_factory=GlobalDrinkPool)


class QuantityUpdateRequest(BaseModel):
    quantity: int = Field(..., description="New quantity; 0 or less removes the line item")


class EditStateResponse(BaseModel):
    line_item_id: str
    payer_id: str | None = None
    selection: SelectionState
    drinks: GlobalDrinkPool


class RestaurantCartResponse(BaseModel):
    restaurant_id: str
    items: List[CartLineItemOut]
    total: float
