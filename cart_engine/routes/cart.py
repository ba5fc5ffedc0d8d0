"""
Cart Routes
===========

Endpoints:
----------
- POST /cart/orders: Commit a selection (or staged saved orders) with drinks
- GET /cart/restaurants/{restaurant_id}/items: Line items and total
- GET /cart/items/{id}/edit: Restore a line item for editing
- PUT /cart/items/{id}: Save an edit; siblings are reconciled
- DELETE /cart/items/{id}: Remove a line item (paid drinks move to the next payer)
- PATCH /cart/items/{id}/quantity: Change a quantity in place (0 removes)
- DELETE /cart/restaurants/{restaurant_id}/items: Clear a restaurant's cart

Errors:
-------
- 404 when a line item or menu item does not exist
- 422 when a selection is incomplete or has an invalid quantity

Usage:
------
    POST /cart/orders
    {
        "selection": {"menu_item_id": "m_burger", "restaurant_id": "r1",
                      "variant_id": "v_classic", "pricing_id": "p_menu", "quantity": 2},
        "drinks": {"paid_drink_quantities": {"d_cola": 1}}
    }
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from ..builder import IncompleteSelectionError
from ..cart_store import LineItemNotFoundError
from ..catalog import UnknownMenuItemError
from ..dependencies import get_cart_service
from ..saved_orders import SavedOrdersQueue
from ..schemas.cart import (
    CartLineItemOut,
    CommitRequest,
    EditRequest,
    EditStateResponse,
    QuantityUpdateRequest,
    RestaurantCartResponse,
)
from ..selection import InvalidQuantityError
from ..services.cart import CartService


logger = logging.getLogger(__name__)

cart_router = APIRouter(prefix="/cart", tags=["Cart"])


def _restaurant_cart(service: CartService, restaurant_id: str) -> RestaurantCartResponse:
    items = service.list_items(restaurant_id)
    return RestaurantCartResponse(
        restaurant_id=restaurant_id,
        items=[CartLineItemOut.from_line_item(i) for i in items],
        total=sum(i.line_total for i in items),
    )


@cart_router.post("/orders", response_model=List[CartLineItemOut], status_code=201)
def commit_order(
    payload: CommitRequest,
    service: CartService = Depends(get_cart_service),
) -> List[CartLineItemOut]:
    """Commit the live selection, or the saved orders when any are staged."""
    queue = SavedOrdersQueue()
    for staged in payload.saved_orders:
        queue.save(staged)
    if payload.selection is None and not queue.has_any():
        raise HTTPException(status_code=422, detail="Nothing to commit")

    try:
        items = service.commit_selection(payload.selection, queue, payload.drinks)
    except IncompleteSelectionError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "missing": e.missing})
    except UnknownMenuItemError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return [CartLineItemOut.from_line_item(i) for i in items]


@cart_router.get("/restaurants/{restaurant_id}/items", response_model=RestaurantCartResponse)
def list_restaurant_items(
    restaurant_id: str,
    service: CartService = Depends(get_cart_service),
) -> RestaurantCartResponse:
    return _restaurant_cart(service, restaurant_id)


@cart_router.delete("/restaurants/{restaurant_id}/items", status_code=204)
def clear_restaurant_items(
    restaurant_id: str,
    service: CartService = Depends(get_cart_service),
) -> Response:
    service.clear_restaurant(restaurant_id)
    return Response(status_code=204)


@cart_router.get("/items/{line_item_id}/edit", response_model=EditStateResponse)
def open_edit(
    line_item_id: str,
    service: CartService = Depends(get_cart_service),
) -> EditStateResponse:
    """Restore the selection and drink pool a line item was committed from."""
    try:
        session = service.open_edit(line_item_id)
    except LineItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return EditStateResponse(
        line_item_id=line_item_id,
        payer_id=session.payer_id,
        selection=session.selection,
        drinks=session.pool,
    )


@cart_router.put("/items/{line_item_id}", response_model=RestaurantCartResponse)
def save_edit(
    line_item_id: str,
    payload: EditRequest,
    service: CartService = Depends(get_cart_service),
) -> RestaurantCartResponse:
    try:
        target = service.open_edit(line_item_id).target
        missing = payload.selection.model_copy(
            update={"menu_item_id": target.menu_item_id}
        ).missing_requirements(service.catalog)
        if missing:
            raise IncompleteSelectionError(payload.selection, missing)
        service.save_edit(line_item_id, payload.selection, payload.drinks)
    except LineItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (IncompleteSelectionError, InvalidQuantityError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    logger.info("Edited cart line item %s", line_item_id)
    return _restaurant_cart(service, target.restaurant_id)


@cart_router.delete("/items/{line_item_id}", status_code=204)
def remove_line_item(
    line_item_id: str,
    service: CartService = Depends(get_cart_service),
) -> Response:
    try:
        service.remove_line_item(line_item_id)
    except LineItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=204)


@cart_router.patch("/items/{line_item_id}/quantity", response_model=RestaurantCartResponse)
def update_quantity(
    line_item_id: str,
    payload: QuantityUpdateRequest,
    service: CartService = Depends(get_cart_service),
) -> RestaurantCartResponse:
    """Set a line item's quantity; paid drinks stay billed once."""
    try:
        restaurant_id = service.get_line_item(line_item_id).restaurant_id
        service.update_quantity(line_item_id, payload.quantity)
    except LineItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    logger.info("Quantity of cart line item %s set to %d", line_item_id, payload.quantity)
    return _restaurant_cart(service, restaurant_id)
