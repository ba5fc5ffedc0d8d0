"""
Menu Routes
===========

Endpoints:
----------
- GET /menu/items: Menu items, optionally for one restaurant
- GET /menu/items/{menu_item_id}: Menu item with variants, pricing options
  and display flags (availability, announced price changes)
- POST /menu/updates: Queue a display update from the real-time channel
- POST /menu/updates/flush: Apply queued updates whose window has elapsed

Display updates never change the price used for calculation. They are
applied through the catalog update coalescer, so updates arriving while a
commit or edit is being written wait for the next flush.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..catalog import MenuCatalog, MenuItemEntry
from ..dependencies import get_catalog, get_coalescer
from ..notifications import CatalogUpdate, CatalogUpdateCoalescer
from ..schemas.menu import CatalogFlushResponse, CatalogUpdateRequest, MenuItemOut, VariantOut


logger = logging.getLogger(__name__)

menu_router = APIRouter(prefix="/menu", tags=["Menu"])


# =============================================================================
# Catalog View
# =============================================================================

def _menu_item_out(catalog: MenuCatalog, item: MenuItemEntry) -> MenuItemOut:
    menu_item_id = item.id
    return MenuItemOut(
        id=item.id,
        restaurant_id=item.restaurant_id,
        name=item.name,
        display_name=catalog.display_name(menu_item_id),
        category=item.category,
        item_type=item.item_type.value,
        price=item.price,
        is_available=item.is_available,
        price_changed=item.price_changed,
        announced_price=item.announced_price,
        variants=[VariantOut.from_variant(v) for v in catalog.get_variants(menu_item_id)],
        pricing_options=catalog.get_pricing_options(menu_item_id),
    )


@menu_router.get("/items", response_model=List[MenuItemOut])
def list_menu_items(
    restaurant_id: Optional[str] = None,
    catalog: MenuCatalog = Depends(get_catalog),
) -> List[MenuItemOut]:
    return [_menu_item_out(catalog, item) for item in catalog.list_menu_items(restaurant_id)]


@menu_router.get("/items/{menu_item_id}", response_model=MenuItemOut)
def get_menu_item(
    menu_item_id: str,
    catalog: MenuCatalog = Depends(get_catalog),
) -> MenuItemOut:
    item = catalog.get_menu_item(menu_item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Unknown menu item: {menu_item_id}")
    return _menu_item_out(catalog, item)


# =============================================================================
# Display Updates
# =============================================================================

@menu_router.post("/updates", status_code=202)
def push_catalog_update(
    payload: CatalogUpdateRequest,
    coalescer: CatalogUpdateCoalescer = Depends(get_coalescer),
):
    update = CatalogUpdate(**payload.model_dump())
    coalescer.push(update)
    logger.debug("Queued catalog update %s", update.key)
    return {"queued": True, "pending": coalescer.pending_count}


@menu_router.post("/updates/flush", response_model=CatalogFlushResponse)
def flush_catalog_updates(
    catalog: MenuCatalog = Depends(get_catalog),
    coalescer: CatalogUpdateCoalescer = Depends(get_coalescer),
) -> CatalogFlushResponse:
    """Apply due updates to the cached catalog (loaded first if needed)."""
    applied = coalescer.flush()
    return CatalogFlushResponse(applied=len(applied), pending=coalescer.pending_count)
