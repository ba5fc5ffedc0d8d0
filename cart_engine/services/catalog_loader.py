"""
Catalog loading from the menu tables.

build_menu_data() turns the MenuItem / MenuItemVariant / MenuItemPricing /
RestaurantDrink rows into the menu_data dict MenuCatalog consumes.
CatalogCache keeps one MenuCatalog per process so display updates from the
notification channel land on the catalog every request reads. The cache is
invalidated explicitly (for example after an admin edits the menu).

Usage:
    from cart_engine.services.catalog_loader import catalog_cache

    catalog = catalog_cache.get(db)
"""

import logging
import threading
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..catalog import MenuCatalog
from ..models import MenuItem, RestaurantDrink

logger = logging.getLogger(__name__)


def build_menu_data(db: Session) -> Dict[str, Any]:
    menu_items = []
    for item in db.query(MenuItem).all():
        menu_items.append({
            "id": item.id,
            "restaurant_id": item.restaurant_id,
            "name": item.name,
            "category": item.category,
            "price": item.base_price,
            "is_limited_offer": item.is_limited_offer,
            "is_available": item.is_available,
            "main_ingredients": item.main_ingredients or [],
            "supplements": item.supplements or [],
            "offer_details": item.offer_details or {},
            "variants": [
                {
                    "id": v.id,
                    "name": v.name,
                    "description": v.description or "",
                    "is_available": v.is_available,
                    "display_order": v.display_order,
                }
                for v in item.variants
            ],
            "pricing": [
                {
                    "id": p.id,
                    "variant_id": p.variant_id,
                    "size": p.size,
                    "portion": p.portion,
                    "price": p.price,
                    "is_default": p.is_default,
                    "display_order": p.display_order,
                    "free_drinks_included": p.free_drinks_included,
                    "free_drinks_list": p.free_drinks_list or [],
                    "free_drinks_quantity": p.free_drinks_quantity,
                    "offer_details": p.offer_details or {},
                }
                for p in item.pricing_options
            ],
        })

    drinks: Dict[str, list] = {}
    for drink in db.query(RestaurantDrink).all():
        drinks.setdefault(drink.restaurant_id, []).append({
            "id": drink.id,
            "name": drink.name,
            "price": drink.price,
            "size": drink.size,
            "is_available": drink.is_available,
        })

    return {"menu_items": menu_items, "drinks": drinks}


class CatalogCache:
    def __init__(self) -> None:
        self._catalog: Optional[MenuCatalog] = None
        self._lock = threading.Lock()

    def get(self, db: Session) -> MenuCatalog:
        with self._lock:
            if self._catalog is None:
                self._catalog = MenuCatalog(build_menu_data(db))
                logger.info("Catalog cache populated from database")
            return self._catalog

    def peek(self) -> Optional[MenuCatalog]:
        with self._lock:
            return self._catalog

    def invalidate(self) -> None:
        with self._lock:
            self._catalog = None
        logger.info("Catalog cache invalidated")


catalog_cache = CatalogCache()
