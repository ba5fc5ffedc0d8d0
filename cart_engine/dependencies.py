"""
FastAPI dependencies shared by the routers.

The catalog comes from the process-wide CatalogCache, and the catalog update
coalescer is a process-wide singleton that applies updates to whatever
catalog is cached at flush time.
"""

import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from .catalog import MenuCatalog
from .db import get_db
from .notifications import CatalogUpdate, CatalogUpdateCoalescer, catalog_applier
from .services.cart import CartService
from .services.catalog_loader import catalog_cache
from .services.sql_cart_store import SqlCartStore

logger = logging.getLogger(__name__)


def _apply_to_cached_catalog(update: CatalogUpdate) -> bool:
    catalog = catalog_cache.peek()
    if catalog is None:
        logger.info("No catalog loaded; update for %s dropped", update.key)
        return False
    return catalog_applier(catalog)(update)


catalog_coalescer = CatalogUpdateCoalescer(_apply_to_cached_catalog)


def get_catalog(db: Session = Depends(get_db)) -> MenuCatalog:
    return catalog_cache.get(db)


def get_coalescer() -> CatalogUpdateCoalescer:
    return catalog_coalescer


def get_cart_service(
    db: Session = Depends(get_db),
    catalog: MenuCatalog = Depends(get_catalog),
    coalescer: CatalogUpdateCoalescer = Depends(get_coalescer),
) -> CartService:
    return CartService(catalog, SqlCartStore(db), coalescer=coalescer)
