"""
Catalog update coalescing.

The real-time channel pushes availability and price-change events. They
only ever touch display fields of the catalog, and they are applied out of
band: bursts for the same target collapse into the latest event, nothing is
applied until the coalescing window has passed, and nothing is applied while
a commit or reconciliation holds the coalescer.
"""

import logging
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel

from .catalog import MenuCatalog
from .config import CATALOG_UPDATE_COALESCE_SECONDS

logger = logging.getLogger(__name__)


class CatalogUpdateKind(str, Enum):
    AVAILABILITY = "availability"
    PRICE_CHANGE = "price_change"


class CatalogUpdate(BaseModel):
    kind: CatalogUpdateKind
    target_type: str  # menu_item, variant, drink, pricing
    target_id: str
    is_available: Optional[bool] = None
    price: Optional[float] = None

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.kind.value, self.target_type, self.target_id)


def catalog_applier(catalog: MenuCatalog) -> Callable[[CatalogUpdate], bool]:
    """Apply function that writes an update into a catalog's display fields."""

    def apply(update: CatalogUpdate) -> bool:
        if update.kind == CatalogUpdateKind.AVAILABILITY and update.is_available is not None:
            return catalog.mark_availability(update.target_type, update.target_id, update.is_available)
        if update.kind == CatalogUpdateKind.PRICE_CHANGE and update.price is not None:
            return catalog.mark_price_change(update.target_type, update.target_id, update.price)
        logger.warning("Catalog update without a value ignored: %s", update.key)
        return False

    return apply


class CatalogUpdateCoalescer:
    def __init__(
        self,
        apply: Callable[[CatalogUpdate], bool],
        window: float = CATALOG_UPDATE_COALESCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._apply = apply
        self._window = window
        self._clock = clock
        self._pending: Dict[Tuple[str, str, str], Tuple[float, CatalogUpdate]] = {}
        self._holds = 0
        self._lock = threading.Lock()

    def push(self, update: CatalogUpdate) -> None:
        """Queue an update; a newer update for the same target replaces it."""
        with self._lock:
            self._pending[update.key] = (self._clock(), update)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def is_held(self) -> bool:
        with self._lock:
            return self._holds > 0

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Defer applying updates for the duration of a commit or reconciliation."""
        with self._lock:
            self._holds += 1
        try:
            yield
        finally:
            with self._lock:
                self._holds -= 1

    def flush(self) -> List[CatalogUpdate]:
        """Apply every update whose window has elapsed. Returns the applied updates."""
        with self._lock:
            if self._holds:
                return []
            now = self._clock()
            due = [
                (key, update) for key, (pushed_at, update) in self._pending.items()
                if now - pushed_at >= self._window
            ]
            for key, _ in due:
                del self._pending[key]

        applied = []
        for _, update in due:
            if self._apply(update):
                applied.append(update)
        if applied:
            logger.info("Applied %d coalesced catalog update(s)", len(applied))
        return applied
