"""
Configuration Module for the Cart Engine
========================================

This module centralizes the settings, environment variables, and constants
used by the cart engine. Values are parsed once at import time so every
component sees the same numbers.

Configuration Categories:
-------------------------
- **Pricing**: The epsilon under which two prices are considered equal, and
  the baseline policy the edit reconciler uses when a stored price disagrees
  with a fresh recalculation.

- **Catalog Conventions**: Category keywords that mark an item as a pack,
  supplement id prefixes that tell global supplements from pack-scoped ones,
  and the placeholder older clients wrote into empty pack slots.

- **Notifications**: The coalescing window for availability/price updates
  pushed by the real-time channel.

- **Database / CORS**: Connection URL for the cart store and the allowed
  origins for the HTTP API.

Environment Variables:
----------------------
- PRICE_EPSILON: Price comparison threshold (default: 0.01)
- PRICE_BASELINE_POLICY: "recompute" or "preserve_stored" (default: "recompute")
- CATALOG_UPDATE_COALESCE_SECONDS: Notification window (default: 0.3)
- DATABASE_URL: SQLAlchemy URL (default: "sqlite:///./cart_engine.db")
- CORS_ORIGINS: Comma-separated allowed origins (default: "*")

Usage:
------
    from cart_engine.config import PRICE_EPSILON, PRICE_BASELINE_POLICY
"""

import os
from typing import List


# =============================================================================
# Pricing
# =============================================================================
# Prices are kept at full precision internally; rounding happens only when a
# value is displayed. Differences smaller than this are treated as "unchanged".
PRICE_EPSILON: float = float(os.getenv("PRICE_EPSILON", "0.01"))

# How the edit reconciler treats a stored price that has drifted from what a
# recalculation of the same customizations produces.
#   recompute        - the recalculated price wins (default)
#   preserve_stored  - keep the stored price and apply only the change delta
PRICE_BASELINE_POLICY: str = os.getenv("PRICE_BASELINE_POLICY", "recompute").lower()


# =============================================================================
# Catalog Conventions
# =============================================================================
# A menu item whose category contains any of these words is a composite pack.
PACK_CATEGORY_KEYWORDS = ("pack", "combo", "special")

# Supplement ids stored in cart payloads are namespaced by scope.
PACK_SUPPLEMENT_PREFIX = "pack_"
GLOBAL_SUPPLEMENT_PREFIX = "global_"

# Older clients wrote this into pack slots the user never filled in.
NOT_SELECTED_PLACEHOLDER = "Not Selected"

# Queue key used for every pack selection in the saved-orders queue.
PACK_QUEUE_KEY = "pack"


# =============================================================================
# Notifications
# =============================================================================
# Availability and price-change events for the same target arriving within
# this window are collapsed into one display update.
CATALOG_UPDATE_COALESCE_SECONDS: float = float(
    os.getenv("CATALOG_UPDATE_COALESCE_SECONDS", "0.3")
)


# =============================================================================
# Database
# =============================================================================
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./cart_engine.db")


# =============================================================================
# CORS Settings
# =============================================================================
_cors_origins_env = os.getenv("CORS_ORIGINS", "*")
CORS_ORIGINS: List[str] = (
    ["*"] if _cors_origins_env == "*"
    else [origin.strip() for origin in _cors_origins_env.split(",") if origin.strip()]
)
