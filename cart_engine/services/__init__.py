"""
Services Package for the Cart Engine
====================================

Services wire the pure engine components to storage and to the HTTP layer.

Available Services:
-------------------
- **cart**: CartService, the orchestration of commit, edit and removal
  under a per-restaurant lock
- **sql_cart_store**: SQLAlchemy implementation of the Cart Store contract
- **catalog_loader**: Builds the MenuCatalog from the menu tables and caches it

Services receive their dependencies (database sessions, catalogs, stores)
rather than creating them, so tests can hand in in-memory replacements.
"""
