"""
Schemas Package for the Cart Engine
===================================

Pydantic models used for API request validation and response serialization.

Schema Organization:
--------------------
- **cart.py**: Commit, edit and cart listing schemas
- **menu.py**: Catalog view and catalog update schemas

Naming Conventions:
-------------------
- *Out: Response models (e.g., CartLineItemOut)
- *Request: Request bodies (e.g., CommitRequest)
- *Response: Composite response structures (e.g., EditStateResponse)

Engine models that are already pydantic (SelectionState, GlobalDrinkPool)
are used directly inside request and response bodies.
"""
