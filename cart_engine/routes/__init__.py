"""
Routes Package for the Cart Engine
==================================

- **cart.py**: commit, list, edit and remove cart line items
- **menu.py**: catalog view and catalog display updates
"""

from .cart import cart_router
from .menu import menu_router

__all__ = ["cart_router", "menu_router"]
