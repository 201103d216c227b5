"""
Python client kit: HTTP API client, cart aggregator and live order board.
"""

from quickserve.client.api import QuickServeClient
from quickserve.client.board import OrderBoard
from quickserve.client.cart import Cart, CartLine, MenuItemSnapshot

__all__ = ["QuickServeClient", "OrderBoard", "Cart", "CartLine", "MenuItemSnapshot"]
