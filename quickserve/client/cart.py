"""
Cart Aggregator

Client-side accumulation of menu items into an order draft. The cart is
bound to one site: chosen explicitly with ``select_location`` before
browsing, or by the first item added. It never mixes sites.

Derived values (``item_count``, ``total``) are computed on every read.
``checkout`` lives on the API client; it clears the cart only once the
server has confirmed the order, so a failed submission can be retried.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from quickserve.core.exceptions import ValidationError
from quickserve.models import Site
from quickserve.services.orders import OrderLine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MenuItemSnapshot:
    """Menu item as seen by the client when it was added."""
    id: int
    name: str
    price: float
    category: str
    location: Site
    available: bool = True
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MenuItemSnapshot":
        return cls(
            id=int(data["id"]),
            name=data["name"],
            price=float(data["price"]),
            category=str(data["category"]),
            location=Site(data["location"]),
            available=bool(data.get("available", True)),
            description=data.get("description"),
        )


@dataclass
class CartLine:
    item: MenuItemSnapshot
    quantity: int

    @property
    def line_total(self) -> float:
        return self.item.price * self.quantity

    def to_order_line(self) -> OrderLine:
        return OrderLine(
            menu_item_id=self.item.id,
            name=self.item.name,
            price=self.item.price,
            quantity=self.quantity,
            category=self.item.category,
        )


class Cart:
    """In-progress order for one browsing session."""

    def __init__(self, location: Optional[Union[str, Site]] = None):
        self._location: Optional[Site] = Site(location) if location else None
        self._lines: dict[int, CartLine] = {}

    @property
    def location(self) -> Optional[Site]:
        return self._location

    def select_location(self, location: Union[str, Site]) -> None:
        """
        Bind the cart to a site.

        Raises:
            ValidationError: The cart still holds items from another site
        """
        site = Site(location)
        if self._lines and site != self._location:
            raise ValidationError(
                f"Cart holds items from {self._location.value}; clear it before switching to {site.value}"
            )
        self._location = site

    def add_item(self, item: Union[MenuItemSnapshot, dict]) -> CartLine:
        """Add one unit of ``item``; a repeated item increments its line."""
        if isinstance(item, dict):
            item = MenuItemSnapshot.from_dict(item)
        if not item.available:
            raise ValidationError(f"{item.name} is not available")
        if self._location is None:
            self._location = item.location
        elif item.location != self._location:
            raise ValidationError(
                f"{item.name} belongs to {item.location.value}, cart is for {self._location.value}"
            )

        line = self._lines.get(item.id)
        if line is None:
            line = CartLine(item=item, quantity=1)
            self._lines[item.id] = line
        else:
            line.quantity += 1
        return line

    def update_quantity(self, item_id: int, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line."""
        if quantity <= 0:
            self.remove_item(item_id)
            return
        line = self._lines.get(item_id)
        if line is not None:
            line.quantity = quantity

    def remove_item(self, item_id: int) -> None:
        self._lines.pop(item_id, None)

    def clear(self) -> None:
        """Drop every line; the selected site stays."""
        self._lines.clear()

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    @property
    def total(self) -> float:
        return round(sum(line.line_total for line in self._lines.values()), 2)

    def snapshot(self) -> tuple[OrderLine, ...]:
        """Immutable lines handed to order creation."""
        return tuple(line.to_order_line() for line in self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)
