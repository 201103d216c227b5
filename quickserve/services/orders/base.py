"""
Order Store Abstract Base Class

Defines the capability interface every order persistence backend
implements. The lifecycle engine only talks to this interface, so the
in-memory store and the SQL store are interchangeable.

Design Pattern: Strategy Pattern
    - One backend per deployment, picked by configuration
    - Tests run the engine against the in-memory store
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from quickserve.models import OrderStatus, Site


ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY)
TERMINAL_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


@dataclass(frozen=True)
class OrderLine:
    """
    Snapshot of one menu item and its quantity inside an order.

    Attributes:
        menu_item_id: Catalog id of the item at checkout time
        name: Item name at checkout time
        price: Unit price at checkout time
        quantity: Units ordered (>= 1)
        category: Catalog category, if known
    """
    menu_item_id: int
    name: str
    price: float
    quantity: int
    category: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON storage."""
        return {
            "menu_item_id": self.menu_item_id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrderLine":
        return cls(
            menu_item_id=data["menu_item_id"],
            name=data["name"],
            price=data["price"],
            quantity=data["quantity"],
            category=data.get("category"),
        )


@dataclass
class NewOrder:
    """Fully computed order handed to a store for insertion."""
    token: str
    location: Site
    items: tuple[OrderLine, ...]
    total: float
    status: OrderStatus
    client_name: str
    created_at: datetime
    updated_at: datetime
    client_phone: Optional[str] = None
    table_number: Optional[str] = None
    owner_id: Optional[str] = None


@dataclass
class OrderRecord:
    """A persisted order as returned by every store."""
    id: int
    token: str
    location: Site
    items: tuple[OrderLine, ...]
    total: float
    status: OrderStatus
    client_name: str
    created_at: datetime
    updated_at: datetime
    client_phone: Optional[str] = None
    table_number: Optional[str] = None
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class OrderFilter:
    """
    Query filter. Unset fields do not constrain the result; several
    statuses match any of them.
    """
    location: Optional[Site] = None
    owner_id: Optional[str] = None
    statuses: tuple[OrderStatus, ...] = field(default_factory=tuple)
    limit: Optional[int] = None

    def matches(self, order: OrderRecord) -> bool:
        if self.location is not None and order.location != self.location:
            return False
        if self.owner_id is not None and order.owner_id != self.owner_id:
            return False
        if self.statuses and order.status not in self.statuses:
            return False
        return True


class BaseOrderStore(ABC):
    """Abstract base class for order stores."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the backend name."""
        pass

    @abstractmethod
    async def create(self, draft: NewOrder) -> OrderRecord:
        """
        Persist a new order and assign its id.

        Raises:
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    async def get(self, order_id: int) -> Optional[OrderRecord]:
        """Fetch one order, or None when the id is unknown."""
        pass

    @abstractmethod
    async def update_status(
        self,
        order_id: int,
        expected: OrderStatus,
        new_status: OrderStatus,
        updated_at: datetime,
    ) -> OrderRecord:
        """
        Conditionally move an order from ``expected`` to ``new_status``.

        Raises:
            NotFoundError: If the order does not exist
            ConflictError: If the current status is no longer ``expected``
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    async def query(self, order_filter: OrderFilter) -> list[OrderRecord]:
        """Orders matching the filter, newest first; equal timestamps keep insertion order."""
        pass

    @abstractmethod
    async def find_active_by_token(self, location: Site, token: str) -> Optional[OrderRecord]:
        """Most recent non-terminal order at a site holding ``token``."""
        pass

    @abstractmethod
    async def find_by_token(self, token: str, location: Optional[Site] = None) -> Optional[OrderRecord]:
        """Most recent order holding ``token``, optionally at one site."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check backend connectivity."""
        pass
