"""
SQLAlchemy Database Models

Three collections back the service:
- menu_items: the per-site catalog
- orders: submitted orders and their pipeline status
- user_profiles: profile data keyed by the identity provider's user id
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Text, Enum, Boolean, JSON
from sqlalchemy.sql import func
from quickserve.database import Base
import enum


class Site(str, enum.Enum):
    """The two physical serving points."""
    MEDICAL = "medical"
    BITBITES = "bitbites"


class MenuCategory(str, enum.Enum):
    FOOD = "food"
    DRINK = "drink"
    SNACK = "snack"


class OrderStatus(str, enum.Enum):
    """Order status pipeline: pending -> preparing -> ready -> completed."""
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class UserRole(str, enum.Enum):
    CLIENT = "client"
    STAFF = "staff"
    ADMIN = "admin"


class MenuItem(Base):
    """A dish, drink or snack offered at one site."""
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    category = Column(Enum(MenuCategory), nullable=False)
    image = Column(String(255), nullable=False, default="/placeholder.svg")
    location = Column(Enum(Site), nullable=False, index=True)
    available = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<MenuItem #{self.id} - {self.name} - {self.location.value}>"


class Order(Base):
    """
    Submitted order.

    Lines and total are written once at creation; afterwards only
    status and updated_at change.
    """
    __tablename__ = "orders"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # =========================================================================
    # PICKUP
    # =========================================================================
    token = Column(String(16), nullable=False, index=True)
    location = Column(Enum(Site), nullable=False, index=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    items = Column(JSON, nullable=False)  # list of line snapshots
    total = Column(Float, nullable=False)
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )

    # =========================================================================
    # CLIENT INFORMATION
    # =========================================================================
    client_name = Column(String(100), nullable=False)
    client_phone = Column(String(20), nullable=True)
    table_number = Column(String(20), nullable=True)
    owner_id = Column(String(128), nullable=True, index=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Order #{self.id} - {self.token} - {self.client_name} - {self.status.value}>"


class UserProfile(Base):
    """Profile attached to an authenticated identity."""
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.CLIENT)
    phone = Column(String(20), nullable=True)
    location = Column(Enum(Site), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<UserProfile {self.user_id} - {self.role.value}>"
