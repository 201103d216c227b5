"""
SQL Order Store

Persists orders through SQLAlchemy's async ORM (PostgreSQL in production,
SQLite in tests). Status updates are conditional
(``UPDATE ... WHERE id = :id AND status = :expected``) so two staff
members racing on the same order cannot silently overwrite each other.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quickserve.core.exceptions import ConflictError, NotFoundError, StoreError
from quickserve.models import Order, OrderStatus, Site
from quickserve.services.orders.base import (
    ACTIVE_STATUSES,
    BaseOrderStore,
    NewOrder,
    OrderFilter,
    OrderLine,
    OrderRecord,
)

logger = logging.getLogger(__name__)


def _to_record(row: Order) -> OrderRecord:
    return OrderRecord(
        id=row.id,
        token=row.token,
        location=row.location,
        items=tuple(OrderLine.from_dict(line) for line in row.items),
        total=row.total,
        status=row.status,
        client_name=row.client_name,
        client_phone=row.client_phone,
        table_number=row.table_number,
        owner_id=row.owner_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlOrderStore(BaseOrderStore):
    """Order store backed by the ``orders`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @property
    def provider_name(self) -> str:
        return "sql"

    async def create(self, draft: NewOrder) -> OrderRecord:
        row = Order(
            token=draft.token,
            location=draft.location,
            items=[line.to_dict() for line in draft.items],
            total=draft.total,
            status=draft.status,
            client_name=draft.client_name,
            client_phone=draft.client_phone,
            table_number=draft.table_number,
            owner_id=draft.owner_id,
            created_at=draft.created_at,
            updated_at=draft.updated_at,
        )
        try:
            async with self._session_maker() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
                return _to_record(row)
        except SQLAlchemyError as e:
            logger.exception(f"Failed to insert order for {draft.client_name}")
            raise StoreError(f"Could not save order: {e.__class__.__name__}") from e

    async def get(self, order_id: int) -> Optional[OrderRecord]:
        try:
            async with self._session_maker() as session:
                row = await session.get(Order, order_id)
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError(f"Could not load order #{order_id}") from e

    async def update_status(
        self,
        order_id: int,
        expected: OrderStatus,
        new_status: OrderStatus,
        updated_at: datetime,
    ) -> OrderRecord:
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status == expected)
            .values(status=new_status, updated_at=updated_at)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_maker() as session:
                matched = (await session.execute(stmt)).rowcount
                await session.commit()

                row = await session.get(Order, order_id, populate_existing=True)
        except SQLAlchemyError as e:
            logger.exception(f"Failed to update order #{order_id}")
            raise StoreError(f"Could not update order #{order_id}") from e

        if row is None:
            raise NotFoundError("Order not found")
        if matched == 0:
            raise ConflictError(
                f"Order #{order_id} is {row.status.value}, expected {expected.value}"
            )
        return _to_record(row)

    async def query(self, order_filter: OrderFilter) -> list[OrderRecord]:
        stmt = select(Order).order_by(Order.created_at.desc(), Order.id.asc())

        if order_filter.location is not None:
            stmt = stmt.where(Order.location == order_filter.location)
        if order_filter.owner_id is not None:
            stmt = stmt.where(Order.owner_id == order_filter.owner_id)
        if order_filter.statuses:
            stmt = stmt.where(Order.status.in_(order_filter.statuses))
        if order_filter.limit is not None:
            stmt = stmt.limit(order_filter.limit)

        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.exception("Order query failed")
            raise StoreError("Could not list orders") from e

    async def _first_by_token(self, token: str, *conditions) -> Optional[OrderRecord]:
        stmt = (
            select(Order)
            .where(Order.token == token, *conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(1)
        )
        try:
            async with self._session_maker() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError(f"Could not look up token {token}") from e

    async def find_active_by_token(self, location: Site, token: str) -> Optional[OrderRecord]:
        return await self._first_by_token(
            token, Order.location == location, Order.status.in_(ACTIVE_STATUSES)
        )

    async def find_by_token(self, token: str, location: Optional[Site] = None) -> Optional[OrderRecord]:
        conditions = [Order.location == location] if location is not None else []
        return await self._first_by_token(token, *conditions)

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(select(func.count(Order.id)))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Order store health check failed: {e}")
            return False
