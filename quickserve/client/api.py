"""
QuickServe API Client

Async HTTP client (httpx) for the REST API, used by the simulation script,
staff displays and tests. Error responses come back as the same typed
exceptions the server raised.

Usage:
    async with QuickServeClient("http://localhost:5000") as client:
        menu = await client.list_menu("medical")
        cart = Cart("medical")
        cart.add_item(menu[0])
        order = await client.checkout(cart, client_name="Asha")
"""

import logging
from typing import Any, Iterable, Optional, Union

import httpx

from quickserve.client.cart import Cart, MenuItemSnapshot
from quickserve.core.exceptions import (
    ERRORS_BY_CODE,
    ConflictError,
    NotFoundError,
    QuickServeError,
    StoreError,
    ValidationError,
)
from quickserve.models import OrderStatus, Site
from quickserve.schemas import OrderResponse, UserProfileResponse
from quickserve.services.orders import OrderLine

logger = logging.getLogger(__name__)

STATUS_ERRORS = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
}


def _value(v: Union[str, Site, OrderStatus, None]) -> Optional[str]:
    return v.value if hasattr(v, "value") else v


class QuickServeClient:
    """
    Async REST client.

    Args:
        base_url: Server root, e.g. ``http://localhost:5000``
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (``httpx.ASGITransport`` in tests)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "QuickServeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -------------------------------------------------------------------------
    # TRANSPORT
    # -------------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e.__class__.__name__}") from e

        if response.is_success:
            return response.json()
        raise self._error_from(response)

    @staticmethod
    def _error_from(response: httpx.Response) -> QuickServeError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("message") or response.text[:200] or response.reason_phrase
        error_cls = ERRORS_BY_CODE.get(body.get("error"))
        if error_cls is None:
            error_cls = STATUS_ERRORS.get(response.status_code, StoreError)
        return error_cls(message)

    # -------------------------------------------------------------------------
    # MENU
    # -------------------------------------------------------------------------

    async def list_menu(self, location: Optional[Union[str, Site]] = None) -> list[MenuItemSnapshot]:
        params = {"location": _value(location)} if location else None
        data = await self._request("GET", "/api/menu", params=params)
        return [MenuItemSnapshot.from_dict(item) for item in data]

    async def create_menu_item(self, **fields) -> MenuItemSnapshot:
        data = await self._request("POST", "/api/menu", json=fields)
        return MenuItemSnapshot.from_dict(data)

    # -------------------------------------------------------------------------
    # ORDERS
    # -------------------------------------------------------------------------

    async def create_order(
        self,
        lines: Iterable[OrderLine],
        location: Union[str, Site],
        client_name: str,
        client_phone: Optional[str] = None,
        table_number: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> OrderResponse:
        payload = {
            "items": [line.to_dict() for line in lines],
            "location": _value(location),
            "client_name": client_name,
            "client_phone": client_phone,
            "table_number": table_number,
            "user_id": user_id,
        }
        data = await self._request("POST", "/api/orders", json=payload)
        return OrderResponse.model_validate(data)

    async def checkout(
        self,
        cart: Cart,
        client_name: str,
        client_phone: Optional[str] = None,
        table_number: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> OrderResponse:
        """
        Submit the cart as an order and clear it once the server confirms.

        Raises:
            ValidationError: Empty cart, no site selected, or rejected input
            StoreError: Server or network failure (cart left intact)
        """
        if cart.is_empty:
            raise ValidationError("Cart is empty")
        if cart.location is None:
            raise ValidationError("No location selected")

        order = await self.create_order(
            cart.snapshot(),
            cart.location,
            client_name,
            client_phone=client_phone,
            table_number=table_number,
            user_id=user_id,
        )
        cart.clear()
        logger.info(f"Checked out order #{order.id} ({order.token})")
        return order

    async def list_orders(
        self,
        location: Optional[Union[str, Site]] = None,
        user_id: Optional[str] = None,
        status: Optional[Iterable[Union[str, OrderStatus]]] = None,
        limit: Optional[int] = None,
    ) -> list[OrderResponse]:
        params: list[tuple[str, Any]] = []
        if location:
            params.append(("location", _value(location)))
        if user_id:
            params.append(("user_id", user_id))
        for s in status or ():
            params.append(("status", _value(s)))
        if limit:
            params.append(("limit", limit))

        data = await self._request("GET", "/api/orders", params=params)
        return [OrderResponse.model_validate(o) for o in data]

    async def get_order(self, order_id: int) -> OrderResponse:
        data = await self._request("GET", f"/api/orders/{order_id}")
        return OrderResponse.model_validate(data)

    async def get_order_by_token(
        self, token: str, location: Optional[Union[str, Site]] = None
    ) -> OrderResponse:
        params = {"location": _value(location)} if location else None
        data = await self._request("GET", f"/api/orders/token/{token}", params=params)
        return OrderResponse.model_validate(data)

    async def advance_order(self, order_id: int, status: Union[str, OrderStatus]) -> OrderResponse:
        data = await self._request(
            "PATCH", f"/api/orders/{order_id}/status", json={"status": _value(status)}
        )
        return OrderResponse.model_validate(data)

    async def cancel_order(self, order_id: int) -> OrderResponse:
        data = await self._request("POST", f"/api/orders/{order_id}/cancel")
        return OrderResponse.model_validate(data)

    # -------------------------------------------------------------------------
    # USERS
    # -------------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> UserProfileResponse:
        data = await self._request("GET", f"/api/users/{user_id}")
        return UserProfileResponse.model_validate(data)

    async def upsert_profile(self, user_id: str, **fields) -> UserProfileResponse:
        payload = {"user_id": user_id, **{k: _value(v) for k, v in fields.items()}}
        data = await self._request("POST", "/api/users", json=payload)
        return UserProfileResponse.model_validate(data)
