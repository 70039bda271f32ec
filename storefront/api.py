"""
HTTP client for the storefront API

Every call goes through `_request`, which attaches the bearer token and turns
non-2xx responses into `ApiError` carrying the server's `detail` message or
an operation-specific fallback.
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import httpx
import structlog

from .errors import ApiError
from .models import AdminReview, Analytics, Order, OrderRequest, Product, Review, User

logger = structlog.get_logger(__name__)

TokenSource = Callable[[], Awaitable[Optional[str]]]


def error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    detail = body.get("detail", body.get("message"))
    if isinstance(detail, str) and detail:
        return detail
    # FastAPI request validation errors
    if isinstance(detail, list) and detail:
        return "; ".join(_validation_message(err) for err in detail)
    return fallback


def _validation_message(err: Any) -> str:
    if not isinstance(err, dict):
        return str(err)
    loc = err.get("loc") or []
    field = loc[-1] if loc else None
    return f"{field}: {err.get('msg', '')}" if field else str(err.get("msg", err))


class StorefrontAPI:
    def __init__(self, base_url: str, token_source: Optional[TokenSource] = None, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token_source = token_source
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, fallback: str, *, auth: bool = True, token: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        headers = {}
        if auth:
            if token is None and self.token_source is not None:
                token = await self.token_source()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("api.transport_error", method=method, path=path, error=str(exc))
            raise ApiError(None, fallback) from exc
        if response.is_error:
            message = error_message(response, fallback)
            logger.info("api.error", method=method, path=path, status=response.status_code, message=message)
            raise ApiError(response.status_code, message)
        return response.json()

    # Auth

    async def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        payload = {"name": name, "email": email, "password": password}
        return await self._request("POST", "/register", "Registration failed", auth=False, json=payload)

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        payload = {"email": email, "password": password}
        return await self._request("POST", "/login", "Login failed", auth=False, json=payload)

    async def logout(self) -> None:
        await self._request("POST", "/logout", "Logout failed")

    async def me(self, token: Optional[str] = None) -> User:
        data = await self._request("GET", "/me", "Failed to load user", token=token)
        return User.model_validate(data["user"])

    async def update_profile(self, **changes) -> User:
        data = await self._request("PUT", "/me/update", "Failed to update profile", json=changes)
        return User.model_validate(data["user"])

    # Catalog

    async def list_products(self) -> List[Product]:
        data = await self._request("GET", "/products", "Failed to fetch products", auth=False)
        return [Product.model_validate(p) for p in data.get("products", [])]

    async def featured_products(self) -> List[Product]:
        data = await self._request("GET", "/products/featured", "Failed to fetch featured products", auth=False)
        return [Product.model_validate(p) for p in data.get("products", [])]

    async def get_product(self, product_id: str) -> Product:
        data = await self._request("GET", f"/product/{product_id}", "Failed to fetch product", auth=False)
        return Product.model_validate(data["product"])

    # Reviews

    async def submit_review(self, product_id: str, rating: int, comment: str = "") -> None:
        payload = {"product_id": product_id, "rating": rating, "comment": comment}
        await self._request("PUT", "/review", "Failed to submit review", json=payload)

    async def product_reviews(self, product_id: str) -> List[Review]:
        data = await self._request("GET", "/reviews", "Failed to fetch reviews", auth=False, params={"productId": product_id})
        return [Review.model_validate(r) for r in data.get("reviews", [])]

    # Orders

    async def create_order(self, request: OrderRequest) -> Order:
        data = await self._request("POST", "/order/new", "Failed to place order", json=request.model_dump())
        return Order.model_validate(data["order"])

    async def my_orders(self) -> List[Order]:
        data = await self._request("GET", "/orders/me", "Failed to fetch orders")
        return [Order.model_validate(o) for o in data.get("orders", [])]

    async def get_order(self, order_id: str) -> Order:
        data = await self._request("GET", f"/order/{order_id}", "Failed to fetch order")
        return Order.model_validate(data["order"])

    async def delete_order(self, order_id: str) -> None:
        await self._request("DELETE", f"/order/{order_id}", "Failed to delete order")

    # Admin: products

    async def create_product(self, data: Dict[str, Any]) -> Product:
        body = await self._request("POST", "/admin/product/new", "Failed to create product", json=data)
        return Product.model_validate(body["product"])

    async def update_product(self, product_id: str, data: Dict[str, Any]) -> Product:
        body = await self._request("PUT", f"/admin/product/{product_id}", "Failed to update product", json=data)
        return Product.model_validate(body["product"])

    async def delete_product(self, product_id: str) -> None:
        await self._request("DELETE", f"/admin/product/{product_id}", "Failed to delete product")

    async def bulk_delete_products(self, ids: Iterable[str]) -> int:
        body = await self._request("POST", "/admin/products/bulk-delete", "Failed to delete products", json={"ids": list(ids)})
        return int(body.get("deleted_count", 0))

    # Admin: users

    async def list_users(self) -> List[User]:
        data = await self._request("GET", "/admin/users", "Failed to fetch users")
        return [User.model_validate(u) for u in data.get("users", [])]

    async def update_user_role(self, user_id: str, role: str) -> User:
        data = await self._request("PUT", f"/admin/user/{user_id}", "Failed to update user role", json={"role": role})
        return User.model_validate(data["user"])

    async def update_user_status(self, user_id: str, is_active: bool) -> User:
        data = await self._request("PUT", f"/admin/user/{user_id}/status", "Failed to update user status", json={"is_active": is_active})
        return User.model_validate(data["user"])

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/admin/user/{user_id}", "Failed to delete user")

    # Admin: orders

    async def list_orders(self) -> Tuple[List[Order], float]:
        data = await self._request("GET", "/admin/orders", "Failed to fetch orders")
        return [Order.model_validate(o) for o in data.get("orders", [])], float(data.get("total_amount", 0))

    async def update_order_status(self, order_id: str, status: str) -> Order:
        data = await self._request("PUT", f"/admin/order/{order_id}", "Failed to update order status", json={"status": status})
        return Order.model_validate(data["order"])

    async def admin_delete_order(self, order_id: str) -> None:
        await self._request("DELETE", f"/admin/order/{order_id}", "Failed to delete order")

    # Admin: reviews and analytics

    async def list_reviews(self) -> List[AdminReview]:
        data = await self._request("GET", "/admin/reviews", "Failed to fetch reviews")
        return [AdminReview.model_validate(r) for r in data.get("reviews", [])]

    async def delete_review(self, product_id: str, review_id: str) -> None:
        await self._request("DELETE", f"/admin/review/{product_id}/{review_id}", "Failed to delete review")

    async def analytics(self, granularity: str = "month", periods: Optional[int] = None) -> Analytics:
        params: Dict[str, Any] = {"granularity": granularity}
        if periods:
            params["periods"] = periods
        data = await self._request("GET", "/admin/analytics", "Failed to fetch analytics", params=params)
        return Analytics.model_validate(data)
