"""
Admin panels

Each panel holds a list fetched from the API. A mutation sends one request
and then re-fetches the list (mutate, then reconcile). Role and order-status
changes patch the row first so the table reflects the choice immediately.
"""

import abc
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, List, Optional, Set, Union

import pydantic
import structlog
from pydantic import BaseModel, Field

from .api import StorefrontAPI
from .errors import ApiError, OperationInProgress, ValidationError
from .guard import InFlightGuard
from .models import AdminReview, Analytics, Order, Product, User
from .notifications import Notifier

logger = structlog.get_logger(__name__)

ROLES = ("user", "admin")
ORDER_STATUSES = ("Pending", "Confirmed", "Cancelled", "Delivered")
PRODUCT_CATEGORIES = (
    "Shampoo",
    "Conditioner",
    "Hair Oil",
    "Hair Mask",
    "Hair Serum",
    "Hair Spray",
    "Hair Color",
    "Hair Styling",
    "Hair Accessories",
)


class ProductDraft(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    price: float = Field(..., ge=0)
    description: str = Field(..., min_length=1)
    category: str = "Shampoo"
    brand: str = "Nourishy"
    stock: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)
    featured: bool = False

    @pydantic.field_validator("category")
    @classmethod
    def known_category(cls, value: str) -> str:
        if value not in PRODUCT_CATEGORIES:
            raise ValueError("Please select a valid category")
        return value


def _field_errors(exc: pydantic.ValidationError) -> Dict[str, str]:
    return {".".join(str(part) for part in err["loc"]) or "form": err["msg"] for err in exc.errors()}


class AdminPanel(abc.ABC):
    item_label = "Item"

    def __init__(self, api: StorefrontAPI, notifier: Notifier):
        self.api = api
        self.notifier = notifier
        self.items: List[Any] = []
        self.loading = False
        self.error: Optional[str] = None
        self.guard = InFlightGuard()

    @abc.abstractmethod
    async def _fetch(self) -> List[Any]:
        ...

    async def refresh(self) -> bool:
        self.loading = True
        self.error = None
        try:
            self.items = await self._fetch()
            return True
        except ApiError as exc:
            self.error = exc.message
            self.notifier.error(exc.message)
            return False
        finally:
            self.loading = False

    def is_busy(self, key: Hashable) -> bool:
        return self.guard.is_busy(key)

    async def _mutate(self, keys: Union[Hashable, List[Hashable]], request: Callable[[], Awaitable[Any]], success: str, patch: Optional[Callable[[], None]] = None) -> bool:
        """Send one mutation while holding its row keys.

        Returns True only when the request succeeded and the list was re-fetched.
        """
        if not isinstance(keys, list):
            keys = [keys]
        try:
            async with self.guard.hold_all(keys):
                if patch is not None:
                    patch()
                try:
                    await request()
                except ApiError as exc:
                    if patch is not None:
                        await self.refresh()
                    self.error = exc.message
                    self.notifier.error(exc.message)
                    return False
                synced = await self.refresh()
        except OperationInProgress:
            self.notifier.info(f"{self.item_label} is already being updated")
            return False
        if not synced:
            logger.warning("admin.reconcile_failed", panel=type(self).__name__, keys=[str(key) for key in keys])
            return False
        logger.info("admin.mutated", panel=type(self).__name__, keys=[str(key) for key in keys])
        self.notifier.success(success)
        return True

    def _replace(self, predicate: Callable[[Any], bool], **changes) -> None:
        self.items = [item.model_copy(update=changes) if predicate(item) else item for item in self.items]


class ProductsPanel(AdminPanel):
    item_label = "Product"

    def __init__(self, api: StorefrontAPI, notifier: Notifier):
        super().__init__(api, notifier)
        self.selected: Set[str] = set()

    async def _fetch(self) -> List[Product]:
        return await self.api.list_products()

    def _draft(self, data: Union[ProductDraft, Dict[str, Any]]) -> ProductDraft:
        if isinstance(data, ProductDraft):
            return data
        try:
            return ProductDraft.model_validate(data)
        except pydantic.ValidationError as exc:
            self.notifier.error("Please fix the validation errors")
            raise ValidationError(_field_errors(exc), "Please fix the validation errors") from exc

    async def create(self, data: Union[ProductDraft, Dict[str, Any]]) -> bool:
        draft = self._draft(data)
        return await self._mutate("new", lambda: self.api.create_product(draft.model_dump()), "Product created successfully")

    async def update(self, product_id: str, changes: Dict[str, Any]) -> bool:
        """Validate the edited fields against the current row and send only those."""
        current = next((p for p in self.items if p.id == product_id), None)
        base = {}
        if current is not None:
            base = current.model_dump(include={"name", "price", "description", "category", "brand", "stock", "featured"})
            base["images"] = [image.url for image in current.images]
        draft = self._draft({**base, **changes})
        payload = draft.model_dump(include=set(changes))
        return await self._mutate(product_id, lambda: self.api.update_product(product_id, payload), "Product updated successfully")

    async def delete(self, product_id: str) -> bool:
        done = await self._mutate(product_id, lambda: self.api.delete_product(product_id), "Product deleted successfully")
        if done:
            self.selected.discard(product_id)
        return done

    def toggle_select(self, product_id: str) -> None:
        if product_id in self.selected:
            self.selected.discard(product_id)
        else:
            self.selected.add(product_id)

    def select_all(self, checked: bool = True) -> None:
        self.selected = {p.id for p in self.items} if checked else set()

    async def bulk_delete(self, ids: Optional[Iterable[str]] = None) -> bool:
        targets = sorted(set(ids) if ids is not None else self.selected)
        if not targets:
            self.notifier.info("No products selected")
            return False
        done = await self._mutate(targets, lambda: self.api.bulk_delete_products(targets), f"{len(targets)} products deleted successfully")
        if done:
            self.selected -= set(targets)
        return done


class UsersPanel(AdminPanel):
    item_label = "User"

    async def _fetch(self) -> List[User]:
        return await self.api.list_users()

    async def change_role(self, user_id: str, role: str) -> bool:
        if role not in ROLES:
            raise ValidationError({"role": "Invalid role"})
        return await self._mutate(
            user_id,
            lambda: self.api.update_user_role(user_id, role),
            "User role updated successfully",
            patch=lambda: self._replace(lambda u: u.id == user_id, role=role),
        )

    async def set_active(self, user_id: str, is_active: bool) -> bool:
        message = "User activated successfully" if is_active else "User deactivated successfully"
        return await self._mutate(user_id, lambda: self.api.update_user_status(user_id, is_active), message)

    async def delete(self, user_id: str) -> bool:
        return await self._mutate(user_id, lambda: self.api.delete_user(user_id), "User deleted successfully")

    def filtered(self, search: str = "", role: str = "all") -> List[User]:
        term = search.strip().lower()
        return [
            u for u in self.items
            if (not term or term in u.name.lower() or term in u.email.lower())
            and (role == "all" or u.role == role)
        ]


class OrdersPanel(AdminPanel):
    item_label = "Order"

    def __init__(self, api: StorefrontAPI, notifier: Notifier):
        super().__init__(api, notifier)
        self.total_amount = 0.0

    async def _fetch(self) -> List[Order]:
        orders, self.total_amount = await self.api.list_orders()
        return orders

    async def change_status(self, order_id: str, status: str) -> bool:
        if status not in ORDER_STATUSES:
            raise ValidationError({"status": "Invalid order status"})
        return await self._mutate(
            order_id,
            lambda: self.api.update_order_status(order_id, status),
            "Order status updated successfully",
            patch=lambda: self._replace(lambda o: o.id == order_id, order_status=status),
        )

    async def delete(self, order_id: str) -> bool:
        return await self._mutate(order_id, lambda: self.api.admin_delete_order(order_id), "Order deleted successfully")


class ReviewsPanel(AdminPanel):
    item_label = "Review"

    async def _fetch(self) -> List[AdminReview]:
        return await self.api.list_reviews()

    async def delete(self, product_id: str, review_id: str) -> bool:
        return await self._mutate(review_id, lambda: self.api.delete_review(product_id, review_id), "Review deleted successfully")


class AnalyticsPanel:
    def __init__(self, api: StorefrontAPI, notifier: Notifier):
        self.api = api
        self.notifier = notifier
        self.data = Analytics()
        self.granularity = "month"
        self.loading = False
        self.error: Optional[str] = None

    async def load(self, granularity: str = "month", periods: Optional[int] = None) -> Analytics:
        if granularity not in ("week", "month", "year"):
            raise ValidationError({"granularity": "Choose week, month or year"})
        self.loading = True
        self.error = None
        try:
            self.data = await self.api.analytics(granularity, periods)
            self.granularity = granularity
        except ApiError as exc:
            self.error = exc.message
            self.notifier.error(exc.message)
        finally:
            self.loading = False
        return self.data
