from typing import List, Optional, Set

import structlog

from .api import StorefrontAPI
from .errors import ApiError, OperationInProgress, ValidationError
from .guard import InFlightGuard
from .models import Order, Review
from .notifications import Notifier

logger = structlog.get_logger(__name__)


class OrderHistory:
    """The signed-in user's orders and the reviews they leave on purchased items."""

    def __init__(self, api: StorefrontAPI, notifier: Notifier):
        self.api = api
        self.notifier = notifier
        self.orders: List[Order] = []
        self.loading = False
        self.error: Optional[str] = None
        self.reviewed: Set[str] = set()
        self.guard = InFlightGuard()

    async def refresh(self) -> None:
        self.loading = True
        self.error = None
        try:
            self.orders = await self.api.my_orders()
        except ApiError as exc:
            self.error = exc.message
            self.notifier.error(exc.message)
        finally:
            self.loading = False

    async def delete(self, order_id: str) -> bool:
        try:
            async with self.guard.hold(order_id):
                await self.api.delete_order(order_id)
        except OperationInProgress:
            self.notifier.info("This order is already being deleted")
            return False
        except ApiError as exc:
            message = "You can only delete your own order" if exc.status == 403 else exc.message
            self.notifier.error(message)
            return False
        self.orders = [o for o in self.orders if o.id != order_id]
        logger.info("orders.deleted", order_id=order_id)
        self.notifier.success("Order deleted")
        return True

    async def submit_review(self, product_id: str, rating: int, comment: str = "") -> bool:
        if not 1 <= rating <= 5:
            self.notifier.error("Please select a rating")
            raise ValidationError({"rating": "Please select a rating"})
        try:
            async with self.guard.hold(("review", product_id)):
                await self.api.submit_review(product_id, rating, comment.strip())
        except OperationInProgress:
            return False
        except ApiError as exc:
            self.notifier.error(exc.message)
            return False
        self.reviewed.add(product_id)
        self.notifier.success("Review submitted successfully!")
        return True

    async def existing_review(self, product_id: str, user_id: str) -> Optional[Review]:
        try:
            reviews = await self.api.product_reviews(product_id)
        except ApiError as exc:
            logger.info("orders.reviews_unavailable", product_id=product_id, status=exc.status)
            return None
        review = next((r for r in reviews if r.user == user_id), None)
        if review is not None:
            self.reviewed.add(product_id)
        return review
