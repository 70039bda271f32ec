"""
Cart state

An ordered list of CartItems, unique by product id, mirrored to storage
under `cartItems_<userId>` after every mutation. Shipping info is a
separate singleton under `shippingInfo`.
"""

from typing import Iterator, List, Optional

import pydantic
import structlog

from .api import StorefrontAPI
from .errors import ApiError, NotAuthenticated, OperationInProgress, ValidationError
from .guard import InFlightGuard
from .models import CartItem, CartTotals, ShippingInfo
from .notifications import Notifier
from .storage import SHIPPING_INFO_KEY, Storage, cart_key

logger = structlog.get_logger(__name__)


class Cart:
    def __init__(self, api: StorefrontAPI, storage: Storage, notifier: Notifier):
        self.api = api
        self.storage = storage
        self.notifier = notifier
        self.user_id: Optional[str] = None
        self.items: List[CartItem] = []
        self.shipping_info: Optional[ShippingInfo] = self._load_shipping_info()
        self.guard = InFlightGuard()

    def __iter__(self) -> Iterator[CartItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def get(self, product_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.product_id == product_id), None)

    def switch_user(self, user_id: Optional[str]) -> None:
        if user_id == self.user_id:
            return
        self.user_id = user_id
        self.items = self._load_items() if user_id else []
        logger.info("cart.user_switched", user_id=user_id, items=len(self.items))

    async def add_item(self, product_id: str, quantity: int = 1) -> Optional[CartItem]:
        """Fetch the product and upsert it with the given quantity.

        Returns None when the signed-in user changed while the product was
        being fetched; the result is then discarded.
        """
        owner = self.user_id
        if owner is None:
            self.notifier.error("Please login to add items to your cart")
            raise NotAuthenticated("Please login to add items to your cart")
        if quantity < 1:
            raise ValidationError({"quantity": "Quantity must be at least 1"})

        try:
            async with self.guard.hold(product_id):
                product = await self.api.get_product(product_id)
        except OperationInProgress:
            self.notifier.info("This item is already being added to your cart")
            raise
        except ApiError as exc:
            self.notifier.error(exc.message)
            raise

        if quantity > product.stock:
            message = f"Only {product.stock} left in stock" if product.stock else "This product is out of stock"
            self.notifier.error(message)
            raise ValidationError({"quantity": message})
        if self.user_id != owner:
            logger.info("cart.add_discarded", product_id=product_id)
            return None

        item = CartItem(
            product_id=product.id,
            name=product.name,
            price=product.price,
            image=product.image_url,
            stock=product.stock,
            quantity=quantity,
        )
        self._upsert(item)
        self._persist()
        logger.info("cart.item_added", product_id=product.id, quantity=quantity)
        self.notifier.success("Item Added to Cart")
        return item

    def remove_item(self, product_id: str) -> bool:
        remaining = [item for item in self.items if item.product_id != product_id]
        if len(remaining) == len(self.items):
            return False
        self.items = remaining
        self._persist()
        logger.info("cart.item_removed", product_id=product_id)
        return True

    async def update_quantity(self, product_id: str, quantity: int) -> Optional[CartItem]:
        if quantity <= 0:
            self.remove_item(product_id)
            return None
        return await self.add_item(product_id, quantity)

    def save_shipping_info(self, info: ShippingInfo) -> None:
        self.shipping_info = info
        self.storage.set_json(SHIPPING_INFO_KEY, info.model_dump())

    def totals(self) -> CartTotals:
        subtotal = round(sum(item.price * item.quantity for item in self.items), 2)
        shipping = 0.0
        tax = 0.0
        return CartTotals(subtotal=subtotal, shipping=shipping, tax=tax, total=round(subtotal + shipping + tax, 2))

    def _upsert(self, item: CartItem) -> None:
        for index, existing in enumerate(self.items):
            if existing.product_id == item.product_id:
                self.items[index] = item
                return
        self.items.append(item)

    def _persist(self) -> None:
        if self.user_id is None:
            return
        self.storage.set_json(cart_key(self.user_id), [item.model_dump(by_alias=True) for item in self.items])

    def _load_items(self) -> List[CartItem]:
        raw = self.storage.get_json(cart_key(self.user_id), [])
        self.items = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                self._upsert(CartItem.model_validate(entry))
            except pydantic.ValidationError:
                logger.warning("cart.dropped_invalid_item", user_id=self.user_id)
        return self.items

    def _load_shipping_info(self) -> Optional[ShippingInfo]:
        raw = self.storage.get_json(SHIPPING_INFO_KEY)
        if not raw:
            return None
        try:
            return ShippingInfo.model_validate(raw)
        except pydantic.ValidationError:
            return None
