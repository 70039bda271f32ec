"""
Checkout wizard

Cart -> Customer Info -> Delivery -> Payment, then a confirmation gate that
actually places the order. Forward moves are validated one step at a time;
there is no way to reach PAYMENT without the customer and delivery checks
passing in this session.
"""

from enum import IntEnum
from typing import List, Optional, Set

import structlog
from pydantic import BaseModel

from .api import StorefrontAPI
from .auth import AuthStore
from .cart import Cart
from .errors import ApiError, EmptyCartError, NotAuthenticated, ValidationError
from .models import CartItem, CartTotals, Order, OrderLine, OrderRequest, PaymentInfo, ShippingInfo, User
from .notifications import Notifier

logger = structlog.get_logger(__name__)

PAYMENT_METHODS = ("cod", "gcash", "card")
DELIVERY_TIMES = ("morning", "afternoon", "evening")


class Step(IntEnum):
    CART = 1
    CUSTOMER_INFO = 2
    DELIVERY = 3
    PAYMENT = 4


REVIEWED_STEPS = frozenset((Step.CART, Step.CUSTOMER_INFO, Step.DELIVERY))

class CustomerInfo(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""


class DeliveryInfo(BaseModel):
    address: str = ""
    city: str = ""
    postal_code: str = ""
    delivery_date: str = ""
    delivery_time: str = "morning"


class OrderSummary(BaseModel):
    items: List[CartItem]
    customer: CustomerInfo
    delivery: DeliveryInfo
    shipping_info: ShippingInfo
    payment_method: str
    special_instructions: str = ""
    totals: CartTotals


def _missing(model: BaseModel, fields) -> dict:
    return {name: f"{name.replace('_', ' ').capitalize()} is required" for name in fields if not str(getattr(model, name)).strip()}


def validate_customer(info: CustomerInfo) -> None:
    errors = _missing(info, ("name", "email", "phone"))
    if errors:
        raise ValidationError(errors, "Please fill in all customer information fields")


def validate_delivery(info: DeliveryInfo) -> None:
    errors = _missing(info, ("address", "city", "postal_code"))
    if info.delivery_time not in DELIVERY_TIMES:
        errors["delivery_time"] = "Please choose a delivery time"
    if errors:
        raise ValidationError(errors, "Please fill in all delivery information fields")


class CheckoutWizard:
    def __init__(self, cart: Cart, auth: AuthStore, api: StorefrontAPI, notifier: Notifier, country: str = "Philippines"):
        self.cart = cart
        self.auth = auth
        self.api = api
        self.notifier = notifier
        self.country = country
        self.customer = CustomerInfo()
        self.delivery = DeliveryInfo()
        self.payment_method = "cod"
        self.special_instructions = ""
        self.summary: Optional[OrderSummary] = None
        self.order: Optional[Order] = None
        self.completed = False
        self._step = Step.CART
        self._passed: Set[Step] = set()

    @property
    def step(self) -> Step:
        return self._step

    @step.setter
    def step(self, value) -> None:
        self.go_to(value)

    @property
    def passed_steps(self) -> Set[Step]:
        return set(self._passed)

    @property
    def confirming(self) -> bool:
        return self.summary is not None

    def prefill(self, user: Optional[User]) -> None:
        if user is None:
            return
        self.update_customer(name=self.customer.name or user.name, email=self.customer.email or user.email)

    def update_customer(self, **fields) -> None:
        self.customer = self.customer.model_copy(update=fields)
        self._passed.discard(Step.CUSTOMER_INFO)
        self.summary = None

    def update_delivery(self, **fields) -> None:
        self.delivery = self.delivery.model_copy(update=fields)
        self._passed.discard(Step.DELIVERY)
        self.summary = None

    def select_payment(self, method: str) -> None:
        if method not in PAYMENT_METHODS:
            raise ValidationError({"payment_method": f"Unknown payment method: {method}"})
        self.payment_method = method
        self.summary = None

    def _gate(self, step: Step) -> None:
        try:
            if step == Step.CART and self.cart.is_empty:
                raise ValidationError({"cart": "Your cart is empty"})
            if step == Step.CUSTOMER_INFO:
                validate_customer(self.customer)
            if step == Step.DELIVERY:
                validate_delivery(self.delivery)
        except ValidationError as exc:
            self.notifier.error(exc.message)
            raise
        self._passed.add(step)

    def next(self) -> Step:
        if self._step < Step.PAYMENT:
            self._gate(self._step)
            self._step = Step(self._step + 1)
        return self._step

    def back(self) -> Step:
        if self._step > Step.CART:
            self._step = Step(self._step - 1)
        return self._step

    def go_to(self, target) -> Step:
        target = Step(target)
        while self._step < target:
            self.next()
        if target < self._step:
            self._step = target
        return self._step

    def review(self) -> OrderSummary:
        """Validate everything once more and open the confirmation gate."""
        if self._step != Step.PAYMENT:
            raise ValidationError({"step": "Complete the previous steps first"})
        for step in (Step.CART, Step.CUSTOMER_INFO, Step.DELIVERY):
            self._gate(step)

        shipping_info = ShippingInfo(
            address=self.delivery.address,
            city=self.delivery.city,
            postal_code=self.delivery.postal_code,
            phone_no=self.customer.phone,
            country=self.country,
        )
        self.cart.save_shipping_info(shipping_info)
        self.summary = OrderSummary(
            items=list(self.cart.items),
            customer=self.customer,
            delivery=self.delivery,
            shipping_info=shipping_info,
            payment_method=self.payment_method,
            special_instructions=self.special_instructions,
            totals=self.cart.totals(),
        )
        return self.summary

    def cancel_review(self) -> None:
        self.summary = None

    def build_order_request(self, shipping_info: ShippingInfo) -> OrderRequest:
        return OrderRequest(
            order_items=[OrderLine(product=item.product_id, quantity=item.quantity) for item in self.cart.items],
            shipping_info=shipping_info,
            tax_price=0,
            shipping_price=0,
            payment_info=PaymentInfo(id=self.payment_method, status=self.payment_method),
        )

    async def confirm_order(self) -> Order:
        if not self.auth.state.is_authenticated:
            self.notifier.error("Please login to place an order")
            raise NotAuthenticated("Please login to place an order")
        if self.cart.is_empty:
            self.notifier.error("Your cart is empty")
            raise EmptyCartError("Your cart is empty")
        if self.summary is None or not REVIEWED_STEPS <= self._passed:
            self.summary = None
            raise ValidationError({"step": "Review your order before confirming"})

        request = self.build_order_request(self.summary.shipping_info)
        try:
            order = await self.api.create_order(request)
        except ApiError as exc:
            self.notifier.error(exc.message)
            raise

        for item in list(self.cart.items):
            self.cart.remove_item(item.product_id)
        self.summary = None
        self.order = order
        self.completed = True
        logger.info("checkout.order_placed", order_id=order.id, total=order.total_price)
        self.notifier.success("Order placed successfully!")
        return order
