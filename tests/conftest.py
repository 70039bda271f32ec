import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

import httpx
import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database
import main
from storefront.app import Storefront
from storefront.auth import AuthStore
from storefront.cart import Cart
from storefront.config import Settings
from storefront.errors import ApiError
from storefront.identity import IdentityProvider, Session
from storefront.models import AdminReview, Analytics, Order, OrderItem, Product, Review, User
from storefront.notifications import Notifier
from storefront.storage import MemoryStorage


# Server side

@pytest.fixture
def mongo(monkeypatch):
    db = mongomock.MongoClient().db
    monkeypatch.setattr(main, "db", db)
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture
def client(mongo):
    return TestClient(main.app)


@pytest.fixture
def make_user(mongo):
    def _make(name="Ana", email="ana@example.com", password="secret1", role="user", is_active=True):
        doc = main.UserSchema(
            name=name,
            email=email,
            password_hash=main.hash_password(password),
            role=role,
            is_active=is_active,
            created_at=datetime.now(timezone.utc),
        ).model_dump()
        user_id = str(mongo["user"].insert_one(doc).inserted_id)
        return user_id, main.create_access_token({"sub": user_id})
    return _make


@pytest.fixture
def make_product(mongo):
    def _make(name="Argan Shampoo", price=250.0, stock=10, category="Shampoo", **extra):
        doc = main.ProductSchema(
            name=name,
            price=price,
            description=extra.pop("description", f"{name} for every hair type"),
            category=category,
            stock=stock,
            created_at=extra.pop("created_at", datetime.now(timezone.utc)),
            **extra,
        ).model_dump()
        return str(mongo["product"].insert_one(doc).inserted_id)
    return _make


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_header():
    return bearer


@pytest.fixture
async def storefront(mongo):
    settings = Settings(api_url="http://testserver/api/v1")
    app = Storefront(settings, storage=MemoryStorage(), transport=httpx.ASGITransport(app=main.app))
    async with app:
        yield app


# Client side doubles

class FakeAPI:
    """In-memory stand-in for StorefrontAPI; records every call by name."""

    def __init__(self):
        self.products: Dict[str, Product] = {}
        self.users: Dict[str, User] = {}
        self.orders: Dict[str, Order] = {}
        self.reviews: List[AdminReview] = []
        self.product_review_list: List[Review] = []
        self.profile: Optional[User] = None
        self.calls: List[str] = []
        self.fail: Dict[str, ApiError] = {}
        self.gate: Optional[asyncio.Event] = None
        self.order_requests = []

    def count(self, name: str) -> int:
        return self.calls.count(name)

    def add_product(self, product_id="p1", name="Argan Shampoo", price=250.0, stock=10, **fields) -> Product:
        product = Product(id=product_id, name=name, price=price, stock=stock, **fields)
        self.products[product_id] = product
        return product

    async def _call(self, name: str) -> None:
        self.calls.append(name)
        if self.gate is not None:
            await self.gate.wait()
        if name in self.fail:
            raise self.fail[name]

    async def me(self, token=None) -> User:
        await self._call("me")
        if self.profile is None:
            raise ApiError(401, "Login first to access this resource")
        return self.profile

    async def update_profile(self, **changes) -> User:
        await self._call("update_profile")
        self.profile = self.profile.model_copy(update=changes)
        return self.profile

    async def get_product(self, product_id: str) -> Product:
        await self._call("get_product")
        if product_id not in self.products:
            raise ApiError(404, "Product not found")
        return self.products[product_id]

    async def list_products(self) -> List[Product]:
        await self._call("list_products")
        return list(self.products.values())

    async def featured_products(self) -> List[Product]:
        await self._call("featured_products")
        return [p for p in self.products.values() if p.featured]

    async def create_order(self, request) -> Order:
        await self._call("create_order")
        self.order_requests.append(request)
        items = [OrderItem(product=line.product, name=self.products[line.product].name, price=self.products[line.product].price, quantity=line.quantity) for line in request.order_items]
        total = round(sum(i.price * i.quantity for i in items), 2)
        order = Order(id=f"order{len(self.order_requests)}", user="u1", order_items=items, shipping_info=request.shipping_info, payment_info=request.payment_info, items_price=total, total_price=total)
        self.orders[order.id] = order
        return order

    async def my_orders(self) -> List[Order]:
        await self._call("my_orders")
        return list(self.orders.values())

    async def delete_order(self, order_id: str) -> None:
        await self._call("delete_order")
        self.orders.pop(order_id, None)

    async def submit_review(self, product_id, rating, comment="") -> None:
        await self._call("submit_review")

    async def product_reviews(self, product_id) -> List[Review]:
        await self._call("product_reviews")
        return list(self.product_review_list)

    async def create_product(self, data) -> Product:
        await self._call("create_product")
        return self.add_product(product_id=f"p{len(self.products) + 1}", **{k: v for k, v in data.items() if k in ("name", "price", "stock", "category", "description")})

    async def update_product(self, product_id, data) -> Product:
        await self._call("update_product")
        self.products[product_id] = self.products[product_id].model_copy(update=data)
        return self.products[product_id]

    async def delete_product(self, product_id) -> None:
        await self._call("delete_product")
        self.products.pop(product_id, None)

    async def bulk_delete_products(self, ids) -> int:
        await self._call("bulk_delete_products")
        removed = [self.products.pop(pid) for pid in list(ids) if pid in self.products]
        return len(removed)

    async def list_users(self) -> List[User]:
        await self._call("list_users")
        return list(self.users.values())

    async def update_user_role(self, user_id, role) -> User:
        await self._call("update_user_role")
        self.users[user_id] = self.users[user_id].model_copy(update={"role": role})
        return self.users[user_id]

    async def update_user_status(self, user_id, is_active) -> User:
        await self._call("update_user_status")
        self.users[user_id] = self.users[user_id].model_copy(update={"is_active": is_active})
        return self.users[user_id]

    async def delete_user(self, user_id) -> None:
        await self._call("delete_user")
        self.users.pop(user_id, None)

    async def list_orders(self):
        await self._call("list_orders")
        orders = list(self.orders.values())
        return orders, round(sum(o.total_price for o in orders), 2)

    async def update_order_status(self, order_id, status) -> Order:
        await self._call("update_order_status")
        self.orders[order_id] = self.orders[order_id].model_copy(update={"order_status": status})
        return self.orders[order_id]

    async def admin_delete_order(self, order_id) -> None:
        await self._call("admin_delete_order")
        self.orders.pop(order_id, None)

    async def list_reviews(self) -> List[AdminReview]:
        await self._call("list_reviews")
        return list(self.reviews)

    async def delete_review(self, product_id, review_id) -> None:
        await self._call("delete_review")
        self.reviews = [r for r in self.reviews if r.review_id != review_id]

    async def analytics(self, granularity="month", periods=None) -> Analytics:
        await self._call("analytics")
        return Analytics(totals={"total_revenue": 500.0, "total_orders": 2, "total_products": 3, "total_users": 4})


class FakeIdentity(IdentityProvider):
    def __init__(self):
        super().__init__()
        self.error = None
        self.sign_outs = 0

    async def restore(self) -> None:
        await self._set_session(self._session)

    async def sign_in(self, email, password) -> Session:
        if self.error is not None:
            raise self.error
        session = Session(uid=str(ObjectId()), email=email, id_token=f"token-{email}")
        await self._set_session(session)
        return session

    async def sign_up(self, name, email, password) -> Session:
        return await self.sign_in(email, password)

    async def sign_out(self) -> None:
        self.sign_outs += 1
        await self._set_session(None)


@pytest.fixture
def fake_api():
    return FakeAPI()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def auth_store(fake_api, identity, notifier):
    store = AuthStore(fake_api, identity, notifier)
    store.start()
    yield store
    store.close()


@pytest.fixture
def cart(fake_api, storage, notifier):
    cart = Cart(fake_api, storage, notifier)
    cart.switch_user("u1")
    return cart


@pytest.fixture
def shopper():
    return User(id="u1", name="Ana Cruz", email="ana@example.com")
