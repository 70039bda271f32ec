import asyncio
import json

import pytest

from storefront.cart import Cart
from storefront.errors import ApiError, NotAuthenticated, OperationInProgress, ValidationError
from storefront.models import ShippingInfo
from storefront.storage import FileStorage, MemoryStorage, Storage


async def test_add_then_readd_replaces_entry(cart, fake_api, storage):
    fake_api.add_product("p1", stock=10)
    fake_api.add_product("p2", name="Rose Conditioner", price=180.0)

    await cart.add_item("p1", 1)
    await cart.add_item("p2", 2)
    await cart.add_item("p1", 4)

    assert [(i.product_id, i.quantity) for i in cart] == [("p1", 4), ("p2", 2)]
    stored = json.loads(storage.get("cartItems_u1"))
    assert [entry["product"] for entry in stored] == ["p1", "p2"]
    assert stored[0]["quantity"] == 4


async def test_item_snapshot_uses_fallback_image(cart, fake_api):
    fake_api.add_product("p1", category="Hair Oil")
    item = await cart.add_item("p1")
    assert item.name == "Argan Shampoo"
    assert item.stock == 10
    assert "photo-1570554886111" in item.image


async def test_remove_is_idempotent(cart, fake_api, storage):
    fake_api.add_product("p1")
    await cart.add_item("p1")
    assert cart.remove_item("p1") is True
    assert cart.remove_item("p1") is False
    assert cart.is_empty
    assert json.loads(storage.get("cartItems_u1")) == []


async def test_quantity_cannot_exceed_stock(cart, fake_api):
    fake_api.add_product("p1", stock=2)
    with pytest.raises(ValidationError) as exc:
        await cart.add_item("p1", 3)
    assert exc.value.errors == {"quantity": "Only 2 left in stock"}
    assert cart.is_empty


async def test_update_quantity(cart, fake_api):
    fake_api.add_product("p1")
    await cart.add_item("p1", 1)
    await cart.update_quantity("p1", 3)
    assert cart.get("p1").quantity == 3
    assert await cart.update_quantity("p1", 0) is None
    assert cart.get("p1") is None


async def test_add_requires_user(fake_api, storage, notifier):
    cart = Cart(fake_api, storage, notifier)
    with pytest.raises(NotAuthenticated):
        await cart.add_item("p1")
    assert fake_api.count("get_product") == 0


async def test_fetch_failure_leaves_cart_untouched(cart, fake_api, notifier):
    with pytest.raises(ApiError):
        await cart.add_item("missing")
    assert cart.is_empty
    assert notifier.latest.message == "Product not found"


async def test_concurrent_add_for_same_product_is_rejected(cart, fake_api):
    fake_api.add_product("p1")
    fake_api.gate = asyncio.Event()
    first = asyncio.ensure_future(cart.add_item("p1", 1))
    await asyncio.sleep(0)
    assert cart.guard.is_busy("p1")
    with pytest.raises(OperationInProgress):
        await cart.add_item("p1", 2)
    fake_api.gate.set()
    await first
    assert [(i.product_id, i.quantity) for i in cart] == [("p1", 1)]
    assert not cart.guard.is_busy("p1")


async def test_user_switch_discards_inflight_add(cart, fake_api):
    fake_api.add_product("p1")
    fake_api.gate = asyncio.Event()
    pending = asyncio.ensure_future(cart.add_item("p1"))
    await asyncio.sleep(0)
    cart.switch_user(None)
    fake_api.gate.set()
    assert await pending is None
    assert cart.is_empty


async def test_carts_are_kept_per_user(cart, fake_api, storage):
    fake_api.add_product("p1")
    await cart.add_item("p1", 2)
    cart.switch_user(None)
    assert cart.is_empty
    assert storage.get("cartItems_u1") is not None

    cart.switch_user("u2")
    assert cart.is_empty
    cart.switch_user("u1")
    assert cart.get("p1").quantity == 2


def test_load_collapses_duplicates_and_skips_bad_rows(fake_api, storage, notifier):
    rows = [
        {"product": "p1", "name": "A", "price": 1, "stock": 5, "quantity": 1},
        {"product": "p1", "name": "A", "price": 1, "stock": 5, "quantity": 3},
        {"product": "p2", "name": "B"},
    ]
    storage.set_json("cartItems_u9", rows)
    cart = Cart(fake_api, storage, notifier)
    cart.switch_user("u9")
    assert [(i.product_id, i.quantity) for i in cart] == [("p1", 3)]


async def test_totals(cart, fake_api):
    fake_api.add_product("p1", price=199.99)
    fake_api.add_product("p2", price=0.01)
    await cart.add_item("p1", 3)
    await cart.add_item("p2", 1)
    totals = cart.totals()
    assert totals.subtotal == 599.98
    assert totals.shipping == 0
    assert totals.total == 599.98


def test_shipping_info_persists(tmp_path, fake_api, notifier):
    storage = FileStorage(str(tmp_path / "state.json"))
    cart = Cart(fake_api, storage, notifier)
    cart.save_shipping_info(ShippingInfo(address="12 Mabini St", city="Manila", postal_code="1000", phone_no="0917"))

    reopened = Cart(fake_api, FileStorage(str(tmp_path / "state.json")), notifier)
    assert reopened.shipping_info.city == "Manila"
    assert reopened.shipping_info.country == "Philippines"


def test_storage_backends_must_implement_all_operations():
    class ReadOnly(Storage):
        def get(self, key):
            return None

    with pytest.raises(TypeError):
        Storage()
    with pytest.raises(TypeError):
        ReadOnly()
    storage = MemoryStorage()
    storage.set_json("k", {"a": 1})
    assert storage.get_json("k") == {"a": 1}
