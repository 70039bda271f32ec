import httpx
import pytest

import main
from storefront.app import Storefront
from storefront.checkout import Step
from storefront.config import Settings
from storefront.errors import NotAuthenticated, PermissionDenied
from storefront.identity import AUTH_ERROR_MESSAGES
from storefront.storage import MemoryStorage


def _settings():
    return Settings(api_url="http://testserver/api/v1")


async def test_shopper_journey(storefront, make_user, make_product):
    user_id, _ = make_user(name="Ana Cruz")
    oil = make_product(name="Argan Oil", price=320.0, stock=5, category="Hair Oil")
    mask = make_product(name="Repair Mask", price=410.0, stock=2, category="Hair Mask")

    assert not storefront.auth.state.loading
    result = await storefront.auth.login("ana@example.com", "secret1")
    assert result.success
    assert storefront.cart.user_id == user_id

    catalog = storefront.catalog()
    await catalog.load()
    catalog.set_filter(sort="price-high")
    assert [p.name for p in catalog.page_items] == ["Repair Mask", "Argan Oil"]

    await storefront.cart.add_item(oil, 1)
    await storefront.cart.add_item(mask, 1)
    await storefront.cart.add_item(oil, 3)
    assert [(i.product_id, i.quantity) for i in storefront.cart] == [(oil, 3), (mask, 1)]

    wizard = storefront.checkout()
    assert wizard.customer.name == "Ana Cruz"
    wizard.update_customer(phone="09171234567")
    wizard.update_delivery(address="12 Mabini St", city="Manila", postal_code="1000")
    wizard.go_to(Step.PAYMENT)
    wizard.select_payment("gcash")
    wizard.review()
    order = await wizard.confirm_order()

    assert order.total_price == 1370.0
    assert order.payment_info.id == "gcash"
    assert order.shipping_info.country == "Philippines"
    assert storefront.cart.is_empty
    assert storefront.storage.get_json(f"cartItems_{user_id}") == []

    history = storefront.order_history()
    await history.refresh()
    assert [o.id for o in history.orders] == [order.id]
    assert await history.submit_review(oil, 5, "Smells great")
    assert (await history.existing_review(oil, user_id)).rating == 5

    await storefront.auth.logout()
    assert storefront.cart.user_id is None
    assert storefront.storage.get("token") is None
    with pytest.raises(NotAuthenticated):
        storefront.order_history()


async def test_session_restored_on_start(mongo, make_user, make_product):
    storage = MemoryStorage()
    transport = httpx.ASGITransport(app=main.app)
    make_user()
    pid = make_product()

    async with Storefront(_settings(), storage=storage, transport=transport) as first:
        await first.auth.login("ana@example.com", "secret1")
        await first.cart.add_item(pid, 2)

    async with Storefront(_settings(), storage=storage, transport=transport) as second:
        assert second.auth.state.is_authenticated
        assert second.auth.state.user.email == "ana@example.com"
        assert second.cart.get(pid).quantity == 2


async def test_login_errors_are_mapped(storefront, make_user):
    make_user()
    result = await storefront.auth.login("ana@example.com", "wrong-password")
    assert not result.success
    assert result.message == AUTH_ERROR_MESSAGES["auth/invalid-credential"]
    assert storefront.auth.state.error == result.message


async def test_deactivated_user_cannot_sign_in(storefront, make_user):
    user_id, _ = make_user(name="Bo", email="bo@example.com")
    make_user(name="Admin", email="admin@example.com", role="admin")

    await storefront.auth.login("admin@example.com", "secret1")
    users = storefront.admin_users()
    await users.refresh()
    assert await users.set_active(user_id, False)
    await storefront.auth.logout()

    result = await storefront.auth.login("bo@example.com", "secret1")
    assert result.message == AUTH_ERROR_MESSAGES["auth/user-disabled"]
    assert storefront.identity.current_session is None
    assert not storefront.auth.state.is_authenticated


async def test_admin_back_office(storefront, make_user, make_product):
    make_user(name="Admin", email="admin@example.com", role="admin")
    await storefront.auth.login("admin@example.com", "secret1")

    products = storefront.admin_products()
    await products.refresh()
    assert await products.create({"name": "Scalp Serum", "price": 500, "description": "Light serum", "category": "Hair Serum", "stock": 4})
    created = products.items[0]
    assert created.brand == "Nourishy"
    assert await products.update(created.id, {"stock": 9})
    assert products.items[0].stock == 9

    await storefront.cart.add_item(created.id, 2)
    wizard = storefront.checkout()
    wizard.update_customer(phone="0917")
    wizard.update_delivery(address="1 Rizal Ave", city="Cebu", postal_code="6000")
    wizard.go_to(Step.PAYMENT)
    wizard.review()
    order = await wizard.confirm_order()

    orders = storefront.admin_orders()
    await orders.refresh()
    assert orders.total_amount == 1000.0
    assert await orders.change_status(order.id, "Confirmed")
    assert orders.items[0].order_status == "Confirmed"
    await products.refresh()
    assert products.items[0].stock == 7

    assert await orders.change_status(order.id, "Delivered")
    assert await orders.change_status(order.id, "Cancelled") is False
    assert storefront.notifier.latest.message == "You have already delivered this order"
    assert orders.items[0].order_status == "Delivered"

    analytics = storefront.admin_analytics()
    data = await analytics.load("month")
    assert data.totals["total_revenue"] == 1000.0
    assert data.product_stats[0].name == "Scalp Serum"


async def test_admin_panels_require_admin(storefront, make_user):
    with pytest.raises(NotAuthenticated):
        storefront.admin_products()
    make_user()
    await storefront.auth.login("ana@example.com", "secret1")
    with pytest.raises(PermissionDenied):
        storefront.admin_users()


async def test_register_validation_is_mapped(storefront, make_user):
    result = await storefront.auth.register({"name": "Bo", "email": "bo@example.com", "password": "123"})
    assert result.message == AUTH_ERROR_MESSAGES["auth/weak-password"]

    make_user(email="taken@example.com")
    result = await storefront.auth.register({"name": "Cy", "email": "taken@example.com", "password": "secret1"})
    assert result.message == AUTH_ERROR_MESSAGES["auth/email-already-in-use"]

    result = await storefront.auth.register({"name": "Di", "email": "di@example.com", "password": "secret1"})
    assert result.success
    assert storefront.auth.state.user.email == "di@example.com"
