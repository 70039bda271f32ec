"""
Application container

Owns the services that used to be page-wide singletons and wires them
together: the identity provider feeds the auth store, and auth state
decides whose cart is loaded.
"""

from typing import Optional

import httpx
import structlog

from .admin import AnalyticsPanel, OrdersPanel, ProductsPanel, ReviewsPanel, UsersPanel
from .api import StorefrontAPI
from .auth import AuthState, AuthStore
from .cart import Cart
from .catalog import CatalogView
from .checkout import CheckoutWizard
from .config import Settings
from .errors import NotAuthenticated, PermissionDenied
from .identity import BackendIdentityProvider, IdentityProvider
from .notifications import Notifier
from .orders import OrderHistory
from .storage import Storage

logger = structlog.get_logger(__name__)


class Storefront:
    def __init__(self, settings: Optional[Settings] = None, storage: Optional[Storage] = None, provider: Optional[IdentityProvider] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or Settings.from_env()
        self.storage = storage if storage is not None else self.settings.make_storage()
        self.notifier = Notifier()
        self.api = StorefrontAPI(self.settings.api_url, timeout=self.settings.timeout, transport=transport)
        self.identity = provider or BackendIdentityProvider(self.api, self.storage)
        self.api.token_source = self.identity.get_id_token
        self.auth = AuthStore(self.api, self.identity, self.notifier)
        self.cart = Cart(self.api, self.storage, self.notifier)
        self._unsubscribe_cart = None
        self.started = False

    async def start(self) -> "Storefront":
        if self.started:
            return self
        self._unsubscribe_cart = self.auth.subscribe(self._sync_cart)
        self.auth.start()
        await self.identity.restore()
        self.started = True
        logger.info("storefront.started", api=self.settings.api_url, authenticated=self.auth.state.is_authenticated)
        return self

    async def close(self) -> None:
        if self._unsubscribe_cart is not None:
            self._unsubscribe_cart()
            self._unsubscribe_cart = None
        self.auth.close()
        await self.api.aclose()
        self.started = False

    async def __aenter__(self) -> "Storefront":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _sync_cart(self, state: AuthState) -> None:
        user_id = state.user.id if state.is_authenticated and state.user else None
        self.cart.switch_user(user_id)

    def _require_admin(self) -> None:
        user = self.auth.state.user
        if not self.auth.state.is_authenticated or user is None:
            raise NotAuthenticated("Login first to access this resource")
        if not user.is_admin:
            raise PermissionDenied(f"Role ({user.role}) is not allowed to access this resource")

    def checkout(self) -> CheckoutWizard:
        wizard = CheckoutWizard(self.cart, self.auth, self.api, self.notifier, country=self.settings.country)
        wizard.prefill(self.auth.state.user)
        return wizard

    def catalog(self) -> CatalogView:
        return CatalogView(self.api, self.notifier, per_page=self.settings.page_size)

    def order_history(self) -> OrderHistory:
        if not self.auth.state.is_authenticated:
            raise NotAuthenticated("Login first to access this resource")
        return OrderHistory(self.api, self.notifier)

    def admin_products(self) -> ProductsPanel:
        self._require_admin()
        return ProductsPanel(self.api, self.notifier)

    def admin_users(self) -> UsersPanel:
        self._require_admin()
        return UsersPanel(self.api, self.notifier)

    def admin_orders(self) -> OrdersPanel:
        self._require_admin()
        return OrdersPanel(self.api, self.notifier)

    def admin_reviews(self) -> ReviewsPanel:
        self._require_admin()
        return ReviewsPanel(self.api, self.notifier)

    def admin_analytics(self) -> AnalyticsPanel:
        self._require_admin()
        return AnalyticsPanel(self.api, self.notifier)
