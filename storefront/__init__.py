"""Client-side state for the Nourishy storefront: auth, cart, checkout, catalog and admin panels."""

from .app import Storefront
from .config import Settings
from .errors import (
    ApiError,
    EmptyCartError,
    IdentityError,
    NotAuthenticated,
    OperationInProgress,
    PermissionDenied,
    StorefrontError,
    ValidationError,
)

__all__ = [
    "ApiError",
    "EmptyCartError",
    "IdentityError",
    "NotAuthenticated",
    "OperationInProgress",
    "PermissionDenied",
    "Settings",
    "Storefront",
    "StorefrontError",
    "ValidationError",
]
