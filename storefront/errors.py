"""Exception hierarchy for the storefront client layer."""

from typing import Dict, Hashable, Optional


class StorefrontError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(StorefrontError):
    """Raised before any network call when form fields are missing or invalid."""

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        self.errors = dict(errors)
        super().__init__(message or "; ".join(self.errors.values()))


class ApiError(StorefrontError):
    """A failed API call; status is None when the request never got a response."""

    def __init__(self, status: Optional[int], message: str):
        super().__init__(message)
        self.status = status


class IdentityError(StorefrontError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


class NotAuthenticated(StorefrontError):
    pass


class PermissionDenied(StorefrontError):
    pass


class EmptyCartError(StorefrontError):
    pass


class OperationInProgress(StorefrontError):
    def __init__(self, key: Hashable):
        super().__init__(f"An operation on {key!r} is already in progress")
        self.key = key
