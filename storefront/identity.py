"""
Identity provider

The provider owns credentials and the id token; the auth store only listens
for session changes. `BackendIdentityProvider` signs in against the API's own
`/login` and `/register` routes and caches the session in storage.
"""

import abc
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import structlog

from .api import StorefrontAPI
from .errors import ApiError, IdentityError
from .storage import TOKEN_KEY, USER_KEY, Storage

logger = structlog.get_logger(__name__)

AUTH_ERROR_MESSAGES = {
    "auth/invalid-credential": "Invalid email or password.",
    "auth/user-not-found": "No account found with this email.",
    "auth/wrong-password": "Incorrect password.",
    "auth/email-already-in-use": "An account with this email already exists.",
    "auth/weak-password": "Password should be at least 6 characters.",
    "auth/invalid-email": "Please enter a valid email address.",
    "auth/user-disabled": "Your account has been deactivated. Please contact support.",
    "auth/too-many-requests": "Too many attempts. Please try again later.",
    "auth/network-request-failed": "Network error. Check your connection and try again.",
}

# Codes that leave a half-open provider session behind
FORCE_SIGN_OUT_CODES = frozenset({"auth/user-disabled"})


def describe_identity_error(exc: IdentityError) -> str:
    return AUTH_ERROR_MESSAGES.get(exc.code, exc.message)


@dataclass(frozen=True)
class Session:
    uid: str
    email: str
    id_token: str


SessionListener = Callable[[Optional[Session]], Awaitable[None]]


class IdentityProvider(abc.ABC):
    def __init__(self):
        self._session: Optional[Session] = None
        self._listeners: List[SessionListener] = []

    @property
    def current_session(self) -> Optional[Session]:
        return self._session

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _set_session(self, session: Optional[Session]) -> None:
        self._session = session
        for listener in list(self._listeners):
            await listener(session)

    async def get_id_token(self) -> Optional[str]:
        return self._session.id_token if self._session else None

    @abc.abstractmethod
    async def restore(self) -> None:
        """Emit the initial session state to listeners."""

    @abc.abstractmethod
    async def sign_in(self, email: str, password: str) -> Session:
        ...

    @abc.abstractmethod
    async def sign_up(self, name: str, email: str, password: str) -> Session:
        ...

    @abc.abstractmethod
    async def sign_out(self) -> None:
        ...


def identity_error(exc: ApiError) -> IdentityError:
    message = exc.message.lower()
    if exc.status is None:
        code = "auth/network-request-failed"
    elif exc.status == 401:
        code = "auth/invalid-credential"
    elif exc.status == 403:
        code = "auth/user-disabled"
    elif exc.status == 429:
        code = "auth/too-many-requests"
    elif exc.status == 400 and "already registered" in message:
        code = "auth/email-already-in-use"
    elif exc.status == 422 and "password" in message:
        code = "auth/weak-password"
    elif exc.status == 422 and "email" in message:
        code = "auth/invalid-email"
    else:
        code = "auth/internal-error"
    return IdentityError(code, exc.message)


class BackendIdentityProvider(IdentityProvider):
    def __init__(self, api: StorefrontAPI, storage: Storage):
        super().__init__()
        self.api = api
        self.storage = storage

    async def restore(self) -> None:
        token = self.storage.get(TOKEN_KEY)
        user = self.storage.get_json(USER_KEY) or {}
        session = None
        if token and isinstance(user, dict) and user.get("id"):
            session = Session(uid=user["id"], email=user.get("email", ""), id_token=token)
        await self._set_session(session)

    async def sign_in(self, email: str, password: str) -> Session:
        try:
            data = await self.api.login(email, password)
        except ApiError as exc:
            raise identity_error(exc) from exc
        return await self._start(data)

    async def sign_up(self, name: str, email: str, password: str) -> Session:
        try:
            data = await self.api.register(name, email, password)
        except ApiError as exc:
            raise identity_error(exc) from exc
        return await self._start(data)

    async def sign_out(self) -> None:
        if self._session is not None:
            try:
                await self.api.logout()
            except ApiError as exc:
                logger.info("identity.logout_failed", status=exc.status, message=exc.message)
        self.storage.remove(TOKEN_KEY)
        self.storage.remove(USER_KEY)
        await self._set_session(None)

    async def _start(self, data) -> Session:
        user = data["user"]
        session = Session(uid=user["id"], email=user.get("email", ""), id_token=data["token"])
        self.storage.set(TOKEN_KEY, session.id_token)
        self.storage.set_json(USER_KEY, {"id": session.uid, "email": session.email})
        logger.info("identity.signed_in", uid=session.uid)
        await self._set_session(session)
        return session
