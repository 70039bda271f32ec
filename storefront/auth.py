"""
Auth store

A reducer over `{user, is_authenticated, loading, error}` kept in sync with
the identity provider. The provider owns credentials; the backend profile
(`/me`) is what the store exposes as `user`.
"""

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

import structlog

from .api import StorefrontAPI
from .errors import ApiError, IdentityError
from .identity import FORCE_SIGN_OUT_CODES, IdentityProvider, Session, describe_identity_error
from .models import User
from .notifications import Notifier

logger = structlog.get_logger(__name__)

LOGIN_REQUEST = "LOGIN_REQUEST"
LOGIN_SUCCESS = "LOGIN_SUCCESS"
LOGIN_FAIL = "LOGIN_FAIL"
REGISTER_USER_REQUEST = "REGISTER_USER_REQUEST"
REGISTER_USER_SUCCESS = "REGISTER_USER_SUCCESS"
REGISTER_USER_FAIL = "REGISTER_USER_FAIL"
LOAD_USER_REQUEST = "LOAD_USER_REQUEST"
LOAD_USER_SUCCESS = "LOAD_USER_SUCCESS"
LOAD_USER_FAIL = "LOAD_USER_FAIL"
UPDATE_USER_SUCCESS = "UPDATE_USER_SUCCESS"
LOGOUT_SUCCESS = "LOGOUT_SUCCESS"
LOGOUT_FAIL = "LOGOUT_FAIL"
CLEAR_ERRORS = "CLEAR_ERRORS"

_REQUESTS = {LOGIN_REQUEST, REGISTER_USER_REQUEST, LOAD_USER_REQUEST}
_SUCCESSES = {LOGIN_SUCCESS, REGISTER_USER_SUCCESS, LOAD_USER_SUCCESS}
_FAILURES = {LOGIN_FAIL, REGISTER_USER_FAIL, LOAD_USER_FAIL}


@dataclass(frozen=True)
class AuthState:
    user: Optional[User] = None
    is_authenticated: bool = False
    loading: bool = True
    error: Optional[str] = None


@dataclass(frozen=True)
class Action:
    type: str
    payload: Any = None


@dataclass(frozen=True)
class AuthResult:
    success: bool
    user: Optional[User] = None
    message: Optional[str] = None


def auth_reducer(state: AuthState, action: Action) -> AuthState:
    if action.type in _REQUESTS:
        return replace(state, loading=True, is_authenticated=False)
    if action.type in _SUCCESSES:
        return AuthState(user=action.payload, is_authenticated=True, loading=False, error=None)
    if action.type in _FAILURES:
        return AuthState(user=None, is_authenticated=False, loading=False, error=action.payload)
    if action.type == UPDATE_USER_SUCCESS:
        return replace(state, user=action.payload)
    if action.type == LOGOUT_SUCCESS:
        return AuthState(loading=False)
    if action.type == LOGOUT_FAIL:
        return replace(state, error=action.payload)
    if action.type == CLEAR_ERRORS:
        return replace(state, error=None)
    return state


class AuthStore:
    def __init__(self, api: StorefrontAPI, provider: IdentityProvider, notifier: Notifier):
        self.api = api
        self.provider = provider
        self.notifier = notifier
        self.state = AuthState()
        self._listeners: List[Callable[[AuthState], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        # Session events raised by our own login/sign-out calls are handled inline
        self._quiet = False

    def dispatch(self, action: Action) -> AuthState:
        self.state = auth_reducer(self.state, action)
        for listener in list(self._listeners):
            listener(self.state)
        return self.state

    def subscribe(self, listener: Callable[[AuthState], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.provider.on_session_change(self._on_session_change)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_session_change(self, session: Optional[Session]) -> None:
        if self._quiet:
            return
        if session is None:
            self.dispatch(Action(LOGOUT_SUCCESS))
        else:
            await self.load_user()

    async def _force_sign_out(self) -> None:
        quiet, self._quiet = self._quiet, True
        try:
            await self.provider.sign_out()
        except IdentityError as exc:
            logger.warning("auth.forced_sign_out_failed", code=exc.code)
        finally:
            self._quiet = quiet

    def _fail(self, action_type: str, message: str) -> AuthResult:
        self.dispatch(Action(action_type, message))
        self.notifier.error(message)
        return AuthResult(False, message=message)

    async def load_user(self) -> None:
        self.dispatch(Action(LOAD_USER_REQUEST))
        token = await self.provider.get_id_token()
        if not token:
            self.dispatch(Action(LOAD_USER_FAIL))
            return
        try:
            user = await self.api.me(token)
        except ApiError as exc:
            if exc.status == 403:
                await self._force_sign_out()
            logger.info("auth.load_user_failed", status=exc.status)
            self.dispatch(Action(LOAD_USER_FAIL, exc.message))
            return
        self.dispatch(Action(LOAD_USER_SUCCESS, user))

    async def login(self, email: str, password: str) -> AuthResult:
        self.dispatch(Action(LOGIN_REQUEST))
        self._quiet = True
        try:
            session = await self.provider.sign_in(email, password)
            user = await self.api.me(session.id_token)
        except IdentityError as exc:
            if exc.code in FORCE_SIGN_OUT_CODES:
                await self._force_sign_out()
            return self._fail(LOGIN_FAIL, describe_identity_error(exc))
        except ApiError as exc:
            if exc.status == 403:
                await self._force_sign_out()
            return self._fail(LOGIN_FAIL, exc.message)
        finally:
            self._quiet = False
        logger.info("auth.logged_in", user_id=user.id)
        self.dispatch(Action(LOGIN_SUCCESS, user))
        self.notifier.success("Login successful!")
        return AuthResult(True, user=user)

    async def register(self, user_data: Dict[str, str]) -> AuthResult:
        self.dispatch(Action(REGISTER_USER_REQUEST))
        self._quiet = True
        try:
            session = await self.provider.sign_up(user_data.get("name", ""), user_data.get("email", ""), user_data.get("password", ""))
            user = await self.api.me(session.id_token)
        except IdentityError as exc:
            return self._fail(REGISTER_USER_FAIL, describe_identity_error(exc))
        except ApiError as exc:
            return self._fail(REGISTER_USER_FAIL, exc.message)
        finally:
            self._quiet = False
        logger.info("auth.registered", user_id=user.id)
        self.dispatch(Action(REGISTER_USER_SUCCESS, user))
        self.notifier.success("Registration successful!")
        return AuthResult(True, user=user)

    async def logout(self) -> None:
        self._quiet = True
        try:
            await self.provider.sign_out()
        except IdentityError as exc:
            logger.warning("auth.sign_out_failed", code=exc.code)
        finally:
            self._quiet = False
        self.dispatch(Action(LOGOUT_SUCCESS))
        self.notifier.success("Logged out successfully!")

    async def update_profile(self, **changes) -> AuthResult:
        changes = {k: v for k, v in changes.items() if v is not None}
        try:
            user = await self.api.update_profile(**changes)
        except ApiError as exc:
            self.notifier.error(exc.message)
            return AuthResult(False, message=exc.message)
        self.dispatch(Action(UPDATE_USER_SUCCESS, user))
        self.notifier.success("Profile updated successfully")
        return AuthResult(True, user=user)

    def clear_errors(self) -> None:
        self.dispatch(Action(CLEAR_ERRORS))
