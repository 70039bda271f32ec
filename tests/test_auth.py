import pytest

from storefront.auth import (
    CLEAR_ERRORS,
    LOAD_USER_FAIL,
    LOGIN_REQUEST,
    LOGIN_SUCCESS,
    LOGOUT_SUCCESS,
    UPDATE_USER_SUCCESS,
    Action,
    AuthState,
    auth_reducer,
)
from storefront.errors import ApiError, IdentityError
from storefront.identity import AUTH_ERROR_MESSAGES, IdentityProvider, describe_identity_error, identity_error
from storefront.models import User

ANA = User(id="u1", name="Ana", email="ana@example.com")


def test_reducer_transitions():
    state = auth_reducer(AuthState(), Action(LOGIN_REQUEST))
    assert state.loading and not state.is_authenticated

    state = auth_reducer(state, Action(LOGIN_SUCCESS, ANA))
    assert state == AuthState(user=ANA, is_authenticated=True, loading=False, error=None)

    renamed = ANA.model_copy(update={"name": "Ana Cruz"})
    assert auth_reducer(state, Action(UPDATE_USER_SUCCESS, renamed)).user.name == "Ana Cruz"

    failed = auth_reducer(state, Action(LOAD_USER_FAIL, "boom"))
    assert failed == AuthState(user=None, is_authenticated=False, loading=False, error="boom")
    assert auth_reducer(failed, Action(CLEAR_ERRORS)).error is None
    assert auth_reducer(state, Action(LOGOUT_SUCCESS)) == AuthState(loading=False)
    assert auth_reducer(state, Action("UNKNOWN")) is state


def test_identity_error_mapping():
    assert identity_error(ApiError(401, "Invalid email or password")).code == "auth/invalid-credential"
    assert identity_error(ApiError(403, "deactivated")).code == "auth/user-disabled"
    assert identity_error(ApiError(None, "Login failed")).code == "auth/network-request-failed"
    assert identity_error(ApiError(400, "Email already registered")).code == "auth/email-already-in-use"
    assert describe_identity_error(IdentityError("auth/too-many-requests", "raw")) == AUTH_ERROR_MESSAGES["auth/too-many-requests"]
    assert describe_identity_error(IdentityError("auth/something-new", "raw message")) == "raw message"


async def test_login_success(auth_store, fake_api, notifier):
    fake_api.profile = ANA
    result = await auth_store.login("ana@example.com", "secret1")
    assert result.success and result.user == ANA
    assert auth_store.state.is_authenticated
    assert auth_store.state.user == ANA
    # explicit login fetches the profile once; the session event is not a second load
    assert fake_api.count("me") == 1
    assert notifier.latest.message == "Login successful!"


async def test_login_maps_provider_errors(auth_store, identity, notifier):
    identity.error = IdentityError("auth/invalid-credential", "INVALID_LOGIN_CREDENTIALS")
    result = await auth_store.login("ana@example.com", "bad")
    assert not result.success
    assert result.message == "Invalid email or password."
    assert auth_store.state.error == "Invalid email or password."
    assert not auth_store.state.is_authenticated
    assert identity.sign_outs == 0
    assert notifier.latest.level == "error"


async def test_disabled_provider_account_forces_sign_out(auth_store, identity):
    identity.error = IdentityError("auth/user-disabled", "disabled")
    result = await auth_store.login("ana@example.com", "secret1")
    assert result.message == AUTH_ERROR_MESSAGES["auth/user-disabled"]
    assert identity.sign_outs == 1


async def test_backend_403_on_login_forces_sign_out(auth_store, identity, fake_api):
    fake_api.fail["me"] = ApiError(403, "Your account has been deactivated. Please contact support.")
    result = await auth_store.login("ana@example.com", "secret1")
    assert not result.success
    assert identity.sign_outs == 1
    assert identity.current_session is None
    assert auth_store.state.error == "Your account has been deactivated. Please contact support."


async def test_session_change_drives_store(auth_store, identity, fake_api):
    fake_api.profile = ANA
    await identity.sign_in("ana@example.com", "secret1")
    assert auth_store.state.user == ANA
    await identity.sign_out()
    assert auth_store.state == AuthState(loading=False)


async def test_load_user_without_session(auth_store, fake_api):
    await auth_store.load_user()
    assert auth_store.state == AuthState(loading=False)
    assert fake_api.count("me") == 0


async def test_load_user_forbidden_signs_out_and_keeps_message(auth_store, identity, fake_api):
    fake_api.profile = ANA
    await identity.sign_in("ana@example.com", "secret1")
    fake_api.fail["me"] = ApiError(403, "deactivated")
    await auth_store.load_user()
    assert identity.sign_outs == 1
    assert auth_store.state.error == "deactivated"
    assert not auth_store.state.is_authenticated


async def test_register_and_logout(auth_store, fake_api, identity, notifier):
    fake_api.profile = ANA
    result = await auth_store.register({"name": "Ana", "email": "ana@example.com", "password": "secret1"})
    assert result.success
    await auth_store.logout()
    assert not auth_store.state.is_authenticated
    assert identity.current_session is None
    assert notifier.messages("success") == ["Registration successful!", "Logged out successfully!"]


async def test_update_profile(auth_store, fake_api):
    fake_api.profile = ANA
    await auth_store.login("ana@example.com", "secret1")
    result = await auth_store.update_profile(name="Ana Cruz", avatar=None)
    assert result.success
    assert auth_store.state.user.name == "Ana Cruz"
    assert auth_store.state.is_authenticated


async def test_subscribers_see_every_state(auth_store, fake_api):
    fake_api.profile = ANA
    seen = []
    unsubscribe = auth_store.subscribe(lambda state: seen.append(state.is_authenticated))
    await auth_store.login("ana@example.com", "secret1")
    unsubscribe()
    await auth_store.logout()
    assert seen == [False, True]


def test_identity_provider_must_implement_session_calls():
    class SignInOnly(IdentityProvider):
        async def sign_in(self, email, password):
            raise IdentityError("auth/invalid-credential", "nope")

    with pytest.raises(TypeError):
        IdentityProvider()
    with pytest.raises(TypeError):
        SignInOnly()
