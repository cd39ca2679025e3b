import pytest
import requests

from auth import (
    AUTHENTICATED,
    LINKED,
    NOT_LINKED,
    UNAUTHENTICATED,
    CallbackConsent,
    resolve_redirect,
)
from errors import (
    AuthError,
    ConsentCancelled,
    CredentialAlreadyInUse,
    FreshLoginRequired,
    InvalidCredentials,
    LinkFailed,
    NotAuthenticated,
    RequiresRecentLogin,
    ValidationError,
)
from conftest import ScriptedConsent, credential


class TestEmailAccounts:
    def test_sign_up_provisions_profile(self, manager, context, memory_store):
        user = manager.sign_up_with_email("Ana", "ana@x.com", "secret123")
        assert context.auth_state == AUTHENTICATED
        assert user.display_name == "Ana"
        profile = memory_store.get(f"users/{user.uid}")
        assert profile["stepGoal"] == 8000
        assert profile["displayName"] == "Ana"
        assert profile["email"] == "ana@x.com"

    def test_sign_up_requires_name(self, manager, identity):
        with pytest.raises(ValidationError):
            manager.sign_up_with_email("  ", "ana@x.com", "secret123")
        assert identity.calls == []

    def test_existing_profile_not_overwritten(self, manager, memory_store):
        user = manager.sign_up_with_email("Ana", "ana@x.com", "secret123")
        memory_store.set(f"users/{user.uid}", {"stepGoal": 12000}, merge=True)
        manager.provision_profile(user)
        assert memory_store.get(f"users/{user.uid}")["stepGoal"] == 12000

    def test_bad_password_leaves_session_unauthenticated(self, signed_in, context):
        signed_in.sign_out()
        with pytest.raises(InvalidCredentials):
            signed_in.sign_in_with_email("ada@example.com", "wrong")
        assert context.auth_state == UNAUTHENTICATED
        assert not context.is_authenticated

    def test_sign_out_clears_token_and_returns_landing(self, signed_in, context):
        context.fit_token = "t"
        assert signed_in.sign_out() == "/"
        assert context.user is None
        assert context.fit_token is None


class TestGoogleSignIn:
    def test_token_from_sign_in_is_kept(self, manager, context, memory_store):
        user = manager.sign_in_with_google(ScriptedConsent(credential("fit-1")))
        assert user.uid == "google-uid"
        assert context.fit_token == "fit-1"
        assert context.fit_state == LINKED
        assert memory_store.get("users/google-uid")["stepGoal"] == 8000

    def test_cancel_is_silent(self, manager, context):
        assert manager.sign_in_with_google(ScriptedConsent(ConsentCancelled("closed"))) is None
        assert context.auth_state == UNAUTHENTICATED
        assert context.drain_notices() == []


class TestConnectGoogleFit:
    def test_requires_sign_in(self, manager):
        with pytest.raises(NotAuthenticated):
            manager.connect_google_fit(ScriptedConsent(credential()))

    def test_success_stores_token(self, signed_in, context):
        assert signed_in.connect_google_fit(ScriptedConsent(credential("fit-1"))) is True
        assert context.fit_token == "fit-1"
        assert context.fit_state == LINKED
        assert [n.title for n in context.drain_notices()] == ["Success!"]

    def test_cancel_is_noop(self, signed_in, context):
        assert signed_in.connect_google_fit(ScriptedConsent(ConsentCancelled("closed"))) is False
        assert context.fit_state == NOT_LINKED
        assert context.drain_notices() == []

    def test_credential_in_use_reauthenticates_current_account(self, signed_in, context, identity):
        identity.link_errors.append(CredentialAlreadyInUse("CREDENTIAL_ALREADY_IN_USE"))
        uid = context.uid
        consent = ScriptedConsent(credential("fit-1"), credential("fit-2"))
        assert signed_in.connect_google_fit(consent) is True
        assert context.fit_token == "fit-2"
        assert context.uid == uid
        assert ("reauthenticate", "fit-2") in identity.calls
        assert len(identity.accounts) == 1
        assert [n.title for n in context.drain_notices()] == ["Re-authenticating", "Success!"]

    def test_reauthentication_failure_is_link_failed(self, signed_in, context, identity):
        identity.link_errors.append(CredentialAlreadyInUse("CREDENTIAL_ALREADY_IN_USE"))
        identity.reauth_errors.append(AuthError("USER_MISMATCH"))
        with pytest.raises(LinkFailed):
            signed_in.connect_google_fit(ScriptedConsent(credential("fit-1"), credential("fit-2")))
        assert context.fit_token is None
        assert context.fit_state == NOT_LINKED

    def test_recent_login_asks_for_fresh_consent_then_relinks(self, signed_in, context, identity):
        identity.link_errors.append(RequiresRecentLogin("CREDENTIAL_TOO_OLD_LOGIN_AGAIN"))
        consent = ScriptedConsent(credential("fit-1"), credential("fit-2"))
        assert signed_in.connect_google_fit(consent) is True
        assert consent.requests == [False, True]
        assert [c for c in identity.calls if c[0] == "link"] == [("link", "fit-1"), ("link", "fit-2")]
        assert context.fit_token == "fit-2"

    def test_callback_consent_needs_another_round_trip_for_fresh_login(self, signed_in, context, identity):
        identity.link_errors.append(RequiresRecentLogin("CREDENTIAL_TOO_OLD_LOGIN_AGAIN"))
        with pytest.raises(FreshLoginRequired):
            signed_in.connect_google_fit(CallbackConsent(credential("fit-1")))
        assert context.fit_state == NOT_LINKED

        # Second pass comes back from a forced login
        identity.link_errors.append(RequiresRecentLogin("CREDENTIAL_TOO_OLD_LOGIN_AGAIN"))
        assert signed_in.connect_google_fit(CallbackConsent(credential("fit-2"), fresh=True)) is True
        assert context.fit_token == "fit-2"

    def test_other_errors_become_link_failed(self, signed_in, identity):
        identity.link_errors.append(AuthError("INTERNAL"))
        with pytest.raises(LinkFailed):
            signed_in.connect_google_fit(ScriptedConsent(credential()))

    def test_missing_access_token(self, signed_in, context):
        with pytest.raises(LinkFailed):
            signed_in.connect_google_fit(ScriptedConsent(credential("")))
        assert context.fit_token is None


class TestDisconnect:
    def test_revokes_and_clears(self, signed_in, context, fake_oauth):
        context.fit_token, context.fit_state = "fit-1", LINKED
        assert signed_in.disconnect_google_fit() is True
        assert fake_oauth.revoked == ["fit-1"]
        assert context.fit_token is None
        assert context.fit_state == NOT_LINKED

    def test_revocation_failure_still_clears(self, signed_in, context, fake_oauth):
        context.fit_token = "fit-1"
        fake_oauth.revoke_error = requests.ConnectionError("offline")
        assert signed_in.disconnect_google_fit() is True
        assert context.fit_token is None

    def test_unexpected_revocation_error_still_clears(self, signed_in, context, fake_oauth):
        context.fit_token, context.fit_state = "fit-1", LINKED
        fake_oauth.revoke_error = RuntimeError("bad response")
        assert signed_in.disconnect_google_fit() is True
        assert context.fit_token is None
        assert context.fit_state == NOT_LINKED
        assert [n.title for n in context.drain_notices()] == ["Disconnected"]

    def test_nothing_to_disconnect(self, signed_in, fake_oauth):
        assert signed_in.disconnect_google_fit() is False
        assert fake_oauth.revoked == []


class TestRouting:
    def test_no_decision_while_resolving(self):
        assert resolve_redirect("/dashboard", False, resolving=True) is None

    def test_protected_redirects_to_login(self):
        assert resolve_redirect("/dashboard", False) == "/login"

    def test_public_only_redirects_to_dashboard(self):
        assert resolve_redirect("/login", True) == "/dashboard"

    def test_landing_always_served(self):
        assert resolve_redirect("/", True) is None
        assert resolve_redirect("/", False) is None
