"""Shared fixtures: in-memory backends, fake identity/OAuth and scripted consent"""

import os
import tempfile
from pathlib import Path

# Demo mode with throwaway files; must be set before config is imported
_TMP = Path(tempfile.mkdtemp(prefix="goal-dashboard-tests-"))
os.environ.setdefault("FLASK_SECRET_KEY", "test-secret")
os.environ.setdefault("LOCAL_USERS_FILE", str(_TMP / "users.json"))
os.environ.setdefault("LOG_DIR", str(_TMP / "logs"))
for _key in ("FIREBASE_API_KEY", "FIREBASE_CREDENTIALS", "GEMINI_API_KEY"):
    os.environ.pop(_key, None)

import pytest

from auth import AuthSessionManager, SessionContext
from dashboard import DashboardController
from document_store import MemoryDocumentStore
from errors import ConsentCancelled, InvalidCredentials
from firebase_identity import IdentityUser
from google_oauth_client import FederatedCredential


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON")
        return self._payload


class FakeIdentity:
    """Identity provider with scripted failures for link/reauthenticate"""

    supports_federated = True

    def __init__(self):
        self.accounts = {}
        self.link_errors = []
        self.reauth_errors = []
        self.calls = []

    def sign_up(self, email, password):
        self.calls.append(("sign_up", email))
        user = IdentityUser(uid=f"uid-{len(self.accounts) + 1}", email=email, is_new_user=True)
        self.accounts[email] = (password, user)
        return user

    def sign_in(self, email, password):
        self.calls.append(("sign_in", email))
        stored = self.accounts.get(email)
        if not stored or stored[0] != password:
            raise InvalidCredentials("INVALID_LOGIN_CREDENTIALS")
        return stored[1]

    def update_profile(self, user, display_name):
        user.display_name = display_name
        return user

    def sign_in_with_credential(self, credential):
        self.calls.append(("sign_in_with_credential", credential.access_token))
        return IdentityUser(uid="google-uid", email="g@example.com", display_name="Googler")

    def link_credential(self, user, credential):
        self.calls.append(("link", credential.access_token))
        if self.link_errors:
            raise self.link_errors.pop(0)
        return user

    def reauthenticate(self, user, credential):
        self.calls.append(("reauthenticate", credential.access_token))
        if self.reauth_errors:
            raise self.reauth_errors.pop(0)
        return user


class FakeOAuth:
    def __init__(self):
        self.revoked = []
        self.revoke_error = None
        self.is_configured = True

    def revoke(self, token):
        self.revoked.append(token)
        if self.revoke_error:
            raise self.revoke_error
        return True


class ScriptedConsent:
    """Consent flow that hands out queued credentials (or raises queued errors)"""

    def __init__(self, *results):
        self.results = list(results)
        self.requests = []

    def obtain(self, fresh=False):
        self.requests.append(fresh)
        result = self.results.pop(0) if self.results else ConsentCancelled("closed")
        if isinstance(result, Exception):
            raise result
        return result


def credential(token="token-1"):
    return FederatedCredential(access_token=token, id_token=f"id-{token}")


@pytest.fixture
def memory_store():
    return MemoryDocumentStore()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def fake_oauth():
    return FakeOAuth()


@pytest.fixture
def context():
    return SessionContext()


@pytest.fixture
def manager(context, identity, memory_store, fake_oauth):
    return AuthSessionManager(context, identity, memory_store, fake_oauth)


@pytest.fixture
def signed_in(manager):
    manager.sign_up_with_email("Ada", "ada@example.com", "secret123")
    return manager


class FakeFitClient:
    """Stand-in for GoogleFitClient returning canned data or raising"""

    error = None

    def __init__(self, access_token=""):
        self.access_token = access_token

    def _check(self):
        if self.error:
            raise self.error

    def fetch_today(self):
        self._check()
        return {"steps": 5000, "heartPoints": 75, "calories": 1800,
                "distanceMeters": 3500.0, "distanceKm": 3.5, "moveMinutes": 40}

    def fetch_steps_today(self):
        self._check()
        return 4000

    def fetch_weekly_steps(self):
        self._check()
        return [{"date": "2026-10-19", "steps": 4000, "day": "Today"}]

    def fetch_health_overview(self):
        self._check()
        return {"metrics": {"height": 180, "weight": 75.0, "stepCount": 4000},
                "activity": {"steps": [], "glucose": [], "bodyFat": []}}


@pytest.fixture
def fit_client_class():
    class _Client(FakeFitClient):
        pass
    return _Client


@pytest.fixture
def controller(memory_store, identity, fake_oauth, fit_client_class):
    dashboard = DashboardController(memory_store, identity, fake_oauth, fit_client_factory=fit_client_class)
    yield dashboard
    dashboard.close()
