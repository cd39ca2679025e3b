#!/usr/bin/env python3
"""
Authentication module for Goal Dashboard
Handles sign-up/sign-in, the per-session context (current user and Google Fit
bearer token), the Google Fit linking state machine and route protection.

Session states:   unauthenticated -> authenticating -> authenticated
Google Fit link:  not_linked -> linking -> linked
                  linked -> reauthenticating -> linked  (stale credential)

The fit token lives only in the SessionContext for the current session; it
is never persisted and is cleared on disconnect or sign-out.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import List, Optional

from flask import g, jsonify, redirect, request, url_for

from config import DEFAULT_STEP_GOAL
from errors import (
    ConsentCancelled,
    CredentialAlreadyInUse,
    DashboardError,
    FreshLoginRequired,
    LinkFailed,
    NotAuthenticated,
    RequiresRecentLogin,
    ValidationError,
)
from firebase_identity import IdentityUser
from google_oauth_client import FederatedCredential
from models import Notice

logger = logging.getLogger(__name__)

# Session states
UNAUTHENTICATED = "unauthenticated"
AUTHENTICATING = "authenticating"
AUTHENTICATED = "authenticated"

# Google Fit link states
NOT_LINKED = "not_linked"
LINKING = "linking"
LINKED = "linked"
REAUTHENTICATING = "reauthenticating"

LANDING_PATH = "/"
LOGIN_PATH = "/login"
DASHBOARD_PATH = "/dashboard"
PUBLIC_PATHS = (LANDING_PATH, LOGIN_PATH, "/signup")


@dataclass
class SessionContext:
    """Everything the dashboard knows about one signed-in browser session"""
    user: Optional[IdentityUser] = None
    fit_token: Optional[str] = None
    auth_state: str = UNAUTHENTICATED
    fit_state: str = NOT_LINKED
    notices: List[Notice] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state == AUTHENTICATED and self.user is not None

    @property
    def uid(self) -> Optional[str]:
        return self.user.uid if self.user else None

    def notify(self, title: str, description: str = "", variant: str = "default"):
        with self._lock:
            self.notices.append(Notice(title, description, variant))

    def drain_notices(self) -> List[Notice]:
        with self._lock:
            notices, self.notices = self.notices, []
        return notices

    def clear(self):
        self.user = None
        self.fit_token = None
        self.auth_state = UNAUTHENTICATED
        self.fit_state = NOT_LINKED


class CallbackConsent:
    """
    Consent flow backed by a credential from the OAuth redirect callback.

    A credential obtained with a forced login (`fresh=True`) can satisfy a
    fresh-login request; otherwise asking for one raises FreshLoginRequired
    so the caller can send the user through the consent screen again.
    A callback without a credential means the user declined.
    """

    def __init__(self, credential: Optional[FederatedCredential], fresh: bool = False):
        self.credential = credential
        self.fresh = fresh

    def obtain(self, fresh: bool = False) -> FederatedCredential:
        if self.credential is None:
            raise ConsentCancelled("Consent was not granted")
        if fresh and not self.fresh:
            raise FreshLoginRequired("A fresh sign-in is required")
        return self.credential


class AuthSessionManager:
    """Owns the session context; the only writer of user and fit token"""

    def __init__(self, context: SessionContext, identity, store, oauth, default_step_goal: int = DEFAULT_STEP_GOAL):
        self.context = context
        self.identity = identity
        self.store = store
        self.oauth = oauth
        self.default_step_goal = default_step_goal

    def _establish(self, user: IdentityUser):
        self.context.user = user
        self.context.auth_state = AUTHENTICATED
        logger.info(f"Session established for {user.uid}")

    def _require_user(self) -> IdentityUser:
        if not self.context.is_authenticated:
            raise NotAuthenticated("No signed-in user")
        return self.context.user

    def provision_profile(self, user: IdentityUser):
        """Create users/{uid} on first sign-in; existing profiles are left alone"""
        path = f"users/{user.uid}"
        if self.store.get(path) is not None:
            return
        self.store.set(path, {
            "uid": user.uid,
            "email": user.email,
            "displayName": user.display_name,
            "photoURL": user.photo_url,
            "createdAt": datetime.now(timezone.utc),
            "stepGoal": self.default_step_goal,
        })
        logger.info(f"Provisioned profile for {user.uid}")

    def sign_up_with_email(self, name: str, email: str, password: str) -> IdentityUser:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name", "Name is required.")
        self.context.auth_state = AUTHENTICATING
        try:
            user = self.identity.sign_up(email, password)
            user = self.identity.update_profile(user, name)
        except Exception:
            self.context.auth_state = UNAUTHENTICATED
            raise
        self._establish(user)
        self.provision_profile(user)
        return user

    def sign_in_with_email(self, email: str, password: str) -> IdentityUser:
        self.context.auth_state = AUTHENTICATING
        try:
            user = self.identity.sign_in(email, password)
        except Exception:
            self.context.auth_state = UNAUTHENTICATED
            raise
        self._establish(user)
        return user

    def sign_in_with_google(self, consent) -> Optional[IdentityUser]:
        """Federated sign-in; returns None when the user cancels consent"""
        self.context.auth_state = AUTHENTICATING
        try:
            credential = consent.obtain()
            user = self.identity.sign_in_with_credential(credential)
        except ConsentCancelled:
            logger.info("Google sign-in cancelled by user")
            self.context.auth_state = UNAUTHENTICATED
            return None
        except Exception:
            self.context.auth_state = UNAUTHENTICATED
            raise
        self._establish(user)
        if credential.access_token:
            # Fitness scopes were requested with sign-in
            self.context.fit_token = credential.access_token
            self.context.fit_state = LINKED
        self.provision_profile(user)
        return user

    def _store_fit_token(self, credential: FederatedCredential):
        if not credential.access_token:
            raise LinkFailed("Could not get access token.")
        self.context.fit_token = credential.access_token
        self.context.fit_state = LINKED

    def connect_google_fit(self, consent) -> bool:
        """
        Link Google to the current account and keep the returned bearer token.

        Returns True when a token was stored, False when the user cancelled.
        Raises LinkFailed when linking or the follow-up re-authentication fails,
        and lets FreshLoginRequired through when the consent flow needs another
        round trip.
        """
        user = self._require_user()
        previous_state = self.context.fit_state
        self.context.fit_state = LINKING
        try:
            credential = consent.obtain()
        except ConsentCancelled:
            self.context.fit_state = previous_state
            return False

        try:
            self.context.user = self.identity.link_credential(user, credential)
            self._store_fit_token(credential)
        except CredentialAlreadyInUse:
            self.context.notify("Re-authenticating", "Account already linked, re-authenticating to refresh permissions.")
            return self._reauthenticate(consent, previous_state, fresh=False, relink=False,
                                        success="Refreshed Google Fit connection.")
        except RequiresRecentLogin:
            self.context.notify("Security Check", "Please sign in again to connect Google Fit.")
            return self._reauthenticate(consent, previous_state, fresh=True, relink=True,
                                        success="Google Fit connected successfully.")
        except DashboardError as e:
            logger.error(f"Error connecting Google Fit: {e}")
            self.context.fit_state = previous_state
            if isinstance(e, LinkFailed):
                raise
            raise LinkFailed(str(e))

        self.context.notify("Success!", "Google Fit connected successfully.")
        return True

    def reauthenticate_fit(self, consent) -> bool:
        """Refresh a stale Google Fit token against the current account"""
        self._require_user()
        return self._reauthenticate(consent, self.context.fit_state, fresh=False, relink=False,
                                    success="Refreshed Google Fit connection.")

    def _reauthenticate(self, consent, previous_state: str, fresh: bool, relink: bool, success: str) -> bool:
        self.context.fit_state = REAUTHENTICATING
        try:
            credential = consent.obtain(fresh=fresh)
            user = self.identity.reauthenticate(self.context.user, credential)
            self.context.user = user
            if relink:
                try:
                    self.context.user = self.identity.link_credential(user, credential)
                except CredentialAlreadyInUse:
                    logger.info("Google identity already bound to this account after re-authentication")
            self._store_fit_token(credential)
        except ConsentCancelled:
            self.context.fit_state = previous_state
            return False
        except FreshLoginRequired:
            self.context.fit_state = previous_state
            raise
        except DashboardError as e:
            logger.error(f"Error re-authenticating for Google Fit: {e}")
            self.context.fit_state = previous_state
            raise LinkFailed(f"Could not re-authenticate: {e}")

        self.context.notify("Success!", success)
        return True

    def disconnect_google_fit(self) -> bool:
        """Revoke (best effort) and forget the fit token"""
        token = self.context.fit_token
        if not token:
            return False
        try:
            self.oauth.revoke(token)
        except Exception as e:
            # Local disconnect must succeed even when revocation does not
            logger.warning(f"Error revoking Google Fit token: {e}")
        finally:
            self.context.fit_token = None
            self.context.fit_state = NOT_LINKED
            self.context.notify("Disconnected", "Google Fit has been disconnected.")
        return True

    def sign_out(self) -> str:
        """End the session; returns the landing path to navigate to"""
        if self.context.user:
            logger.info(f"Signing out {self.context.user.uid}")
        self.context.clear()
        return LANDING_PATH


def resolve_redirect(path: str, is_authenticated: bool, resolving: bool = False) -> Optional[str]:
    """Where a page request should be sent instead, or None to serve it"""
    if resolving:
        return None
    is_protected = path not in PUBLIC_PATHS
    if not is_authenticated and is_protected:
        return LOGIN_PATH
    if is_authenticated and not is_protected and path != LANDING_PATH:
        return DASHBOARD_PATH
    return None


def login_required(f):
    """Decorator to require login for routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        context = getattr(g, "session_context", None)
        if context is None or not context.is_authenticated:
            # Check if it's an API request
            if request.path.startswith("/api/"):
                return jsonify({"error": "Authentication required"}), 401
            return redirect(url_for("login_page"))
        return f(*args, **kwargs)
    return decorated_function
