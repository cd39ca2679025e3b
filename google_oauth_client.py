#!/usr/bin/env python3
"""
Google OAuth Client
Consent URL, authorization-code exchange and token revocation for Google
sign-in and Google Fit.

Tokens are requested with access_type=online: the dashboard keeps the access
token for the current session only and never stores a refresh token.
"""

import logging
import urllib.parse
from dataclasses import dataclass

import requests

from errors import AuthError, ConsentCancelled, RemoteUnavailable

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/fitness.activity.read",
    "https://www.googleapis.com/auth/fitness.body.read",
    "https://www.googleapis.com/auth/fitness.blood_pressure.read",
    "https://www.googleapis.com/auth/fitness.blood_glucose.read",
    "https://www.googleapis.com/auth/fitness.heart_rate.read",
    "https://www.googleapis.com/auth/fitness.nutrition.read",
]


@dataclass
class FederatedCredential:
    """Result of one consent round trip"""
    access_token: str
    id_token: str = ""
    expires_in: int = 3600
    scope: str = ""


class GoogleOAuthClient:
    """Client for Google's OAuth 2.0 endpoints"""

    def __init__(self, client_id: str = "", client_secret: str = "", redirect_uri: str = ""):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def authorization_url(self, state: str, prompt: str = "consent") -> str:
        """URL of the consent screen; `prompt="login consent"` forces a fresh sign-in"""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(SCOPES),
            "state": state,
            "access_type": "online",
            "include_granted_scopes": "true",
            "prompt": prompt,
        }
        return f"{AUTH_URL}?{urllib.parse.urlencode(params, quote_via=urllib.parse.quote)}"

    def exchange_code(self, code: str) -> FederatedCredential:
        """Exchange an authorization code for an access token and ID token"""
        try:
            r = requests.post(
                TOKEN_URL,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                },
                timeout=15,
            )
        except requests.RequestException as e:
            raise RemoteUnavailable(f"Token exchange failed: {e}")

        if r.status_code != 200:
            logger.error(f"Google token exchange failed ({r.status_code}): {r.text}")
            raise AuthError(f"Token exchange failed: {r.status_code}")

        data = r.json()
        if not data.get("access_token"):
            raise AuthError("Token exchange returned no access token")
        return FederatedCredential(
            access_token=data["access_token"],
            id_token=data.get("id_token", ""),
            expires_in=int(data.get("expires_in", 3600)),
            scope=data.get("scope", ""),
        )

    def credential_from_callback(self, args) -> FederatedCredential:
        """Turn the query args of the OAuth redirect into a credential"""
        error = args.get("error")
        if error:
            if error == "access_denied":
                raise ConsentCancelled("User closed the consent screen")
            raise AuthError(f"Consent failed: {error}")
        code = args.get("code")
        if not code:
            raise AuthError("Consent callback carried no authorization code")
        return self.exchange_code(code)

    def revoke(self, token: str) -> bool:
        """Revoke an access token. Transport errors propagate to the caller."""
        r = requests.post(
            REVOKE_URL,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data={"token": token},
            timeout=15,
        )
        if r.status_code != 200:
            logger.warning(f"Token revocation returned {r.status_code}")
            return False
        return True
