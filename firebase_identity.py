#!/usr/bin/env python3
"""
Identity providers for Goal Dashboard

FirebaseIdentityProvider: Firebase Authentication through the Identity
Toolkit REST API (email/password accounts, Google sign-in, linking and
re-authentication with a Google credential).

LocalIdentityProvider: email/password accounts in a local JSON file, used in
demo mode when Firebase is not configured.
"""

import hashlib
import json
import logging
import secrets
import threading
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from errors import (
    AccountExists,
    AuthError,
    CredentialAlreadyInUse,
    InvalidCredentials,
    LinkFailed,
    RemoteUnavailable,
    RequiresRecentLogin,
    ValidationError,
)
from google_oauth_client import FederatedCredential

logger = logging.getLogger(__name__)

IDENTITY_URL = "https://identitytoolkit.googleapis.com/v1"
GOOGLE_PROVIDER_ID = "google.com"
MIN_PASSWORD_LENGTH = 6

# Identity Toolkit error code -> (exception class, form field for validation errors)
ERROR_CODES = {
    "EMAIL_EXISTS": (AccountExists, None),
    "INVALID_EMAIL": (ValidationError, "email"),
    "MISSING_EMAIL": (ValidationError, "email"),
    "WEAK_PASSWORD": (ValidationError, "password"),
    "MISSING_PASSWORD": (ValidationError, "password"),
    "EMAIL_NOT_FOUND": (InvalidCredentials, None),
    "INVALID_PASSWORD": (InvalidCredentials, None),
    "INVALID_LOGIN_CREDENTIALS": (InvalidCredentials, None),
    "USER_DISABLED": (InvalidCredentials, None),
    "FEDERATED_USER_ID_ALREADY_LINKED": (CredentialAlreadyInUse, None),
    "CREDENTIAL_ALREADY_IN_USE": (CredentialAlreadyInUse, None),
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": (RequiresRecentLogin, None),
    "TOKEN_EXPIRED": (RequiresRecentLogin, None),
}


@dataclass
class IdentityUser:
    """Signed-in account as reported by the identity provider"""
    uid: str
    email: str = ""
    display_name: str = ""
    photo_url: str = ""
    id_token: str = ""
    is_new_user: bool = False

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "email": self.email,
            "displayName": self.display_name,
            "photoURL": self.photo_url,
        }


def error_from_code(message: str) -> AuthError | ValidationError:
    """Map an Identity Toolkit error message ("WEAK_PASSWORD : ...") to an exception"""
    code, _, detail = message.partition(":")
    code = code.strip()
    exc_class, field = ERROR_CODES.get(code, (AuthError, None))
    if exc_class is ValidationError:
        return ValidationError(field, detail.strip() or code.replace("_", " ").capitalize())
    return exc_class(code or "Unknown identity error")


def _user_from_response(data: dict, fallback: Optional[IdentityUser] = None) -> IdentityUser:
    return IdentityUser(
        uid=data.get("localId") or (fallback.uid if fallback else ""),
        email=data.get("email") or (fallback.email if fallback else ""),
        display_name=data.get("displayName") or (fallback.display_name if fallback else ""),
        photo_url=data.get("photoUrl") or (fallback.photo_url if fallback else ""),
        id_token=data.get("idToken") or (fallback.id_token if fallback else ""),
        is_new_user=bool(data.get("isNewUser", False)),
    )


class FirebaseIdentityProvider:
    """Firebase Authentication over the Identity Toolkit REST API"""

    def __init__(self, api_key: str, request_uri: str = "http://localhost"):
        self.api_key = api_key
        self.request_uri = request_uri

    @property
    def supports_federated(self) -> bool:
        return True

    def _post(self, endpoint: str, payload: dict) -> dict:
        try:
            r = requests.post(
                f"{IDENTITY_URL}/accounts:{endpoint}",
                params={"key": self.api_key},
                json=payload,
                timeout=15,
            )
        except requests.RequestException as e:
            raise RemoteUnavailable(f"Identity service unreachable: {e}")

        try:
            data = r.json()
        except ValueError:
            data = {}

        if r.status_code != 200:
            message = (data.get("error") or {}).get("message", "") if isinstance(data, dict) else ""
            logger.warning(f"Identity Toolkit {endpoint} failed ({r.status_code}): {message}")
            raise error_from_code(message)

        # signInWithIdp with returnIdpCredential reports link conflicts in a 200 body
        if data.get("errorMessage"):
            logger.warning(f"Identity Toolkit {endpoint} reported: {data['errorMessage']}")
            raise error_from_code(data["errorMessage"])
        return data

    def _idp_payload(self, credential: FederatedCredential, id_token: str = "") -> dict:
        post_body = {"providerId": GOOGLE_PROVIDER_ID, "access_token": credential.access_token}
        if credential.id_token:
            post_body["id_token"] = credential.id_token
        payload = {
            "postBody": urllib.parse.urlencode(post_body),
            "requestUri": self.request_uri,
            "returnIdpCredential": True,
            "returnSecureToken": True,
        }
        if id_token:
            payload["idToken"] = id_token
        return payload

    def sign_up(self, email: str, password: str) -> IdentityUser:
        data = self._post("signUp", {"email": email, "password": password, "returnSecureToken": True})
        user = _user_from_response(data)
        user.is_new_user = True
        return user

    def sign_in(self, email: str, password: str) -> IdentityUser:
        data = self._post("signInWithPassword", {"email": email, "password": password, "returnSecureToken": True})
        return _user_from_response(data)

    def update_profile(self, user: IdentityUser, display_name: str) -> IdentityUser:
        data = self._post("update", {"idToken": user.id_token, "displayName": display_name, "returnSecureToken": True})
        updated = _user_from_response(data, fallback=user)
        updated.display_name = display_name
        updated.is_new_user = user.is_new_user
        return updated

    def sign_in_with_credential(self, credential: FederatedCredential) -> IdentityUser:
        return _user_from_response(self._post("signInWithIdp", self._idp_payload(credential)))

    def link_credential(self, user: IdentityUser, credential: FederatedCredential) -> IdentityUser:
        data = self._post("signInWithIdp", self._idp_payload(credential, id_token=user.id_token))
        return _user_from_response(data, fallback=user)

    def reauthenticate(self, user: IdentityUser, credential: FederatedCredential) -> IdentityUser:
        """Sign in again with the credential; it must belong to the same account"""
        data = self._post("signInWithIdp", self._idp_payload(credential))
        if data.get("localId") != user.uid:
            raise LinkFailed("Credential belongs to a different account")
        return _user_from_response(data, fallback=user)


def hash_password(password: str, salt: str = None) -> tuple:
    """Hash password with salt using SHA-256"""
    if salt is None:
        salt = secrets.token_hex(16)
    hash_obj = hashlib.sha256((salt + password).encode())
    return hash_obj.hexdigest(), salt


def verify_password(password: str, password_hash: str, salt: str) -> bool:
    """Verify password against stored hash"""
    computed_hash, _ = hash_password(password, salt)
    return secrets.compare_digest(computed_hash, password_hash)


class LocalIdentityProvider:
    """Email/password accounts stored in a JSON file (demo mode)"""

    def __init__(self, users_file: Path):
        self.users_file = Path(users_file)
        self._lock = threading.Lock()

    @property
    def supports_federated(self) -> bool:
        return False

    def load_users(self) -> dict:
        if self.users_file.exists():
            with open(self.users_file) as f:
                return json.load(f)
        return {}

    def save_users(self, users: dict):
        self.users_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.users_file, 'w') as f:
            json.dump(users, f, indent=2)

    @staticmethod
    def _as_identity(record: dict) -> IdentityUser:
        return IdentityUser(
            uid=record["uid"],
            email=record["email"],
            display_name=record.get("display_name", ""),
            photo_url=record.get("photo_url", ""),
            id_token=secrets.token_urlsafe(24),
        )

    def sign_up(self, email: str, password: str) -> IdentityUser:
        email = (email or "").strip().lower()
        if "@" not in email or email.startswith("@") or email.endswith("@"):
            raise ValidationError("email", "Please enter a valid email address.")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError("password", f"Password should be at least {MIN_PASSWORD_LENGTH} characters.")
        with self._lock:
            users = self.load_users()
            if email in users:
                raise AccountExists("EMAIL_EXISTS")
            password_hash, salt = hash_password(password)
            users[email] = {
                "uid": secrets.token_hex(14),
                "email": email,
                "display_name": "",
                "password_hash": password_hash,
                "salt": salt,
            }
            self.save_users(users)
        user = self._as_identity(users[email])
        user.is_new_user = True
        return user

    def sign_in(self, email: str, password: str) -> IdentityUser:
        record = self.load_users().get((email or "").strip().lower())
        if not record or not verify_password(password or "", record["password_hash"], record["salt"]):
            raise InvalidCredentials("INVALID_LOGIN_CREDENTIALS")
        return self._as_identity(record)

    def update_profile(self, user: IdentityUser, display_name: str) -> IdentityUser:
        with self._lock:
            users = self.load_users()
            record = users.get(user.email)
            if record:
                record["display_name"] = display_name
                self.save_users(users)
        user.display_name = display_name
        return user

    def sign_in_with_credential(self, credential: FederatedCredential) -> IdentityUser:
        raise LinkFailed("Google sign-in requires Firebase configuration")

    def link_credential(self, user: IdentityUser, credential: FederatedCredential) -> IdentityUser:
        raise LinkFailed("Google Fit requires Firebase configuration")

    def reauthenticate(self, user: IdentityUser, credential: FederatedCredential) -> IdentityUser:
        raise LinkFailed("Google Fit requires Firebase configuration")
