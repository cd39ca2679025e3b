"""
Error types for Goal Dashboard

Every failure that can reach a user carries a short `user_message`; the
original exception text is for logs only.
"""


class DashboardError(Exception):
    """Base class for all dashboard errors"""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str = "", user_message: str | None = None):
        super().__init__(message or self.user_message)
        if user_message:
            self.user_message = user_message


class ValidationError(DashboardError):
    """Input rejected before any network call"""

    def __init__(self, field: str, message: str):
        super().__init__(message, user_message=message)
        self.field = field


# Document store

class StoreError(DashboardError):
    user_message = "Could not reach the data store."


class RemoteUnavailable(StoreError):
    user_message = "The data store is unavailable. Please try again later."


class PermissionDenied(StoreError):
    user_message = "You do not have permission to do that."


# Identity / OAuth

class AuthError(DashboardError):
    user_message = "Authentication failed."


class NotAuthenticated(AuthError):
    user_message = "You must be logged in to do that."


class InvalidCredentials(AuthError):
    user_message = "Invalid email or password."


class AccountExists(AuthError):
    user_message = "An account with that email already exists."


class CredentialAlreadyInUse(AuthError):
    user_message = "This Google account is already linked."


class RequiresRecentLogin(AuthError):
    user_message = "Please sign in again to continue."


class LinkFailed(AuthError):
    user_message = "Could not connect Google Fit."


class ConsentCancelled(AuthError):
    user_message = "Sign-in was cancelled."


class FreshLoginRequired(AuthError):
    """The consent flow needs a new round trip that it cannot perform inline"""

    user_message = "Please sign in again to connect Google Fit."


# External services

class FetchFailed(DashboardError):
    user_message = "Failed to fetch Google Fit data. Please re-connect Google Fit."

    def __init__(self, message: str = "", user_message: str | None = None, token_rejected: bool = False):
        super().__init__(message, user_message)
        self.token_rejected = token_rejected


class SuggestionFailed(DashboardError):
    user_message = "Failed to get AI suggestions. Please try again."
