"""
Bridgekeeper - Error Taxonomy
===============================
Every expected failure of the credential subsystem is an AuthError.
Each subclass carries the HTTP status the management API answers with, so
routes can translate them without a lookup table.

Anything that is NOT an AuthError (an unreadable or corrupt auth.json, a
disk failure) is unexpected and propagates untouched.
"""


class AuthError(Exception):
    """Base class for all expected credential/session failures."""

    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationFailed(AuthError):
    """Bad username or password. The message never says which."""

    status_code = 403
    default_message = "Forbidden"


class TwoFactorRequired(AuthError):
    status_code = 412
    default_message = "2FA Code Required"


class TwoFactorInvalid(AuthError):
    status_code = 412
    default_message = "2FA Code Invalid"


class Unauthorized(AuthError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(AuthError):
    status_code = 403
    default_message = "Forbidden"


class Conflict(AuthError):
    status_code = 409
    default_message = "Conflict"


class NotFound(AuthError):
    status_code = 404
    default_message = "User not found."


class InvalidRequest(AuthError):
    status_code = 400
    default_message = "Bad Request"


class StoreConflict(AuthError):
    """The auth file kept changing underneath a mutation."""

    status_code = 409
    default_message = "The user store was modified concurrently, please retry."
