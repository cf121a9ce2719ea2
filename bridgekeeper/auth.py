"""
Bridgekeeper - Authentication Coordinator
===========================================
Ties the credential store, password hasher, OTP engine, replay guard and
session issuer together into the operations the management API exposes.

Login flow:
    1. Look the user up             -> unknown user: AuthenticationFailed
    2. Verify the password          -> mismatch:     AuthenticationFailed
    3. If 2FA is active, need a code -> missing:     TwoFactorRequired
    4. Verify the code (+ replay)   -> bad/reused:   TwoFactorInvalid
    5. Return the session claims; sign_in() wraps them in a token

Steps 1 and 2 fail identically so a caller cannot tell whether a username
exists. The server log records which one it was.

First-time setup flow:
    1. No auth.json (or no admin in it) -> setup_wizard_complete is False
    2. The browser asks for a setup wizard token (5 minutes)
    3. It posts the first account to setup_first_user(), which always
       creates an admin and closes the wizard

No-auth mode:
    With ui.auth set to "none" in config.yaml, generate_no_auth_token()
    hands out a session for the first admin without asking for anything.
"""

import logging
from datetime import datetime, timezone

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bridgekeeper.config import ConfigManager
from bridgekeeper.errors import (
    AuthenticationFailed,
    Forbidden,
    InvalidRequest,
    NotFound,
    TwoFactorInvalid,
    TwoFactorRequired,
    Unauthorized,
)
from bridgekeeper.otp import OtpEngine
from bridgekeeper.passwords import PasswordHasher
from bridgekeeper.replay import OtpReplayGuard
from bridgekeeper.sessions import (
    SETUP_WIZARD_TOKEN_SECONDS,
    SETUP_WIZARD_USERNAME,
    SessionIssuer,
)
from bridgekeeper.store import CredentialStore

logger = logging.getLogger("bridgekeeper.auth")

OTP_TOLERANCE_SECONDS = 30

# Security scheme for FastAPI dependency injection
security = HTTPBearer(auto_error=False)


class AuthCoordinator:
    """
    Entry point for every credential and session operation.

    Attributes:
        config:       Auth mode, instance id, setup wizard flag.
        store:        The user records.
        hasher:       Password digests.
        otp:          TOTP verification.
        replay_guard: Consumed OTP codes.
        sessions:     Token issuing.
    """

    def __init__(
        self,
        config: ConfigManager,
        store: CredentialStore,
        hasher: PasswordHasher,
        otp: OtpEngine,
        replay_guard: OtpReplayGuard,
        sessions: SessionIssuer,
    ):
        self.config = config
        self.store = store
        self.hasher = hasher
        self.otp = otp
        self.replay_guard = replay_guard
        self.sessions = sessions
        self.check_auth_file()

    # =========================================================================
    # Login and tokens
    # =========================================================================

    def authenticate(self, username: str, password: str, otp: str | None = None) -> dict:
        """
        Run the login state machine.

        Returns:
            The session claims for the user.

        Raises:
            AuthenticationFailed: Unknown user or wrong password.
            TwoFactorRequired:    2FA is active and no code was given.
            TwoFactorInvalid:     The code is wrong or was already used.
        """
        try:
            user = self.store.find_by_username(username)
            if not user:
                logger.warning("Failed login attempt: no user named %s.", username)
                raise AuthenticationFailed()

            self._check_password(user, password)

            if user.get("otpActive") and not otp:
                raise TwoFactorRequired()

            if user.get("otpActive") and not self.verify_otp_token(user, otp):
                raise TwoFactorInvalid()

            return self.sessions.claims_for(user)
        except AuthenticationFailed:
            logger.warning("Failed login attempt.")
            logger.warning(
                "If you have forgotten your password, you can run the setup wizard "
                'again by deleting the "auth.json" file at %s and then restarting.',
                self.config.auth_path,
            )
            raise

    def sign_in(self, username: str, password: str, otp: str | None = None) -> dict:
        """Authenticate and return a bearer token response."""
        user = self.authenticate(username, password, otp)
        return self.sessions.token_response(self.sessions.issue(user))

    def generate_no_auth_token(self) -> dict:
        """
        Token for deployments running with authentication disabled.

        Raises:
            Unauthorized: Auth mode is not "none", or there is no admin.
        """
        if self.config.auth_mode != "none":
            raise Unauthorized()

        user = next((u for u in self.store.list_users() if u.get("admin") is True), None)
        if user is None:
            raise Unauthorized("No admin user available")

        return self.sessions.token_response(self.sessions.issue_no_auth_token(user))

    def refresh_token(self, claims: dict) -> dict:
        return self.sessions.token_response(self.sessions.refresh(claims))

    def validate_user(self, claims: dict) -> dict:
        return self.sessions.validate(claims)

    # =========================================================================
    # First-time setup
    # =========================================================================

    def setup_first_user(self, user: dict) -> dict:
        """
        Create the first account. It is always an admin.

        Raises:
            Forbidden:      Setup has already been completed.
            InvalidRequest: No password supplied.
        """
        if self.config.setup_wizard_complete:
            raise Forbidden()

        if not user.get("password"):
            raise InvalidRequest("Password missing.")

        first = dict(user)
        first["admin"] = True

        self.store.replace_all([])
        created = self.store.add(first)

        self.config.setup_wizard_complete = True
        return created

    def generate_setup_wizard_token(self) -> dict:
        if self.config.setup_wizard_complete is not False:
            raise Forbidden()
        token = self.sessions.issue_setup_token()
        return self.sessions.token_response(token, SETUP_WIZARD_TOKEN_SECONDS)

    def check_auth_file(self) -> bool:
        """
        Re-derive the setup wizard flag from auth.json.

        Returns:
            The new value of setup_wizard_complete.
        """
        self.config.setup_wizard_complete = not self.store.is_setup_incomplete()
        return self.config.setup_wizard_complete

    # =========================================================================
    # User management
    # =========================================================================

    def get_users(self, strip: bool = False) -> list[dict]:
        return self.store.list_users(strip=strip)

    def find_by_username(self, username: str) -> dict | None:
        return self.store.find_by_username(username)

    def add_user(self, user: dict) -> dict:
        return self.store.add(user)

    def delete_user(self, user_id: int) -> None:
        self.store.delete(user_id)

    def update_user(self, user_id: int, patch: dict) -> dict:
        return self.store.update(user_id, patch)

    def update_own_password(self, username: str, current_password: str, new_password: str) -> dict:
        """
        Change a user's own password after re-checking the current one.

        Raises:
            NotFound:             No such user.
            AuthenticationFailed: current_password is wrong.
        """
        user = self._require_user(username)
        self._check_password(user, current_password)
        return self.store.update_password(username, new_password)

    # =========================================================================
    # Two-factor authentication
    # =========================================================================

    def setup_otp(self, username: str) -> dict:
        """
        Generate and store a new OTP secret for enrollment.

        Returns:
            {"timestamp": ISO time, "otpauth": provisioning URI}

        Raises:
            NotFound:  No such user.
            Forbidden: 2FA is already active.
        """
        user = self._require_user(username)
        if user.get("otpActive"):
            raise Forbidden("2FA has already been activated.")

        secret = self.otp.generate_secret()
        self.store.set_otp_secret(username, secret)

        app_name = f"Homebridge UI ({self.config.instance_id[:7]})"
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "otpauth": self.otp.build_provisioning_uri(app_name, user.get("username"), secret),
        }

    def activate_otp(self, username: str, code: str) -> dict:
        """
        Turn on 2FA once the user proves their authenticator is enrolled.

        Raises:
            NotFound:       No such user.
            InvalidRequest: No secret set up, or the code does not verify.
        """
        user = self._require_user(username)
        if not user.get("otpSecret"):
            raise InvalidRequest("2FA has not been setup.")

        result = self.otp.verify(code, user["otpSecret"], OTP_TOLERANCE_SECONDS)
        if result.legacy:
            logger.warning("%s is attempting to activate a legacy 16-character OTP secret.", username)

        if not result.valid:
            raise InvalidRequest("2FA code is not valid.")

        profile = self.store.activate_otp(username, legacy=result.legacy)
        logger.warning("Activated 2FA for %s.", username)
        return profile

    def deactivate_otp(self, username: str, password: str) -> dict:
        """
        Turn off 2FA. Requires the account password.

        Raises:
            NotFound:             No such user.
            AuthenticationFailed: Wrong password.
        """
        user = self._require_user(username)
        self._check_password(user, password)
        profile = self.store.deactivate_otp(username)
        logger.warning("Deactivated 2FA for %s.", username)
        return profile

    def verify_otp_token(self, user: dict, code: str) -> bool:
        """
        Check a login code and burn it.

        A code that was already accepted for this user is refused without
        running the OTP check again. A code that only verifies under the
        legacy guardrails flags the account (in memory straight away, so the
        issued token carries the flag, and in auth.json best-effort).
        """
        username = user.get("username")
        if self.replay_guard.seen(username, code):
            logger.warning("%s attempted to reuse one-time-password.", username)
            return False

        result = self.otp.verify(code, user.get("otpSecret"), OTP_TOLERANCE_SECONDS)
        if not result.valid:
            return False

        if not self.replay_guard.consume(username, code):
            logger.warning("%s attempted to reuse one-time-password.", username)
            return False

        if result.legacy:
            logger.warning(
                "%s is using a legacy 16-character OTP secret. "
                "They should re-setup 2FA for better security.",
                username,
            )
            user["otpLegacySecret"] = True
            try:
                self.store.mark_legacy_otp(username)
            except Exception as e:
                logger.error("Failed to mark user %s as having legacy OTP: %s", username, e)

        return True

    # -- Internal helpers ------------------------------------------------------

    def _require_user(self, username: str) -> dict:
        user = self.store.find_by_username(username)
        if not user:
            raise NotFound("User not found.")
        return user

    def _check_password(self, user: dict, password: str) -> None:
        """Raise AuthenticationFailed unless password matches the stored digest."""
        if not self.hasher.verify(password, user.get("salt"), user.get("hashedPassword")):
            logger.warning("Failed login attempt: wrong password for %s.", user.get("username"))
            raise AuthenticationFailed()


def require_auth(auth: AuthCoordinator):
    """
    Create a FastAPI dependency that enforces a valid bearer token.

    Usage in routes:
        user = Depends(require_auth(auth))

    Returns:
        A dependency resolving to the validated token claims.
    """
    async def _verify(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> dict:
        if credentials is None:
            raise Unauthorized("Authentication required")
        claims = auth.sessions.decode(credentials.credentials)
        user = auth.validate_user(claims)
        if not user:
            raise Unauthorized()
        return user

    return _verify


def require_admin(auth: AuthCoordinator):
    """Like require_auth, and the token must carry admin=true."""
    verify = require_auth(auth)

    async def _verify_admin(user: dict = Depends(verify)) -> dict:
        if not user.get("admin"):
            raise Forbidden("Admin access required")
        return user

    return _verify_admin


def require_setup_wizard(auth: AuthCoordinator):
    """Accept only a setup wizard token, and only while setup is incomplete."""
    verify = require_auth(auth)

    async def _verify_setup(user: dict = Depends(verify)) -> dict:
        if auth.config.setup_wizard_complete or user.get("username") != SETUP_WIZARD_USERNAME:
            raise Forbidden()
        return user

    return _verify_setup
