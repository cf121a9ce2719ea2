"""
Bridgekeeper - Session Tokens
===============================
Issues and refreshes the signed bearer tokens the console hands to browsers.

Token claims:
    username, name, admin      - who the session belongs to
    instanceId                 - the installation that issued it
    otpLegacySecret            - prompts the UI to ask for 2FA re-enrollment
    exp, iat                   - standard JWT timestamps

Instance binding:
    A token only refreshes on the installation whose instance id it
    carries. Restoring a backup of auth.json onto another machine does not
    make the old machine's tokens usable there.

Setup wizard tokens:
    Minted only while no admin exists. They last 5 minutes and carry the
    instance id "xxxxx", which no installation has, so they never refresh
    into a normal session.

validate() is a passthrough for every request. refresh() checks the claims
against the credential store.
"""

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from bridgekeeper.config import ConfigManager
from bridgekeeper.errors import Unauthorized
from bridgekeeper.store import CredentialStore

logger = logging.getLogger("bridgekeeper.sessions")

JWT_ALGORITHM = "HS256"
SETUP_WIZARD_TOKEN_SECONDS = 300
SETUP_WIZARD_USERNAME = "setup-wizard"
INVALID_INSTANCE_ID = "xxxxx"


class SessionIssuer:
    """
    Signs session claims with the process-wide secret.

    Attributes:
        config: Supplies the secret key, instance id, auth mode and timeout.
        store:  Used by refresh() to re-resolve the token's subject.
    """

    def __init__(self, config: ConfigManager, store: CredentialStore):
        self.config = config
        self.store = store

    def issue(self, user: dict, expires_in: int | None = None) -> str:
        """
        Mint a session token for a user bound to the running instance.

        Args:
            user:       User record or claims dict (username, name, admin,
                        otpLegacySecret are read).
            expires_in: Lifetime in seconds; defaults to the session timeout.
        """
        return self._sign(self.claims_for(user), expires_in)

    def issue_setup_token(self) -> str:
        """Mint the short-lived setup wizard token."""
        claims = {
            "username": SETUP_WIZARD_USERNAME,
            "name": SETUP_WIZARD_USERNAME,
            "admin": True,
            "instanceId": INVALID_INSTANCE_ID,
        }
        return self._sign(claims, SETUP_WIZARD_TOKEN_SECONDS)

    def issue_no_auth_token(self, user: dict) -> str:
        """
        Mint a token without any credential check.

        Raises:
            Unauthorized: The configured auth mode is not "none".
        """
        if self.config.auth_mode != "none":
            raise Unauthorized()
        return self.issue(user)

    def refresh(self, claims: dict) -> str:
        """
        Re-issue a token with a fresh expiry.

        Raises:
            Unauthorized: The user is gone, their admin flag changed, or the
                          token belongs to another instance.
        """
        current = self.store.find_by_username(claims.get("username"))
        if not current:
            raise Unauthorized("User no longer exists")

        logger.info("Request received to refresh token for %s.", claims.get("username"))

        if bool(current.get("admin")) != bool(claims.get("admin")):
            raise Unauthorized("User permissions have changed, please log in again")

        if claims.get("instanceId") != self.config.instance_id:
            raise Unauthorized("Token is not valid for this instance")

        payload = {
            "username": claims.get("username"),
            "name": claims.get("name"),
            "admin": claims.get("admin"),
            "instanceId": claims.get("instanceId"),
            "otpLegacySecret": current.get("otpLegacySecret") or False,
        }
        return self._sign(payload)

    def validate(self, claims: dict) -> dict:
        """All the information about the user is in the verified claims."""
        return claims

    def decode(self, token: str) -> dict:
        """
        Verify signature and expiry of a bearer token.

        Raises:
            Unauthorized: The token is malformed, forged or expired.
        """
        try:
            return jwt.decode(token, self.config.secret_key, algorithms=[JWT_ALGORITHM])
        except JWTError:
            raise Unauthorized("Invalid or expired token")

    def claims_for(self, user: dict) -> dict:
        return {
            "username": user.get("username"),
            "name": user.get("name"),
            "admin": user.get("admin"),
            "instanceId": self.config.instance_id,
            "otpLegacySecret": user.get("otpLegacySecret") or False,
        }

    def token_response(self, token: str, expires_in: int | None = None) -> dict:
        """Shape a token the way the login endpoints return it."""
        return {
            "access_token": token,
            "token_type": "Bearer",
            "expires_in": self.config.session_timeout if expires_in is None else expires_in,
        }

    # -- Internal helpers ------------------------------------------------------

    def _sign(self, claims: dict, expires_in: int | None = None) -> str:
        """Add exp/iat and sign with the configured secret."""
        lifetime = self.config.session_timeout if expires_in is None else expires_in
        now = datetime.now(timezone.utc)
        payload = dict(claims)
        payload["iat"] = now
        payload["exp"] = now + timedelta(seconds=lifetime)
        return jwt.encode(payload, self.config.secret_key, algorithm=JWT_ALGORITHM)
