"""
Bridgekeeper - Credential Store
=================================
Loads, mutates and persists the user records kept in data/auth.json.

File format:
    A JSON array of user objects (4-space indent):
    [
        {
            "id": 1,
            "username": "admin",
            "name": "Administrator",
            "admin": true,
            "hashedPassword": "<hex>",
            "salt": "<hex>",
            "otpSecret": "<base32>",      (optional)
            "otpActive": true,            (optional)
            "otpLegacySecret": false      (optional)
        }
    ]

Invariants:
    - usernames are unique, compared case-insensitively
    - ids are assigned as max(existing) + 1
    - the last admin cannot be deleted (demotion is not guarded)
    - hashedPassword and salt are always written together

Transactions:
    Every mutation is a compare-and-swap on the file contents. The file is
    read and fingerprinted, the mutation runs on the in-memory list, and the
    result is only written if the fingerprint is still the same. If another
    writer got there first the mutation is re-applied on top of its result.
    Writes go through a temporary file and os.replace, so readers never see
    a half-written store.
"""

import copy
import hashlib
import json
import logging
import os
import tempfile
import threading
from typing import Any, Callable

from bridgekeeper.errors import Conflict, InvalidRequest, NotFound, StoreConflict
from bridgekeeper.passwords import PasswordHasher

logger = logging.getLogger("bridgekeeper.store")

DEFAULT_MAX_RETRIES = 5

# Shared by every store in the process so the version check and the write
# are a single step even across instances.
_WRITE_LOCK = threading.Lock()


def desensitise(user: dict) -> dict:
    """Return the public profile of a user record (no password or OTP secret)."""
    return {
        "id": user.get("id"),
        "name": user.get("name"),
        "username": user.get("username"),
        "admin": user.get("admin", False),
        "otpActive": user.get("otpActive") or False,
        "otpLegacySecret": user.get("otpLegacySecret") or False,
    }


class CredentialStore:
    """
    JSON-file backed user table.

    Attributes:
        auth_file:   Absolute path of the auth.json file.
        hasher:      PasswordHasher used to derive salt/hashedPassword.
        max_retries: Attempts before a contended mutation gives up.
    """

    def __init__(self, auth_file: str, hasher: PasswordHasher, max_retries: int = DEFAULT_MAX_RETRIES):
        self.auth_file = auth_file
        self.hasher = hasher
        self.max_retries = max_retries

    # =========================================================================
    # Queries
    # =========================================================================

    def exists(self) -> bool:
        return os.path.exists(self.auth_file)

    def list_users(self, strip: bool = False) -> list[dict]:
        """
        Return all user records.

        Args:
            strip: If True, return desensitised profiles instead of raw records.
        """
        users, _ = self._read()
        if strip:
            return [desensitise(u) for u in users]
        return users

    def find_by_username(self, username: str) -> dict | None:
        for user in self.list_users():
            if user.get("username") == username:
                return user
        return None

    def find_by_id(self, user_id: int) -> dict | None:
        for user in self.list_users():
            if user.get("id") == user_id:
                return user
        return None

    def has_admin(self) -> bool:
        return any(u.get("admin") is True for u in self.list_users())

    def is_setup_incomplete(self) -> bool:
        """
        True when first-run setup still has to happen.

        That is the case if auth.json is missing, cannot be parsed, or holds
        no admin record.
        """
        if not self.exists():
            return True
        try:
            return not self.has_admin()
        except (json.JSONDecodeError, OSError):
            return True

    # =========================================================================
    # Mutations
    # =========================================================================

    def add(self, user: dict) -> dict:
        """
        Create a user.

        Args:
            user: Dict with username, name, admin and password.

        Returns:
            The desensitised profile of the new record.

        Raises:
            InvalidRequest: No password supplied.
            Conflict:       The username is taken (case-insensitive).
        """
        password = user.get("password")
        if not password:
            raise InvalidRequest("Password missing.")
        username = user.get("username") or ""

        def mutate(users: list[dict]) -> dict:
            if any(_same_username(u.get("username"), username) for u in users):
                raise Conflict(f"User with username '{username}' already exists.")
            salt = self.hasher.gen_salt()
            record = {
                "id": max((u.get("id", 0) for u in users), default=0) + 1,
                "username": username,
                "name": user.get("name"),
                "hashedPassword": self.hasher.hash(password, salt),
                "salt": salt,
                "admin": bool(user.get("admin", False)),
            }
            users.append(record)
            return record

        record = self.transact(mutate)
        logger.warning("Added new user: %s.", username)
        return desensitise(record)

    def delete(self, user_id: int) -> None:
        """
        Remove a user by id.

        Raises:
            NotFound:       No record has that id.
            InvalidRequest: The record is the only admin.
        """

        def mutate(users: list[dict]) -> None:
            index = _index_of(users, lambda u: u.get("id") == user_id)
            if users[index].get("admin") and _admin_count(users) < 2:
                raise InvalidRequest("Cannot delete only admin user")
            users.pop(index)

        self.transact(mutate)
        logger.warning("Deleted user with ID %s.", user_id)

    def update(self, user_id: int, patch: dict) -> dict:
        """
        Apply a partial update to a user.

        Patch keys:
            username: rename (uniqueness checked against other records)
            name:     replaces the display name when truthy
            admin:    None leaves the flag alone, a bool overwrites it
            password: re-hashed with a fresh salt

        Demoting the last admin is allowed here; only deletion is guarded.

        Raises:
            NotFound: No record has that id.
            Conflict: The new username belongs to another record.
        """

        def mutate(users: list[dict]) -> dict:
            user = users[_index_of(users, lambda u: u.get("id") == user_id)]
            new_username = patch.get("username")
            if new_username and new_username != user.get("username"):
                if any(
                    _same_username(u.get("username"), new_username)
                    for u in users
                    if u is not user
                ):
                    raise Conflict(f"User with username '{new_username}' already exists.")
                logger.info(
                    "Updated user: changed username from %s to %s.",
                    user.get("username"), new_username,
                )
                user["username"] = new_username

            user["name"] = patch.get("name") or user.get("name")
            if patch.get("admin") is not None:
                user["admin"] = bool(patch["admin"])
            if patch.get("password"):
                self._set_password(user, patch["password"])
            return user

        user = self.transact(mutate)
        logger.info("Updated user: %s.", user.get("username"))
        return desensitise(user)

    def update_password(self, username: str, new_password: str) -> dict:
        def mutate(users: list[dict]) -> dict:
            user = users[_index_of(users, lambda u: u.get("username") == username)]
            self._set_password(user, new_password)
            return user

        return desensitise(self.transact(mutate))

    def set_otp_secret(self, username: str, secret: str) -> dict:
        return desensitise(self._update_user(username, lambda u: u.update(otpSecret=secret)))

    def activate_otp(self, username: str, legacy: bool = False) -> dict:
        def apply(user: dict) -> None:
            user["otpActive"] = True
            if legacy:
                user["otpLegacySecret"] = True

        return desensitise(self._update_user(username, apply))

    def deactivate_otp(self, username: str) -> dict:
        def apply(user: dict) -> None:
            user["otpActive"] = False
            user.pop("otpSecret", None)
            user.pop("otpLegacySecret", None)

        return desensitise(self._update_user(username, apply))

    def mark_legacy_otp(self, username: str) -> bool:
        """
        Flag a user's OTP secret as the legacy short format.

        Returns:
            True if the flag was written, False if already set.
        """

        def mutate(users: list[dict]) -> bool:
            user = next((u for u in users if u.get("username") == username), None)
            if user is None or user.get("otpLegacySecret"):
                return False
            user["otpLegacySecret"] = True
            return True

        changed = self.transact(mutate)
        if changed:
            logger.warning("Marked %s as having legacy OTP secret.", username)
        return changed

    def replace_all(self, users: list[dict]) -> None:
        """Overwrite the whole store (first-run setup starts from an empty list)."""
        replacement = copy.deepcopy(users)

        def mutate(current: list[dict]) -> None:
            current[:] = replacement

        self.transact(mutate, allow_unreadable=True)

    # =========================================================================
    # Transactions
    # =========================================================================

    def transact(self, mutate: Callable[[list[dict]], Any], allow_unreadable: bool = False) -> Any:
        """
        Run a read-mutate-write cycle as a compare-and-swap.

        Args:
            mutate:           Called with a fresh copy of the records; changes
                              it makes in place are persisted. Its return value
                              is returned. Raising aborts without writing.
            allow_unreadable: Treat a corrupt file as empty (only for
                              replace_all, which discards the contents anyway).

        Raises:
            StoreConflict: The file changed under every attempt.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                users, version = self._read()
            except (json.JSONDecodeError, OSError):
                if not allow_unreadable:
                    raise
                users, version = [], self._version()

            result = mutate(users)

            with _WRITE_LOCK:
                if self._version() == version:
                    self._write(users)
                    return result

            logger.warning(
                "auth file changed during update (attempt %d/%d), retrying.",
                attempt, self.max_retries,
            )
        raise StoreConflict()

    # -- Internal helpers ------------------------------------------------------

    def _update_user(self, username: str, apply: Callable[[dict], None]) -> dict:
        def mutate(users: list[dict]) -> dict:
            user = users[_index_of(users, lambda u: u.get("username") == username)]
            apply(user)
            return user

        return self.transact(mutate)

    def _set_password(self, user: dict, password: str) -> None:
        salt = self.hasher.gen_salt()
        user["hashedPassword"] = self.hasher.hash(password, salt)
        user["salt"] = salt

    def _read(self) -> tuple[list[dict], str | None]:
        """Load the records and the fingerprint of the bytes they came from."""
        if not os.path.exists(self.auth_file):
            return [], None
        with open(self.auth_file, "rb") as f:
            raw = f.read()
        users = json.loads(raw.decode("utf-8"))
        if not isinstance(users, list):
            raise json.JSONDecodeError("auth file must contain a JSON array", raw.decode("utf-8"), 0)
        return users, hashlib.sha256(raw).hexdigest()

    def _version(self) -> str | None:
        try:
            with open(self.auth_file, "rb") as f:
                return hashlib.sha256(f.read()).hexdigest()
        except FileNotFoundError:
            return None

    def _write(self, users: list[dict]) -> None:
        directory = os.path.dirname(self.auth_file) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".auth-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(users, f, indent=4, ensure_ascii=False)
            os.replace(tmp_path, self.auth_file)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


# -- Helper Functions ---------------------------------------------------------

def _same_username(a: str | None, b: str | None) -> bool:
    return (a or "").lower() == (b or "").lower()


def _admin_count(users: list[dict]) -> int:
    return sum(1 for u in users if u.get("admin") is True)


def _index_of(users: list[dict], predicate: Callable[[dict], bool]) -> int:
    for index, user in enumerate(users):
        if predicate(user):
            return index
    raise NotFound("User Not Found")
