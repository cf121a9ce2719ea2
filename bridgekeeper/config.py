"""
Bridgekeeper - Configuration Manager
======================================
Handles loading of the console configuration from two sources:

1. config.yaml  - Non-sensitive settings (listen address, auth mode,
                  session timeout, auth file location)
2. .env         - The token signing secret (BRIDGEKEEPER_SECRET_KEY)

On top of the files it carries the runtime state the credential subsystem
needs from its host: the instance id derived from the signing secret, and
the "setup wizard complete" flag, which lives for the lifetime of the
process and is re-derived from auth.json on startup.

Usage:
    config = ConfigManager(project_dir="/path/to/bridgekeeper")
    config.auth_mode          # "form" or "none"
    config.session_timeout    # seconds
    config.instance_id        # sha256 of the signing secret
"""

import copy
import hashlib
import os
import secrets
from typing import Any

import yaml
from dotenv import dotenv_values, set_key

SECRET_KEY_ENV = "BRIDGEKEEPER_SECRET_KEY"

AUTH_MODES = ("form", "none")

# Default configuration values used when config.yaml is missing or incomplete.
DEFAULTS = {
    "web": {
        "port": 8581,
        "host": "0.0.0.0",
    },
    "ui": {
        "auth": "form",
        "sessionTimeout": 28800,
    },
    "storage": {
        "auth_file": "data/auth.json",
    },
}


class ConfigManager:
    """
    Configuration provider for the credential subsystem.

    Attributes:
        project_dir:           Root directory of the Bridgekeeper project.
        config_path:           Full path to config.yaml.
        env_path:              Full path to .env file.
        settings:              Merged configuration (loaded at construction).
        setup_wizard_complete: False while no admin account exists.
    """

    def __init__(self, project_dir: str):
        """
        Initialize the config manager.

        Args:
            project_dir: Absolute path to the Bridgekeeper project root directory.
        """
        self.project_dir = project_dir
        self.config_path = os.path.join(project_dir, "config.yaml")
        self.env_path = os.path.join(project_dir, ".env")
        self.settings = self.load()
        self.setup_wizard_complete = True
        self._secret_key: str | None = None

    def load(self) -> dict:
        """
        Read config.yaml on top of DEFAULTS.

        An unreadable file, or one whose top level is not a mapping, leaves
        the defaults in place and records the problem under '_config_error'.

        Returns:
            The effective settings.
        """
        if not os.path.exists(self.config_path):
            return copy.deepcopy(DEFAULTS)

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                overrides = yaml.safe_load(f)
        except (yaml.YAMLError, OSError) as e:
            return {**copy.deepcopy(DEFAULTS), "_config_error": str(e)}

        if overrides is None:
            return copy.deepcopy(DEFAULTS)
        if not isinstance(overrides, dict):
            return {**copy.deepcopy(DEFAULTS), "_config_error": "config.yaml must contain a mapping"}
        return _merged(DEFAULTS, overrides)

    def reload(self) -> dict:
        self.settings = self.load()
        return self.settings

    # -- Values consumed by the auth subsystem ---------------------------------

    @property
    def auth_mode(self) -> str:
        mode = str((self.settings.get("ui") or {}).get("auth") or "form").lower()
        return mode if mode in AUTH_MODES else "form"

    @property
    def session_timeout(self) -> int:
        try:
            return int((self.settings.get("ui") or {}).get("sessionTimeout", DEFAULTS["ui"]["sessionTimeout"]))
        except (TypeError, ValueError):
            return DEFAULTS["ui"]["sessionTimeout"]

    @property
    def auth_path(self) -> str:
        path = (self.settings.get("storage") or {}).get("auth_file") or DEFAULTS["storage"]["auth_file"]
        if not os.path.isabs(path):
            path = os.path.join(self.project_dir, path)
        return path

    @property
    def secret_key(self) -> str:
        """
        The token signing secret.

        Resolution order: process environment, then .env. If neither has
        one, a new random key is generated and persisted to .env so that
        issued tokens survive a restart.
        """
        if self._secret_key is None:
            key = os.environ.get(SECRET_KEY_ENV)
            if not key and os.path.exists(self.env_path):
                key = dotenv_values(self.env_path).get(SECRET_KEY_ENV)
            if not key:
                key = secrets.token_hex(32)
                self._persist_secret(key)
            self._secret_key = key
        return self._secret_key

    @property
    def instance_id(self) -> str:
        """Identifies this installation; derived from the signing secret."""
        return hashlib.sha256(self.secret_key.encode("utf-8")).hexdigest()


    def _persist_secret(self, key: str) -> None:
        """Store a generated signing secret in .env, keeping any other entries."""
        os.makedirs(self.project_dir, exist_ok=True)
        set_key(self.env_path, SECRET_KEY_ENV, key, quote_mode="never")


# -- Helper Functions ---------------------------------------------------------

def _merged(defaults: dict, overrides: dict[str, Any]) -> dict:
    """Return defaults with overrides laid on top, nested sections merged key by key."""
    result = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = _merged(result[key], value)
        else:
            result[key] = value
    return result
