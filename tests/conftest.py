import sys
from pathlib import Path as _Path
sys.path.insert(0, str(_Path(__file__).resolve().parents[1]))

from pathlib import Path

import pytest

from bridgekeeper.auth import AuthCoordinator
from bridgekeeper.config import SECRET_KEY_ENV, ConfigManager
from bridgekeeper.otp import OtpEngine
from bridgekeeper.passwords import PasswordHasher
from bridgekeeper.replay import OtpReplayGuard
from bridgekeeper.sessions import SessionIssuer
from bridgekeeper.store import CredentialStore

TEST_SECRET = "test-signing-secret"

# 16 base32 characters = 10 bytes, the format early releases generated
LEGACY_OTP_SECRET = "JBSWY3DPEHPK3PXP"


@pytest.fixture()
def project_dir(tmp_path: Path, monkeypatch) -> Path:
    """An empty project directory with a fixed signing secret."""
    monkeypatch.setenv(SECRET_KEY_ENV, TEST_SECRET)
    return tmp_path


@pytest.fixture()
def config(project_dir: Path) -> ConfigManager:
    return ConfigManager(str(project_dir))


@pytest.fixture()
def hasher() -> PasswordHasher:
    return PasswordHasher()


@pytest.fixture()
def store(config: ConfigManager, hasher: PasswordHasher) -> CredentialStore:
    return CredentialStore(config.auth_path, hasher)


@pytest.fixture()
def sessions(config: ConfigManager, store: CredentialStore) -> SessionIssuer:
    return SessionIssuer(config, store)


@pytest.fixture()
def auth(config, store, hasher, sessions) -> AuthCoordinator:
    return AuthCoordinator(
        config=config,
        store=store,
        hasher=hasher,
        otp=OtpEngine(),
        replay_guard=OtpReplayGuard(),
        sessions=sessions,
    )


@pytest.fixture()
def admin(store: CredentialStore) -> dict:
    """Seed the store with a single admin (password: admin-pass)."""
    return store.add({"username": "admin", "name": "Administrator", "admin": True, "password": "admin-pass"})


@pytest.fixture()
def use_auth_mode(config: ConfigManager):
    def _set(mode: str) -> None:
        config.settings["ui"]["auth"] = mode

    return _set
