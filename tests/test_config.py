import hashlib

from dotenv import dotenv_values

from bridgekeeper.config import DEFAULTS, SECRET_KEY_ENV, ConfigManager


def _write_config(project_dir, text):
    (project_dir / "config.yaml").write_text(text, encoding="utf-8")


def test_defaults_when_config_missing(project_dir):
    config = ConfigManager(str(project_dir))
    assert config.auth_mode == "form"
    assert config.session_timeout == DEFAULTS["ui"]["sessionTimeout"]
    assert config.auth_path == str(project_dir / "data" / "auth.json")
    assert "_config_error" not in config.settings


def test_yaml_overrides_are_merged_over_defaults(project_dir):
    _write_config(project_dir, "ui:\n  auth: none\n  sessionTimeout: 600\nstorage:\n  auth_file: /tmp/elsewhere.json\n")
    config = ConfigManager(str(project_dir))
    assert config.auth_mode == "none"
    assert config.session_timeout == 600
    assert config.auth_path == "/tmp/elsewhere.json"
    assert config.settings["web"]["port"] == 8581


def test_unknown_auth_mode_falls_back_to_form(project_dir):
    _write_config(project_dir, "ui:\n  auth: magic\n  sessionTimeout: soon\n")
    config = ConfigManager(str(project_dir))
    assert config.auth_mode == "form"
    assert config.session_timeout == DEFAULTS["ui"]["sessionTimeout"]


def test_corrupt_yaml_keeps_defaults_and_records_error(project_dir):
    _write_config(project_dir, "ui: [unterminated\n")
    config = ConfigManager(str(project_dir))
    assert "_config_error" in config.settings
    assert config.auth_mode == "form"


def test_reload_picks_up_changes(project_dir):
    config = ConfigManager(str(project_dir))
    _write_config(project_dir, "ui:\n  auth: none\n")
    config.reload()
    assert config.auth_mode == "none"


def test_secret_key_from_environment(project_dir):
    config = ConfigManager(str(project_dir))
    assert config.secret_key == "test-signing-secret"
    assert config.instance_id == hashlib.sha256(b"test-signing-secret").hexdigest()


def test_secret_key_from_env_file(project_dir, monkeypatch):
    monkeypatch.delenv(SECRET_KEY_ENV)
    (project_dir / ".env").write_text(f"{SECRET_KEY_ENV}=from-dotenv\n", encoding="utf-8")
    assert ConfigManager(str(project_dir)).secret_key == "from-dotenv"


def test_missing_secret_key_is_generated_and_persisted(project_dir, monkeypatch):
    monkeypatch.delenv(SECRET_KEY_ENV)
    (project_dir / ".env").write_text("OTHER=1", encoding="utf-8")

    first = ConfigManager(str(project_dir))
    key = first.secret_key
    assert len(key) == 64

    stored = dotenv_values(project_dir / ".env")
    assert stored[SECRET_KEY_ENV] == key
    assert stored["OTHER"] == "1"

    # a restart reuses the same key, so the instance id is stable
    assert ConfigManager(str(project_dir)).instance_id == first.instance_id


def test_non_mapping_yaml_is_reported(project_dir):
    _write_config(project_dir, "- just\n- a list\n")
    config = ConfigManager(str(project_dir))
    assert config.settings["_config_error"] == "config.yaml must contain a mapping"
    assert config.session_timeout == DEFAULTS["ui"]["sessionTimeout"]


def test_empty_yaml_uses_defaults(project_dir):
    _write_config(project_dir, "")
    config = ConfigManager(str(project_dir))
    assert "_config_error" not in config.settings
    assert config.auth_mode == "form"
