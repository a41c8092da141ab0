from batchtrust.config import Settings, compute_system_config_hash
from batchtrust.version_registry import DETECTOR_VERSIONS, ENGINE_VERSION


def test_settings_defaults(monkeypatch):
    for name in [
        "BATCHTRUST_LEDGER_URL",
        "BATCHTRUST_LEDGER_TIMEOUT_SECONDS",
        "BATCHTRUST_ACTION_HASH_WINDOW_SECONDS",
        "BATCHTRUST_ALERT_WEBHOOK_URL",
        "BATCHTRUST_FLEET_WORKERS",
        "BATCHTRUST_AUDIT_BLOB_CONNECTION_STRING",
        "BATCHTRUST_AUDIT_BLOB_CONTAINER",
    ]:
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.ledger_url is None
    assert settings.ledger_timeout_seconds == 5.0
    assert settings.action_hash_window_seconds == 900
    assert settings.fleet_workers == 8
    assert settings.audit_blob_container == "batch-audit"


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("BATCHTRUST_LEDGER_URL", "https://ledger.example")
    monkeypatch.setenv("BATCHTRUST_LEDGER_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("BATCHTRUST_FLEET_WORKERS", "16")
    monkeypatch.setenv("BATCHTRUST_ALERT_WEBHOOK_URL", "")

    settings = Settings.from_env()

    assert settings.ledger_url == "https://ledger.example"
    assert settings.ledger_timeout_seconds == 2.5
    assert settings.fleet_workers == 16
    assert settings.alert_webhook_url is None


def test_config_hash_is_deterministic_and_tracks_thresholds(monkeypatch):
    monkeypatch.delenv("BATCHTRUST_PENDING_HOURS", raising=False)
    baseline = compute_system_config_hash()
    assert compute_system_config_hash() == baseline

    monkeypatch.setenv("BATCHTRUST_PENDING_HOURS", "48")
    assert compute_system_config_hash() != baseline


def test_version_registry():
    assert ENGINE_VERSION.startswith("BatchTrust-")
    assert "rules" in DETECTOR_VERSIONS
