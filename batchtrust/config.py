import hashlib
import json
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    """
    Process-level configuration read from the environment.
    Rule thresholds live in batchtrust.anomaly.config.RuleConfig.
    """
    ledger_url: Optional[str] = None
    ledger_timeout_seconds: float = 5.0
    action_hash_window_seconds: int = 900
    alert_webhook_url: Optional[str] = None
    fleet_workers: int = 8
    audit_blob_connection_string: Optional[str] = None
    audit_blob_container: str = "batch-audit"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            ledger_url=os.getenv("BATCHTRUST_LEDGER_URL") or None,
            ledger_timeout_seconds=_env_float("BATCHTRUST_LEDGER_TIMEOUT_SECONDS", 5.0),
            action_hash_window_seconds=_env_int("BATCHTRUST_ACTION_HASH_WINDOW_SECONDS", 900),
            alert_webhook_url=os.getenv("BATCHTRUST_ALERT_WEBHOOK_URL") or None,
            fleet_workers=_env_int("BATCHTRUST_FLEET_WORKERS", 8),
            audit_blob_connection_string=os.getenv("BATCHTRUST_AUDIT_BLOB_CONNECTION_STRING") or None,
            audit_blob_container=os.getenv("BATCHTRUST_AUDIT_BLOB_CONTAINER", "batch-audit"),
        )


def compute_system_config_hash() -> str:
    """
    Deterministic hash of the environment settings that change
    detection outcomes. Attached to fleet reports so two runs can be compared.
    """
    relevant_env = {
        "BATCHTRUST_PENDING_HOURS": os.getenv("BATCHTRUST_PENDING_HOURS"),
        "BATCHTRUST_TRANSIT_HOURS": os.getenv("BATCHTRUST_TRANSIT_HOURS"),
        "BATCHTRUST_GAP_HOURS": os.getenv("BATCHTRUST_GAP_HOURS"),
        "BATCHTRUST_EXPIRY_WARNING_DAYS": os.getenv("BATCHTRUST_EXPIRY_WARNING_DAYS"),
        "BATCHTRUST_MAX_QUANTITY": os.getenv("BATCHTRUST_MAX_QUANTITY"),
        "BATCHTRUST_LOCATION_RULES_FILE": os.getenv("BATCHTRUST_LOCATION_RULES_FILE"),
    }

    payload = json.dumps(relevant_env, sort_keys=True).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()
