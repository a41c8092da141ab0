from datetime import datetime, timedelta
from typing import Optional

from batchtrust.authenticity.hash_utils import hashes_equal, sha256_hex
from batchtrust.exceptions import ActionHashMismatch, StaleActionHash
from batchtrust.models.action_hash import ActionHash, ActionKind
from batchtrust.timeutils import as_utc

DEFAULT_ACTION_HASH_WINDOW = timedelta(minutes=15)


def compute_data_hash(
    batch_code: str,
    drug_name: str,
    quantity: int,
    mfg_date_unix_seconds: int,
    exp_date_unix_seconds: int,
    manufacturer: Optional[str] = None,
) -> str:
    """
    Authoritative fingerprint of a batch's identity fields.

    The ledger computes it once at creation. The verifier recomputes it from
    scanned fields for comparison; a stored hash is never regenerated.
    """
    return sha256_hex({
        "batchCode": batch_code,
        "drugName": drug_name,
        "quantity": quantity,
        "mfgDate": mfg_date_unix_seconds,
        "expDate": exp_date_unix_seconds,
        "manufacturer": manufacturer or "",
    })


def to_unix_seconds(value: datetime) -> int:
    return int(as_utc(value).timestamp())


def _action_digest(batch_id: str, timestamp: datetime, action_kind: ActionKind, issued_at: datetime) -> str:
    return sha256_hex({
        "batchId": batch_id,
        "timestamp": to_unix_seconds(timestamp),
        "action": action_kind.value,
        "issuedAt": to_unix_seconds(issued_at),
    })


def generate_action_hash(
    batch_id: str,
    timestamp: datetime,
    action_kind,
    issued_at: Optional[datetime] = None,
) -> ActionHash:
    """
    Provenance hash for approve / reject / recall, using the same canonical
    encoder as the data hash. `issued_at` is part of the digest, so the
    validity window cannot be reset without invalidating the hash.
    """
    kind = ActionKind(action_kind)
    issued_at = issued_at or timestamp
    return ActionHash(
        batch_id=batch_id,
        action_kind=kind,
        timestamp=timestamp,
        issued_at=issued_at,
        value=_action_digest(batch_id, timestamp, kind, issued_at),
    )


def validate_action_hash(
    action: ActionHash,
    now: datetime,
    validity_window: timedelta = DEFAULT_ACTION_HASH_WINDOW,
) -> None:
    """
    Rejects action hashes that were tampered with, issued in the future,
    or presented after the validity window closed.
    """
    expected = _action_digest(action.batch_id, action.timestamp, action.action_kind, action.issued_at)
    if not hashes_equal(action.value, expected):
        raise ActionHashMismatch(
            f"Action hash for batch {action.batch_id} does not match its fields",
            detail={"batch_id": action.batch_id, "action": action.action_kind.value},
        )

    age = as_utc(now) - as_utc(action.issued_at)
    if age < timedelta(0):
        raise StaleActionHash(
            f"Action hash for batch {action.batch_id} is issued in the future",
            detail={"issued_at": action.issued_at.isoformat(), "now": now.isoformat()},
        )
    if age > validity_window:
        raise StaleActionHash(
            f"Action hash for batch {action.batch_id} expired "
            f"({int(age.total_seconds())}s old, window {int(validity_window.total_seconds())}s)",
            detail={"issued_at": action.issued_at.isoformat(), "now": now.isoformat()},
        )
