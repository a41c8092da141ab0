import json
import logging
from typing import Any, Dict

from batchtrust.authenticity.hashing import to_unix_seconds
from batchtrust.exceptions import MalformedPayload
from batchtrust.models.batch import Batch
from batchtrust.models.verification import VerificationPayload

logger = logging.getLogger("batchtrust.authenticity")


def encode_verification_payload(batch: Batch) -> VerificationPayload:
    """
    Builds the scannable-code payload for a batch. The stored ledger hash is
    embedded as-is; it is never recomputed here.
    """
    if batch.mfg_date is None or batch.exp_date is None or batch.quantity is None:
        raise MalformedPayload(
            f"Batch {batch.batch_id} is missing identity fields required for a payload",
            detail={"batch_id": batch.batch_id},
        )

    return VerificationPayload(
        batch_code=batch.batch_id,
        drug_name=batch.drug_name,
        quantity=batch.quantity,
        mfg_date=to_unix_seconds(batch.mfg_date),
        exp_date=to_unix_seconds(batch.exp_date),
        manufacturer=batch.manufacturer,
        data_hash=batch.data_hash,
    )


def _whole_number(data: Dict[str, Any], key: str) -> int:
    value = data[key]
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"{key} must be a whole number, got {value!r}")


def payload_from_dict(data: Dict[str, Any]) -> VerificationPayload:
    # Older codes carry "batchId" instead of "batchCode".
    batch_code = data.get("batchCode") or data.get("batchId")
    if not batch_code:
        raise MalformedPayload("Payload is missing batchCode")

    try:
        return VerificationPayload(
            batch_code=str(batch_code),
            drug_name=str(data["drugName"]),
            quantity=_whole_number(data, "quantity"),
            mfg_date=_whole_number(data, "mfgDate"),
            exp_date=_whole_number(data, "expDate"),
            manufacturer=data.get("manufacturer"),
            data_hash=data.get("dataHash"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedPayload(
            f"Payload for {batch_code} is malformed: {e}",
            detail={"batch_code": str(batch_code)},
        ) from e


def parse_verification_payload(text: str) -> VerificationPayload:
    """
    Parses the JSON text read from a scanned code.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        logger.warning(f"Unparseable verification payload: {type(e).__name__}")
        raise MalformedPayload("Payload is not valid JSON") from e

    if not isinstance(data, dict):
        raise MalformedPayload("Payload must be a JSON object")

    return payload_from_dict(data)
