import hashlib
import hmac
import json
from typing import Any, Dict


def canonical_encode(payload: Dict[str, Any]) -> bytes:
    """
    Order-independent encoding: sorted keys, compact separators, UTF-8.
    Two dicts with the same items always encode to the same bytes.
    """
    serialized = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return serialized.encode("utf-8")


def sha256_hex(payload: Dict[str, Any]) -> str:
    return "0x" + hashlib.sha256(canonical_encode(payload)).hexdigest()


def hashes_equal(presented: str, authoritative: str) -> bool:
    """
    Byte-for-byte comparison. No case folding or prefix normalisation.
    """
    return hmac.compare_digest(
        presented.encode("utf-8"),
        authoritative.encode("utf-8"),
    )
