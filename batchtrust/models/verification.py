import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class VerificationStatus(str, Enum):
    AUTHENTIC = "Authentic"
    HASH_MISMATCH = "HashMismatch"
    NOT_FOUND = "NotFound"
    EXPIRED = "Expired"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class VerificationPayload:
    """
    Field set embedded in a product's scannable code.
    Dates are unix seconds.
    """
    batch_code: str
    drug_name: str
    quantity: int
    mfg_date: int
    exp_date: int
    manufacturer: Optional[str] = None
    data_hash: Optional[str] = None

    def to_dict(self) -> dict:
        payload = {
            "batchCode": self.batch_code,
            "drugName": self.drug_name,
            "quantity": self.quantity,
            "mfgDate": self.mfg_date,
            "expDate": self.exp_date,
        }
        if self.manufacturer is not None:
            payload["manufacturer"] = self.manufacturer
        if self.data_hash is not None:
            payload["dataHash"] = self.data_hash
        return payload

    def to_qr_string(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class VerificationResult:
    status: VerificationStatus
    batch_code: str
    message: str
    expired: bool
    authoritative_hash: Optional[str] = None
    presented_hash: Optional[str] = None

    @property
    def is_authentic(self) -> bool:
        return self.status == VerificationStatus.AUTHENTIC

    @property
    def escalation_recommended(self) -> bool:
        return self.status == VerificationStatus.HASH_MISMATCH

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "isAuthentic": self.is_authentic,
            "batchCode": self.batch_code,
            "message": self.message,
            "expired": self.expired,
            "hashMatch": (
                None
                if self.authoritative_hash is None or self.presented_hash is None
                else self.authoritative_hash == self.presented_hash
            ),
            "onChainHash": self.authoritative_hash,
            "presentedHash": self.presented_hash,
            "escalationRecommended": self.escalation_recommended,
        }
