from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ActionKind(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    RECALL = "recall"


@dataclass(frozen=True)
class ActionHash:
    """
    Provenance fingerprint of a regulatory action.
    `issued_at` bounds how long the hash may be presented.
    """
    batch_id: str
    action_kind: ActionKind
    timestamp: datetime
    issued_at: datetime
    value: str

    def to_dict(self) -> dict:
        return {
            "batchId": self.batch_id,
            "action": self.action_kind.value,
            "timestamp": self.timestamp.isoformat(),
            "issuedAt": self.issued_at.isoformat(),
            "hash": self.value,
        }
