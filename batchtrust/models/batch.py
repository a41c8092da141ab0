from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional


class BatchStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    IN_TRANSIT = "In-Transit"
    DELIVERED = "Delivered"
    FLAGGED = "Flagged"
    RECALLED = "Recalled"

    @classmethod
    def parse(cls, value) -> "BatchStatus":
        """
        Accepts enum members, canonical labels ("In-Transit") and
        enum names ("IN_TRANSIT", "in_transit").
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text == member.value or text.upper().replace("-", "_") == member.name:
                return member
        raise ValueError(f"Unknown batch status: {value!r}")


TERMINAL_STATUSES = frozenset({BatchStatus.REJECTED, BatchStatus.RECALLED})


@dataclass(frozen=True)
class HistoryEvent:
    """
    One immutable entry of a batch's custody history.
    """
    location: str
    status: BatchStatus
    timestamp: datetime
    actor: str
    reason: Optional[str] = None

    def dedup_key(self, batch_id: str) -> tuple:
        return (batch_id, self.status, self.timestamp)


@dataclass(frozen=True)
class BatchDraft:
    """
    Manufacturer input for a new batch. Becomes a Batch once the ledger
    has issued its data hash.
    """
    batch_id: str
    drug_name: str
    mfg_date: datetime
    exp_date: datetime
    quantity: int
    manufacturer: str
    organization_id: Optional[str] = None


@dataclass
class Batch:
    """
    Tracked unit of product.

    `history` is append-only and `data_hash` is set once at creation.
    Only the state machine produces new Batch values; repositories store them.
    """
    batch_id: str
    drug_name: str
    mfg_date: Optional[datetime]
    exp_date: Optional[datetime]
    quantity: Optional[int]
    manufacturer: Optional[str]
    status: BatchStatus
    history: List[HistoryEvent] = field(default_factory=list)
    organization_id: Optional[str] = None
    data_hash: Optional[str] = None
    prior_status: Optional[BatchStatus] = None
    version: int = 0

    @property
    def latest_event(self) -> Optional[HistoryEvent]:
        return self.history[-1] if self.history else None

    @property
    def is_flagged(self) -> bool:
        return self.status == BatchStatus.FLAGGED

    def with_event(
        self,
        event: HistoryEvent,
        status: BatchStatus,
        prior_status: Optional[BatchStatus],
    ) -> "Batch":
        """Returns a copy with `event` appended and the version bumped."""
        return replace(
            self,
            history=[*self.history, event],
            status=status,
            prior_status=prior_status,
            version=self.version + 1,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.batch_id,
            "name": self.drug_name,
            "mfg": self.mfg_date.isoformat() if self.mfg_date else None,
            "exp": self.exp_date.isoformat() if self.exp_date else None,
            "qty": self.quantity,
            "manufacturer": self.manufacturer,
            "organizationId": self.organization_id,
            "status": self.status.value,
            "priorStatus": self.prior_status.value if self.prior_status else None,
            "dataHash": self.data_hash,
            "version": self.version,
            "history": [
                {
                    "location": e.location,
                    "status": e.status.value,
                    "timestamp": e.timestamp.isoformat(),
                    "actor": e.actor,
                    "reason": e.reason,
                }
                for e in self.history
            ],
        }
