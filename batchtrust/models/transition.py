from dataclasses import dataclass
from typing import Optional

from batchtrust.models.batch import Batch, BatchStatus, HistoryEvent
from batchtrust.models.action_hash import ActionHash


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of a successful state machine transition.
    Failed transitions raise instead of returning a result.
    """
    batch: Batch
    event: HistoryEvent
    previous_status: BatchStatus
    new_status: BatchStatus
    action_hash: Optional[ActionHash] = None
    deduplicated: bool = False

    def to_dict(self) -> dict:
        return {
            "batchId": self.batch.batch_id,
            "previousStatus": self.previous_status.value,
            "newStatus": self.new_status.value,
            "priorStatus": self.batch.prior_status.value if self.batch.prior_status else None,
            "version": self.batch.version,
            "timestamp": self.event.timestamp.isoformat(),
            "actor": self.event.actor,
            "location": self.event.location,
            "actionHash": self.action_hash.to_dict() if self.action_hash else None,
            "deduplicated": self.deduplicated,
        }
