from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Literal, Optional


AuditEventType = Literal[
    "batch.create",
    "batch.approve",
    "batch.reject",
    "batch.recall",
    "batch.flag",
    "batch.unflag",
    "batch.status_change",
    "anomaly.detected",
    "verification.result",
]


@dataclass(frozen=True)
class AuditEvent:
    """
    Observer payload handed to audit sinks.
    Carries identifiers and outcomes only, never full batch records.
    """
    event_type: AuditEventType
    batch_id: str
    timestamp: datetime
    actor: Optional[str] = None
    result: Literal["success", "failure", "denied"] = "success"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "eventType": self.event_type,
            "batchId": self.batch_id,
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
            "result": self.result,
            "metadata": dict(self.metadata),
        }
