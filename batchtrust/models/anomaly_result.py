from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional

from batchtrust.models.anomaly import AnomalyDetectionOutput


@dataclass(frozen=True)
class StoredAnomalyResult:
    """
    One persisted analysis of a batch, plus the regulator's review of it.

    Detection output is stored as produced. Only the review fields change
    afterwards.
    """
    result_id: str
    batch_id: str
    risk_score: int
    is_anomaly: bool
    anomaly_ids: List[str]
    anomaly_types: List[str]
    reasons: List[str]
    notes: str
    analyzed_at: datetime
    analyzed_by: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None

    @property
    def is_reviewed(self) -> bool:
        return self.reviewed_by is not None

    @classmethod
    def from_output(
        cls,
        result_id: str,
        batch_id: str,
        output: AnomalyDetectionOutput,
        analyzed_at: datetime,
        analyzed_by: str,
    ) -> "StoredAnomalyResult":
        return cls(
            result_id=result_id,
            batch_id=batch_id,
            risk_score=output.risk_score,
            is_anomaly=output.is_anomaly,
            anomaly_ids=[a.anomaly_id for a in output.anomalies],
            anomaly_types=[a.anomaly_type.value for a in output.anomalies],
            reasons=[a.description for a in output.anomalies],
            notes=output.notes,
            analyzed_at=analyzed_at,
            analyzed_by=analyzed_by,
        )

    def with_review(self, reviewed_by: str, reviewed_at: datetime, notes: Optional[str]) -> "StoredAnomalyResult":
        return replace(self, reviewed_by=reviewed_by, reviewed_at=reviewed_at, review_notes=notes)

    def to_dict(self) -> dict:
        return {
            "id": self.result_id,
            "batchId": self.batch_id,
            "riskScore": self.risk_score,
            "isAnomaly": self.is_anomaly,
            "anomalyIds": list(self.anomaly_ids),
            "anomalyTypes": list(self.anomaly_types),
            "reasons": list(self.reasons),
            "analysisNotes": self.notes,
            "analyzedAt": self.analyzed_at.isoformat(),
            "analyzedBy": self.analyzed_by,
            "reviewedBy": self.reviewed_by,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewNotes": self.review_notes,
        }
