from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class AnomalyType(str, Enum):
    TIME_DELAY = "time_delay"
    STATUS_REGRESSION = "status_regression"
    EXPIRY = "expiry"
    QUANTITY = "quantity"
    LOCATION = "location"
    PATTERN = "pattern"


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    AnomalySeverity.LOW: 0,
    AnomalySeverity.MEDIUM: 1,
    AnomalySeverity.HIGH: 2,
    AnomalySeverity.CRITICAL: 3,
}


@dataclass(frozen=True)
class AnomalyFinding:
    """
    What a rule reports. The engine turns findings into AnomalyRecords
    by assigning ids and the detection timestamp.
    """
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    title: str
    description: str
    recommendation: str
    affected_stage: str
    confidence: int = 100
    observed_at: Optional[datetime] = None


@dataclass(frozen=True)
class AnomalyRecord:
    anomaly_id: str
    batch_id: str
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    confidence: int
    title: str
    description: str
    recommendation: str
    detected_at: datetime
    affected_stage: str
    observed_at: Optional[datetime] = None

    @property
    def recency(self) -> datetime:
        return self.observed_at or self.detected_at

    def to_dict(self) -> dict:
        return {
            "id": self.anomaly_id,
            "batchId": self.batch_id,
            "type": self.anomaly_type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "recommendation": self.recommendation,
            "confidence": self.confidence,
            "detectedAt": self.detected_at.isoformat(),
            "affectedStage": self.affected_stage,
        }


@dataclass(frozen=True)
class AnomalyDetectionOutput:
    is_anomaly: bool
    anomalies: List[AnomalyRecord]
    risk_score: int
    notes: str

    def to_dict(self) -> dict:
        return {
            "isAnomaly": self.is_anomaly,
            "anomalies": [a.to_dict() for a in self.anomalies],
            "overallRiskScore": self.risk_score,
            "analysisNotes": self.notes,
        }


@dataclass(frozen=True)
class BatchAnalysisOutput:
    total_batches: int
    batches_with_anomalies: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int
    anomalies: List[AnomalyRecord] = field(default_factory=list)
    top_risks: List[str] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> dict:
        return {
            "totalBatches": self.total_batches,
            "batchesWithAnomalies": self.batches_with_anomalies,
            "criticalCount": self.critical_count,
            "highCount": self.high_count,
            "mediumCount": self.medium_count,
            "lowCount": self.low_count,
            "anomalies": [a.to_dict() for a in self.anomalies],
            "summary": self.summary,
            "topRisks": list(self.top_risks),
        }
