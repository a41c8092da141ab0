from collections import Counter
from datetime import datetime
from typing import List

from batchtrust.anomaly.rules.base import AnomalyRule
from batchtrust.anomaly.rules.utils.history import missing_fields, well_formed
from batchtrust.models.anomaly import AnomalyFinding, AnomalySeverity, AnomalyType
from batchtrust.models.batch import Batch
from batchtrust.timeutils import as_utc


class PatternRule(AnomalyRule):
    """
    Structural problems in the history itself.
    """

    def category(self) -> AnomalyType:
        return AnomalyType.PATTERN

    def evaluate(self, batch: Batch, now: datetime) -> List[AnomalyFinding]:
        raw_history = batch.history or []

        if not raw_history:
            return [AnomalyFinding(
                anomaly_type=AnomalyType.PATTERN,
                severity=AnomalySeverity.CRITICAL,
                title="No custody history",
                description="Batch has no history events",
                recommendation="Treat the batch as untraceable until its origin is confirmed",
                affected_stage=batch.status.value,
            )]

        findings = []
        for position, event in enumerate(raw_history, start=1):
            missing = missing_fields(event)
            if missing:
                findings.append(AnomalyFinding(
                    anomaly_type=AnomalyType.PATTERN,
                    severity=AnomalySeverity.CRITICAL,
                    title="Incomplete custody event",
                    description=f"History event {position} is missing {', '.join(missing)}",
                    recommendation="Recover the custody record before trusting this batch",
                    affected_stage=batch.status.value,
                ))

        history = well_formed(raw_history)
        counts = Counter(as_utc(e.timestamp) for e in history)
        for timestamp in sorted(counts):
            if counts[timestamp] > 1:
                findings.append(AnomalyFinding(
                    anomaly_type=AnomalyType.PATTERN,
                    severity=AnomalySeverity.HIGH,
                    title="Duplicate timestamps",
                    description=f"{counts[timestamp]} events share timestamp {timestamp.isoformat()}",
                    recommendation="Check for replayed or fabricated custody records",
                    affected_stage=batch.status.value,
                    observed_at=timestamp,
                ))

        latest = raw_history[-1]
        if not missing_fields(latest) and latest.status != batch.status:
            findings.append(AnomalyFinding(
                anomaly_type=AnomalyType.PATTERN,
                severity=AnomalySeverity.HIGH,
                title="Status out of sync",
                description=(
                    f"Batch status {batch.status.value} does not match the latest "
                    f"event {latest.status.value}"
                ),
                recommendation="Reconcile the batch record with its history",
                affected_stage=batch.status.value,
                observed_at=latest.timestamp,
            ))

        return findings
