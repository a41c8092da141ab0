from datetime import datetime, timedelta
from typing import List

from batchtrust.anomaly.rules.base import AnomalyRule
from batchtrust.models.anomaly import AnomalyFinding, AnomalySeverity, AnomalyType
from batchtrust.models.batch import Batch, BatchStatus
from batchtrust.timeutils import as_utc

# An expired batch in one of these states is no longer moving through
# the supply chain.
SETTLED_STATUSES = frozenset({BatchStatus.DELIVERED, BatchStatus.REJECTED, BatchStatus.RECALLED})


class ExpiryRule(AnomalyRule):

    def category(self) -> AnomalyType:
        return AnomalyType.EXPIRY

    def evaluate(self, batch: Batch, now: datetime) -> List[AnomalyFinding]:
        findings = []
        stage = batch.status.value

        if batch.exp_date is None:
            findings.append(AnomalyFinding(
                anomaly_type=AnomalyType.EXPIRY,
                severity=AnomalySeverity.MEDIUM,
                title="Expiry date missing",
                description="Batch has no expiry date on record",
                recommendation="Correct the batch record before further distribution",
                affected_stage=stage,
            ))
            return findings

        exp = as_utc(batch.exp_date)
        now = as_utc(now)

        if batch.mfg_date is not None and as_utc(batch.mfg_date) > exp:
            findings.append(AnomalyFinding(
                anomaly_type=AnomalyType.EXPIRY,
                severity=AnomalySeverity.CRITICAL,
                title="Impossible dates",
                description=(
                    f"Manufacturing date {batch.mfg_date.date().isoformat()} is after "
                    f"expiry date {batch.exp_date.date().isoformat()}"
                ),
                recommendation="Treat the batch as suspect and verify its origin",
                affected_stage=stage,
            ))

        if exp <= now:
            if batch.status not in SETTLED_STATUSES:
                findings.append(AnomalyFinding(
                    anomaly_type=AnomalyType.EXPIRY,
                    severity=AnomalySeverity.HIGH,
                    title="Expired batch in circulation",
                    description=f"Batch expired on {exp.date().isoformat()} but is still {stage}",
                    recommendation="Stop distribution and initiate a recall",
                    affected_stage=stage,
                ))
        elif exp - now <= timedelta(days=self.config.expiry_warning_days):
            days_left = (exp - now).days
            findings.append(AnomalyFinding(
                anomaly_type=AnomalyType.EXPIRY,
                severity=AnomalySeverity.MEDIUM,
                title="Expiring soon",
                description=f"Batch expires in {days_left} days on {exp.date().isoformat()}",
                recommendation="Prioritise dispensing or plan disposal",
                affected_stage=stage,
            ))

        return findings
