from datetime import datetime
from typing import List

from batchtrust.anomaly.rules.base import AnomalyRule
from batchtrust.anomaly.rules.utils.history import well_formed
from batchtrust.models.anomaly import AnomalyFinding, AnomalySeverity, AnomalyType
from batchtrust.models.batch import Batch, BatchStatus
from batchtrust.timeutils import hours_between


class TimeDelayRule(AnomalyRule):
    """
    Flags batches that sit too long in one stage and unusually long gaps
    between custody events.
    """

    def category(self) -> AnomalyType:
        return AnomalyType.TIME_DELAY

    def evaluate(self, batch: Batch, now: datetime) -> List[AnomalyFinding]:
        findings = []
        history = well_formed(batch.history)
        latest = history[-1] if history else None

        if latest is not None and batch.status == BatchStatus.PENDING:
            held = hours_between(latest.timestamp, now)
            limit = self.config.pending_max_hours
            if held > limit:
                severity = (
                    AnomalySeverity.HIGH
                    if held > limit * self.config.pending_high_multiplier
                    else AnomalySeverity.MEDIUM
                )
                findings.append(AnomalyFinding(
                    anomaly_type=AnomalyType.TIME_DELAY,
                    severity=severity,
                    title="Approval overdue",
                    description=f"Batch has been Pending for {held:.0f}h (limit {limit:.0f}h)",
                    recommendation="Escalate to the regulator for an approval decision",
                    affected_stage=BatchStatus.PENDING.value,
                    observed_at=latest.timestamp,
                ))

        if latest is not None and batch.status == BatchStatus.IN_TRANSIT:
            idle = hours_between(latest.timestamp, now)
            limit = self.config.in_transit_max_hours
            if idle > limit:
                findings.append(AnomalyFinding(
                    anomaly_type=AnomalyType.TIME_DELAY,
                    severity=AnomalySeverity.HIGH,
                    title="Shipment stalled",
                    description=f"No custody update for {idle:.0f}h while In-Transit (limit {limit:.0f}h)",
                    recommendation="Contact the distributor and confirm the shipment location",
                    affected_stage=BatchStatus.IN_TRANSIT.value,
                    observed_at=latest.timestamp,
                ))

        for previous, current in zip(history, history[1:]):
            gap = hours_between(previous.timestamp, current.timestamp)
            if gap > self.config.event_gap_max_hours:
                findings.append(AnomalyFinding(
                    anomaly_type=AnomalyType.TIME_DELAY,
                    severity=AnomalySeverity.MEDIUM,
                    title="Gap in custody history",
                    description=(
                        f"{gap:.0f}h between {previous.status.value} and "
                        f"{current.status.value} events"
                    ),
                    recommendation="Review custody records for the unaccounted period",
                    affected_stage=current.status.value,
                    observed_at=current.timestamp,
                ))

        return findings
