from datetime import datetime
from typing import List

from batchtrust.anomaly.rules.base import AnomalyRule
from batchtrust.anomaly.rules.utils.history import well_formed
from batchtrust.lifecycle.transitions import LIFECYCLE_ORDER
from batchtrust.models.anomaly import AnomalyFinding, AnomalySeverity, AnomalyType
from batchtrust.models.batch import Batch, BatchStatus


class StatusRegressionRule(AnomalyRule):
    """
    Walks consecutive history events and reports steps that go backwards
    in the lifecycle or skip approval and shipping entirely.
    """

    def category(self) -> AnomalyType:
        return AnomalyType.STATUS_REGRESSION

    def evaluate(self, batch: Batch, now: datetime) -> List[AnomalyFinding]:
        findings = []
        history = well_formed(batch.history)

        for previous, current in zip(history, history[1:]):
            source, target = previous.status, current.status
            if source not in LIFECYCLE_ORDER or target not in LIFECYCLE_ORDER:
                continue

            step = f"{source.value} -> {target.value}"
            if source == BatchStatus.APPROVED and target == BatchStatus.PENDING:
                findings.append(self._finding(
                    AnomalySeverity.HIGH,
                    "Approval reverted",
                    f"Status reverted {step} after approval",
                    "Confirm whether the approval was withdrawn and by whom",
                    current,
                ))
            elif LIFECYCLE_ORDER[target] < LIFECYCLE_ORDER[source]:
                findings.append(self._finding(
                    AnomalySeverity.CRITICAL,
                    "Status regression",
                    f"Status moved backwards {step}",
                    "Quarantine the batch and audit every custody handoff",
                    current,
                ))
            elif source == BatchStatus.PENDING and target == BatchStatus.DELIVERED:
                findings.append(self._finding(
                    AnomalySeverity.HIGH,
                    "Lifecycle skipped",
                    f"Batch went {step} without approval or shipment",
                    "Verify the batch was approved before it reached the recipient",
                    current,
                ))

        return findings

    @staticmethod
    def _finding(severity, title, description, recommendation, event) -> AnomalyFinding:
        return AnomalyFinding(
            anomaly_type=AnomalyType.STATUS_REGRESSION,
            severity=severity,
            title=title,
            description=description,
            recommendation=recommendation,
            affected_stage=event.status.value,
            observed_at=event.timestamp,
        )
