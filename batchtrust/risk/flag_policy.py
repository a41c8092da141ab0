import logging
from typing import Optional

from batchtrust.lifecycle.transitions import allowed_targets
from batchtrust.models.anomaly import AnomalyDetectionOutput, AnomalySeverity
from batchtrust.models.batch import Batch, BatchStatus
from batchtrust.models.transition import TransitionResult

logger = logging.getLogger("batchtrust.risk")


class FlagPolicy:
    """
    Explicit policy for turning detections into a Flagged status.

    Detection alone never changes status. Calling `apply` is the
    deliberate step that does, through the state machine.
    """

    def __init__(self, high_threshold: int = 2):
        self.high_threshold = high_threshold

    def should_flag(self, batch: Batch, output: AnomalyDetectionOutput) -> bool:
        if BatchStatus.FLAGGED not in allowed_targets(batch.status):
            return False
        severities = [a.severity for a in output.anomalies]
        if AnomalySeverity.CRITICAL in severities:
            return True
        return severities.count(AnomalySeverity.HIGH) >= self.high_threshold

    def apply(
        self,
        state_machine,
        batch: Batch,
        output: AnomalyDetectionOutput,
        actor: str,
        location: Optional[str] = None,
    ) -> Optional[TransitionResult]:
        if not self.should_flag(batch, output):
            return None

        worst = [a for a in output.anomalies if a.severity in (AnomalySeverity.CRITICAL, AnomalySeverity.HIGH)]
        reason = "Auto-flagged: " + "; ".join(a.title for a in worst)
        if location is None:
            latest = batch.latest_event
            location = latest.location if latest else "unknown"

        logger.info(f"Flag policy flagging {batch.batch_id} (risk {output.risk_score})")
        return state_machine.flag(batch, actor, location, reason=reason)
