from datetime import datetime
from typing import List

from batchtrust.anomaly.rules.base import AnomalyRule
from batchtrust.anomaly.rules.utils.history import well_formed
from batchtrust.models.anomaly import AnomalyFinding, AnomalySeverity, AnomalyType
from batchtrust.models.batch import Batch
from batchtrust.timeutils import hours_between


class LocationRule(AnomalyRule):
    """
    Unknown or blank locations are always reported. Travel time and route
    checks only run when RuleConfig carries the reference data.
    """

    def category(self) -> AnomalyType:
        return AnomalyType.LOCATION

    def evaluate(self, batch: Batch, now: datetime) -> List[AnomalyFinding]:
        findings = []
        history = well_formed(batch.history)

        for event in history:
            location = event.location or ""
            if not location.strip() or "unknown" in location.lower():
                findings.append(AnomalyFinding(
                    anomaly_type=AnomalyType.LOCATION,
                    severity=AnomalySeverity.MEDIUM,
                    title="Unknown location",
                    description=f"{event.status.value} event recorded at {location or 'no location'!r}",
                    recommendation="Obtain the actual custody location from the handler",
                    affected_stage=event.status.value,
                    observed_at=event.timestamp,
                ))

        for previous, current in zip(history, history[1:]):
            if not previous.location or not current.location:
                continue
            minimum = self.config.min_travel_hours(previous.location, current.location)
            if minimum is None or previous.location.strip().lower() == current.location.strip().lower():
                continue
            elapsed = hours_between(previous.timestamp, current.timestamp)
            if elapsed < minimum:
                findings.append(AnomalyFinding(
                    anomaly_type=AnomalyType.LOCATION,
                    severity=AnomalySeverity.HIGH,
                    title="Impossible travel time",
                    description=(
                        f"{previous.location} to {current.location} in {elapsed:.1f}h "
                        f"(minimum {minimum:.1f}h)"
                    ),
                    recommendation="Check for cloned batch codes or falsified custody records",
                    affected_stage=current.status.value,
                    observed_at=current.timestamp,
                ))

        if self.config.route_allowlist is not None:
            for event in history:
                if event.location and event.location.strip() and not self.config.is_on_route(event.location):
                    findings.append(AnomalyFinding(
                        anomaly_type=AnomalyType.LOCATION,
                        severity=AnomalySeverity.MEDIUM,
                        title="Off-route location",
                        description=f"{event.status.value} event at {event.location}, outside the expected route",
                        recommendation="Confirm the diversion with the distributor",
                        affected_stage=event.status.value,
                        observed_at=event.timestamp,
                    ))

        return findings
