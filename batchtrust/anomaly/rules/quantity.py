from datetime import datetime
from typing import List

from batchtrust.anomaly.rules.base import AnomalyRule
from batchtrust.models.anomaly import AnomalyFinding, AnomalySeverity, AnomalyType
from batchtrust.models.batch import Batch


class QuantityRule(AnomalyRule):

    def category(self) -> AnomalyType:
        return AnomalyType.QUANTITY

    def evaluate(self, batch: Batch, now: datetime) -> List[AnomalyFinding]:
        quantity = batch.quantity
        stage = batch.status.value

        if quantity is None or isinstance(quantity, bool) or not isinstance(quantity, int):
            return [AnomalyFinding(
                anomaly_type=AnomalyType.QUANTITY,
                severity=AnomalySeverity.CRITICAL,
                title="Invalid quantity",
                description=f"Quantity {quantity!r} is not a whole number of units",
                recommendation="Correct the batch record and re-verify with the manufacturer",
                affected_stage=stage,
            )]

        if quantity <= 0:
            return [AnomalyFinding(
                anomaly_type=AnomalyType.QUANTITY,
                severity=AnomalySeverity.CRITICAL,
                title="Non-positive quantity",
                description=f"Quantity is {quantity}",
                recommendation="Correct the batch record and re-verify with the manufacturer",
                affected_stage=stage,
            )]

        if quantity > self.config.max_quantity:
            return [AnomalyFinding(
                anomaly_type=AnomalyType.QUANTITY,
                severity=AnomalySeverity.MEDIUM,
                title="Unusually large batch",
                description=f"Quantity {quantity} exceeds {self.config.max_quantity}",
                recommendation="Confirm the production volume with the manufacturer",
                affected_stage=stage,
            )]

        return []
