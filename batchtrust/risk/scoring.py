from typing import Iterable

from batchtrust.models.anomaly import AnomalySeverity
from batchtrust.risk.severity import severity_to_weight

CRITICAL_FLOOR = 90
NON_CRITICAL_CAP = 89
MAX_SCORE = 100


def compute_risk_score(severities: Iterable[AnomalySeverity]) -> int:
    """
    Overall 0-100 risk for one batch.

    0 with no anomalies. Any critical anomaly puts the score at 90 or
    above; without one the score grows with count and severity but never
    passes 89. Adding an anomaly never lowers the score.
    """
    severities = list(severities)
    if not severities:
        return 0

    criticals = sum(1 for s in severities if s == AnomalySeverity.CRITICAL)
    others = sum(severity_to_weight(s) for s in severities if s != AnomalySeverity.CRITICAL)

    if criticals:
        bonus = (criticals - 1) * 5 + others // 10
        return min(MAX_SCORE, CRITICAL_FLOOR + bonus)

    return min(NON_CRITICAL_CAP, others)
