from batchtrust.models.anomaly import AnomalySeverity


SEVERITY_WEIGHTS = {
    AnomalySeverity.CRITICAL: 40,
    AnomalySeverity.HIGH: 25,
    AnomalySeverity.MEDIUM: 10,
    AnomalySeverity.LOW: 3,
}


def severity_to_weight(severity: AnomalySeverity) -> int:
    """
    Convert an anomaly severity to a deterministic numeric weight.
    """
    if severity not in SEVERITY_WEIGHTS:
        raise ValueError(f"Unknown severity: {severity}")

    return SEVERITY_WEIGHTS[severity]
