from typing import Dict, Iterable, List, Sequence, Tuple

from batchtrust.timeutils import as_utc
from batchtrust.anomaly.thresholds import HIGH_RISK_SCORE, TOP_RISKS_LIMIT
from batchtrust.models.anomaly import (
    AnomalyDetectionOutput,
    AnomalyRecord,
    AnomalySeverity,
    BatchAnalysisOutput,
)

NOTIFY_SEVERITIES = frozenset({AnomalySeverity.CRITICAL, AnomalySeverity.HIGH})


def _ordering_key(record: AnomalyRecord):
    # Severity desc, most recent first, id as the final tie-breaker.
    return (-record.severity.rank, -as_utc(record.recency).timestamp(), record.anomaly_id)


def dedupe_anomalies(records: Iterable[AnomalyRecord]) -> List[AnomalyRecord]:
    """
    One record per (batch id, type, description), keeping the most severe.
    """
    kept: Dict[Tuple[str, str, str], AnomalyRecord] = {}
    for record in records:
        key = (record.batch_id, record.anomaly_type.value, record.description)
        current = kept.get(key)
        if current is None or _ordering_key(record) < _ordering_key(current):
            kept[key] = record
    return list(kept.values())


def order_anomalies(records: Iterable[AnomalyRecord]) -> List[AnomalyRecord]:
    return sorted(records, key=_ordering_key)


def aggregate_fleet(outputs: Sequence[AnomalyDetectionOutput], total_batches: int) -> BatchAnalysisOutput:
    anomalies = order_anomalies(dedupe_anomalies(
        record for output in outputs for record in output.anomalies
    ))

    counts = {s: 0 for s in AnomalySeverity}
    for record in anomalies:
        counts[record.severity] += 1

    affected = len({record.batch_id for record in anomalies})
    top_risks = [
        f"{r.batch_id}: {r.title} ({r.severity.value})"
        for r in anomalies[:TOP_RISKS_LIMIT]
    ]

    return BatchAnalysisOutput(
        total_batches=total_batches,
        batches_with_anomalies=affected,
        critical_count=counts[AnomalySeverity.CRITICAL],
        high_count=counts[AnomalySeverity.HIGH],
        medium_count=counts[AnomalySeverity.MEDIUM],
        low_count=counts[AnomalySeverity.LOW],
        anomalies=anomalies,
        top_risks=top_risks,
        summary=_summary(total_batches, affected, counts),
    )


def _summary(total: int, affected: int, counts) -> str:
    if total == 0:
        return "No batches to analyse."
    if affected == 0:
        return f"Analysed {total} batches. No anomalies detected."
    summary = (
        f"Analysed {total} batches: {affected} with anomalies "
        f"({counts[AnomalySeverity.CRITICAL]} critical, {counts[AnomalySeverity.HIGH]} high, "
        f"{counts[AnomalySeverity.MEDIUM]} medium, {counts[AnomalySeverity.LOW]} low)."
    )
    if counts[AnomalySeverity.CRITICAL]:
        summary += " Critical issues require immediate regulator attention."
    return summary


def notification_candidates(analysis: BatchAnalysisOutput) -> List[AnomalyRecord]:
    """
    Critical and high anomalies worth notifying someone about.
    Never changes any batch status.
    """
    return [r for r in analysis.anomalies if r.severity in NOTIFY_SEVERITIES]


def high_risk_batches(results: Iterable[Tuple[object, AnomalyDetectionOutput]], min_risk_score: int = HIGH_RISK_SCORE):
    """
    (batch, output) pairs at or above `min_risk_score`, riskiest first.
    """
    selected = [(batch, output) for batch, output in results if output.risk_score >= min_risk_score]
    return sorted(selected, key=lambda pair: (-pair[1].risk_score, str(getattr(pair[0], "batch_id", ""))))
