import logging
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

from batchtrust.anomaly.config import RuleConfig
from batchtrust.anomaly.rules.base import AnomalyRule
from batchtrust.anomaly.rules.catalogue import build_rules
from batchtrust.audit.sink import AuditSink, NullAuditSink
from batchtrust.models.anomaly import (
    AnomalyDetectionOutput,
    AnomalyFinding,
    AnomalyRecord,
    AnomalySeverity,
    BatchAnalysisOutput,
)
from batchtrust.models.audit_event import AuditEvent
from batchtrust.models.batch import Batch
from batchtrust.risk.aggregator import aggregate_fleet
from batchtrust.risk.scoring import compute_risk_score
from batchtrust.telemetry import emit_evaluation_telemetry, emit_exception_telemetry
from batchtrust.timeutils import as_utc, utcnow

logger = logging.getLogger("batchtrust.anomaly")

DEFAULT_FLEET_WORKERS = 8


def safe_default_output(reason: str) -> AnomalyDetectionOutput:
    return AnomalyDetectionOutput(
        is_anomaly=False,
        anomalies=[],
        risk_score=0,
        notes=f"Anomaly evaluation could not be completed: {reason}. Manual review recommended.",
    )


class AnomalyRuleEngine:
    """
    Runs the deterministic rule catalogue over batches.

    Evaluation never mutates a batch and never raises: a failing rule is
    logged and skipped, and a failure outside the rules returns the safe
    default output.
    """

    def __init__(
        self,
        config: Optional[RuleConfig] = None,
        rules: Optional[List[AnomalyRule]] = None,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
        max_workers: int = DEFAULT_FLEET_WORKERS,
    ):
        self.config = config or RuleConfig()
        self.rules = rules if rules is not None else build_rules(self.config)
        self.audit_sink = audit_sink or NullAuditSink()
        self.clock = clock
        self.max_workers = max_workers

    # ------------------------------------------------------------------
    # Single batch
    # ------------------------------------------------------------------
    def evaluate(self, batch: Batch, now: Optional[datetime] = None) -> AnomalyDetectionOutput:
        start = time.perf_counter()
        output = self._evaluate(batch, now)
        latency_ms = int((time.perf_counter() - start) * 1000)
        emit_evaluation_telemetry(
            evaluation_latency_ms=latency_ms,
            risk_score=output.risk_score,
            anomaly_count=len(output.anomalies),
            mode="single",
        )
        return output

    def _evaluate(self, batch: Batch, now: Optional[datetime]) -> AnomalyDetectionOutput:
        batch_id = getattr(batch, "batch_id", None)
        try:
            now = as_utc(now or self.clock())
            findings: List[AnomalyFinding] = []
            failed: List[str] = []
            for rule in self.rules:
                result = self._safe_run(rule, batch, now)
                if result is None:
                    failed.append(type(rule).__name__)
                else:
                    findings.extend(result)

            records = self._to_records(str(batch_id), findings, now)
            output = AnomalyDetectionOutput(
                is_anomaly=bool(records),
                anomalies=records,
                risk_score=compute_risk_score(r.severity for r in records),
                notes=self._notes(records, failed),
            )
        except Exception as e:
            logger.error(f"Anomaly evaluation failed for {batch_id}: {type(e).__name__}")
            emit_exception_telemetry(e)
            return safe_default_output(type(e).__name__)

        if records:
            logger.info(f"Batch {batch_id}: {len(records)} anomalies, risk {output.risk_score}")
        for record in records:
            self._emit(AuditEvent(
                event_type="anomaly.detected",
                batch_id=record.batch_id,
                timestamp=record.detected_at,
                metadata={
                    "anomalyId": record.anomaly_id,
                    "type": record.anomaly_type.value,
                    "severity": record.severity.value,
                },
            ))
        return output

    def _safe_run(self, rule: AnomalyRule, batch: Batch, now: datetime) -> Optional[List[AnomalyFinding]]:
        """None marks a rule that failed and was skipped."""
        try:
            return rule.evaluate(batch, now)
        except Exception as e:
            logger.warning(f"Rule {type(rule).__name__} failed: {type(e).__name__}: {e}")
            return None

    @staticmethod
    def _to_records(batch_id: str, findings: Sequence[AnomalyFinding], now: datetime) -> List[AnomalyRecord]:
        counters = defaultdict(int)
        records = []
        for finding in findings:
            counters[finding.anomaly_type] += 1
            records.append(AnomalyRecord(
                anomaly_id=f"ANM-{batch_id}-{finding.anomaly_type.value}-{counters[finding.anomaly_type]}",
                batch_id=batch_id,
                anomaly_type=finding.anomaly_type,
                severity=finding.severity,
                confidence=finding.confidence,
                title=finding.title,
                description=finding.description,
                recommendation=finding.recommendation,
                detected_at=now,
                affected_stage=finding.affected_stage,
                observed_at=finding.observed_at,
            ))
        return records

    @staticmethod
    def _notes(records: Sequence[AnomalyRecord], failed: Sequence[str] = ()) -> str:
        partial = (
            f" Evaluation was partial: {', '.join(failed)} could not run. Manual review recommended."
            if failed else ""
        )
        if not records:
            if failed:
                return f"No anomalies detected by the rules that ran.{partial}"
            return "No anomalies detected. Batch history is consistent with the expected lifecycle."
        counts = {s: 0 for s in AnomalySeverity}
        for r in records:
            counts[r.severity] += 1
        worst = max(records, key=lambda r: r.severity.rank)
        breakdown = ", ".join(
            f"{counts[s]} {s.value}"
            for s in (AnomalySeverity.CRITICAL, AnomalySeverity.HIGH, AnomalySeverity.MEDIUM, AnomalySeverity.LOW)
            if counts[s]
        )
        return f"{len(records)} anomalies detected ({breakdown}). Most severe: {worst.title}.{partial}"

    def _emit(self, event: AuditEvent) -> None:
        try:
            self.audit_sink.emit(event)
        except Exception as e:
            logger.error(f"Audit sink failed for {event.event_type}: {type(e).__name__}")

    # ------------------------------------------------------------------
    # Fleet
    # ------------------------------------------------------------------
    def evaluate_all(self, batches: Iterable[Batch], now: Optional[datetime] = None) -> List[AnomalyDetectionOutput]:
        """
        Per-batch outputs in input order. Batches are evaluated in parallel;
        every batch sees the same `now`.
        """
        batches = list(batches)
        now = as_utc(now or self.clock())
        if not batches:
            return []
        workers = max(1, min(self.max_workers, len(batches)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="anomaly") as executor:
            return list(executor.map(lambda b: self._evaluate(b, now), batches))

    def evaluate_fleet(self, batches: Iterable[Batch], now: Optional[datetime] = None) -> BatchAnalysisOutput:
        start = time.perf_counter()
        batches = list(batches)
        try:
            outputs = self.evaluate_all(batches, now)
            analysis = aggregate_fleet(outputs, total_batches=len(batches))
        except Exception as e:
            logger.error(f"Fleet evaluation failed: {type(e).__name__}")
            emit_exception_telemetry(e)
            return BatchAnalysisOutput(
                total_batches=len(batches),
                batches_with_anomalies=0,
                critical_count=0,
                high_count=0,
                medium_count=0,
                low_count=0,
                summary="Fleet analysis could not be completed. Manual review recommended.",
            )

        latency_ms = int((time.perf_counter() - start) * 1000)
        top_score = max((o.risk_score for o in outputs), default=0)
        emit_evaluation_telemetry(
            evaluation_latency_ms=latency_ms,
            risk_score=top_score,
            anomaly_count=len(analysis.anomalies),
            mode="fleet",
        )
        logger.info(f"Fleet of {len(batches)}: {analysis.batches_with_anomalies} with anomalies")
        return analysis
