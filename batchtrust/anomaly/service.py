import logging
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from batchtrust.anomaly.detector import AnomalyDetector, get_detector
from batchtrust.anomaly.thresholds import HIGH_RISK_SCORE
from batchtrust.models.anomaly import AnomalyDetectionOutput, BatchAnalysisOutput
from batchtrust.models.anomaly_result import StoredAnomalyResult
from batchtrust.models.batch import Batch
from batchtrust.risk.aggregator import high_risk_batches
from batchtrust.risk.scoring import compute_risk_score
from batchtrust.storage.anomaly_results import AnomalyResultRepository, InMemoryAnomalyResultRepository
from batchtrust.timeutils import as_utc, utcnow

logger = logging.getLogger("batchtrust.anomaly")


class AnomalyService:
    """
    Runs the configured detector and keeps its results for regulator review.

    Results live in their own repository. Nothing here changes a batch:
    flagging is FlagPolicy's job.
    """

    def __init__(
        self,
        detector: Optional[AnomalyDetector] = None,
        results: Optional[AnomalyResultRepository] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.detector = detector or get_detector()
        self.results = results or InMemoryAnomalyResultRepository()
        self.clock = clock

    def analyze_batch(
        self,
        batch: Batch,
        now: Optional[datetime] = None,
    ) -> Tuple[AnomalyDetectionOutput, Optional[StoredAnomalyResult]]:
        now = as_utc(now or self.clock())
        output = self.detector.detect(batch, now)
        return output, self._store(batch.batch_id, output, now)

    def analyze_fleet(
        self,
        batches: Iterable[Batch],
        now: Optional[datetime] = None,
    ) -> Tuple[BatchAnalysisOutput, List[StoredAnomalyResult]]:
        """
        Fleet analysis. One result is stored per batch with anomalies,
        built from that batch's share of the deduplicated fleet list.
        """
        now = as_utc(now or self.clock())
        analysis = self.detector.detect_fleet(batches, now)

        by_batch = OrderedDict()
        for record in analysis.anomalies:
            by_batch.setdefault(record.batch_id, []).append(record)

        stored = []
        for batch_id, records in by_batch.items():
            output = AnomalyDetectionOutput(
                is_anomaly=True,
                anomalies=records,
                risk_score=compute_risk_score(r.severity for r in records),
                notes=f"Fleet analysis: {len(records)} anomalies for {batch_id}.",
            )
            result = self._store(batch_id, output, now)
            if result is not None:
                stored.append(result)

        logger.info(f"Stored {len(stored)} fleet results")
        return analysis, stored

    def high_risk_queue(
        self,
        batches: Iterable[Batch],
        min_risk_score: int = HIGH_RISK_SCORE,
        now: Optional[datetime] = None,
    ) -> List[Tuple[Batch, AnomalyDetectionOutput]]:
        batches = list(batches)
        outputs = self.detector.detect_all(batches, as_utc(now or self.clock()))
        return high_risk_batches(zip(batches, outputs), min_risk_score=min_risk_score)

    def results_for(self, batch_id: str) -> List[StoredAnomalyResult]:
        return self.results.list_for_batch(batch_id)

    def mark_reviewed(self, result_id: str, reviewed_by: str, notes: Optional[str] = None) -> StoredAnomalyResult:
        reviewed = self.results.mark_reviewed(result_id, reviewed_by, self.clock(), notes)
        logger.info(f"Anomaly result {result_id} reviewed by {reviewed.reviewed_by}")
        return reviewed

    def _store(self, batch_id: str, output: AnomalyDetectionOutput, now: datetime) -> Optional[StoredAnomalyResult]:
        try:
            return self.results.store(batch_id, output, analyzed_at=now, analyzed_by=self.detector.name)
        except Exception as e:
            logger.error(f"Failed to store anomaly result for {batch_id}: {type(e).__name__}")
            return None
