import itertools
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from batchtrust.anomaly.thresholds import HIGH_RISK_SCORE
from batchtrust.exceptions import AnomalyResultNotFound, InvalidReview
from batchtrust.models.anomaly import AnomalyDetectionOutput
from batchtrust.models.anomaly_result import StoredAnomalyResult


class AnomalyResultRepository(ABC):
    """
    Persistence for anomaly analyses. Kept apart from batch history:
    storing or reviewing a result never touches a batch or its hash.
    """

    @abstractmethod
    def store(
        self,
        batch_id: str,
        output: AnomalyDetectionOutput,
        analyzed_at: datetime,
        analyzed_by: str,
    ) -> StoredAnomalyResult:
        pass

    @abstractmethod
    def get(self, result_id: str) -> StoredAnomalyResult:
        """Raise AnomalyResultNotFound when absent."""

    @abstractmethod
    def list_for_batch(self, batch_id: str) -> List[StoredAnomalyResult]:
        """Newest first."""

    @abstractmethod
    def mark_reviewed(
        self,
        result_id: str,
        reviewed_by: str,
        reviewed_at: datetime,
        notes: Optional[str] = None,
    ) -> StoredAnomalyResult:
        pass

    @abstractmethod
    def high_risk(self, min_risk_score: int = HIGH_RISK_SCORE) -> List[StoredAnomalyResult]:
        """Anomalous results at or above the score, highest first."""


class InMemoryAnomalyResultRepository(AnomalyResultRepository):
    def __init__(self):
        self._results: Dict[str, StoredAnomalyResult] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def store(
        self,
        batch_id: str,
        output: AnomalyDetectionOutput,
        analyzed_at: datetime,
        analyzed_by: str,
    ) -> StoredAnomalyResult:
        with self._lock:
            result = StoredAnomalyResult.from_output(
                f"RES-{next(self._ids):06d}",
                batch_id,
                output,
                analyzed_at=analyzed_at,
                analyzed_by=analyzed_by,
            )
            self._results[result.result_id] = result
            return result

    def get(self, result_id: str) -> StoredAnomalyResult:
        with self._lock:
            result = self._results.get(result_id)
        if result is None:
            raise AnomalyResultNotFound(
                f"Anomaly result {result_id} not found",
                detail={"result_id": result_id},
            )
        return result

    def list_for_batch(self, batch_id: str) -> List[StoredAnomalyResult]:
        with self._lock:
            results = [r for r in self._results.values() if r.batch_id == batch_id]
        return sorted(results, key=lambda r: (r.analyzed_at, r.result_id), reverse=True)

    def mark_reviewed(
        self,
        result_id: str,
        reviewed_by: str,
        reviewed_at: datetime,
        notes: Optional[str] = None,
    ) -> StoredAnomalyResult:
        if not reviewed_by or not reviewed_by.strip():
            raise InvalidReview("A reviewer is required", detail={"result_id": result_id})

        with self._lock:
            result = self._results.get(result_id)
            if result is None:
                raise AnomalyResultNotFound(
                    f"Anomaly result {result_id} not found",
                    detail={"result_id": result_id},
                )
            reviewed = result.with_review(reviewed_by.strip(), reviewed_at, notes)
            self._results[result_id] = reviewed
            return reviewed

    def high_risk(self, min_risk_score: int = HIGH_RISK_SCORE) -> List[StoredAnomalyResult]:
        with self._lock:
            results = [
                r for r in self._results.values()
                if r.is_anomaly and r.risk_score >= min_risk_score
            ]
        return sorted(results, key=lambda r: (-r.risk_score, r.batch_id, r.result_id))
