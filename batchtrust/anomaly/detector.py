from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Type

from batchtrust.anomaly.engine import AnomalyRuleEngine
from batchtrust.models.anomaly import AnomalyDetectionOutput, BatchAnalysisOutput
from batchtrust.models.batch import Batch
from batchtrust.version_registry import DETECTOR_VERSIONS


class AnomalyDetector(ABC):
    """
    Detection strategy. The rule catalogue is the reference implementation;
    other detectors must return the same output shapes.
    """
    name: str = "abstract"

    @property
    def version(self) -> str:
        return DETECTOR_VERSIONS.get(self.name, "unknown")

    @abstractmethod
    def detect(self, batch: Batch, now: Optional[datetime] = None) -> AnomalyDetectionOutput:
        pass

    @abstractmethod
    def detect_all(self, batches: Iterable[Batch], now: Optional[datetime] = None) -> List[AnomalyDetectionOutput]:
        """Per-batch outputs in input order."""

    @abstractmethod
    def detect_fleet(self, batches: Iterable[Batch], now: Optional[datetime] = None) -> BatchAnalysisOutput:
        pass


class RuleBasedDetector(AnomalyDetector):
    name = "rules"

    def __init__(self, engine: Optional[AnomalyRuleEngine] = None, **engine_kwargs):
        self.engine = engine or AnomalyRuleEngine(**engine_kwargs)

    def detect(self, batch: Batch, now: Optional[datetime] = None) -> AnomalyDetectionOutput:
        return self.engine.evaluate(batch, now)

    def detect_all(self, batches: Iterable[Batch], now: Optional[datetime] = None) -> List[AnomalyDetectionOutput]:
        return self.engine.evaluate_all(batches, now)

    def detect_fleet(self, batches: Iterable[Batch], now: Optional[datetime] = None) -> BatchAnalysisOutput:
        return self.engine.evaluate_fleet(batches, now)


_DETECTORS: Dict[str, Type[AnomalyDetector]] = {
    RuleBasedDetector.name: RuleBasedDetector,
}


def get_detector(name: str = "rules", **kwargs) -> AnomalyDetector:
    try:
        detector_class = _DETECTORS[name]
    except KeyError:
        raise ValueError(f"Unknown anomaly detector: {name!r}. Available: {sorted(_DETECTORS)}")
    return detector_class(**kwargs)
