from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from batchtrust.anomaly.config import RuleConfig
from batchtrust.models.anomaly import AnomalyFinding, AnomalyType
from batchtrust.models.batch import Batch


class AnomalyRule(ABC):
    """
    Base class for all deterministic anomaly rules.

    Rules read the batch only. Missing fields are something to report
    or skip, never a reason to raise.
    """

    def __init__(self, config: Optional[RuleConfig] = None):
        self.config = config or RuleConfig()

    @abstractmethod
    def category(self) -> AnomalyType:
        """Return the anomaly type this rule reports."""
        pass

    @abstractmethod
    def evaluate(self, batch: Batch, now: datetime) -> List[AnomalyFinding]:
        """
        Evaluate a batch and return zero or more findings.
        """
        pass

