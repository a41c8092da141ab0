from typing import List, Optional

from batchtrust.anomaly.config import RuleConfig
from batchtrust.anomaly.rules.base import AnomalyRule
from batchtrust.anomaly.rules.expiry import ExpiryRule
from batchtrust.anomaly.rules.location import LocationRule
from batchtrust.anomaly.rules.pattern import PatternRule
from batchtrust.anomaly.rules.quantity import QuantityRule
from batchtrust.anomaly.rules.status_regression import StatusRegressionRule
from batchtrust.anomaly.rules.time_delay import TimeDelayRule

# Catalogue order also fixes the order of anomaly ids.
RULE_CLASSES = (
    TimeDelayRule,
    StatusRegressionRule,
    ExpiryRule,
    QuantityRule,
    LocationRule,
    PatternRule,
)


def build_rules(config: Optional[RuleConfig] = None) -> List[AnomalyRule]:
    config = config or RuleConfig()
    return [rule_class(config) for rule_class in RULE_CLASSES]
