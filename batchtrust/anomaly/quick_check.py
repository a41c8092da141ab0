from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from batchtrust.anomaly.config import RuleConfig
from batchtrust.anomaly.rules.utils.history import missing_fields, well_formed
from batchtrust.models.batch import Batch, BatchStatus
from batchtrust.timeutils import as_utc, hours_between


def quick_check(batch: Batch, now: datetime, config: Optional[RuleConfig] = None) -> Tuple[bool, List[str]]:
    """
    Cheap pre-check for real-time monitoring.

    Returns (has_issues, issues) as short human-readable strings. It is a
    hint for whether to run the full engine, not a substitute for it.
    """
    config = config or RuleConfig()
    now = as_utc(now)
    issues: List[str] = []

    if batch.exp_date is not None:
        exp = as_utc(batch.exp_date)
        if exp <= now:
            issues.append("Batch has expired")
        elif exp - now <= timedelta(days=config.expiry_warning_days):
            issues.append(f"Batch expires within {config.expiry_warning_days} days")

    raw_history = batch.history or []
    history = well_formed(raw_history)
    if not raw_history:
        issues.append("No supply chain history recorded")
    elif any(missing_fields(event) for event in raw_history):
        issues.append("Incomplete supply chain history")
    if history:
        latest = history[-1]
        if batch.status == BatchStatus.PENDING and hours_between(latest.timestamp, now) > config.pending_max_hours:
            issues.append("Batch pending approval for too long")

        for previous, current in zip(history, history[1:]):
            if hours_between(previous.timestamp, current.timestamp) > config.in_transit_max_hours:
                issues.append("Unusual delay detected in supply chain")
                break

    if batch.quantity is None or (isinstance(batch.quantity, int) and batch.quantity <= 0):
        issues.append("Invalid quantity")

    return bool(issues), issues
