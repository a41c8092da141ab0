from datetime import datetime
from typing import List

from batchtrust.models.batch import BatchStatus, HistoryEvent


def missing_fields(event) -> List[str]:
    """Fields a history event needs before rules can reason about it."""
    missing = []
    if not isinstance(getattr(event, "timestamp", None), datetime):
        missing.append("timestamp")
    if not isinstance(getattr(event, "status", None), BatchStatus):
        missing.append("status")
    if not isinstance(getattr(event, "location", None), str):
        missing.append("location")
    return missing


def well_formed(history) -> List[HistoryEvent]:
    # Malformed events are reported once by PatternRule; every other rule skips them.
    return [event for event in (history or []) if not missing_fields(event)]
