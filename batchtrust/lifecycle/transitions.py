from typing import Dict, FrozenSet

from batchtrust.models.batch import BatchStatus, TERMINAL_STATUSES

# Flagged -> restore is resolved at runtime (see restored_status), so the
# table only lists Recalled for it.
ALLOWED_TRANSITIONS: Dict[BatchStatus, FrozenSet[BatchStatus]] = {
    BatchStatus.PENDING: frozenset({BatchStatus.APPROVED, BatchStatus.REJECTED, BatchStatus.RECALLED}),
    BatchStatus.APPROVED: frozenset({BatchStatus.IN_TRANSIT, BatchStatus.FLAGGED, BatchStatus.RECALLED}),
    BatchStatus.IN_TRANSIT: frozenset({BatchStatus.DELIVERED, BatchStatus.FLAGGED, BatchStatus.RECALLED}),
    BatchStatus.DELIVERED: frozenset({BatchStatus.RECALLED}),
    BatchStatus.FLAGGED: frozenset({BatchStatus.RECALLED}),
    BatchStatus.REJECTED: frozenset(),
    BatchStatus.RECALLED: frozenset(),
}

REASON_REQUIRED: FrozenSet[BatchStatus] = frozenset({BatchStatus.RECALLED})

RESTORABLE_STATUSES: FrozenSet[BatchStatus] = frozenset({BatchStatus.APPROVED, BatchStatus.IN_TRANSIT})

DEFAULT_RESTORE_STATUS = BatchStatus.IN_TRANSIT

# Canonical forward order used by regression detection. Statuses outside
# the order (Flagged, Rejected, Recalled) never count as regressions.
LIFECYCLE_ORDER: Dict[BatchStatus, int] = {
    BatchStatus.PENDING: 0,
    BatchStatus.APPROVED: 1,
    BatchStatus.IN_TRANSIT: 2,
    BatchStatus.DELIVERED: 3,
}


def is_terminal(status: BatchStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_targets(status: BatchStatus) -> FrozenSet[BatchStatus]:
    return ALLOWED_TRANSITIONS.get(status, frozenset())


def restored_status(history) -> BatchStatus:
    """
    Status a flagged batch returns to: the most recent non-Flagged status in
    history if it is Approved or In-Transit, otherwise In-Transit.
    """
    for event in reversed(history):
        if event.status == BatchStatus.FLAGGED:
            continue
        if event.status in RESTORABLE_STATUSES:
            return event.status
        return DEFAULT_RESTORE_STATUS
    return DEFAULT_RESTORE_STATUS
