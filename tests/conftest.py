from datetime import datetime, timedelta, timezone

import pytest

from batchtrust.audit.sink import InMemoryAuditSink
from batchtrust.authenticity.ledger import InMemoryLedger
from batchtrust.lifecycle.state_machine import BatchStateMachine
from batchtrust.models.batch import Batch, BatchDraft, BatchStatus, HistoryEvent
from batchtrust.storage.repository import InMemoryBatchRepository

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

LOCATIONS = {
    BatchStatus.PENDING: "Mumbai Plant",
    BatchStatus.APPROVED: "CDSCO Delhi",
    BatchStatus.IN_TRANSIT: "Mumbai Warehouse",
    BatchStatus.DELIVERED: "Apollo Pharmacy Pune",
    BatchStatus.FLAGGED: "Pune Checkpoint",
    BatchStatus.REJECTED: "CDSCO Delhi",
    BatchStatus.RECALLED: "CDSCO Delhi",
}


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def build_batch(
    statuses=(BatchStatus.PENDING,),
    start=None,
    step=timedelta(hours=24),
    **overrides,
) -> Batch:
    """
    Batch with one history event per status, `step` apart. By default the
    last event lands one hour before NOW.
    """
    statuses = [BatchStatus.parse(s) for s in statuses]
    if start is None:
        start = NOW - timedelta(hours=1) - step * max(len(statuses) - 1, 0)

    history = [
        HistoryEvent(
            location=LOCATIONS[status],
            status=status,
            timestamp=start + step * i,
            actor="actor@example",
        )
        for i, status in enumerate(statuses)
    ]
    fields = dict(
        batch_id="BATCH-001",
        drug_name="Amoxicillin 500mg",
        mfg_date=NOW - timedelta(days=30),
        exp_date=NOW + timedelta(days=700),
        quantity=5000,
        manufacturer="Sun Pharma",
        status=statuses[-1] if statuses else BatchStatus.PENDING,
        history=history,
        version=len(history),
    )
    fields.update(overrides)
    return Batch(**fields)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def repository():
    return InMemoryBatchRepository()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def state_machine(repository, ledger, audit_sink, clock):
    return BatchStateMachine(repository, ledger, audit_sink=audit_sink, clock=clock)


@pytest.fixture
def draft():
    return BatchDraft(
        batch_id="BATCH-001",
        drug_name="Amoxicillin 500mg",
        mfg_date=NOW - timedelta(days=30),
        exp_date=NOW + timedelta(days=700),
        quantity=5000,
        manufacturer="Sun Pharma",
    )


@pytest.fixture
def created(state_machine, draft):
    return state_machine.create_batch(draft, actor="manufacturer@sunpharma", location="Mumbai Plant")


@pytest.fixture
def make_batch():
    return build_batch


@pytest.fixture
def now():
    return NOW
