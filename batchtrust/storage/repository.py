import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from batchtrust.exceptions import BatchNotFound, Conflict, DuplicateBatch
from batchtrust.models.batch import Batch, BatchStatus, HistoryEvent


@dataclass(frozen=True)
class AppendResult:
    batch: Batch
    appended: bool


class BatchRepository(ABC):
    """
    Persistence boundary for batches and their append-only history.

    There is no update or delete: the only mutation after `add` is
    `append_event`, guarded by compare-and-swap on `Batch.version`.
    """

    @abstractmethod
    def get(self, batch_id: str) -> Batch:
        """Raise BatchNotFound when absent."""

    @abstractmethod
    def add(self, batch: Batch) -> Batch:
        """Raise DuplicateBatch when the id exists."""

    @abstractmethod
    def append_event(
        self,
        batch_id: str,
        expected_version: int,
        event: HistoryEvent,
        new_status: BatchStatus,
        prior_status: Optional[BatchStatus],
    ) -> AppendResult:
        """
        Append `event` iff the stored version equals `expected_version`.

        Raise Conflict otherwise. A write is a retry when `event` matches the
        stored latest event on (batch_id, status, timestamp) and the stored
        version is exactly one past `expected_version`: return the stored
        batch with `appended=False` instead of appending twice.
        """

    @abstractmethod
    def list(self) -> List[Batch]:
        pass

    def is_retry(self, stored: Batch, expected_version: int, event: HistoryEvent) -> bool:
        latest = stored.latest_event
        if latest is None or stored.version != expected_version + 1:
            return False
        return latest.dedup_key(stored.batch_id) == event.dedup_key(stored.batch_id)


class InMemoryBatchRepository(BatchRepository):
    """
    Thread-safe in-process store. Returned batches are copies, so callers
    can never mutate stored history.
    """

    def __init__(self):
        self._batches: Dict[str, Batch] = {}
        self._lock = threading.Lock()

    def get(self, batch_id: str) -> Batch:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                raise BatchNotFound(f"Batch {batch_id} not found", detail={"batch_id": batch_id})
            return copy.deepcopy(batch)

    def add(self, batch: Batch) -> Batch:
        with self._lock:
            if batch.batch_id in self._batches:
                raise DuplicateBatch(f"Batch {batch.batch_id} already exists", detail={"batch_id": batch.batch_id})
            self._batches[batch.batch_id] = copy.deepcopy(batch)
            return copy.deepcopy(batch)

    def append_event(
        self,
        batch_id: str,
        expected_version: int,
        event: HistoryEvent,
        new_status: BatchStatus,
        prior_status: Optional[BatchStatus],
    ) -> AppendResult:
        with self._lock:
            stored = self._batches.get(batch_id)
            if stored is None:
                raise BatchNotFound(f"Batch {batch_id} not found", detail={"batch_id": batch_id})

            if self.is_retry(stored, expected_version, event):
                return AppendResult(copy.deepcopy(stored), appended=False)

            if stored.version != expected_version:
                raise Conflict(batch_id, expected_version, stored.version)

            updated = stored.with_event(event, new_status, prior_status)
            self._batches[batch_id] = updated
            return AppendResult(copy.deepcopy(updated), appended=True)

    def list(self) -> List[Batch]:
        with self._lock:
            return [copy.deepcopy(b) for b in sorted(self._batches.values(), key=lambda b: b.batch_id)]
