import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Deque, List

from batchtrust.models.audit_event import AuditEvent

logger = logging.getLogger("batchtrust.audit")


class AuditSink(ABC):
    """
    Observer for lifecycle, detection and verification events.

    Injected into the state machine, rule engine and verifier.
    Implementations must not raise into the caller.
    """

    @abstractmethod
    def emit(self, event: AuditEvent) -> None:
        pass


class NullAuditSink(AuditSink):
    def emit(self, event: AuditEvent) -> None:
        return None


class LoggingAuditSink(AuditSink):
    def __init__(self, logger_name: str = "batchtrust.audit"):
        self.logger = logging.getLogger(logger_name)

    def emit(self, event: AuditEvent) -> None:
        self.logger.info(
            f"EVENT={event.event_type} BATCH={event.batch_id} "
            f"ACTOR={event.actor or '-'} RESULT={event.result}"
        )


class InMemoryAuditSink(AuditSink):
    """
    Keeps the most recent events in memory. Oldest entries are dropped
    once `max_events` is reached.
    """

    def __init__(self, max_events: int = 1000):
        self.max_events = max_events
        self._events: Deque[AuditEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def emit(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: str) -> List[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]


class CompositeAuditSink(AuditSink):
    def __init__(self, *sinks: AuditSink):
        self.sinks = list(sinks)

    def emit(self, event: AuditEvent) -> None:
        for sink in self.sinks:
            try:
                sink.emit(event)
            except Exception as e:
                logger.error(f"Audit sink {type(sink).__name__} failed: {type(e).__name__}")


class FireAndForgetAuditSink(AuditSink):
    """
    Hands events to a background worker so slow sinks (blob storage,
    webhooks) never block a transition. Failures are logged and dropped.
    """

    def __init__(self, inner: AuditSink, max_workers: int = 1):
        self.inner = inner
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="audit")

    def emit(self, event: AuditEvent) -> None:
        try:
            self._executor.submit(self._deliver, event)
        except RuntimeError:
            logger.warning(f"Audit sink is shut down; dropped {event.event_type} for {event.batch_id}")

    def _deliver(self, event: AuditEvent) -> None:
        try:
            self.inner.emit(event)
        except Exception as e:
            logger.error(f"Audit delivery failed for {event.event_type}: {type(e).__name__}")

    def flush(self) -> None:
        """Waits for queued events. Used on shutdown and in tests."""
        self._executor.shutdown(wait=True)
