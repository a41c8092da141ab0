import logging
from datetime import datetime
from typing import Callable, Optional, Union

from batchtrust.audit.sink import AuditSink, NullAuditSink
from batchtrust.authenticity.hashing import generate_action_hash
from batchtrust.authenticity.ledger import LedgerClient
from batchtrust.exceptions import (
    BatchNotFound,
    DuplicateBatch,
    InvalidTransition,
    MalformedBatchData,
    ReasonRequired,
)
from batchtrust.lifecycle.transitions import (
    REASON_REQUIRED,
    allowed_targets,
    is_terminal,
    restored_status,
)
from batchtrust.models.action_hash import ActionKind
from batchtrust.models.audit_event import AuditEvent
from batchtrust.models.batch import Batch, BatchDraft, BatchStatus, HistoryEvent
from batchtrust.models.transition import TransitionResult
from batchtrust.storage.repository import BatchRepository
from batchtrust.timeutils import as_utc, utcnow

logger = logging.getLogger("batchtrust.lifecycle")

REGULATORY_ACTIONS = {
    BatchStatus.APPROVED: ActionKind.APPROVE,
    BatchStatus.REJECTED: ActionKind.REJECT,
    BatchStatus.RECALLED: ActionKind.RECALL,
}

AUDIT_EVENT_TYPES = {
    BatchStatus.APPROVED: "batch.approve",
    BatchStatus.REJECTED: "batch.reject",
    BatchStatus.RECALLED: "batch.recall",
    BatchStatus.FLAGGED: "batch.flag",
}


class BatchStateMachine:
    """
    Sole writer of batch status and history.

    Transitions are validated against the caller's last read of the batch
    and committed with compare-and-swap on `Batch.version`, so a decision
    made on a stale read fails with Conflict instead of being applied.
    """

    def __init__(
        self,
        repository: BatchRepository,
        ledger: LedgerClient,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.ledger = ledger
        self.audit_sink = audit_sink or NullAuditSink()
        self.clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_batch(
        self,
        draft: BatchDraft,
        actor: str,
        location: str,
        timestamp: Optional[datetime] = None,
    ) -> Batch:
        self._validate_draft(draft)
        if not actor or not actor.strip():
            raise MalformedBatchData("A manufacturer actor is required to create a batch")

        try:
            self.repository.get(draft.batch_id)
        except BatchNotFound:
            pass
        else:
            raise DuplicateBatch(f"Batch {draft.batch_id} already exists", detail={"batch_id": draft.batch_id})

        # The ledger issues the hash exactly once; it is stored as-is.
        data_hash = self.ledger.record_creation(draft)

        event = HistoryEvent(
            location=location,
            status=BatchStatus.PENDING,
            timestamp=as_utc(timestamp or self.clock()),
            actor=actor,
        )
        batch = self.repository.add(Batch(
            batch_id=draft.batch_id,
            drug_name=draft.drug_name,
            mfg_date=draft.mfg_date,
            exp_date=draft.exp_date,
            quantity=draft.quantity,
            manufacturer=draft.manufacturer,
            organization_id=draft.organization_id,
            status=BatchStatus.PENDING,
            history=[event],
            data_hash=data_hash,
            version=1,
        ))

        logger.info(f"Batch {batch.batch_id} created by {actor}")
        self._emit(AuditEvent(
            event_type="batch.create",
            batch_id=batch.batch_id,
            timestamp=event.timestamp,
            actor=actor,
            metadata={"status": BatchStatus.PENDING.value},
        ))
        return batch

    @staticmethod
    def _validate_draft(draft: BatchDraft) -> None:
        problems = []
        if not draft.batch_id or not str(draft.batch_id).strip():
            problems.append("batch_id is required")
        if not draft.drug_name or not str(draft.drug_name).strip():
            problems.append("drug_name is required")
        if not isinstance(draft.mfg_date, datetime):
            problems.append("mfg_date must be a datetime")
        if not isinstance(draft.exp_date, datetime):
            problems.append("exp_date must be a datetime")
        if isinstance(draft.quantity, bool) or not isinstance(draft.quantity, int):
            problems.append("quantity must be an integer")
        if problems:
            raise MalformedBatchData(
                f"Invalid batch draft: {'; '.join(problems)}",
                detail={"problems": problems},
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def transition(
        self,
        batch: Batch,
        target_status: Union[BatchStatus, str],
        actor: str,
        location: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Apply one legal status change.

        Raises InvalidTransition (batch untouched) for moves outside the
        table, ReasonRequired for a recall without a reason and Conflict
        when `batch` is no longer the stored version. Passing the original
        `timestamp` when retrying makes the retry idempotent.
        """
        target = BatchStatus.parse(target_status)
        current = batch.status
        expected = batch.version if expected_version is None else expected_version

        new_status, prior_status = self._resolve(batch, current, target)

        if target in REASON_REQUIRED and not (reason and reason.strip()):
            raise ReasonRequired(current, target)

        event_time = as_utc(timestamp or self.clock())
        latest = batch.latest_event
        if latest is not None and event_time < as_utc(latest.timestamp):
            event_time = as_utc(latest.timestamp)

        event = HistoryEvent(
            location=location,
            status=new_status,
            timestamp=event_time,
            actor=actor,
            reason=reason.strip() if reason else None,
        )

        appended = self.repository.append_event(
            batch.batch_id,
            expected,
            event,
            new_status,
            prior_status,
        )
        updated = appended.batch
        deduplicated = not appended.appended
        if deduplicated:
            logger.info(f"Retried write for {batch.batch_id} ({new_status.value}) was already applied")

        action_hash = None
        if new_status in REGULATORY_ACTIONS:
            action_hash = generate_action_hash(
                batch.batch_id,
                event.timestamp,
                REGULATORY_ACTIONS[new_status],
                issued_at=self.clock(),
            )

        logger.info(f"Batch {batch.batch_id}: {current.value} -> {new_status.value} by {actor}")
        if not deduplicated:
            self._emit(AuditEvent(
                event_type=self._audit_type(current, new_status),
                batch_id=batch.batch_id,
                timestamp=event.timestamp,
                actor=actor,
                metadata={
                    "from": current.value,
                    "to": new_status.value,
                    "reason": event.reason,
                    "version": updated.version,
                },
            ))

        return TransitionResult(
            batch=updated,
            event=event,
            previous_status=current,
            new_status=new_status,
            action_hash=action_hash,
            deduplicated=deduplicated,
        )

    def _resolve(self, batch: Batch, current: BatchStatus, target: BatchStatus):
        """
        Returns (new_status, prior_status) for a legal move or raises.
        """
        if is_terminal(current):
            raise InvalidTransition(current, target)

        if current == BatchStatus.FLAGGED:
            if target == BatchStatus.RECALLED:
                return BatchStatus.RECALLED, None
            restore_to = restored_status(batch.history)
            if target == restore_to:
                return restore_to, None
            raise InvalidTransition(
                current,
                target,
                message=(
                    f"Transition Flagged -> {target.value} is not allowed; "
                    f"a cleared flag restores to {restore_to.value}"
                ),
            )

        if target not in allowed_targets(current):
            raise InvalidTransition(current, target)

        if target == BatchStatus.FLAGGED:
            return BatchStatus.FLAGGED, current
        return target, None

    @staticmethod
    def _audit_type(current: BatchStatus, new_status: BatchStatus) -> str:
        if current == BatchStatus.FLAGGED and new_status != BatchStatus.RECALLED:
            return "batch.unflag"
        return AUDIT_EVENT_TYPES.get(new_status, "batch.status_change")

    def _emit(self, event: AuditEvent) -> None:
        try:
            self.audit_sink.emit(event)
        except Exception as e:
            logger.error(f"Audit sink failed for {event.event_type}: {type(e).__name__}")

    # ------------------------------------------------------------------
    # Named operations
    # ------------------------------------------------------------------
    def approve(self, batch: Batch, actor: str, location: str, **kwargs) -> TransitionResult:
        return self.transition(batch, BatchStatus.APPROVED, actor, location, **kwargs)

    def reject(self, batch: Batch, actor: str, location: str, reason: Optional[str] = None, **kwargs) -> TransitionResult:
        return self.transition(batch, BatchStatus.REJECTED, actor, location, reason=reason, **kwargs)

    def dispatch(self, batch: Batch, actor: str, location: str, **kwargs) -> TransitionResult:
        return self.transition(batch, BatchStatus.IN_TRANSIT, actor, location, **kwargs)

    def deliver(self, batch: Batch, actor: str, location: str, **kwargs) -> TransitionResult:
        return self.transition(batch, BatchStatus.DELIVERED, actor, location, **kwargs)

    def flag(self, batch: Batch, actor: str, location: str, reason: Optional[str] = None, **kwargs) -> TransitionResult:
        return self.transition(batch, BatchStatus.FLAGGED, actor, location, reason=reason, **kwargs)

    def clear_flag(self, batch: Batch, actor: str, location: str, reason: Optional[str] = None, **kwargs) -> TransitionResult:
        if batch.status != BatchStatus.FLAGGED:
            raise InvalidTransition(
                batch.status,
                "restore",
                message=f"Batch {batch.batch_id} is {batch.status.value}, not Flagged",
            )
        target = restored_status(batch.history)
        return self.transition(batch, target, actor, location, reason=reason, **kwargs)

    def recall(self, batch: Batch, actor: str, location: str, reason: str, **kwargs) -> TransitionResult:
        return self.transition(batch, BatchStatus.RECALLED, actor, location, reason=reason, **kwargs)

    def transition_by_id(
        self,
        batch_id: str,
        target_status: Union[BatchStatus, str],
        actor: str,
        location: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Reads the stored batch and transitions it. With `expected_version`
        the caller's earlier read is still enforced.
        """
        batch = self.repository.get(batch_id)
        return self.transition(
            batch,
            target_status,
            actor,
            location,
            reason=reason,
            expected_version=expected_version,
            timestamp=timestamp,
        )
