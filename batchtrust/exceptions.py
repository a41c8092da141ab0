"""
Typed errors raised by the lifecycle, authenticity and storage layers.

Each error carries a stable `code` and a `retryable` flag so the API layer
can map them to responses without inspecting messages.
"""


class BatchTrustError(Exception):
    code = "BATCHTRUST_ERROR"
    retryable = False

    def __init__(self, message, detail=None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class InvalidTransition(BatchTrustError):
    code = "INVALID_TRANSITION"

    def __init__(self, current, attempted, message=None):
        self.current = current
        self.attempted = attempted
        super().__init__(
            message or f"Transition {_label(current)} -> {_label(attempted)} is not allowed",
            detail={"current": _label(current), "attempted": _label(attempted)},
        )


class ReasonRequired(InvalidTransition):
    code = "REASON_REQUIRED"

    def __init__(self, current, attempted):
        super().__init__(
            current,
            attempted,
            message=f"Transition {_label(current)} -> {_label(attempted)} requires a non-empty reason",
        )


class Conflict(BatchTrustError):
    code = "CONFLICT"
    retryable = True

    def __init__(self, batch_id, expected_version, actual_version):
        self.batch_id = batch_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Batch {batch_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            detail={
                "batch_id": batch_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )


class BatchNotFound(BatchTrustError):
    code = "BATCH_NOT_FOUND"


class DuplicateBatch(BatchTrustError):
    code = "DUPLICATE_BATCH"


class MalformedBatchData(BatchTrustError):
    code = "MALFORMED_BATCH_DATA"


class MalformedPayload(BatchTrustError):
    code = "MALFORMED_PAYLOAD"


class LedgerUnavailable(BatchTrustError):
    code = "LEDGER_UNAVAILABLE"
    retryable = True


class StaleActionHash(BatchTrustError):
    code = "STALE_ACTION_HASH"


class ActionHashMismatch(BatchTrustError):
    code = "ACTION_HASH_MISMATCH"


class AnomalyResultNotFound(BatchTrustError):
    code = "ANOMALY_RESULT_NOT_FOUND"


class InvalidReview(BatchTrustError):
    code = "INVALID_REVIEW"


def _label(status):
    return getattr(status, "value", status)
