import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import datetime
from typing import Callable, Optional

from batchtrust.audit.sink import AuditSink, NullAuditSink
from batchtrust.authenticity.hash_utils import hashes_equal
from batchtrust.authenticity.hashing import compute_data_hash, to_unix_seconds
from batchtrust.authenticity.ledger import LedgerClient
from batchtrust.exceptions import LedgerUnavailable
from batchtrust.models.audit_event import AuditEvent
from batchtrust.models.verification import (
    VerificationPayload,
    VerificationResult,
    VerificationStatus,
)
from batchtrust.telemetry import emit_verification_telemetry
from batchtrust.timeutils import utcnow

logger = logging.getLogger("batchtrust.authenticity")

DEFAULT_LEDGER_TIMEOUT_SECONDS = 5.0


class AuthenticityVerifier:
    """
    Compares a scanned payload against the ledger's authoritative hash.

    Fail-closed: any ledger error or timeout yields Unknown. A mismatch is
    reported as HashMismatch and is never downgraded.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        timeout: float = DEFAULT_LEDGER_TIMEOUT_SECONDS,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
        max_workers: int = 4,
    ):
        self.ledger = ledger
        self.timeout = timeout
        self.audit_sink = audit_sink or NullAuditSink()
        self.clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ledger")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def verify(self, payload: VerificationPayload) -> VerificationResult:
        now = self.clock()
        expired = payload.exp_date < to_unix_seconds(now)

        authoritative = None
        try:
            future = self._executor.submit(self.ledger.fetch_authoritative_hash, payload.batch_code)
            authoritative = future.result(timeout=self.timeout)
        except FuturesTimeout:
            logger.warning(f"Ledger lookup for {payload.batch_code} timed out after {self.timeout}s")
            return self._finish(self._unknown(payload, expired, "Ledger did not answer in time"))
        except LedgerUnavailable as e:
            logger.warning(f"Ledger unavailable for {payload.batch_code}: {e.message}")
            return self._finish(self._unknown(payload, expired, "Ledger is unavailable"))
        except Exception as e:
            logger.error(f"Ledger lookup for {payload.batch_code} failed: {type(e).__name__}")
            return self._finish(self._unknown(payload, expired, "Ledger lookup failed"))

        if authoritative is None:
            return self._finish(VerificationResult(
                status=VerificationStatus.NOT_FOUND,
                batch_code=payload.batch_code,
                message=f"Batch {payload.batch_code} is not on record. This product may be counterfeit.",
                expired=expired,
                presented_hash=payload.data_hash,
            ))

        if not isinstance(authoritative, str):
            logger.error(f"Ledger returned a non-text hash for {payload.batch_code}: {type(authoritative).__name__}")
            return self._finish(self._unknown(payload, expired, "Ledger returned an unreadable hash"))

        recomputed = compute_data_hash(
            batch_code=payload.batch_code,
            drug_name=payload.drug_name,
            quantity=payload.quantity,
            mfg_date_unix_seconds=payload.mfg_date,
            exp_date_unix_seconds=payload.exp_date,
            manufacturer=payload.manufacturer,
        )
        presented = payload.data_hash if payload.data_hash is not None else recomputed

        presented_ok = hashes_equal(presented, authoritative)
        fields_ok = hashes_equal(recomputed, authoritative)

        if not (presented_ok and fields_ok):
            logger.warning(f"Hash mismatch for batch {payload.batch_code}; escalation recommended")
            return self._finish(VerificationResult(
                status=VerificationStatus.HASH_MISMATCH,
                batch_code=payload.batch_code,
                message=(
                    f"The data for batch {payload.batch_code} does not match the ledger record. "
                    "This may be a counterfeit or modified product."
                ),
                expired=expired,
                authoritative_hash=authoritative,
                presented_hash=presented,
            ))

        if expired:
            return self._finish(VerificationResult(
                status=VerificationStatus.EXPIRED,
                batch_code=payload.batch_code,
                message=f"Batch {payload.batch_code} matches the ledger record but has expired. Do not use.",
                expired=True,
                authoritative_hash=authoritative,
                presented_hash=presented,
            ))

        return self._finish(VerificationResult(
            status=VerificationStatus.AUTHENTIC,
            batch_code=payload.batch_code,
            message=f"{payload.drug_name} (batch {payload.batch_code}) matches the ledger record.",
            expired=False,
            authoritative_hash=authoritative,
            presented_hash=presented,
        ))

    def _unknown(self, payload: VerificationPayload, expired: bool, reason: str) -> VerificationResult:
        return VerificationResult(
            status=VerificationStatus.UNKNOWN,
            batch_code=payload.batch_code,
            message=f"{reason}; authenticity of batch {payload.batch_code} could not be established. Retry later.",
            expired=expired,
            presented_hash=payload.data_hash,
        )

    def _finish(self, result: VerificationResult) -> VerificationResult:
        emit_verification_telemetry(result.status.value)
        try:
            self.audit_sink.emit(AuditEvent(
                event_type="verification.result",
                batch_id=result.batch_code,
                timestamp=self.clock(),
                result="success" if result.is_authentic else "failure",
                metadata={"status": result.status.value, "expired": result.expired},
            ))
        except Exception as e:
            logger.error(f"Audit sink failed for verification.result: {type(e).__name__}")
        return result
