import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from batchtrust.anomaly.config import RuleConfig
from batchtrust.anomaly.detector import AnomalyDetector, get_detector
from batchtrust.anomaly.quick_check import quick_check
from batchtrust.anomaly.service import AnomalyService
from batchtrust.audit.blob_sink import BlobAuditSink
from batchtrust.audit.sink import AuditSink, CompositeAuditSink, FireAndForgetAuditSink, LoggingAuditSink
from batchtrust.authenticity.hashing import validate_action_hash
from batchtrust.authenticity.ledger import HttpLedgerClient, InMemoryLedger, LedgerClient
from batchtrust.authenticity.payload import encode_verification_payload, payload_from_dict
from batchtrust.authenticity.verifier import AuthenticityVerifier
from batchtrust.config import Settings, compute_system_config_hash
from batchtrust.exceptions import BatchTrustError
from batchtrust.integration.alerts import send_anomaly_alert
from batchtrust.lifecycle.state_machine import BatchStateMachine
from batchtrust.lifecycle.transitions import allowed_targets, restored_status
from batchtrust.models.action_hash import ActionHash, ActionKind
from batchtrust.models.batch import BatchDraft, BatchStatus
from batchtrust.risk.aggregator import notification_candidates
from batchtrust.risk.flag_policy import FlagPolicy
from batchtrust.storage.anomaly_results import InMemoryAnomalyResultRepository
from batchtrust.storage.repository import BatchRepository, InMemoryBatchRepository
from batchtrust.telemetry import emit_exception_telemetry, init_telemetry
from batchtrust.version_registry import ENGINE_VERSION, PAYLOAD_FORMAT_VERSION, RULE_CATALOGUE_VERSION

# --- 1. SETUP AUDIT LOGGING ---
logging.basicConfig(
    filename="audit.log",
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
audit_logger = logging.getLogger("audit")

# --- 2. SWAGGER METADATA ---
tags_metadata = [
    {"name": "Lifecycle", "description": "Batch creation and status transitions through the **State Machine**."},
    {"name": "Authenticity", "description": "Scannable payloads, ledger verification and action hashes."},
    {"name": "Anomalies", "description": "Deterministic rule catalogue, single batch and fleet."},
    {"name": "System", "description": "Health checks and operational metadata."},
]

app = FastAPI(
    title="BatchTrust Engine",
    description="""
    **Pharmaceutical batch lifecycle and authenticity engine.**

    * **State Machine:** the only writer of batch status and history.
    * **Authenticity:** payloads are checked against the ledger's hash.
    * **Anomaly Rules:** deterministic findings with a 0-100 risk score.
    """,
    version=ENGINE_VERSION,
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc"
)

init_telemetry()


# --- 3. SERVICE WIRING ---
@dataclass
class Services:
    settings: Settings
    repository: BatchRepository
    ledger: LedgerClient
    audit_sink: AuditSink
    state_machine: BatchStateMachine
    verifier: AuthenticityVerifier
    rule_config: RuleConfig
    detector: AnomalyDetector
    anomalies: AnomalyService
    flag_policy: FlagPolicy


def build_services(settings: Optional[Settings] = None, rule_config: Optional[RuleConfig] = None) -> Services:
    settings = settings or Settings.from_env()
    repository = InMemoryBatchRepository()

    if settings.ledger_url:
        ledger = HttpLedgerClient(settings.ledger_url, timeout=settings.ledger_timeout_seconds)
    else:
        ledger = InMemoryLedger()

    sinks = [LoggingAuditSink()]
    if settings.audit_blob_connection_string:
        sinks.append(FireAndForgetAuditSink(
            BlobAuditSink(settings.audit_blob_connection_string, settings.audit_blob_container)
        ))
    audit_sink = CompositeAuditSink(*sinks)

    rule_config = rule_config or RuleConfig.from_env()
    detector = get_detector(
        "rules",
        config=rule_config,
        audit_sink=audit_sink,
        max_workers=settings.fleet_workers,
    )

    return Services(
        settings=settings,
        repository=repository,
        ledger=ledger,
        audit_sink=audit_sink,
        state_machine=BatchStateMachine(repository, ledger, audit_sink=audit_sink),
        verifier=AuthenticityVerifier(ledger, timeout=settings.ledger_timeout_seconds, audit_sink=audit_sink),
        rule_config=rule_config,
        detector=detector,
        anomalies=AnomalyService(detector=detector, results=InMemoryAnomalyResultRepository()),
        flag_policy=FlagPolicy(),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


# --- 4. MIDDLEWARE: AUDIT TRAIL ---
@app.middleware("http")
async def audit_middleware(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    client = request.client.host if request.client else "-"
    audit_logger.info(
        f"METHOD={request.method} PATH={request.url.path} "
        f"STATUS={response.status_code} CLIENT={client} "
        f"DURATION={process_time:.4f}s"
    )
    return response


# --- 5. ERROR MAPPING ---
ERROR_STATUS = {
    "INVALID_TRANSITION": 409,
    "REASON_REQUIRED": 409,
    "CONFLICT": 409,
    "DUPLICATE_BATCH": 409,
    "BATCH_NOT_FOUND": 404,
    "MALFORMED_BATCH_DATA": 422,
    "MALFORMED_PAYLOAD": 422,
    "STALE_ACTION_HASH": 422,
    "ACTION_HASH_MISMATCH": 422,
    "LEDGER_UNAVAILABLE": 503,
    "ANOMALY_RESULT_NOT_FOUND": 404,
    "INVALID_REVIEW": 422,
}


@app.exception_handler(BatchTrustError)
async def batchtrust_error_handler(request: Request, exc: BatchTrustError):
    status_code = ERROR_STATUS.get(exc.code, 500)
    audit_logger.warning(f"ENGINE_ERROR: {exc.code} PATH={request.url.path}")
    emit_exception_telemetry(exc)
    return JSONResponse(
        status_code=status_code,
        content={
            "code": exc.code,
            "message": exc.message,
            "retryable": exc.retryable,
            "detail": exc.detail,
        },
    )


# --- DATA MODELS ---
class CreateBatchRequest(BaseModel):
    batch_id: str
    drug_name: str
    mfg_date: datetime
    exp_date: datetime
    quantity: int
    manufacturer: str
    organization_id: Optional[str] = None
    actor: str
    location: str


class TransitionRequest(BaseModel):
    target_status: str
    actor: str
    location: str
    reason: Optional[str] = None
    expected_version: Optional[int] = None
    timestamp: Optional[datetime] = None


class RestoreRequest(BaseModel):
    actor: str
    location: str
    reason: Optional[str] = None
    expected_version: Optional[int] = None


class VerifyRequest(BaseModel):
    payload: Dict[str, Any]


class ActionHashRequest(BaseModel):
    batch_id: str
    action_kind: str
    timestamp: datetime
    issued_at: datetime
    value: str


class FleetRequest(BaseModel):
    batch_ids: Optional[List[str]] = None


class ReviewRequest(BaseModel):
    reviewed_by: str
    notes: Optional[str] = None


class FlagPolicyRequest(BaseModel):
    actor: str
    location: Optional[str] = None


# --- ENDPOINTS ---
@app.post("/batches", status_code=201, tags=["Lifecycle"])
def create_batch(request: CreateBatchRequest, services: Services = Depends(get_services)):
    batch = services.state_machine.create_batch(
        BatchDraft(
            batch_id=request.batch_id,
            drug_name=request.drug_name,
            mfg_date=request.mfg_date,
            exp_date=request.exp_date,
            quantity=request.quantity,
            manufacturer=request.manufacturer,
            organization_id=request.organization_id,
        ),
        actor=request.actor,
        location=request.location,
    )
    return batch.to_dict()


@app.get("/batches", tags=["Lifecycle"])
def list_batches(services: Services = Depends(get_services)):
    return [b.to_dict() for b in services.repository.list()]


@app.get("/batches/{batch_id}", tags=["Lifecycle"])
def get_batch(batch_id: str, services: Services = Depends(get_services)):
    return services.repository.get(batch_id).to_dict()


@app.post("/batches/{batch_id}/transitions", tags=["Lifecycle"])
def transition_batch(batch_id: str, request: TransitionRequest, services: Services = Depends(get_services)):
    try:
        target = BatchStatus.parse(request.target_status)
    except ValueError as e:
        return JSONResponse(status_code=422, content={"code": "MALFORMED_PAYLOAD", "message": str(e)})

    result = services.state_machine.transition_by_id(
        batch_id,
        target,
        actor=request.actor,
        location=request.location,
        reason=request.reason,
        expected_version=request.expected_version,
        timestamp=request.timestamp,
    )
    return result.to_dict()


@app.post("/batches/{batch_id}/restore", tags=["Lifecycle"])
def restore_batch(batch_id: str, request: RestoreRequest, services: Services = Depends(get_services)):
    batch = services.repository.get(batch_id)
    result = services.state_machine.clear_flag(
        batch,
        request.actor,
        request.location,
        reason=request.reason,
        expected_version=request.expected_version,
    )
    return result.to_dict()


@app.get("/batches/{batch_id}/allowed-transitions", tags=["Lifecycle"])
def batch_allowed_transitions(batch_id: str, services: Services = Depends(get_services)):
    batch = services.repository.get(batch_id)
    targets = set(allowed_targets(batch.status))
    if batch.status == BatchStatus.FLAGGED:
        targets.add(restored_status(batch.history))
    return {
        "batchId": batch_id,
        "status": batch.status.value,
        "allowed": sorted(t.value for t in targets),
    }


@app.get("/batches/{batch_id}/payload", tags=["Authenticity"])
def batch_payload(batch_id: str, services: Services = Depends(get_services)):
    payload = encode_verification_payload(services.repository.get(batch_id))
    return {
        "format": PAYLOAD_FORMAT_VERSION,
        "payload": payload.to_dict(),
        "qr": payload.to_qr_string(),
    }


@app.post("/verify", tags=["Authenticity"])
def verify_payload(request: VerifyRequest, services: Services = Depends(get_services)):
    """
    Verify a scanned payload against the ledger. Always 200: the outcome
    (Authentic, HashMismatch, NotFound, Expired, Unknown) is in the body.
    """
    payload = payload_from_dict(request.payload)
    return services.verifier.verify(payload).to_dict()


@app.post("/action-hashes/validate", tags=["Authenticity"])
def validate_action(request: ActionHashRequest, services: Services = Depends(get_services)):
    try:
        kind = ActionKind(request.action_kind)
    except ValueError:
        return JSONResponse(
            status_code=422,
            content={"code": "MALFORMED_PAYLOAD", "message": f"Unknown action kind {request.action_kind!r}"},
        )
    validate_action_hash(
        ActionHash(
            batch_id=request.batch_id,
            action_kind=kind,
            timestamp=request.timestamp,
            issued_at=request.issued_at,
            value=request.value,
        ),
        now=datetime.now(timezone.utc),
        validity_window=timedelta(seconds=services.settings.action_hash_window_seconds),
    )
    return {"valid": True, "batchId": request.batch_id, "action": kind.value}


@app.get("/batches/{batch_id}/anomalies", tags=["Anomalies"])
def evaluate_batch(batch_id: str, services: Services = Depends(get_services)):
    batch = services.repository.get(batch_id)
    output, stored = services.anomalies.analyze_batch(batch)
    body = output.to_dict()
    body["resultId"] = stored.result_id if stored else None
    return body


@app.get("/batches/{batch_id}/quick-check", tags=["Anomalies"])
def quick_check_batch(batch_id: str, services: Services = Depends(get_services)):
    batch = services.repository.get(batch_id)
    has_issues, issues = quick_check(batch, datetime.now(timezone.utc), services.rule_config)
    return {"batchId": batch_id, "hasIssues": has_issues, "issues": issues}


@app.post("/batches/{batch_id}/flag-policy", tags=["Anomalies"])
def apply_flag_policy(batch_id: str, request: FlagPolicyRequest, services: Services = Depends(get_services)):
    """
    Analyse the batch and let the flag policy decide. Only this endpoint
    turns a detection into a Flagged status.
    """
    batch = services.repository.get(batch_id)
    output, stored = services.anomalies.analyze_batch(batch)
    result = services.flag_policy.apply(
        services.state_machine,
        batch,
        output,
        actor=request.actor,
        location=request.location,
    )
    return {
        "batchId": batch_id,
        "flagged": result is not None,
        "riskScore": output.risk_score,
        "resultId": stored.result_id if stored else None,
        "transition": result.to_dict() if result else None,
    }


@app.get("/batches/{batch_id}/anomaly-results", tags=["Anomalies"])
def batch_anomaly_results(batch_id: str, services: Services = Depends(get_services)):
    services.repository.get(batch_id)
    return [r.to_dict() for r in services.anomalies.results_for(batch_id)]


@app.post("/anomaly-results/{result_id}/review", tags=["Anomalies"])
def review_anomaly_result(result_id: str, request: ReviewRequest, services: Services = Depends(get_services)):
    reviewed = services.anomalies.mark_reviewed(result_id, request.reviewed_by, notes=request.notes)
    return reviewed.to_dict()


@app.get("/anomaly-results/high-risk", tags=["Anomalies"])
def stored_high_risk(min_risk_score: int = 70, services: Services = Depends(get_services)):
    return [r.to_dict() for r in services.anomalies.results.high_risk(min_risk_score=min_risk_score)]


@app.post("/fleet/analysis", tags=["Anomalies"])
def analyse_fleet(request: FleetRequest, services: Services = Depends(get_services)):
    if request.batch_ids:
        batches = [services.repository.get(batch_id) for batch_id in request.batch_ids]
    else:
        batches = services.repository.list()

    analysis, stored = services.anomalies.analyze_fleet(batches)

    candidates = notification_candidates(analysis)
    alert_sent = send_anomaly_alert(candidates, webhook_url=services.settings.alert_webhook_url)

    body = analysis.to_dict()
    body["notificationCandidates"] = [c.anomaly_id for c in candidates]
    body["alertSent"] = alert_sent
    body["storedResultIds"] = [r.result_id for r in stored]
    body["configHash"] = compute_system_config_hash()
    return body


@app.get("/fleet/high-risk", tags=["Anomalies"])
def fleet_high_risk(min_risk_score: int = 70, services: Services = Depends(get_services)):
    ranked = services.anomalies.high_risk_queue(services.repository.list(), min_risk_score=min_risk_score)
    return [
        {"batchId": batch.batch_id, "riskScore": output.risk_score, "status": batch.status.value}
        for batch, output in ranked
    ]


@app.get("/health", tags=["System"])
def health():
    return {
        "status": "online",
        "engine": ENGINE_VERSION,
        "rules": RULE_CATALOGUE_VERSION,
        "modules": ["StateMachine", "Authenticity", "AnomalyRules", "AnomalyResults", "FlagPolicy", "RiskAggregator", "AuditLog", "CloudAlerts"],
    }
