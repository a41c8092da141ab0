import shutil
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from batchtrust.anomaly.detector import get_detector
from batchtrust.anomaly.service import AnomalyService
from batchtrust.audit.sink import InMemoryAuditSink
from batchtrust.authenticity.ledger import InMemoryLedger
from batchtrust.authenticity.payload import encode_verification_payload, parse_verification_payload
from batchtrust.authenticity.verifier import AuthenticityVerifier
from batchtrust.exceptions import InvalidTransition
from batchtrust.lifecycle.state_machine import BatchStateMachine
from batchtrust.models.anomaly import AnomalySeverity
from batchtrust.models.batch import BatchDraft
from batchtrust.risk.aggregator import notification_candidates
from batchtrust.risk.flag_policy import FlagPolicy
from batchtrust.storage.repository import InMemoryBatchRepository


# --- AUDIT-STYLE UI THEME ---
class Colors:
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'

    HEADER = '\033[1m'
    MUTED = '\033[90m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

    BORDER = MUTED
    LABEL = ENDC
    VALUE = BOLD


SEVERITY_COLORS = {
    AnomalySeverity.CRITICAL: Colors.FAIL,
    AnomalySeverity.HIGH: Colors.FAIL,
    AnomalySeverity.MEDIUM: Colors.WARNING,
    AnomalySeverity.LOW: Colors.MUTED,
}


def print_separator(char="-"):
    width = shutil.get_terminal_size().columns
    print(Colors.BORDER + (char * width) + Colors.ENDC)


def print_section(title):
    print("\n")
    print_separator("=")
    print(f"  {Colors.HEADER}{title.upper()}{Colors.ENDC}")
    print_separator("=")


def print_kv(key, value, color=Colors.VALUE):
    print(f"{Colors.LABEL}{key:<25}{Colors.ENDC} : {color}{value}{Colors.ENDC}")


def run_batch_demo():
    now = datetime.now(timezone.utc)
    audit = InMemoryAuditSink()
    repository = InMemoryBatchRepository()
    ledger = InMemoryLedger()
    machine = BatchStateMachine(repository, ledger, audit_sink=audit)
    verifier = AuthenticityVerifier(ledger, audit_sink=audit)
    anomalies = AnomalyService(detector=get_detector("rules", audit_sink=audit))

    # 1. CREATE
    print_section("Scenario Initialization")
    batch = machine.create_batch(
        BatchDraft(
            batch_id="BATCH-2025-0042",
            drug_name="Amoxicillin 500mg",
            mfg_date=now - timedelta(days=30),
            exp_date=now + timedelta(days=700),
            quantity=5000,
            manufacturer="Sun Pharma",
        ),
        actor="manufacturer@sunpharma",
        location="Mumbai Plant",
    )
    print_kv("Batch", batch.batch_id)
    print_kv("Drug", batch.drug_name)
    print_kv("Ledger Hash", batch.data_hash)

    # 2. LIFECYCLE
    print_section("Step 1: Lifecycle")
    steps = [
        ("Approved", "regulator@cdsco", "CDSCO Delhi"),
        ("In-Transit", "distributor@medline", "Mumbai Warehouse"),
        ("Flagged", "regulator@cdsco", "Pune Checkpoint"),
    ]
    for target, actor, location in steps:
        result = machine.transition(batch, target, actor, location)
        batch = result.batch
        print(f"{Colors.OKGREEN}✔{Colors.ENDC} {result.previous_status.value} -> {result.new_status.value} ({actor})")

    try:
        machine.transition(batch, "Delivered", "pharmacy@apollo", "Pune")
    except InvalidTransition as e:
        print(f"{Colors.FAIL}✘ {e.message}{Colors.ENDC}")

    batch = machine.clear_flag(batch, "regulator@cdsco", "Pune Checkpoint").batch
    print_kv("Restored To", batch.status.value)
    batch = machine.deliver(batch, "pharmacy@apollo", "Apollo Pharmacy Pune").batch
    print_kv("Final Status", batch.status.value, Colors.OKGREEN)

    # 3. AUTHENTICITY
    print_section("Step 2: Authenticity")
    qr = encode_verification_payload(batch).to_qr_string()
    genuine = verifier.verify(parse_verification_payload(qr))
    print_kv("Scanned Genuine", genuine.status.value, Colors.OKGREEN if genuine.is_authentic else Colors.FAIL)

    tampered = replace(parse_verification_payload(qr), quantity=50000)
    forged = verifier.verify(tampered)
    print_kv("Scanned Tampered", forged.status.value, Colors.FAIL)
    verifier.close()

    # 4. ANOMALIES
    print_section("Step 3: Anomaly Rules")
    suspicious = replace(
        batch,
        batch_id="BATCH-2025-0099",
        quantity=0,
        exp_date=now + timedelta(days=10),
    )
    output, stored = anomalies.analyze_batch(suspicious, now)
    for idx, a in enumerate(output.anomalies, 1):
        color = SEVERITY_COLORS[a.severity]
        print(f"{idx}. {Colors.BOLD}{a.title}{Colors.ENDC}")
        print(f"   ├─ Severity : {color}{a.severity.value}{Colors.ENDC}")
        print(f"   ├─ Id       : {a.anomaly_id}")
        print(f"   └─ Detail   : {a.description}")
    score_color = Colors.FAIL if output.risk_score >= 70 else Colors.WARNING if output.risk_score else Colors.OKGREEN
    print_kv("Risk Score", output.risk_score, score_color + Colors.BOLD)
    print_kv("Stored As", stored.result_id)

    reviewed = anomalies.mark_reviewed(stored.result_id, "regulator@cdsco", notes="Physical recount ordered")
    print_kv("Reviewed By", reviewed.reviewed_by)

    # 5. FLEET
    print_section("Step 4: Fleet Analysis")
    analysis, fleet_results = anomalies.analyze_fleet([batch, suspicious], now)
    print_kv("Batches", analysis.total_batches)
    print_kv("With Anomalies", analysis.batches_with_anomalies)
    print_kv("Notify", len(notification_candidates(analysis)))
    print(f"{Colors.BOLD}SUMMARY:{Colors.ENDC} {analysis.summary}")
    for risk in analysis.top_risks:
        print(f"   • {risk}")
    print_kv("Results Stored", len(fleet_results))

    # 6. FLAG POLICY
    print_section("Step 5: Flag Policy")
    empty = machine.create_batch(
        BatchDraft(
            batch_id="BATCH-2025-0100",
            drug_name="Paracetamol 650mg",
            mfg_date=now - timedelta(days=5),
            exp_date=now + timedelta(days=500),
            quantity=0,
            manufacturer="Cipla",
        ),
        actor="manufacturer@cipla",
        location="Goa Plant",
    )
    empty = machine.transition(empty, "Approved", "regulator@cdsco", "CDSCO Delhi").batch
    policy = FlagPolicy()
    for candidate in (batch, empty):
        output, _ = anomalies.analyze_batch(candidate)
        result = policy.apply(machine, candidate, output, actor="monitor@batchtrust")
        if result is None:
            print(f"{Colors.OKGREEN}✔{Colors.ENDC} {candidate.batch_id} left as {candidate.status.value}")
        else:
            print(f"{Colors.FAIL}⚑{Colors.ENDC} {candidate.batch_id} {result.previous_status.value} -> {result.new_status.value}")

    print_section("Audit Trail")
    print_kv("Events Recorded", len(audit.events))
    print_separator("=")


if __name__ == "__main__":
    run_batch_demo()
