import time
from dataclasses import replace
from datetime import timedelta

import pytest
import requests

from batchtrust.authenticity.ledger import HttpLedgerClient, InMemoryLedger, LedgerClient
from batchtrust.authenticity.payload import encode_verification_payload, payload_from_dict
from batchtrust.authenticity.verifier import AuthenticityVerifier
from batchtrust.exceptions import DuplicateBatch, LedgerUnavailable, MalformedPayload
from batchtrust.models.batch import BatchDraft
from batchtrust.models.verification import VerificationStatus


@pytest.fixture
def verifier(ledger, audit_sink, clock):
    v = AuthenticityVerifier(ledger, timeout=1.0, audit_sink=audit_sink, clock=clock)
    yield v
    v.close()


@pytest.fixture
def payload(created):
    return encode_verification_payload(created)


def test_genuine_payload_is_authentic(verifier, payload):
    result = verifier.verify(payload)

    assert result.status == VerificationStatus.AUTHENTIC
    assert result.is_authentic
    assert result.expired is False
    assert result.to_dict()["hashMatch"] is True


def test_payload_without_hash_is_checked_from_fields(verifier, payload):
    result = verifier.verify(replace(payload, data_hash=None))
    assert result.status == VerificationStatus.AUTHENTIC


@pytest.mark.parametrize("field,value", [
    ("drug_name", "Amoxicillin 250mg"),
    ("quantity", 50000),
    ("mfg_date", 1),
    ("exp_date", 4102444800),
    ("manufacturer", "Fake Pharma"),
])
def test_any_field_mutation_is_a_mismatch(verifier, payload, field, value):
    result = verifier.verify(replace(payload, **{field: value}))

    assert result.status == VerificationStatus.HASH_MISMATCH
    assert result.escalation_recommended


def test_forged_hash_is_a_mismatch(verifier, payload):
    result = verifier.verify(replace(payload, data_hash="0x" + "0" * 64))
    assert result.status == VerificationStatus.HASH_MISMATCH
    assert result.to_dict()["hashMatch"] is False


def test_unknown_batch_code_is_not_found(verifier, payload):
    result = verifier.verify(replace(payload, batch_code="BATCH-404"))
    assert result.status == VerificationStatus.NOT_FOUND
    assert "counterfeit" in result.message


def test_expired_genuine_batch(state_machine, ledger, audit_sink, clock, now):
    draft = BatchDraft(
        batch_id="BATCH-OLD",
        drug_name="Ibuprofen 400mg",
        mfg_date=now - timedelta(days=800),
        exp_date=now - timedelta(days=1),
        quantity=100,
        manufacturer="Cipla",
    )
    batch = state_machine.create_batch(draft, actor="m", location="Goa")
    verifier = AuthenticityVerifier(ledger, audit_sink=audit_sink, clock=clock)
    try:
        result = verifier.verify(encode_verification_payload(batch))
    finally:
        verifier.close()

    assert result.status == VerificationStatus.EXPIRED
    assert result.expired is True


def test_mismatch_outranks_expiry(verifier, payload, clock):
    clock.advance(days=1000)
    result = verifier.verify(replace(payload, quantity=1))

    assert result.status == VerificationStatus.HASH_MISMATCH
    assert result.expired is True


def test_unavailable_ledger_is_unknown(mocker, payload, clock):
    ledger = mocker.Mock(spec=LedgerClient)
    ledger.fetch_authoritative_hash.side_effect = LedgerUnavailable("down")
    verifier = AuthenticityVerifier(ledger, clock=clock)
    try:
        result = verifier.verify(payload)
    finally:
        verifier.close()

    assert result.status == VerificationStatus.UNKNOWN
    assert not result.is_authentic


def test_slow_ledger_times_out_to_unknown(mocker, payload, clock):
    ledger = mocker.Mock(spec=LedgerClient)
    ledger.fetch_authoritative_hash.side_effect = lambda code: time.sleep(0.5) or payload.data_hash
    verifier = AuthenticityVerifier(ledger, timeout=0.05, clock=clock)
    try:
        result = verifier.verify(payload)
    finally:
        verifier.close()

    assert result.status == VerificationStatus.UNKNOWN


def test_unexpected_ledger_error_is_unknown(mocker, payload, clock):
    ledger = mocker.Mock(spec=LedgerClient)
    ledger.fetch_authoritative_hash.side_effect = KeyError("boom")
    verifier = AuthenticityVerifier(ledger, clock=clock)
    try:
        assert verifier.verify(payload).status == VerificationStatus.UNKNOWN
    finally:
        verifier.close()


@pytest.mark.parametrize("returned", [12345, b"0xabc", {"hash": "0xabc"}])
def test_non_text_ledger_hash_is_unknown(mocker, payload, clock, returned):
    ledger = mocker.Mock(spec=LedgerClient)
    ledger.fetch_authoritative_hash.return_value = returned
    verifier = AuthenticityVerifier(ledger, clock=clock)
    try:
        result = verifier.verify(payload)
    finally:
        verifier.close()

    assert result.status == VerificationStatus.UNKNOWN
    assert not result.is_authentic


def test_fractional_quantity_scan_is_rejected_before_lookup(verifier, payload):
    scanned = payload.to_dict()
    scanned["quantity"] = payload.quantity + 0.9
    with pytest.raises(MalformedPayload):
        verifier.verify(payload_from_dict(scanned))


def test_verification_is_audited(verifier, payload, audit_sink):
    verifier.verify(payload)
    verifier.verify(replace(payload, quantity=1))

    events = audit_sink.of_type("verification.result")
    assert [e.metadata["status"] for e in events] == ["Authentic", "HashMismatch"]
    assert [e.result for e in events] == ["success", "failure"]


def test_in_memory_ledger_records_once(draft):
    ledger = InMemoryLedger()
    first = ledger.record_creation(draft)
    assert ledger.fetch_authoritative_hash(draft.batch_id) == first
    with pytest.raises(DuplicateBatch):
        ledger.record_creation(draft)


def _response(mocker, status_code, body=None):
    response = mocker.Mock()
    response.status_code = status_code
    response.json.return_value = body or {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code}")
    else:
        response.raise_for_status.return_value = None
    return response


def test_http_ledger_fetches_hash(mocker):
    session = mocker.Mock()
    session.get.return_value = _response(mocker, 200, {"dataHash": "0xabc"})
    client = HttpLedgerClient("https://ledger.example/", timeout=3.0, session=session)

    assert client.fetch_authoritative_hash("BATCH-001") == "0xabc"
    session.get.assert_called_once_with("https://ledger.example/batches/BATCH-001/hash", timeout=3.0)


def test_http_ledger_404_is_not_found(mocker):
    session = mocker.Mock()
    session.get.return_value = _response(mocker, 404)
    client = HttpLedgerClient("https://ledger.example", session=session)
    assert client.fetch_authoritative_hash("BATCH-404") is None


@pytest.mark.parametrize("failure", [
    requests.exceptions.ConnectionError("refused"),
    requests.exceptions.Timeout("slow"),
])
def test_http_ledger_network_errors_are_unavailable(mocker, failure):
    session = mocker.Mock()
    session.get.side_effect = failure
    client = HttpLedgerClient("https://ledger.example", session=session)
    with pytest.raises(LedgerUnavailable):
        client.fetch_authoritative_hash("BATCH-001")


def test_http_ledger_server_error_is_unavailable(mocker):
    session = mocker.Mock()
    session.get.return_value = _response(mocker, 500)
    client = HttpLedgerClient("https://ledger.example", session=session)
    with pytest.raises(LedgerUnavailable):
        client.fetch_authoritative_hash("BATCH-001")


def test_http_ledger_registration(mocker, draft):
    session = mocker.Mock()
    session.post.return_value = _response(mocker, 201, {"dataHash": "0xdef"})
    client = HttpLedgerClient("https://ledger.example", session=session)

    assert client.record_creation(draft) == "0xdef"
    body = session.post.call_args.kwargs["json"]
    assert body["batchCode"] == "BATCH-001"
    assert isinstance(body["mfgDate"], int)


def test_http_ledger_duplicate_registration(mocker, draft):
    session = mocker.Mock()
    session.post.return_value = _response(mocker, 409)
    client = HttpLedgerClient("https://ledger.example", session=session)
    with pytest.raises(DuplicateBatch):
        client.record_creation(draft)
