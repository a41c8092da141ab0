import json

import pytest

from batchtrust.authenticity.hashing import to_unix_seconds
from batchtrust.authenticity.payload import (
    encode_verification_payload,
    parse_verification_payload,
    payload_from_dict,
)
from batchtrust.exceptions import MalformedPayload


def test_payload_carries_identity_fields_and_stored_hash(created):
    payload = encode_verification_payload(created)

    assert payload.batch_code == "BATCH-001"
    assert payload.quantity == 5000
    assert payload.mfg_date == to_unix_seconds(created.mfg_date)
    assert payload.exp_date == to_unix_seconds(created.exp_date)
    assert payload.manufacturer == "Sun Pharma"
    assert payload.data_hash == created.data_hash


def test_qr_string_is_compact_json(created):
    qr = encode_verification_payload(created).to_qr_string()
    assert '": ' not in qr
    assert ', "' not in qr
    assert set(json.loads(qr)) == {"batchCode", "drugName", "quantity", "mfgDate", "expDate", "manufacturer", "dataHash"}


def test_scanned_code_parses_back(created):
    payload = encode_verification_payload(created)
    assert parse_verification_payload(payload.to_qr_string()) == payload


def test_optional_fields_are_omitted(make_batch):
    batch = make_batch(manufacturer=None, data_hash=None)
    assert set(encode_verification_payload(batch).to_dict()) == {
        "batchCode", "drugName", "quantity", "mfgDate", "expDate",
    }


def test_legacy_batch_id_alias_is_accepted():
    payload = payload_from_dict({
        "batchId": "BATCH-OLD",
        "drugName": "Paracetamol",
        "quantity": 10,
        "mfgDate": 1700000000,
        "expDate": 1800000000,
    })
    assert payload.batch_code == "BATCH-OLD"
    assert payload.manufacturer is None


def test_batch_without_dates_cannot_be_encoded(make_batch):
    with pytest.raises(MalformedPayload):
        encode_verification_payload(make_batch(exp_date=None))


@pytest.mark.parametrize("text", ["not json", "[1, 2]", '{"drugName": "x"}', '{"batchCode": "B", "quantity": 1}'])
def test_malformed_scans_raise(text):
    with pytest.raises(MalformedPayload):
        parse_verification_payload(text)


def test_non_numeric_quantity_is_malformed():
    with pytest.raises(MalformedPayload):
        payload_from_dict({
            "batchCode": "B",
            "drugName": "x",
            "quantity": "lots",
            "mfgDate": 1,
            "expDate": 2,
        })


@pytest.mark.parametrize("field,value", [
    ("quantity", 5000.9),
    ("quantity", True),
    ("quantity", "5000"),
    ("mfgDate", 1700000000.5),
    ("expDate", False),
    ("expDate", None),
])
def test_numeric_fields_must_be_whole_numbers(field, value):
    data = {
        "batchCode": "BATCH-001",
        "drugName": "Amoxicillin 500mg",
        "quantity": 5000,
        "mfgDate": 1700000000,
        "expDate": 1800000000,
        field: value,
    }
    with pytest.raises(MalformedPayload):
        payload_from_dict(data)


def test_integral_floats_are_accepted():
    payload = parse_verification_payload(
        '{"batchCode":"B","drugName":"x","quantity":5000.0,"mfgDate":1700000000,"expDate":1800000000}'
    )
    assert payload.quantity == 5000
    assert isinstance(payload.quantity, int)
