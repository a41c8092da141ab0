import copy
import json
import logging
import random
from dataclasses import replace
from datetime import timedelta

import pytest

from batchtrust.anomaly.config import RuleConfig
from batchtrust.anomaly.detector import RuleBasedDetector, get_detector
from batchtrust.anomaly.engine import AnomalyRuleEngine
from batchtrust.anomaly.quick_check import quick_check
from batchtrust.anomaly.rules.base import AnomalyRule
from batchtrust.anomaly.rules.catalogue import build_rules
from batchtrust.models.anomaly import AnomalySeverity, AnomalyType
from batchtrust.models.batch import Batch, BatchStatus


class ExplodingRule(AnomalyRule):
    def category(self):
        return AnomalyType.PATTERN

    def evaluate(self, batch, now):
        raise RuntimeError("rule bug")


@pytest.fixture
def engine(audit_sink, clock):
    return AnomalyRuleEngine(audit_sink=audit_sink, clock=clock, max_workers=4)


def test_clean_batch_output(engine, make_batch):
    output = engine.evaluate(make_batch(["Pending", "Approved"]))

    assert output.is_anomaly is False
    assert output.anomalies == []
    assert output.risk_score == 0
    assert output.to_dict()["analysisNotes"].startswith("No anomalies")


def test_anomaly_ids_are_indexed_per_type(engine, make_batch, now):
    batch = make_batch(
        ["Pending", "Approved", "In-Transit"],
        step=timedelta(hours=100),
        quantity=0,
    )
    output = engine.evaluate(batch, now)

    ids = [a.anomaly_id for a in output.anomalies]
    assert "ANM-BATCH-001-time_delay-1" in ids
    assert "ANM-BATCH-001-time_delay-2" in ids
    assert "ANM-BATCH-001-quantity-1" in ids
    assert len(ids) == len(set(ids))


def test_records_carry_detection_metadata(engine, make_batch, now):
    output = engine.evaluate(make_batch(quantity=0), now)
    record = output.anomalies[0].to_dict()

    assert record["batchId"] == "BATCH-001"
    assert record["detectedAt"] == now.isoformat()
    assert record["confidence"] == 100
    assert set(record) == {
        "id", "batchId", "type", "severity", "title", "description",
        "recommendation", "confidence", "detectedAt", "affectedStage",
    }


def test_critical_anomaly_scores_at_least_90(engine, make_batch, now):
    output = engine.evaluate(make_batch(quantity=0), now)
    assert output.risk_score >= 90
    assert output.is_anomaly


def test_non_critical_anomalies_stay_below_90(engine, make_batch, now):
    batch = make_batch(
        ["Pending", "Approved", "In-Transit", "Delivered"],
        step=timedelta(hours=100),
        quantity=500_000,
        exp_date=now + timedelta(days=5),
    )
    output = engine.evaluate(batch, now)

    assert all(a.severity != AnomalySeverity.CRITICAL for a in output.anomalies)
    assert 0 < output.risk_score <= 89


def test_failing_rule_is_skipped(make_batch, now, caplog):
    rules = [ExplodingRule()] + build_rules()
    engine = AnomalyRuleEngine(rules=rules)

    output = engine.evaluate(make_batch(quantity=0), now)

    assert [a.anomaly_type for a in output.anomalies] == [AnomalyType.QUANTITY]
    assert "ExplodingRule" in caplog.text


def test_engine_failure_returns_safe_default(engine, make_batch, now, mocker):
    mocker.patch("batchtrust.anomaly.engine.compute_risk_score", side_effect=RuntimeError("broken"))

    output = engine.evaluate(make_batch(quantity=0), now)

    assert output.is_anomaly is False
    assert output.anomalies == []
    assert output.risk_score == 0
    assert "could not be completed" in output.notes


def test_malformed_batch_never_raises(engine, now):
    batch = Batch(
        batch_id="BROKEN",
        drug_name="",
        mfg_date=None,
        exp_date=None,
        quantity="many",
        manufacturer=None,
        status=BatchStatus.IN_TRANSIT,
        history=None,
    )
    output = engine.evaluate(batch, now)

    types = {a.anomaly_type for a in output.anomalies}
    assert {AnomalyType.EXPIRY, AnomalyType.QUANTITY, AnomalyType.PATTERN} <= types


def test_evaluation_does_not_mutate_batch(engine, make_batch, now):
    batch = make_batch(["Approved", "Delivered", "In-Transit"], quantity=0)
    before = copy.deepcopy(batch)

    engine.evaluate(batch, now)

    assert batch == before


def test_each_anomaly_is_audited(engine, make_batch, now, audit_sink):
    output = engine.evaluate(make_batch(quantity=0, exp_date=now + timedelta(days=3)), now)

    events = audit_sink.of_type("anomaly.detected")
    assert len(events) == len(output.anomalies) == 2
    assert {e.metadata["anomalyId"] for e in events} == {a.anomaly_id for a in output.anomalies}


def test_fleet_of_clean_batches(engine, make_batch, now):
    batches = [make_batch(["Pending", "Approved"], batch_id=f"BATCH-{i:03d}") for i in range(12)]

    analysis = engine.evaluate_fleet(batches, now)

    assert analysis.total_batches == 12
    assert analysis.batches_with_anomalies == 0
    assert (analysis.critical_count, analysis.high_count, analysis.medium_count, analysis.low_count) == (0, 0, 0, 0)
    assert analysis.anomalies == []
    assert analysis.top_risks == []


def test_fleet_counts_and_ordering(engine, make_batch, now):
    batches = [
        make_batch(batch_id="B-CLEAN"),
        make_batch(batch_id="B-ZERO", quantity=0),
        make_batch(batch_id="B-SOON", exp_date=now + timedelta(days=10)),
        make_batch(["Pending", "Delivered"], batch_id="B-SKIP"),
    ]
    analysis = engine.evaluate_fleet(batches, now)

    assert analysis.total_batches == 4
    assert analysis.batches_with_anomalies == 3
    assert analysis.critical_count == 1
    assert analysis.high_count == 1
    assert analysis.medium_count == 1
    assert [a.severity for a in analysis.anomalies] == [
        AnomalySeverity.CRITICAL,
        AnomalySeverity.HIGH,
        AnomalySeverity.MEDIUM,
    ]
    assert analysis.top_risks[0].startswith("B-ZERO")


def test_fleet_result_is_independent_of_input_order(engine, make_batch, now):
    batches = [
        make_batch(batch_id=f"B-{i}", quantity=0 if i % 3 == 0 else 5000, exp_date=now + timedelta(days=5 + i))
        for i in range(9)
    ]
    shuffled = list(batches)
    random.Random(7).shuffle(shuffled)

    first = engine.evaluate_fleet(batches, now).to_dict()
    second = engine.evaluate_fleet(shuffled, now).to_dict()

    assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)


def test_empty_fleet(engine, now):
    analysis = engine.evaluate_fleet([], now)
    assert analysis.total_batches == 0
    assert analysis.summary == "No batches to analyse."


def test_get_detector(make_batch, now):
    detector = get_detector("rules")
    assert isinstance(detector, RuleBasedDetector)
    assert detector.version.startswith("deterministic-rule-catalogue")
    assert detector.detect(make_batch(quantity=0), now).risk_score >= 90
    assert detector.detect_fleet([make_batch()], now).total_batches == 1
    assert [o.is_anomaly for o in detector.detect_all([make_batch(), make_batch(quantity=0)], now)] == [False, True]


def test_unknown_detector():
    with pytest.raises(ValueError):
        get_detector("llm")


def test_quick_check_clean(make_batch, now):
    assert quick_check(make_batch(["Pending", "Approved"]), now) == (False, [])


def test_quick_check_issues(make_batch, now):
    batch = make_batch(["Pending"], start=now - timedelta(hours=80), quantity=0, exp_date=now + timedelta(days=3))
    has_issues, issues = quick_check(batch, now)

    assert has_issues
    assert "Batch pending approval for too long" in issues
    assert "Invalid quantity" in issues
    assert any("expires within" in i for i in issues)


def test_quick_check_empty_history(make_batch, now):
    has_issues, issues = quick_check(make_batch(history=[]), now)
    assert has_issues
    assert issues == ["No supply chain history recorded"]


def test_rule_config_from_env(monkeypatch, tmp_path):
    rules_file = tmp_path / "locations.json"
    rules_file.write_text(json.dumps({
        "travel_times": [{"from": "Mumbai", "to": "Delhi", "hours": 20}],
        "route_allowlist": ["Mumbai", "Delhi"],
    }))
    monkeypatch.setenv("BATCHTRUST_PENDING_HOURS", "48")
    monkeypatch.setenv("BATCHTRUST_MAX_QUANTITY", "2000")
    monkeypatch.setenv("BATCHTRUST_LOCATION_RULES_FILE", str(rules_file))

    config = RuleConfig.from_env()

    assert config.pending_max_hours == 48.0
    assert config.max_quantity == 2000
    assert config.min_travel_hours("delhi", "MUMBAI") == 20.0
    assert config.is_on_route(" mumbai ")
    assert not config.is_on_route("Chennai")


def test_rule_config_defaults_leave_location_checks_off(monkeypatch):
    monkeypatch.delenv("BATCHTRUST_LOCATION_RULES_FILE", raising=False)
    config = RuleConfig.from_env()
    assert config.min_travel_hours("Mumbai", "Delhi") is None
    assert config.is_on_route("Anywhere")


def test_missing_rules_file_fails_loudly(monkeypatch, tmp_path):
    monkeypatch.setenv("BATCHTRUST_LOCATION_RULES_FILE", str(tmp_path / "missing.json"))
    with pytest.raises(FileNotFoundError):
        RuleConfig.from_env()


def test_history_event_without_timestamp_is_a_finding(engine, make_batch, now, caplog):
    batch = make_batch(["Pending", "Approved", "In-Transit"])
    batch.history[-1] = replace(batch.history[-1], timestamp=None)

    with caplog.at_level(logging.WARNING, logger="batchtrust.anomaly"):
        output = engine.evaluate(batch, now)

    assert output.is_anomaly is True
    incomplete = [a for a in output.anomalies if a.title == "Incomplete custody event"]
    assert len(incomplete) == 1
    assert incomplete[0].severity == AnomalySeverity.CRITICAL
    assert "event 3 is missing timestamp" in incomplete[0].description
    assert output.risk_score >= 90
    assert "failed" not in caplog.text


def test_history_event_missing_several_fields(engine, make_batch, now):
    batch = make_batch(["Pending", "Approved"])
    batch.history[0] = replace(batch.history[0], status=None, location=None)

    output = engine.evaluate(batch, now)

    incomplete = [a for a in output.anomalies if a.title == "Incomplete custody event"]
    assert [a.description for a in incomplete] == ["History event 1 is missing status, location"]


def test_failing_rule_marks_evaluation_partial(make_batch, now):
    engine = AnomalyRuleEngine(rules=[ExplodingRule()] + build_rules())

    clean = engine.evaluate(make_batch(["Pending", "Approved"]), now)
    assert clean.is_anomaly is False
    assert "consistent" not in clean.notes
    assert "Evaluation was partial: ExplodingRule could not run" in clean.notes

    flagged = engine.evaluate(make_batch(quantity=0), now)
    assert "Evaluation was partial" in flagged.notes


def test_quick_check_incomplete_history(make_batch, now):
    batch = make_batch(["Pending", "Approved"])
    batch.history[-1] = replace(batch.history[-1], timestamp=None)

    has_issues, issues = quick_check(batch, now)

    assert has_issues
    assert issues == ["Incomplete supply chain history"]
