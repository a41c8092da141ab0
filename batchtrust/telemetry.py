"""
Operational telemetry.

Span events carry outcomes and timings only: no batch payloads, hashes,
locations or actor identities.
"""
import os
import logging
from typing import Literal

from opentelemetry.trace import get_current_span

logger = logging.getLogger("batchtrust.telemetry")

VerificationOutcome = Literal["Authentic", "HashMismatch", "NotFound", "Expired", "Unknown"]

_VERIFICATION_OUTCOMES = ("Authentic", "HashMismatch", "NotFound", "Expired", "Unknown")


def init_telemetry():
    """
    Initialize Azure Application Insights via OpenTelemetry.
    No-op unless AZURE_APPINSIGHTS_CONNECTION_STRING is set.
    """
    connection_string = os.getenv("AZURE_APPINSIGHTS_CONNECTION_STRING")

    if not connection_string:
        return  # Telemetry disabled (local / tests)

    from azure.monitor.opentelemetry import configure_azure_monitor

    configure_azure_monitor(
        connection_string=connection_string
    )
    logger.info("Azure Monitor telemetry configured")


def _active_span():
    span = get_current_span()
    if not span or not span.is_recording():
        return None
    return span


def emit_evaluation_telemetry(
    evaluation_latency_ms: int,
    risk_score: int,
    anomaly_count: int,
    mode: Literal["single", "fleet"],
):
    """
    One event per evaluation call. Attributes are fixed.
    """
    assert isinstance(evaluation_latency_ms, int), "evaluation_latency_ms must be int"
    assert isinstance(risk_score, int), "risk_score must be int"
    assert isinstance(anomaly_count, int), "anomaly_count must be int"
    assert mode in ("single", "fleet"), f"mode must be 'single' or 'fleet', got {mode}"

    span = _active_span()
    if span is None:
        return

    span.add_event(
        name="batchtrust.evaluation",
        attributes={
            "evaluation_latency_ms": evaluation_latency_ms,
            "risk_score": risk_score,
            "anomaly_count": anomaly_count,
            "mode": mode,
        }
    )


def emit_verification_telemetry(status: VerificationOutcome):
    """
    Verification outcome only. Never the batch code or either hash.
    """
    assert status in _VERIFICATION_OUTCOMES, f"status must be one of {_VERIFICATION_OUTCOMES}, got {status}"

    span = _active_span()
    if span is None:
        return

    span.add_event(
        name="batchtrust.verification",
        attributes={
            "verification_status": status,
        }
    )


def scrub_exception_for_telemetry(exception: Exception) -> str:
    """
    Exception messages may contain batch data. Report the class name only.
    """
    return type(exception).__name__


def emit_exception_telemetry(exception: Exception):
    span = _active_span()
    if span is None:
        return

    span.add_event(
        name="batchtrust.exception",
        attributes={
            "exception_type": scrub_exception_for_telemetry(exception)
        }
    )
