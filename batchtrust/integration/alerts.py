import os
import logging
import requests
from datetime import datetime, timezone
from typing import Iterable, Optional

from batchtrust.models.anomaly import AnomalyRecord
from batchtrust.version_registry import ENGINE_VERSION

logger = logging.getLogger("batchtrust.integration")


def send_anomaly_alert(
    candidates: Iterable[AnomalyRecord],
    webhook_url: Optional[str] = None,
    timeout: float = 2.0,
) -> bool:
    """
    Posts critical/high anomalies to an alerting webhook (Logic Apps,
    Power Automate, Teams connector).

    Returns True when the webhook accepted the alert. Never raises:
    a failed alert must not stop the evaluation that produced it.
    """
    candidates = list(candidates)
    if not candidates:
        return False

    webhook_url = webhook_url or os.getenv("BATCHTRUST_ALERT_WEBHOOK_URL")
    if not webhook_url:
        logger.warning(f"{len(candidates)} alert candidates but BATCHTRUST_ALERT_WEBHOOK_URL is not set.")
        return False

    # Identifiers and classifications only; descriptions stay in the audit trail.
    payload = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "alert_level": "HIGH_RISK",
        "engine": ENGINE_VERSION,
        "anomaly_count": len(candidates),
        "batch_ids": sorted({c.batch_id for c in candidates}),
        "anomalies": [
            {
                "id": c.anomaly_id,
                "batchId": c.batch_id,
                "type": c.anomaly_type.value,
                "severity": c.severity.value,
                "title": c.title,
            }
            for c in candidates
        ],
    }

    try:
        response = requests.post(
            webhook_url,
            json=payload,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        logger.info(f"Anomaly alert sent. Status: {response.status_code}")
        return True

    except requests.exceptions.RequestException as e:
        logger.error(f"Failed to send anomaly alert: {e}")
        return False
