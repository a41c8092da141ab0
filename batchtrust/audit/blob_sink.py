import json
import logging
import threading
from collections import OrderedDict
from typing import Optional

from azure.storage.blob import BlobClient

from batchtrust.audit.sink import AuditSink
from batchtrust.authenticity.hash_utils import sha256_hex
from batchtrust.models.audit_event import AuditEvent

logger = logging.getLogger("batchtrust.audit")

EXCLUDED_HASH_FIELDS = {
    "recordHash",
}

DEFAULT_MAX_TRACKED_BATCHES = 10_000


def compute_record_hash(record: dict) -> str:
    """
    Hash over an audit record, excluding its own hash field.
    """
    return sha256_hex({k: v for k, v in record.items() if k not in EXCLUDED_HASH_FIELDS})


class BlobAuditSink(AuditSink):
    """
    Writes each audit event as an immutable blob, chained per batch
    through `previousRecordHash`.

    Only the `max_tracked_batches` most recently active chains are held in
    memory. An evicted batch starts a new chain (previousRecordHash None)
    on its next event.

    Wrap in FireAndForgetAuditSink: uploads are network calls.
    """

    def __init__(
        self,
        connection_string: str,
        container_name: str,
        max_tracked_batches: int = DEFAULT_MAX_TRACKED_BATCHES,
    ):
        self.connection_string = connection_string
        self.container_name = container_name
        self.max_tracked_batches = max_tracked_batches
        self._last_hash: "OrderedDict[str, str]" = OrderedDict()
        self._sequence = 0
        self._lock = threading.Lock()

    def _get_blob_client(self, blob_name: str) -> BlobClient:
        return BlobClient.from_connection_string(
            conn_str=self.connection_string,
            container_name=self.container_name,
            blob_name=blob_name,
        )

    def build_record(self, event: AuditEvent) -> dict:
        with self._lock:
            self._sequence += 1
            previous: Optional[str] = self._last_hash.get(event.batch_id)
            record = {
                **event.to_dict(),
                "sequence": self._sequence,
                "previousRecordHash": previous,
            }
            record["recordHash"] = compute_record_hash(record)
            self._last_hash[event.batch_id] = record["recordHash"]
            self._last_hash.move_to_end(event.batch_id)
            while len(self._last_hash) > self.max_tracked_batches:
                self._last_hash.popitem(last=False)
        return record

    def emit(self, event: AuditEvent) -> None:
        record = self.build_record(event)

        blob_client = self._get_blob_client(
            blob_name=f"{event.batch_id}/{record['sequence']:012d}-{event.event_type}.json"
        )

        blob_client.upload_blob(
            data=json.dumps(record, indent=2, default=str),
            overwrite=False  # audit records are write-once
        )
        logger.debug(f"Audit record {record['sequence']} written for {event.batch_id}")
