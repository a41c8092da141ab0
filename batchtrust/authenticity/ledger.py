import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

import requests

from batchtrust.authenticity.hashing import compute_data_hash, to_unix_seconds
from batchtrust.exceptions import DuplicateBatch, LedgerUnavailable
from batchtrust.models.batch import Batch, BatchDraft

logger = logging.getLogger("batchtrust.authenticity")


class LedgerClient(ABC):
    """
    Authoritative system of record for batch data hashes.
    """

    @abstractmethod
    def fetch_authoritative_hash(self, batch_code: str) -> Optional[str]:
        """
        Return the stored hash, or None when the batch code is unknown.
        Raise LedgerUnavailable when the ledger cannot answer.
        """

    @abstractmethod
    def record_creation(self, draft: BatchDraft) -> str:
        """
        Register a new batch and return the hash the ledger assigned.
        Called exactly once per batch.
        """


class InMemoryLedger(LedgerClient):
    """
    Process-local ledger used by tests, the demo and offline deployments.
    """

    def __init__(self):
        self._hashes: Dict[str, str] = {}
        self._lock = threading.Lock()

    def fetch_authoritative_hash(self, batch_code: str) -> Optional[str]:
        with self._lock:
            return self._hashes.get(batch_code)

    def record_creation(self, draft: BatchDraft) -> str:
        data_hash = compute_data_hash(
            batch_code=draft.batch_id,
            drug_name=draft.drug_name,
            quantity=draft.quantity,
            mfg_date_unix_seconds=to_unix_seconds(draft.mfg_date),
            exp_date_unix_seconds=to_unix_seconds(draft.exp_date),
            manufacturer=draft.manufacturer,
        )
        with self._lock:
            if draft.batch_id in self._hashes:
                raise DuplicateBatch(f"Batch {draft.batch_id} is already recorded on the ledger")
            self._hashes[draft.batch_id] = data_hash
        return data_hash

    def register(self, batch: Batch) -> None:
        """Seeds the ledger with an existing batch's stored hash."""
        with self._lock:
            self._hashes[batch.batch_id] = batch.data_hash


class HttpLedgerClient(LedgerClient):
    """
    Ledger gateway reached over HTTP.

    GET  {base_url}/batches/{code}/hash -> {"dataHash": "0x..."} or 404
    POST {base_url}/batches            -> {"dataHash": "0x..."}
    """

    def __init__(self, base_url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_authoritative_hash(self, batch_code: str) -> Optional[str]:
        try:
            response = self.session.get(
                f"{self.base_url}/batches/{batch_code}/hash",
                timeout=self.timeout,
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()["dataHash"]
        except requests.exceptions.RequestException as e:
            logger.error(f"Ledger lookup failed for {batch_code}: {type(e).__name__}")
            raise LedgerUnavailable(f"Ledger lookup failed for {batch_code}") from e
        except (KeyError, ValueError) as e:
            logger.error(f"Ledger returned an unreadable response for {batch_code}")
            raise LedgerUnavailable(f"Ledger response for {batch_code} is unreadable") from e

    def record_creation(self, draft: BatchDraft) -> str:
        body = {
            "batchCode": draft.batch_id,
            "drugName": draft.drug_name,
            "quantity": draft.quantity,
            "mfgDate": to_unix_seconds(draft.mfg_date),
            "expDate": to_unix_seconds(draft.exp_date),
            "manufacturer": draft.manufacturer,
        }
        try:
            response = self.session.post(
                f"{self.base_url}/batches",
                json=body,
                timeout=self.timeout,
            )
            if response.status_code == 409:
                raise DuplicateBatch(f"Batch {draft.batch_id} is already recorded on the ledger")
            response.raise_for_status()
            return response.json()["dataHash"]
        except requests.exceptions.RequestException as e:
            logger.error(f"Ledger registration failed for {draft.batch_id}: {type(e).__name__}")
            raise LedgerUnavailable(f"Ledger registration failed for {draft.batch_id}") from e
        except (KeyError, ValueError) as e:
            raise LedgerUnavailable(f"Ledger response for {draft.batch_id} is unreadable") from e
