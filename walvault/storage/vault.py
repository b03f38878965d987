"""
Local tracking store for stored blobs.

Keeps one BlobRecord per blob id and persists the registry as JSON so renewals
and expiry checks survive restarts.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import StorageError
from ..models import BlobRecord

logger = logging.getLogger(__name__)


class VaultManager:
    """
    JSON-file backed registry of tracked blobs.

    Records are removed only through `remove_blob_record`; a blob disappearing
    from the storage network does not drop its record.
    """

    def __init__(self, records_file: Optional[Path] = None):
        """
        Initialize vault manager.

        Args:
            records_file: JSON file to persist records in (None keeps them in memory)
        """
        self.records_file = Path(records_file) if records_file else None
        self._lock = threading.Lock()
        self._records: Dict[str, BlobRecord] = {}

        if self.records_file is not None:
            self._load()

    def _load(self):
        try:
            with open(self.records_file, "r") as f:
                data = json.load(f)
            self._records = {
                item["blob_id"]: BlobRecord.from_dict(item) for item in data.get("records", [])
            }
            logger.info(f"Loaded {len(self._records)} blob records from {self.records_file}")
        except FileNotFoundError:
            logger.info(f"No records file at {self.records_file}, starting empty")
        except (json.JSONDecodeError, KeyError) as e:
            raise StorageError(
                f"Vault records file {self.records_file} is corrupted: {e}",
                operation="load",
            ) from e

    def _save(self):
        if self.records_file is None:
            return
        data = {"records": [record.to_dict() for record in self._records.values()]}
        self.records_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.records_file.with_suffix(self.records_file.suffix + ".tmp")
        try:
            with open(tmp_file, "w") as f:
                json.dump(data, f, indent=2)
            tmp_file.replace(self.records_file)
        except OSError as e:
            raise StorageError(
                f"Failed to save vault records: {e}",
                operation="save",
                recoverable=True,
            ) from e

    def save_blob_record(self, record: BlobRecord):
        """Create or replace the record for record.blob_id."""
        with self._lock:
            self._records[record.blob_id] = record
            self._save()
        logger.debug(f"Saved record for blob {record.blob_id}")

    def get_blob_record(self, blob_id: str) -> Optional[BlobRecord]:
        with self._lock:
            return self._records.get(blob_id)

    def list_records(self) -> List[BlobRecord]:
        with self._lock:
            return list(self._records.values())

    def remove_blob_record(self, blob_id: str) -> bool:
        """Stop tracking a blob. Returns False if it was not tracked."""
        with self._lock:
            if blob_id not in self._records:
                return False
            del self._records[blob_id]
            self._save()
        logger.info(f"Dropped record for blob {blob_id}")
        return True

    def update_blob_expiry(self, blob_id: str, new_epoch: int):
        """
        Extend a blob's lease end.

        Raises:
            StorageError: blob not tracked
            ValidationError: new_epoch would shorten the lease
        """
        with self._lock:
            record = self._records.get(blob_id)
            if record is None:
                raise StorageError(
                    f"Blob {blob_id} is not tracked",
                    blob_id=blob_id,
                    operation="update_expiry",
                )
            previous = record.expiration_epoch
            record.extend_to(new_epoch)
            self._save()
        logger.info(f"Extended blob {blob_id} lease: epoch {previous} -> {new_epoch}")

    def get_expiring_blobs(
        self,
        within_days: float,
        current_epoch: int,
        epoch_duration_days: float = 1.0,
    ) -> List[BlobRecord]:
        """
        Records whose lease ends within `within_days` of `current_epoch`.

        Already-expired records are included.
        """
        with self._lock:
            expiring = [
                record
                for record in self._records.values()
                if record.epochs_until_expiry(current_epoch) * epoch_duration_days <= within_days
            ]
        return sorted(expiring, key=lambda record: record.expiration_epoch)
