"""
Record Store

The keyed read/modify/write collaborator the retrieval and pattern engines
consume, plus a JSON-file implementation.

Only single-record upserts are atomic; nothing assumes cross-record atomicity.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from .config import DATA_PATH
from .schemas import EmbeddingRecord, ExperienceRecord

logger = logging.getLogger("bridge.common.store")


@runtime_checkable
class RecordStore(Protocol):
    """CRUD contract for experience records"""

    def get_all_records(self) -> List[ExperienceRecord]: ...

    def get_record(self, record_id: str) -> Optional[ExperienceRecord]: ...

    def save_record(self, record: ExperienceRecord) -> None: ...

    def save_embedding(self, embedding: EmbeddingRecord) -> None: ...

    def delete_record(self, record_id: str) -> bool: ...


class JsonRecordStore:
    """
    Experience records persisted to a single JSON file.

    The file is rewritten through a temp file and os.replace() so a crash
    never leaves a half-written store behind.

    Layout:
        {"records": [...], "embeddings": {"<id>": {"generated": "..."}}}
    """

    def __init__(self, data_path: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            data_path: Path to the data file (default: ~/.bridge/experiences.json)
        """
        self._data_path = Path(data_path) if data_path else DATA_PATH
        self._records: Dict[str, ExperienceRecord] = {}
        self._embedding_meta: Dict[str, str] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._data_path

    def _load(self) -> None:
        """Load records from disk"""
        if not self._data_path.exists():
            self._records = {}
            return

        try:
            with open(self._data_path) as f:
                data = json.load(f)

            self._records = {}
            for item in data.get("records", []):
                record = ExperienceRecord.model_validate(item)
                self._records[record.id] = record
            self._embedding_meta = {
                key: value.get("generated", "")
                for key, value in data.get("embeddings", {}).items()
            }
        except (json.JSONDecodeError, IOError, ValueError) as e:
            logger.warning("Failed to load record store %s: %s", self._data_path, e)
            self._records = {}
            self._embedding_meta = {}

    def _save(self) -> None:
        """Write all records to disk atomically"""
        self._data_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "records": [r.model_dump(mode="json") for r in self._records.values()],
            "embeddings": {
                key: {"generated": generated}
                for key, generated in self._embedding_meta.items()
                if key in self._records
            },
        }

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._data_path.parent), prefix=".bridge-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp_path, self._data_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get_all_records(self) -> List[ExperienceRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]

    def get_record(self, record_id: str) -> Optional[ExperienceRecord]:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    def save_record(self, record: ExperienceRecord) -> None:
        """Insert or replace a record; ``created`` of an existing record is kept"""
        existing = self._records.get(record.id)
        if existing is not None and existing.created != record.created:
            record = record.model_copy(update={"created": existing.created})
        self._records[record.id] = record.model_copy(deep=True)
        self._save()

    def save_embedding(self, embedding: EmbeddingRecord) -> None:
        """Attach a vector to its record (ignored if the record is gone)"""
        record = self._records.get(embedding.source_id)
        if record is None:
            logger.warning("Embedding for unknown record %s ignored", embedding.source_id)
            return
        self._records[record.id] = record.model_copy(update={"embedding": list(embedding.vector)})
        generated = embedding.generated or datetime.now(timezone.utc)
        self._embedding_meta[record.id] = generated.isoformat()
        self._save()

    def delete_record(self, record_id: str) -> bool:
        if record_id not in self._records:
            return False
        del self._records[record_id]
        self._embedding_meta.pop(record_id, None)
        self._save()
        return True

    def __len__(self) -> int:
        return len(self._records)
