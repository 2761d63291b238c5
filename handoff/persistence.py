"""
Case persistence.

One serialized collection (JSON array of cases) under one key of a
key-value medium. Every operation is a whole-collection read-modify-write.

Layout (JsonFileMedium):
    outputs/cases/
        handoff_cases_secure_db.json

Design:
- create() prepends, update() replaces in place (falls back to create),
  delete() filters by id
- Free text is sanitized before every write; structured data (result,
  dismissed flags, history) is written as-is
- Writes are atomic: temp file + rename, so a failed write leaves the
  previous collection authoritative
- load_all() fails soft: a corrupt collection reads as empty and the error
  goes to the log, never to the caller
"""

import dataclasses
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

from handoff import config
from handoff.contracts import Case, PatientDetails
from handoff.exceptions import StorageError
from handoff.utils.security import sanitize_input

logger = logging.getLogger(__name__)


def _atomic_write(path: Path, content: str) -> None:
    """Write file atomically via temp file + rename"""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class JsonFileMedium:
    """
    Key-value medium backed by one JSON file per key.

    Raises StorageError for any I/O failure (missing permissions, disk
    full, ...). A key that was never written reads as None.
    """

    def __init__(self, base_dir: Optional[str] = None):
        """
        Args:
            base_dir: Directory for the key files (defaults to config.DATA_DIR)
        """
        self.base_dir = Path(base_dir) if base_dir is not None else config.DATA_DIR
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Storage directory unavailable: {self.base_dir}") from e
        logger.info(f"JsonFileMedium initialized: {self.base_dir}")

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            _atomic_write(self._path(key), value)
        except OSError as e:
            raise StorageError(f"Failed to write {self._path(key)}: {e}") from e


class InMemoryMedium:
    """
    Dict-backed medium for tests and ephemeral sessions.

    Args:
        quota_bytes: If set, writes larger than this raise StorageError
            (mirrors a full browser/local store)
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self._data: Dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and len(value.encode("utf-8")) > self.quota_bytes:
            raise StorageError(f"Quota exceeded writing {key} ({len(value)} chars)")
        self._data[key] = value


class CaseStore:
    """
    Durable store of complete case snapshots.

    Every mutating call returns the refreshed collection, newest first.
    """

    def __init__(
        self,
        medium=None,
        key: Optional[str] = None,
        sanitizer: Callable[[str], str] = sanitize_input
    ):
        """
        Initialize case store.

        Args:
            medium: Object with get(key) / set(key, value) (defaults to JsonFileMedium)
            key: Storage key for the collection (defaults to config.STORAGE_KEY)
            sanitizer: Pure str -> str encoder applied to free text before writes
        """
        self.medium = medium if medium is not None else JsonFileMedium()
        self.key = key or config.STORAGE_KEY
        self.sanitizer = sanitizer
        logger.info(f"CaseStore initialized (key={self.key}, medium={type(self.medium).__name__})")

    # ========================
    # Sanitization
    # ========================

    def sanitize_case(self, case: Case) -> Case:
        """
        Pass every free-text field through the sanitizer.

        Covers name, all patient details, each note's content and label.
        result, dismissed_flags and history are left untouched.
        """
        clean = self.sanitizer
        details = case.patient_details
        return dataclasses.replace(
            case,
            name=clean(case.name),
            patient_details=PatientDetails(
                id=clean(details.id),
                name=clean(details.name),
                age=clean(details.age),
                location=clean(details.location),
                encounter_date=clean(details.encounter_date),
            ),
            notes=tuple(
                dataclasses.replace(note, content=clean(note.content), label=clean(note.label))
                for note in case.notes
            ),
        )

    # ========================
    # Reads
    # ========================

    def _decode(self, raw: str) -> List[Case]:
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"Case collection must be a JSON array, got {type(data).__name__}")
        return [Case.from_json(item) for item in data]

    def _read(self) -> List[Case]:
        """
        Read the collection for a read-modify-write.

        I/O failures propagate as StorageError; corrupt data reads as empty.
        """
        raw = self.medium.get(self.key)
        if not raw:
            return []
        try:
            return self._decode(raw)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Database read error, treating collection as empty: {e}")
            return []

    def load_all(self) -> List[Case]:
        """
        Load every saved case, newest first.

        Never raises: unreadable or corrupt collections return [] and the
        error is logged.
        """
        try:
            cases = self._read()
        except StorageError as e:
            logger.error(f"Database read error: {e}")
            return []
        logger.debug(f"Loaded {len(cases)} cases")
        return cases

    # ========================
    # Writes
    # ========================

    def _write(self, cases: List[Case]) -> None:
        try:
            payload = json.dumps([c.to_json() for c in cases], ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Failed to serialize case collection: {e}") from e
        self.medium.set(self.key, payload)

    def create(self, case: Case) -> List[Case]:
        """
        Prepend a new case and persist the collection.

        No deduplication by id - the caller supplies a fresh id.

        Returns:
            list: Updated collection

        Raises:
            StorageError: If the collection could not be written
        """
        sanitized = self.sanitize_case(case)
        updated = [sanitized] + self._read()
        self._write(updated)
        logger.info(f"Created case {case.id} ({len(updated)} cases stored)")
        return updated

    def update(self, case: Case) -> List[Case]:
        """
        Replace the stored case with the same id, preserving order.

        Unknown ids fall back to create semantics.

        Returns:
            list: Updated collection

        Raises:
            StorageError: If the collection could not be written
        """
        sanitized = self.sanitize_case(case)
        existing = self._read()

        for index, stored in enumerate(existing):
            if stored.id == case.id:
                updated = list(existing)
                updated[index] = sanitized
                self._write(updated)
                logger.info(f"Updated case {case.id}")
                return updated

        logger.warning(f"Case {case.id} not found for update, creating instead")
        updated = [sanitized] + existing
        self._write(updated)
        return updated

    def delete(self, case_id: str) -> List[Case]:
        """
        Remove every case with case_id and persist.

        Unknown ids are a no-op returning the unchanged collection.

        Raises:
            StorageError: If the collection could not be written
        """
        existing = self._read()
        updated = [c for c in existing if c.id != case_id]
        if len(updated) == len(existing):
            logger.info(f"Delete: case {case_id} not found, nothing to remove")
            return existing

        self._write(updated)
        logger.info(f"Deleted case {case_id} ({len(updated)} cases remain)")
        return updated
