"""
File backed document store.

Each provision document is kept in its own joblib file together with its
version and lock flag. Writes go through a temporary file and a rename so a
crash never leaves a half written document behind.
"""

import copy
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import joblib

from .errors import (
    DocumentLockedError,
    DocumentNotFoundError,
    StaleDocumentError,
    StoreError,
)
from .settings import get_settings

logger = logging.getLogger(__name__)


class FileDocumentStore:
    """
    DocumentStore persisted with joblib.

    Features:
    - One file per document, named after the document id
    - Optimistic locking: update() requires the current version
    - Exclusive lock flag per document
    - Thread-safe operations
    """

    def __init__(self, directory: Optional[Path] = None):
        """
        Initialize FileDocumentStore.

        Args:
            directory: Where documents are written (defaults to settings.state_dir)
        """
        self.directory = Path(directory) if directory else get_settings().state_dir
        self._lock = threading.RLock()
        logger.info(f"FileDocumentStore initialized in: {self.directory}")

    def _path(self, document_id: int) -> Path:
        return self.directory / f"{int(document_id)}.joblib"

    def _read(self, document_id: int) -> Dict[str, Any]:
        path = self._path(document_id)
        if not path.exists():
            raise DocumentNotFoundError(f"Document {document_id} not found")

        try:
            return joblib.load(path)
        except Exception as e:
            logger.error(f"Failed to load document {document_id}: {e}")
            raise StoreError(f"Could not read document {document_id}: {e}") from e

    def _write(self, document_id: int, record: Dict[str, Any]) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)

            # Write to temporary file first, then rename (atomic operation)
            path = self._path(document_id)
            temp_file = path.with_suffix(".tmp")
            joblib.dump(record, temp_file)
            temp_file.replace(path)
            logger.debug(f"Saved document {document_id} (version {record['version']})")

        except Exception as e:
            logger.error(f"Failed to save document {document_id}: {e}")
            raise StoreError(f"Could not save document {document_id}: {e}") from e

    def allocate(self, body: Dict[str, Any], name: str) -> Tuple[int, int]:
        with self._lock:
            ids = [int(p.stem) for p in self.directory.glob("*.joblib")]
            document_id = max(ids, default=-1) + 1

            self._write(document_id, {
                "name": name,
                "body": copy.deepcopy(body),
                "version": 1,
                "locked": False,
            })
            logger.info(f"Allocated document {document_id} ({name})")
            return document_id, 1

    def info(self, document_id: int) -> Tuple[Dict[str, Any], int]:
        with self._lock:
            record = self._read(document_id)
            return copy.deepcopy(record["body"]), record["version"]

    def update(self, document_id: int, body: Dict[str, Any], version: int) -> int:
        with self._lock:
            record = self._read(document_id)

            if record["version"] != version:
                raise StaleDocumentError(
                    f"Document {document_id} is at version {record['version']}, "
                    f"refusing update based on version {version}"
                )

            record["body"] = copy.deepcopy(body)
            record["version"] += 1
            self._write(document_id, record)
            return record["version"]

    def delete(self, document_id: int) -> None:
        with self._lock:
            self._read(document_id)
            self._path(document_id).unlink()
            logger.info(f"Deleted document {document_id}")

    def lock(self, document_id: int) -> None:
        with self._lock:
            record = self._read(document_id)
            if record["locked"]:
                raise DocumentLockedError(f"Document {document_id} is locked")

            record["locked"] = True
            self._write(document_id, record)

    def unlock(self, document_id: int) -> None:
        with self._lock:
            record = self._read(document_id)
            record["locked"] = False
            self._write(document_id, record)

    def is_locked(self, document_id: int) -> bool:
        with self._lock:
            return self._read(document_id)["locked"]

    def list(self) -> List[Tuple[int, str]]:
        """Ids and names of every stored document, ordered by id."""
        with self._lock:
            documents = []
            for path in sorted(self.directory.glob("*.joblib"), key=lambda p: int(p.stem)):
                documents.append((int(path.stem), self._read(int(path.stem))["name"]))
            return documents
