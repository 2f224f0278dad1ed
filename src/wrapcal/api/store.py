"""File-backed document storage for base styles and saved calendars.

Each collection lives in a single JSON file under ``data_dir``
(``base_styles.json``, ``calendars.json``) holding a list of documents.
Documents get a 32-character hex ``id`` and ISO-8601 ``created_at`` /
``updated_at`` timestamps on creation.

The store is deliberately simple:

- listing is newest first (by ``created_at``)
- a missing, empty, or unreadable file is an empty collection
- every write rewrites the whole file

Route handlers run in FastAPI's threadpool, so reads and writes on one
collection are serialised with a lock.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def is_valid_id(value: str | None) -> bool:
    """Whether *value* has the shape of a document id."""
    return bool(value) and _ID_RE.match(value) is not None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentStore:
    """A JSON-file collection of documents.

    Args:
        path: Location of the collection file.  Parent directories are
            created on first write.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    # -- Persistence --------------------------------------------------------

    def _load(self) -> list[dict]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8") as handle:
                documents = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s, treating it as empty: %s", self.path, e)
            return []

        if not isinstance(documents, list):
            return []
        return [doc for doc in documents if isinstance(doc, dict) and doc.get("id")]

    def _save(self, documents: list[dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(documents, handle, indent=2)

    # -- CRUD ---------------------------------------------------------------

    def list_documents(self) -> list[dict]:
        """Return every document, newest first."""
        with self._lock:
            documents = self._load()
        return sorted(documents, key=lambda doc: doc.get("created_at", ""), reverse=True)

    def get(self, document_id: str) -> dict | None:
        """Return the document with *document_id*, or ``None``."""
        with self._lock:
            documents = self._load()
        return next((doc for doc in documents if doc["id"] == document_id), None)

    def create(self, fields: dict[str, Any]) -> dict:
        """Insert a new document and return it with its id and timestamps."""
        now = _now()
        document = {
            **fields,
            "id": uuid.uuid4().hex,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            documents = self._load()
            documents.append(document)
            self._save(documents)

        logger.info("Created document %s in %s.", document["id"], self.path.name)
        return document

    def update(self, document_id: str, fields: dict[str, Any]) -> dict | None:
        """Apply *fields* to a document.

        ``None`` values are ignored, so callers can pass a partial update
        straight through.  ``id`` and ``created_at`` cannot be changed.

        Returns:
            The updated document, or ``None`` if it does not exist.
        """
        changes = {
            key: value
            for key, value in fields.items()
            if value is not None and key not in ("id", "created_at", "updated_at")
        }
        with self._lock:
            documents = self._load()
            document = next((doc for doc in documents if doc["id"] == document_id), None)
            if document is None:
                return None
            document.update(changes)
            document["updated_at"] = _now()
            self._save(documents)

        return document

    def delete(self, document_id: str) -> bool:
        """Remove a document.  Returns ``True`` if one was removed."""
        with self._lock:
            documents = self._load()
            remaining = [doc for doc in documents if doc["id"] != document_id]
            if len(remaining) == len(documents):
                return False
            self._save(remaining)

        logger.info("Deleted document %s from %s.", document_id, self.path.name)
        return True


def paginate(documents: list[dict], limit: int | None, offset: int) -> list[dict]:
    """Slice *documents* by ``offset`` and optional ``limit``."""
    end = offset + limit if limit is not None else None
    return documents[offset:end]
