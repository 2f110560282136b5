"""
Document storage with optimistic concurrency.

Every write goes through compare-and-swap on a version counter:
`transform` reads a snapshot, runs the caller's function against it and
commits only if nobody else committed in between, re-running the function
against the newer snapshot otherwise.
"""

import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, List, Optional

import structlog

from escribano.config import get_settings
from escribano.errors import DocumentNotFound, StoreError, VersionConflict
from escribano.models import ChangeGroup
from escribano.nodes import Container, node_from_json, node_to_json

logger = structlog.get_logger(__name__)

DOC_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass
class StoredDocument:
    doc_id: str
    version: int
    content: Container
    change_groups: List[ChangeGroup] = field(default_factory=list)

    def to_json(self) -> dict:
        return {
            "docId": self.doc_id,
            "version": self.version,
            "content": node_to_json(self.content),
            "changeGroups": [g.model_dump(mode="json") for g in self.change_groups],
        }

    @classmethod
    def from_json(cls, doc_id: str, data: dict) -> "StoredDocument":
        # A bare document tree is accepted as version 0.
        if data.get("type") == "doc":
            return cls(doc_id=doc_id, version=0, content=node_from_json(data))
        return cls(
            doc_id=data.get("docId", doc_id),
            version=int(data.get("version", 0)),
            content=node_from_json(data["content"]),
            change_groups=[ChangeGroup.model_validate(g) for g in data.get("changeGroups", [])],
        )


class DocumentStore(ABC):
    """Abstract storage with an atomic compare-and-swap write."""

    def __init__(self, max_retries: Optional[int] = None):
        self.max_retries = max_retries or get_settings().store_max_retries

    @abstractmethod
    def get_snapshot(self, doc_id: str) -> StoredDocument:
        ...

    @abstractmethod
    def compare_and_swap(self, expected_version: int, document: StoredDocument) -> bool:
        """Writes `document` as version expected_version + 1 if the stored version is still expected_version."""
        ...

    @abstractmethod
    def exists(self, doc_id: str) -> bool:
        ...

    def put(self, doc_id: str, content: Container, change_groups: Optional[List[ChangeGroup]] = None) -> StoredDocument:
        """Creates or overwrites a document, bumping its version."""

        def overwrite(current: StoredDocument) -> StoredDocument:
            groups = change_groups if change_groups is not None else current.change_groups
            return replace(current, content=content, change_groups=list(groups))

        if not self.exists(doc_id):
            self.compare_and_swap(-1, StoredDocument(doc_id, -1, content, list(change_groups or [])))
            return self.get_snapshot(doc_id)
        return self.transform(doc_id, overwrite)

    def transform(self, doc_id: str, fn: Callable[[StoredDocument], StoredDocument]) -> StoredDocument:
        for attempt in range(1, self.max_retries + 1):
            snapshot = self.get_snapshot(doc_id)
            result = fn(snapshot)
            if self.compare_and_swap(snapshot.version, result):
                return self.get_snapshot(doc_id)
            logger.info("Version conflict, retrying transform", doc_id=doc_id, attempt=attempt, version=snapshot.version)
        raise VersionConflict(f"Document {doc_id} kept changing; gave up after {self.max_retries} attempts")

    def transform_tree(self, doc_id: str, fn: Callable[[Container], Container]) -> StoredDocument:
        return self.transform(doc_id, lambda snap: replace(snap, content=fn(snap.content)))


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, max_retries: Optional[int] = None):
        super().__init__(max_retries)
        self._docs: Dict[str, StoredDocument] = {}
        self._lock = Lock()

    def exists(self, doc_id: str) -> bool:
        with self._lock:
            return doc_id in self._docs

    def get_snapshot(self, doc_id: str) -> StoredDocument:
        with self._lock:
            stored = self._docs.get(doc_id)
        if stored is None:
            raise DocumentNotFound(f"No document {doc_id}")
        return replace(stored, change_groups=list(stored.change_groups))

    def compare_and_swap(self, expected_version: int, document: StoredDocument) -> bool:
        with self._lock:
            current = self._docs.get(document.doc_id)
            current_version = current.version if current else -1
            if current_version != expected_version:
                return False
            self._docs[document.doc_id] = replace(document, version=expected_version + 1)
            return True


class JsonFileStore(DocumentStore):
    """One JSON file per document under `root_dir`."""

    def __init__(self, root_dir=None, max_retries: Optional[int] = None):
        super().__init__(max_retries)
        self.root_dir = Path(root_dir or get_settings().store_root)
        self._lock = Lock()

    def path_for(self, doc_id: str) -> Path:
        if not DOC_ID_RE.match(doc_id):
            raise StoreError(f"Invalid document id: {doc_id!r}")
        return self.root_dir / f"{doc_id}.json"

    def exists(self, doc_id: str) -> bool:
        return self.path_for(doc_id).exists()

    def _read(self, doc_id: str) -> Optional[StoredDocument]:
        path = self.path_for(doc_id)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return StoredDocument.from_json(doc_id, data)

    def get_snapshot(self, doc_id: str) -> StoredDocument:
        stored = self._read(doc_id)
        if stored is None:
            raise DocumentNotFound(f"No document {doc_id} in {self.root_dir}")
        return stored

    def compare_and_swap(self, expected_version: int, document: StoredDocument) -> bool:
        with self._lock:
            current = self._read(document.doc_id)
            current_version = current.version if current else -1
            if current_version != expected_version:
                return False
            self.root_dir.mkdir(parents=True, exist_ok=True)
            payload = replace(document, version=expected_version + 1).to_json()
            fd, tmp = tempfile.mkstemp(dir=self.root_dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, ensure_ascii=False, indent=2)
                os.replace(tmp, self.path_for(document.doc_id))
            except Exception:
                logger.error("Failed to write document", doc_id=document.doc_id, exc_info=True)
                os.unlink(tmp)
                raise
            return True
