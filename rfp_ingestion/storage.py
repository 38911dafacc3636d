"""
storage.py — Document store, blob store, and storage-path conventions.

The pipeline only needs two things from the outside world: the uploaded
bytes, and a way to update a document record. Both are small protocols
so the managed store can be swapped in without touching the pipeline.
The in-memory store backs tests and the CLI; the JSON store keeps one
file per record under a root directory, which is enough for the local
upload trigger.

Upload paths encode which record an upload belongs to:

    users/{userId}/projects/{projectId}/{file}   -> users/{userId}/projects/{projectId}
    teams/{teamId}/projects/{projectId}/{file}   -> teams/{teamId}/projects/{projectId}
    teams/{teamId}/rfps/{rfpId}/{file}           -> teams/{teamId}/rfps/{rfpId}
    users/{userId}/knowledge/{file}              -> knowledge base upload

Anything else isn't ours and gets skipped.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Protocol, Tuple

from rfp_ingestion.errors import DocumentNotFound

logger = logging.getLogger(__name__)

RefKind = Literal["user_project", "team_project", "team_rfp"]


@dataclass(frozen=True)
class DocumentRef:
    kind: RefKind
    owner_id: str
    doc_id: str

    @property
    def collection(self) -> str:
        root, child = {
            "user_project": ("users", "projects"),
            "team_project": ("teams", "projects"),
            "team_rfp": ("teams", "rfps"),
        }[self.kind]
        return f"{root}/{self.owner_id}/{child}"

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.doc_id}"

    @property
    def is_project(self) -> bool:
        return self.kind in ("user_project", "team_project")


def resolve_document_ref(storage_path: str) -> Optional[DocumentRef]:
    """Map an upload path to the document it belongs to, or None."""
    parts = storage_path.strip("/").split("/")
    if len(parts) < 5 or not all(parts[:4]):
        return None

    root, owner_id, child, doc_id = parts[:4]
    if root == "users" and child == "projects":
        return DocumentRef("user_project", owner_id, doc_id)
    if root == "teams" and child == "projects":
        return DocumentRef("team_project", owner_id, doc_id)
    if root == "teams" and child == "rfps":
        return DocumentRef("team_rfp", owner_id, doc_id)
    return None


def resolve_knowledge_path(storage_path: str) -> Optional[Tuple[str, str]]:
    """users/{userId}/knowledge/{file} -> (userId, file), else None."""
    parts = storage_path.strip("/").split("/")
    if len(parts) < 4 or parts[0] != "users" or parts[2] != "knowledge":
        return None
    if not parts[1] or not parts[-1]:
        return None
    return parts[1], parts[-1]


# ── Protocols ─────────────────────────────────────────────────────────────


class DocumentStore(Protocol):
    def get(self, ref: str) -> Optional[Dict[str, Any]]: ...

    def set(self, ref: str, data: Dict[str, Any]) -> None: ...

    def update(self, ref: str, data: Dict[str, Any]) -> None: ...


class BlobStore(Protocol):
    def download(self, path: str) -> bytes: ...


# ── Implementations ───────────────────────────────────────────────────────


class InMemoryDocumentStore:
    """Dict-backed store. update() merges top-level keys like the real one."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, ref: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(ref)
            return copy.deepcopy(record) if record is not None else None

    def set(self, ref: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._records[ref] = copy.deepcopy(data)

    def update(self, ref: str, data: Dict[str, Any]) -> None:
        with self._lock:
            if ref not in self._records:
                raise DocumentNotFound(ref)
            self._records[ref].update(copy.deepcopy(data))


class JsonDocumentStore:
    """One pretty-printed JSON file per record: <root>/<ref>.json."""

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path_for(self, ref: str) -> Path:
        path = (self.root / f"{ref.strip('/')}.json").resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Document ref escapes store root: {ref}")
        return path

    def get(self, ref: str) -> Optional[Dict[str, Any]]:
        path = self._path_for(ref)
        with self._lock:
            if not path.exists():
                return None
            return json.loads(path.read_text(encoding="utf-8"))

    def set(self, ref: str, data: Dict[str, Any]) -> None:
        path = self._path_for(ref)
        with self._lock:
            self._write(path, data)

    def update(self, ref: str, data: Dict[str, Any]) -> None:
        path = self._path_for(ref)
        with self._lock:
            if not path.exists():
                raise DocumentNotFound(ref)
            record = json.loads(path.read_text(encoding="utf-8"))
            record.update(data)
            self._write(path, record)

    @staticmethod
    def _write(path: Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
        tmp.replace(path)
        logger.debug("Wrote %s", path)


class LocalBlobStore:
    """Reads uploads from a local directory laid out like the bucket."""

    def __init__(self, root: str):
        self.root = Path(root)

    def download(self, path: str) -> bytes:
        full_path = (self.root / path.lstrip("/")).resolve()
        if self.root.resolve() not in full_path.parents:
            raise ValueError(f"Storage path escapes blob root: {path}")
        if not full_path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        return full_path.read_bytes()
