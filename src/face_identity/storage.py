"""Gallery, pending-registration and recognition-history storage.

The engine treats the data store as an external collaborator and only needs
the interfaces below. In-memory and JSON file implementations live here;
the Firebase Realtime Database implementation is in firebase_store.py.

Writers always replace a whole gallery entry (read entry, compute the new
angle list, write back) through ``GalleryStore.update``, which runs under a
per-identity lock so concurrent appends are never lost.
"""

import json
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .constants import get_config
from .gallery import GalleryEntry, PendingRegistration, RecognitionRecord

logger = logging.getLogger(__name__)

EntryUpdater = Callable[[Optional[GalleryEntry]], Optional[GalleryEntry]]


# =============================================================================
# Interfaces
# =============================================================================

class GalleryStore(ABC):
    """Persistent gallery keyed by identity."""

    @abstractmethod
    def get(self, identity_key: str) -> Optional[GalleryEntry]:
        """Get an entry, or None if not registered."""

    @abstractmethod
    def put(self, entry: GalleryEntry) -> None:
        """Write an entry, replacing any existing one."""

    @abstractmethod
    def delete(self, identity_key: str) -> bool:
        """Remove an entry. Returns False if it did not exist."""

    @abstractmethod
    def list_entries(self) -> List[GalleryEntry]:
        """Snapshot of all entries."""

    @abstractmethod
    def update(self, identity_key: str, updater: EntryUpdater) -> Optional[GalleryEntry]:
        """Atomically replace an entry with ``updater(current)``.

        ``updater`` receives the current entry (or None) and returns the new
        entry, or None to leave the store untouched. Returns the stored entry.
        """

    def list_identities(self) -> List[str]:
        return [entry.identity_key for entry in self.list_entries()]

    def __contains__(self, identity_key: str) -> bool:
        return self.get(identity_key) is not None

    def __len__(self) -> int:
        return len(self.list_entries())


class PendingRegistrationQueue(ABC):
    """Registrations awaiting approval."""

    @abstractmethod
    def write_pending(self, registration: PendingRegistration) -> str:
        """Store a pending registration and return its id."""

    @abstractmethod
    def read_pending(self, registration_id: str) -> Optional[PendingRegistration]:
        """Get a pending registration, or None."""

    @abstractmethod
    def list_pending(self) -> List[PendingRegistration]:
        """All pending registrations."""

    @abstractmethod
    def remove_pending(self, registration_id: str) -> bool:
        """Remove a pending registration. Returns False if it did not exist."""

    @abstractmethod
    def take_pending(self, registration_id: str) -> Optional[PendingRegistration]:
        """Atomically remove and return a pending registration, or None.

        Of several concurrent callers for the same id, exactly one gets the
        registration.
        """

    @staticmethod
    def new_registration_id() -> str:
        return uuid.uuid4().hex[:12]


class RecognitionHistoryLog(ABC):
    """Past recognitions per identity, consumed by adaptive refinement."""

    @abstractmethod
    def append(self, identity_key: str, record: RecognitionRecord) -> None:
        """Record one recognition."""

    @abstractmethod
    def get_history(self, identity_key: str) -> List[RecognitionRecord]:
        """All recognitions of an identity, oldest first."""


# =============================================================================
# In-memory implementations
# =============================================================================

class InMemoryGalleryStore(GalleryStore):
    """Gallery held in a dict, with single-writer-per-identity updates."""

    def __init__(self):
        self._entries: Dict[str, GalleryEntry] = {}
        self._lock = threading.RLock()
        self._identity_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)

    def _identity_lock(self, identity_key: str) -> threading.Lock:
        with self._lock:
            return self._identity_locks[identity_key]

    def get(self, identity_key: str) -> Optional[GalleryEntry]:
        with self._lock:
            return self._entries.get(identity_key)

    def put(self, entry: GalleryEntry) -> None:
        with self._lock:
            self._entries[entry.identity_key] = entry
            self._persist()
        logger.debug(f"Stored {entry.identity_key} ({len(entry.angles)} angle(s))")

    def delete(self, identity_key: str) -> bool:
        with self._lock:
            if identity_key not in self._entries:
                return False
            del self._entries[identity_key]
            self._persist()
        logger.info(f"Removed identity: {identity_key}")
        return True

    def list_entries(self) -> List[GalleryEntry]:
        with self._lock:
            return list(self._entries.values())

    def update(self, identity_key: str, updater: EntryUpdater) -> Optional[GalleryEntry]:
        with self._identity_lock(identity_key):
            current = self.get(identity_key)
            new_entry = updater(current)
            if new_entry is None:
                return current
            if new_entry.identity_key != identity_key:
                raise ValueError(
                    f"Updater changed identity {identity_key!r} to {new_entry.identity_key!r}"
                )
            self.put(new_entry)
            return new_entry

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._entries.clear()
            self._persist()
        logger.info("Gallery cleared")

    def _persist(self) -> None:
        """Hook for durable subclasses. Called with the store lock held."""


class InMemoryPendingQueue(PendingRegistrationQueue):
    """Pending registrations held in a dict."""

    def __init__(self):
        self._pending: Dict[str, PendingRegistration] = {}
        self._lock = threading.RLock()

    def write_pending(self, registration: PendingRegistration) -> str:
        with self._lock:
            self._pending[registration.registration_id] = registration
            self._persist()
        logger.info(
            f"Pending registration {registration.registration_id} for "
            f"{registration.identity_key} ({len(registration.angles)} angle(s))"
        )
        return registration.registration_id

    def read_pending(self, registration_id: str) -> Optional[PendingRegistration]:
        with self._lock:
            return self._pending.get(registration_id)

    def list_pending(self) -> List[PendingRegistration]:
        with self._lock:
            return list(self._pending.values())

    def remove_pending(self, registration_id: str) -> bool:
        with self._lock:
            if self._pending.pop(registration_id, None) is None:
                return False
            self._persist()
            return True

    def take_pending(self, registration_id: str) -> Optional[PendingRegistration]:
        with self._lock:
            registration = self._pending.pop(registration_id, None)
            if registration is not None:
                self._persist()
            return registration

    def _persist(self) -> None:
        """Hook for durable subclasses. Called with the queue lock held."""


class InMemoryRecognitionHistory(RecognitionHistoryLog):
    """Recognition history held in a dict of lists."""

    def __init__(self):
        self._history: Dict[str, List[RecognitionRecord]] = defaultdict(list)
        self._lock = threading.RLock()

    def append(self, identity_key: str, record: RecognitionRecord) -> None:
        with self._lock:
            self._history[identity_key].append(record)
            self._persist_record(identity_key, record)

    def get_history(self, identity_key: str) -> List[RecognitionRecord]:
        with self._lock:
            return list(self._history.get(identity_key, []))

    def _persist_record(self, identity_key: str, record: RecognitionRecord) -> None:
        """Hook for durable subclasses. Called with the log lock held."""


# =============================================================================
# JSON file implementations
# =============================================================================

def _read_json(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f) or {}
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load {path}: {e}")
        raise


def _write_json(path: Path, data: dict) -> None:
    """Write atomically so readers never see a half-written file."""
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f)
    os.replace(tmp_path, path)


class JsonGalleryStore(InMemoryGalleryStore):
    """Gallery persisted to ``<directory>/gallery.json``."""

    def __init__(self, directory: str):
        super().__init__()
        self._path = Path(directory) / "gallery.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        for key, record in _read_json(self._path).items():
            self._entries[key] = GalleryEntry.from_dict(record, identity_key=key)
        if self._entries:
            logger.info(f"Loaded {len(self._entries)} identities from {self._path}")

    def _persist(self) -> None:
        _write_json(self._path, {k: e.to_dict() for k, e in self._entries.items()})


class JsonPendingQueue(InMemoryPendingQueue):
    """Pending registrations persisted to ``<directory>/pending.json``."""

    def __init__(self, directory: str):
        super().__init__()
        self._path = Path(directory) / "pending.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        for reg_id, record in _read_json(self._path).items():
            self._pending[reg_id] = PendingRegistration.from_dict(record, registration_id=reg_id)

    def _persist(self) -> None:
        _write_json(self._path, {k: p.to_dict() for k, p in self._pending.items()})


class JsonRecognitionHistory(InMemoryRecognitionHistory):
    """Recognition history appended to ``<directory>/history.jsonl``.

    One JSON object per line, so recording a recognition costs one line
    write regardless of how long the history already is.
    """

    def __init__(self, directory: str):
        super().__init__()
        self._path = Path(directory) / "history.jsonl"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            return
        with open(self._path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping unreadable line {line_number} of {self._path}: {e}")
                    continue
                key = data.pop("identity_key")
                self._history[key].append(RecognitionRecord.from_dict(data))

    def _persist_record(self, identity_key: str, record: RecognitionRecord) -> None:
        line = json.dumps({"identity_key": identity_key, **record.to_dict()})
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(line + "\n")


# =============================================================================
# Factory
# =============================================================================

@dataclass
class Storage:
    """The three stores the engine talks to."""

    gallery: GalleryStore
    pending: PendingRegistrationQueue
    history: RecognitionHistoryLog


def open_storage(backend: Optional[str] = None, path: Optional[str] = None) -> Storage:
    """Open the configured storage backend.

    Args:
        backend: "memory", "file" or "firebase" (uses config if None)
        path: Directory for the file backend (uses config if None)
    """
    config = get_config()
    backend = (backend or config.get("storage", "backend", default="memory")).lower()

    if backend == "memory":
        return Storage(
            gallery=InMemoryGalleryStore(),
            pending=InMemoryPendingQueue(),
            history=InMemoryRecognitionHistory(),
        )
    if backend == "file":
        directory = path or config.get("storage", "path", default="data/gallery")
        return Storage(
            gallery=JsonGalleryStore(directory),
            pending=JsonPendingQueue(directory),
            history=JsonRecognitionHistory(directory),
        )
    if backend == "firebase":
        from .firebase_store import open_firebase_storage
        return open_firebase_storage(
            credentials_path=config.get("storage", "firebase", "credentials_path"),
            database_url=config.get("storage", "firebase", "database_url"),
        )
    raise ValueError(f"Unknown storage backend: {backend}")
