"""Firebase Realtime Database storage.

Records live under the same paths the web client uses:

    faceEmbeddings/<identity_key>            gallery entries
    pendingFaceRegistrations/<registration>  registrations awaiting approval
    recognitionHistory/<identity_key>/<push> recognition records

Gallery updates and pending-registration claims run as RTDB transactions, so
concurrent writers on different hosts cannot lose each other's appended angles
or approve the same registration twice.
"""

import logging
from typing import Any, Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, db

from .gallery import GalleryEntry, PendingRegistration, RecognitionRecord
from .storage import (
    EntryUpdater,
    GalleryStore,
    PendingRegistrationQueue,
    RecognitionHistoryLog,
    Storage,
)

logger = logging.getLogger(__name__)

GALLERY_PATH = "faceEmbeddings"
PENDING_PATH = "pendingFaceRegistrations"
HISTORY_PATH = "recognitionHistory"


def init_firebase(credentials_path: str, database_url: str) -> firebase_admin.App:
    """Initialize the default Firebase app, reusing it if already initialized."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    cred = credentials.Certificate(credentials_path)
    app = firebase_admin.initialize_app(cred, {"databaseURL": database_url})
    logger.info(f"Firebase initialized for {database_url}")
    return app


class FirebaseGalleryStore(GalleryStore):
    """Gallery stored under ``faceEmbeddings``."""

    def __init__(self, root: str = GALLERY_PATH):
        self.root = root

    def _ref(self, identity_key: Optional[str] = None):
        path = self.root if identity_key is None else f"{self.root}/{identity_key}"
        return db.reference(path)

    def get(self, identity_key: str) -> Optional[GalleryEntry]:
        data = self._ref(identity_key).get()
        if not data:
            return None
        return GalleryEntry.from_dict(data, identity_key=identity_key)

    def put(self, entry: GalleryEntry) -> None:
        self._ref(entry.identity_key).set(entry.to_dict())
        logger.debug(f"Stored {entry.identity_key} ({len(entry.angles)} angle(s))")

    def delete(self, identity_key: str) -> bool:
        ref = self._ref(identity_key)
        if ref.get() is None:
            return False
        ref.delete()
        logger.info(f"Removed identity: {identity_key}")
        return True

    def list_entries(self) -> List[GalleryEntry]:
        data: Dict[str, Any] = self._ref().get() or {}
        entries = []
        for key, record in data.items():
            try:
                entries.append(GalleryEntry.from_dict(record, identity_key=key))
            except ValueError as e:
                logger.error(f"Skipping unreadable gallery record {key}: {e}")
        return entries

    def update(self, identity_key: str, updater: EntryUpdater) -> Optional[GalleryEntry]:
        result: Dict[str, Optional[GalleryEntry]] = {}

        def transaction(current_data):
            current = (
                GalleryEntry.from_dict(current_data, identity_key=identity_key)
                if current_data else None
            )
            new_entry = updater(current)
            # The callback may be retried, keep only the last attempt
            result["entry"] = new_entry if new_entry is not None else current
            if new_entry is None:
                return current_data
            return new_entry.to_dict()

        try:
            self._ref(identity_key).transaction(transaction)
        except db.TransactionAbortedError as e:
            logger.error(f"Gallery update for {identity_key} aborted: {e}")
            raise
        return result.get("entry")


class FirebasePendingQueue(PendingRegistrationQueue):
    """Pending registrations stored under ``pendingFaceRegistrations``."""

    def __init__(self, root: str = PENDING_PATH):
        self.root = root

    def write_pending(self, registration: PendingRegistration) -> str:
        db.reference(f"{self.root}/{registration.registration_id}").set(registration.to_dict())
        logger.info(
            f"Pending registration {registration.registration_id} for {registration.identity_key}"
        )
        return registration.registration_id

    def read_pending(self, registration_id: str) -> Optional[PendingRegistration]:
        data = db.reference(f"{self.root}/{registration_id}").get()
        if not data:
            return None
        return PendingRegistration.from_dict(data, registration_id=registration_id)

    def list_pending(self) -> List[PendingRegistration]:
        data = db.reference(self.root).get() or {}
        return [
            PendingRegistration.from_dict(record, registration_id=reg_id)
            for reg_id, record in data.items()
        ]

    def remove_pending(self, registration_id: str) -> bool:
        ref = db.reference(f"{self.root}/{registration_id}")
        if ref.get() is None:
            return False
        ref.delete()
        return True

    def take_pending(self, registration_id: str) -> Optional[PendingRegistration]:
        taken: Dict[str, Any] = {}

        def claim(current_data):
            # The callback may be retried, keep only the last attempt
            taken["data"] = current_data
            return None

        try:
            db.reference(f"{self.root}/{registration_id}").transaction(claim)
        except db.TransactionAbortedError as e:
            logger.error(f"Claiming registration {registration_id} aborted: {e}")
            raise

        data = taken.get("data")
        if not data:
            return None
        return PendingRegistration.from_dict(data, registration_id=registration_id)


class FirebaseRecognitionHistory(RecognitionHistoryLog):
    """Recognition records stored under ``recognitionHistory``."""

    def __init__(self, root: str = HISTORY_PATH):
        self.root = root

    def append(self, identity_key: str, record: RecognitionRecord) -> None:
        db.reference(f"{self.root}/{identity_key}").push(record.to_dict())

    def get_history(self, identity_key: str) -> List[RecognitionRecord]:
        data = db.reference(f"{self.root}/{identity_key}").get() or {}
        # Push ids sort chronologically
        return [RecognitionRecord.from_dict(data[k]) for k in sorted(data)]


def open_firebase_storage(credentials_path: str, database_url: str) -> Storage:
    """Initialize Firebase and return the three RTDB-backed stores."""
    init_firebase(credentials_path, database_url)
    return Storage(
        gallery=FirebaseGalleryStore(),
        pending=FirebasePendingQueue(),
        history=FirebaseRecognitionHistory(),
    )
