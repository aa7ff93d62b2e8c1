import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from supabase import Client, create_client

from .config import Settings
from .models import TranslationDocument, copy_document

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[TranslationDocument], None]
Unsubscribe = Callable[[], Any]


class PersistenceError(Exception):
    pass


@lru_cache()
def get_supabase_client(url: str, key: str) -> Client:
    return create_client(url, key)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStore(ABC):
    """Remote document holding the whole translation tree and language list."""

    @abstractmethod
    async def load_all(self) -> TranslationDocument:
        ...

    @abstractmethod
    async def save_all(self, document: TranslationDocument) -> None:
        ...

    @abstractmethod
    def subscribe(self, callback: SnapshotCallback) -> Unsubscribe:
        """Call ``callback`` with every snapshot written by someone else."""

    @abstractmethod
    async def create_backup(self, document: TranslationDocument) -> str:
        ...


class SupabaseDocumentStore(DocumentStore):
    """Stores the document as one row of a Supabase table.

    Expected columns: ``id`` (text, primary key), ``translations`` (jsonb),
    ``languages`` (jsonb) and ``updated_at`` (timestamptz). Live updates are
    picked up by polling ``updated_at``; rows this store wrote itself are not
    reported back to subscribers.
    """

    def __init__(self, client: Client, table: str, document_id: str, poll_seconds: float = 5.0):
        self.client = client
        self.table = table
        self.document_id = document_id
        self.poll_seconds = poll_seconds
        self._last_seen: Optional[datetime] = None
        self._poll_tasks: Set[asyncio.Task] = set()

    def _fetch(self, document_id: str) -> Optional[Dict[str, Any]]:
        response = self.client.table(self.table).select("*").eq("id", document_id).execute()
        if not response.data:
            return None
        return response.data[0]

    @staticmethod
    def _to_document(row: Dict[str, Any]) -> TranslationDocument:
        return TranslationDocument(
            translations=row.get("translations") or {},
            languages=row.get("languages") or [],
            updated_at=row.get("updated_at"),
        )

    async def load_all(self) -> TranslationDocument:
        try:
            row = self._fetch(self.document_id)
        except Exception as e:
            logger.error("Error loading translation document %s: %s", self.document_id, e)
            raise PersistenceError(f"Database error: {e}") from e
        if row is None:
            return TranslationDocument()
        document = self._to_document(row)
        self._last_seen = document.updated_at
        return document

    async def save_all(self, document: TranslationDocument) -> None:
        payload = document.model_dump(mode="json", by_alias=True, exclude={"updated_at"})
        payload["id"] = self.document_id
        payload["updated_at"] = _utcnow().isoformat()
        try:
            response = self.client.table(self.table).upsert(payload).execute()
        except Exception as e:
            logger.error("Error saving translation document %s: %s", self.document_id, e)
            raise PersistenceError(f"Database error: {e}") from e
        if response.data:
            self._last_seen = self._to_document(response.data[0]).updated_at

    def subscribe(self, callback: SnapshotCallback) -> Unsubscribe:
        task = asyncio.get_running_loop().create_task(self._poll(callback))
        self._poll_tasks.add(task)
        task.add_done_callback(self._poll_done)
        return task.cancel

    def _poll_done(self, task: asyncio.Task) -> None:
        self._poll_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Polling of translation document %s stopped: %s", self.document_id, task.exception())

    async def _poll(self, callback: SnapshotCallback) -> None:
        while True:
            await asyncio.sleep(self.poll_seconds)
            try:
                row = self._fetch(self.document_id)
                if row is None:
                    continue
                document = self._to_document(row)
            except Exception as e:
                logger.warning("Error polling translation document %s: %s", self.document_id, e)
                continue
            if document.updated_at is None or document.updated_at == self._last_seen:
                continue
            self._last_seen = document.updated_at
            try:
                callback(document)
            except Exception:
                logger.exception("Translation snapshot callback failed")

    async def create_backup(self, document: TranslationDocument) -> str:
        stamp = _utcnow()
        backup_id = f"backup_{int(stamp.timestamp() * 1000)}"
        payload = document.model_dump(mode="json", by_alias=True, exclude={"updated_at"})
        payload["id"] = backup_id
        payload["updated_at"] = stamp.isoformat()
        try:
            self.client.table(self.table).insert(payload).execute()
        except Exception as e:
            logger.error("Error creating backup %s: %s", backup_id, e)
            raise PersistenceError(f"Database error: {e}") from e
        return backup_id


class MemoryDocumentStore(DocumentStore):
    """In-process document store.

    Like a live document store, every write (local or remote) is delivered to
    all subscribers, including the writer.
    """

    def __init__(self, document: Optional[TranslationDocument] = None):
        self._document = copy_document(document) if document else TranslationDocument()
        self._subscribers: List[SnapshotCallback] = []
        self.backups: Dict[str, TranslationDocument] = {}
        self.saves = 0

    async def load_all(self) -> TranslationDocument:
        return copy_document(self._document)

    async def save_all(self, document: TranslationDocument) -> None:
        self.saves += 1
        self._write(document)

    def push_remote(self, document: TranslationDocument) -> None:
        """Simulate a write made by another client."""
        self._write(document)

    def _write(self, document: TranslationDocument) -> None:
        self._document = copy_document(document, updated_at=_utcnow())
        for callback in list(self._subscribers):
            callback(copy_document(self._document))

    def subscribe(self, callback: SnapshotCallback) -> Unsubscribe:
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    async def create_backup(self, document: TranslationDocument) -> str:
        backup_id = f"backup_{len(self.backups) + 1}"
        self.backups[backup_id] = copy_document(document)
        return backup_id


class LocalCache:
    """Best-effort JSON file copy of the document, used when the store fails."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def save(self, document: TranslationDocument) -> bool:
        try:
            self.path.write_text(document.model_dump_json(by_alias=True), encoding="utf-8")
        except (OSError, ValueError) as e:
            logger.error("Failed to write local cache %s: %s", self.path, e)
            return False
        logger.info("Saved translations to local cache %s", self.path)
        return True

    def load(self) -> Optional[TranslationDocument]:
        if not self.path.exists():
            return None
        try:
            return TranslationDocument.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Failed to read local cache %s: %s", self.path, e)
            return None


def build_store(settings: Settings) -> DocumentStore:
    if settings.STORAGE_BACKEND == "memory":
        return MemoryDocumentStore()
    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        logger.warning("SUPABASE_URL/SUPABASE_KEY not set, keeping translations in memory")
        return MemoryDocumentStore()
    client = get_supabase_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    return SupabaseDocumentStore(
        client,
        settings.DOCUMENTS_TABLE,
        settings.DOCUMENT_ID,
        poll_seconds=settings.SYNC_POLL_SECONDS,
    )
