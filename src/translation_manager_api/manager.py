import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from .activity import ActivityLogger
from .database import DocumentStore, LocalCache
from .errors import NotFoundError
from .flatten import JSONValue, flatten, flatten_all_languages, flatten_pages
from .importer import import_translations, preview_import, same_value
from .models import (
    ActivityAction,
    ActivityLog,
    Actor,
    EntityType,
    FieldChange,
    ImportReport,
    SearchHit,
    TranslationDocument,
    TranslationEntry,
    TranslationValue,
)
from .tree import TranslationTree

logger = logging.getLogger(__name__)

Listener = Callable[[TranslationTree], None]


def _entity_id(page_key: str, path: List[str], key: str) -> str:
    return "/".join([page_key] + list(path) + [key])


class TranslationStateManager:
    """Single owner of the in-memory translation tree.

    Every mutation runs synchronously against the tree, then observers are
    notified, a debounced save is scheduled and an activity entry is recorded.
    Saving and auditing happen in the background and never undo or block a
    mutation. Snapshots pushed by the store replace the whole tree, except
    while a local save is in flight.
    """

    def __init__(
        self,
        store: DocumentStore,
        activity: Optional[ActivityLogger] = None,
        debounce_seconds: float = 1.0,
        cache: Optional[LocalCache] = None,
    ):
        self.store = store
        self.activity = activity
        self.debounce_seconds = debounce_seconds
        self.cache = cache
        self.tree = TranslationTree()
        self.is_saving = False
        self._dirty = False
        self._listeners: List[Listener] = []
        self._save_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Future] = set()
        self._unsubscribe: Optional[Callable[[], Any]] = None

    @property
    def languages(self) -> List[str]:
        return self.tree.languages

    # Observers

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.tree)
            except Exception:
                logger.exception("Translation listener %r failed", listener)

    def _changed(
        self,
        actor: Optional[Actor],
        action: ActivityAction,
        entity_type: EntityType,
        **fields: Any,
    ) -> None:
        self._notify()
        self._schedule_save()
        self._record(actor, action, entity_type, **fields)

    # Background work

    def _spawn(self, coro_factory: Callable[[], Any]) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        task = loop.create_task(coro_factory())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def _record(self, actor: Optional[Actor], action: ActivityAction, entity_type: EntityType, **fields: Any) -> None:
        if self.activity is None:
            return
        if not self._spawn(lambda: self.activity.record(actor, action, entity_type, **fields)):
            logger.debug("No event loop, dropping %s %s activity", action, entity_type)

    def _schedule_save(self) -> None:
        self._dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # flush() persists pending changes
            return
        if self._save_timer is not None:
            self._save_timer.cancel()
        self._save_timer = loop.call_later(self.debounce_seconds, self._start_save)

    def _start_save(self) -> None:
        self._save_timer = None
        self._spawn(self.save)

    # Persistence

    async def load(self) -> None:
        try:
            document = await self.store.load_all()
        except Exception as e:
            logger.error("Failed to load translations from store: %s", e)
            document = self.cache.load() if self.cache else None
            if document is None:
                return
            logger.info("Loaded translations from local cache")
        self.tree = TranslationTree.from_document(document)
        self._notify()

    async def save(self) -> None:
        if self.is_saving:
            logger.debug("Already saving, skipping")
            return
        self.is_saving = True
        self._dirty = False
        document = None
        try:
            document = self.tree.to_document()
            logger.info(
                "Saving translations (%d pages, %d languages)",
                len(document.translations),
                len(document.languages),
            )
            await self.store.save_all(document)
        except Exception as e:
            logger.error("Failed to save translations: %s", e)
            if self.cache is not None and document is not None:
                self.cache.save(document)
        finally:
            self.is_saving = False
        if self._dirty:
            self._schedule_save()

    async def flush(self) -> None:
        """Save pending changes now instead of waiting for the debounce."""
        if self._save_timer is not None:
            self._save_timer.cancel()
            self._save_timer = None
        if self._tasks:
            await asyncio.gather(*self._tasks)
        if self._dirty:
            await self.save()
            if self._save_timer is not None:
                self._save_timer.cancel()
                self._save_timer = None

    def start_sync(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self.apply_remote_snapshot)

    def apply_remote_snapshot(self, document: TranslationDocument) -> bool:
        if self.is_saving:
            logger.debug("Ignoring remote snapshot received while saving")
            return False
        logger.info("Received remote translations update")
        self.tree = TranslationTree.from_document(document)
        self._notify()
        return True

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.flush()

    async def create_backup(self) -> str:
        return await self.store.create_backup(self.tree.to_document())

    async def recent_activity(
        self,
        limit: int = 50,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[str] = None,
    ) -> List[ActivityLog]:
        if self.activity is None:
            return []
        return await self.activity.list_recent(limit, entity_type, entity_id)

    # Languages

    def add_language(self, code: str, actor: Optional[Actor] = None) -> None:
        self.tree.add_language(code)
        self._changed(actor, "create", "language", entity_id=code, entity_name=code, details=f"Added language: {code}")

    def delete_language(self, code: str, actor: Optional[Actor] = None) -> None:
        self.tree.delete_language(code)
        self._changed(actor, "delete", "language", entity_id=code, entity_name=code, details=f"Deleted language: {code}")

    def rename_language(self, old_code: str, new_code: str, actor: Optional[Actor] = None) -> None:
        self.tree.rename_language(old_code, new_code)
        self._changed(
            actor,
            "update",
            "language",
            entity_id=old_code,
            entity_name=f"{old_code} → {new_code}",
            details=f"Renamed language from {old_code} to {new_code}",
            changes=[FieldChange(field="code", old_value=old_code, new_value=new_code)],
        )

    # Pages

    def add_page(self, page_key: str, actor: Optional[Actor] = None) -> None:
        self.tree.add_page(page_key)
        self._changed(
            actor, "create", "page", entity_id=page_key, entity_name=page_key,
            details=f"Created new translation page: {page_key}",
        )

    def delete_page(self, page_key: str, actor: Optional[Actor] = None) -> None:
        if self.tree.delete_page(page_key):
            self._changed(
                actor, "delete", "page", entity_id=page_key, entity_name=page_key,
                details=f"Deleted translation page: {page_key}",
            )

    def rename_page(self, old_key: str, new_key: str, actor: Optional[Actor] = None) -> None:
        self.tree.rename_page(old_key, new_key)
        self._changed(
            actor,
            "update",
            "page",
            entity_id=old_key,
            entity_name=f"{old_key} → {new_key}",
            details=f"Renamed page from {old_key} to {new_key}",
            changes=[FieldChange(field="pageKey", old_value=old_key, new_value=new_key)],
        )

    # Spaces

    def add_space(
        self, page_key: str, parent_path: List[str], space_key: str, is_array: bool = False,
        actor: Optional[Actor] = None,
    ) -> None:
        self.tree.add_space(page_key, parent_path, space_key, is_array)
        self._changed(
            actor, "create", "space", entity_id=_entity_id(page_key, parent_path, space_key),
            entity_name=space_key, details=f"Created new space: {space_key}",
        )

    def delete_space(self, page_key: str, parent_path: List[str], space_key: str, actor: Optional[Actor] = None) -> None:
        if self.tree.delete_space(page_key, parent_path, space_key):
            self._changed(
                actor, "delete", "space", entity_id=_entity_id(page_key, parent_path, space_key),
                entity_name=space_key, details=f"Deleted space: {space_key}",
            )

    def rename_space(
        self, page_key: str, parent_path: List[str], old_key: str, new_key: str, actor: Optional[Actor] = None
    ) -> None:
        self.tree.rename_space(page_key, parent_path, old_key, new_key)
        self._changed(
            actor, "update", "space", entity_id=_entity_id(page_key, parent_path, old_key),
            entity_name=f"{old_key} → {new_key}", details=f"Renamed space from {old_key} to {new_key}",
            changes=[FieldChange(field="spaceKey", old_value=old_key, new_value=new_key)],
        )

    def change_order(
        self, page_key: str, parent_path: List[str], key: str, new_index: int, actor: Optional[Actor] = None
    ) -> None:
        self.tree.change_order(page_key, parent_path, key, new_index)
        self._changed(
            actor, "update", "space", entity_id=_entity_id(page_key, parent_path, key),
            entity_name=key, details=f"Moved item {key} to position {new_index}",
            changes=[FieldChange(field="order", old_value=key, new_value=new_index)],
        )

    # Translations

    def add_translation(
        self,
        page_key: str,
        parent_path: List[str],
        key: str,
        values: Optional[Dict[str, TranslationValue]] = None,
        actor: Optional[Actor] = None,
    ) -> TranslationEntry:
        entry = self.tree.add_translation(page_key, parent_path, key, values)
        self._changed(
            actor, "create", "translation", entity_id=_entity_id(page_key, parent_path, key),
            entity_name=key, details=f"Created new translation key: {key}",
        )
        return entry

    def delete_translation(self, page_key: str, parent_path: List[str], key: str, actor: Optional[Actor] = None) -> None:
        if self.tree.delete_translation(page_key, parent_path, key):
            self._changed(
                actor, "delete", "translation", entity_id=_entity_id(page_key, parent_path, key),
                entity_name=key, details=f"Deleted translation key: {key}",
            )

    def rename_translation_key(
        self, page_key: str, parent_path: List[str], old_key: str, new_key: str, actor: Optional[Actor] = None
    ) -> None:
        self.tree.rename_translation_key(page_key, parent_path, old_key, new_key)
        self._changed(
            actor, "update", "translation", entity_id=_entity_id(page_key, parent_path, old_key),
            entity_name=f"{old_key} → {new_key}", details=f"Renamed translation key from {old_key} to {new_key}",
            changes=[FieldChange(field="key", old_value=old_key, new_value=new_key)],
        )

    def update_translation_value(
        self,
        page_key: str,
        parent_path: List[str],
        key: str,
        lang: str,
        value: TranslationValue,
        actor: Optional[Actor] = None,
    ) -> bool:
        entry = self.tree.get_translation(page_key, parent_path, key)
        if entry is None:
            return False
        old_value = entry.get(lang)
        self.tree.update_translation_value(page_key, parent_path, key, lang, value)
        self._notify()
        self._schedule_save()
        if not same_value(old_value, value):
            self._record(
                actor, "update", "translation", entity_id=_entity_id(page_key, parent_path, key),
                entity_name=f"{key} ({lang})", details=f"Updated translation value for {lang}",
                changes=[FieldChange(field=lang, old_value=old_value, new_value=value)],
            )
        return True

    # Import and export

    def import_translations(self, lang: str, data: Any, actor: Optional[Actor] = None) -> ImportReport:
        report = import_translations(self.tree, lang, data)
        self._changed(
            actor, "import", "translation", entity_id=lang, entity_name=lang,
            details=(
                f"Imported {lang}: {len(report.additions)} added, "
                f"{len(report.updates)} updated, {len(report.skipped)} skipped"
            ),
        )
        return report

    def preview_import(self, lang: str, data: Any) -> ImportReport:
        return preview_import(self.tree, lang, data)

    def export_language(self, lang: str) -> Dict[str, JSONValue]:
        # Unknown languages export as an empty object, not an error
        if lang not in self.tree.languages:
            return {}
        return flatten_pages(self.tree.pages, lang)

    def export_all(self) -> Dict[str, Dict[str, JSONValue]]:
        return flatten_all_languages(self.tree.pages, self.tree.languages)

    def export_page(self, page_key: str, lang: Optional[str] = None) -> JSONValue:
        page = self.tree.pages.get(page_key)
        if page is None:
            raise NotFoundError(f"Page '{page_key}' not found")
        if lang is not None:
            if lang not in self.tree.languages:
                return {}
            return flatten(page, lang)
        return {code: flatten(page, code) for code in self.tree.languages}

    def search(self, query: str) -> List[SearchHit]:
        return self.tree.search(query)
