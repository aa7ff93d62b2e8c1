import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from supabase import Client

from .config import Settings
from .database import get_supabase_client
from .models import ActivityAction, ActivityLog, Actor, EntityType, FieldChange

logger = logging.getLogger(__name__)


class ActivityLogger(ABC):
    """Audit trail of tree changes. Recording never raises."""

    async def record(
        self,
        actor: Optional[Actor],
        action: ActivityAction,
        entity_type: EntityType,
        entity_id: Optional[str] = None,
        entity_name: Optional[str] = None,
        details: Optional[str] = None,
        changes: Optional[List[FieldChange]] = None,
    ) -> Optional[str]:
        actor = actor or Actor()
        try:
            activity = ActivityLog(
                user_id=actor.user_id,
                user_email=actor.user_email,
                user_name=actor.user_name,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_name=entity_name,
                details=details,
                changes=changes,
            )
            return await self._insert(activity)
        except Exception as e:
            # Activity logging must never break the mutation that triggered it
            logger.error("Error logging %s %s activity for %s: %s", action, entity_type, actor.user_id, e)
            return None

    @abstractmethod
    async def _insert(self, activity: ActivityLog) -> Optional[str]:
        ...

    @abstractmethod
    async def list_recent(
        self,
        limit: int = 50,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[str] = None,
    ) -> List[ActivityLog]:
        ...


class SupabaseActivityLogger(ActivityLogger):
    def __init__(self, client: Client, table: str):
        self.client = client
        self.table = table

    async def _insert(self, activity: ActivityLog) -> Optional[str]:
        payload = activity.model_dump(mode="json", exclude={"id"})
        response = self.client.table(self.table).insert(payload).execute()
        if not response.data:
            return None
        return str(response.data[0].get("id"))

    async def list_recent(
        self,
        limit: int = 50,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[str] = None,
    ) -> List[ActivityLog]:
        try:
            query = self.client.table(self.table).select("*")
            if entity_type:
                query = query.eq("entity_type", entity_type)
            if entity_id:
                query = query.eq("entity_id", entity_id)
            response = query.order("timestamp", desc=True).limit(limit).execute()
        except Exception as e:
            logger.error("Error getting activities: %s", e)
            return []
        return [ActivityLog(**item) for item in response.data or []]


class MemoryActivityLogger(ActivityLogger):
    def __init__(self):
        self.entries: List[ActivityLog] = []

    async def _insert(self, activity: ActivityLog) -> Optional[str]:
        activity.id = str(len(self.entries) + 1)
        self.entries.append(activity)
        return activity.id

    async def list_recent(
        self,
        limit: int = 50,
        entity_type: Optional[EntityType] = None,
        entity_id: Optional[str] = None,
    ) -> List[ActivityLog]:
        results = [
            entry
            for entry in reversed(self.entries)
            if (entity_type is None or entry.entity_type == entity_type)
            and (entity_id is None or entry.entity_id == entity_id)
        ]
        return results[:limit]


def build_activity_logger(settings: Settings) -> ActivityLogger:
    if settings.STORAGE_BACKEND == "memory" or not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        return MemoryActivityLogger()
    client = get_supabase_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    return SupabaseActivityLogger(client, settings.ACTIVITY_TABLE)
