import asyncio
import re
from collections import defaultdict

import pytest

from translation_manager_api.activity import SupabaseActivityLogger
from translation_manager_api.database import PersistenceError, SupabaseDocumentStore
from translation_manager_api.models import Actor, FieldChange, Space, TranslationDocument


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, client, rows):
        self.client = client
        self.rows = rows
        self.operation = "select"
        self.payload = None
        self.filters = []
        self.ordering = None
        self.count = None

    def select(self, columns):
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.ordering = (column, desc)
        return self

    def limit(self, count):
        self.count = count
        return self

    def upsert(self, payload):
        self.operation, self.payload = "upsert", payload
        return self

    def insert(self, payload):
        self.operation, self.payload = "insert", payload
        return self

    def execute(self):
        if self.client.error is not None:
            raise self.client.error
        if self.operation == "select":
            rows = [row for row in self.rows if all(row.get(c) == v for c, v in self.filters)]
            if self.ordering:
                column, desc = self.ordering
                rows.sort(key=lambda row: row[column], reverse=desc)
            if self.count is not None:
                rows = rows[: self.count]
            return FakeResponse(rows)
        row = dict(self.payload)
        row.setdefault("id", str(len(self.rows) + 1))
        if self.operation == "upsert":
            self.rows[:] = [r for r in self.rows if r["id"] != row["id"]]
        self.rows.append(row)
        self.client.writes.append((self.operation, row))
        return FakeResponse([row])


class FakeClient:
    """Just enough of the supabase table API for the stores."""

    def __init__(self):
        self.tables = defaultdict(list)
        self.writes = []
        self.error = None

    def table(self, name):
        return FakeQuery(self, self.tables[name])


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def store(client):
    return SupabaseDocumentStore(client, "translation_documents", "data", poll_seconds=0.01)


def sample_document():
    return TranslationDocument(
        translations={
            "home": Space(
                translations={"title": {"en": "Hi"}},
                spaces={"items": Space(translations={"0": {"en": "a"}}, is_array=True)},
            )
        },
        languages=["en"],
    )


def test_load_missing_row_returns_empty_document(store):
    document = asyncio.run(store.load_all())
    assert document.translations == {}
    assert document.languages == []


def test_save_writes_one_row_with_wire_field_names(client, store):
    asyncio.run(store.save_all(sample_document()))
    asyncio.run(store.save_all(sample_document()))

    rows = client.tables["translation_documents"]
    assert len(rows) == 1
    row = rows[0]
    assert row["id"] == "data"
    assert row["languages"] == ["en"]
    assert row["updated_at"]
    items = row["translations"]["home"]["spaces"]["items"]
    assert items["isArray"] is True
    assert "is_array" not in items

    loaded = asyncio.run(store.load_all())
    assert loaded.translations["home"].spaces["items"].is_array
    assert loaded.translations["home"].translations["title"] == {"en": "Hi"}


def test_database_errors_become_persistence_errors(client, store):
    client.error = RuntimeError("connection refused")
    with pytest.raises(PersistenceError, match="Database error: connection refused"):
        asyncio.run(store.load_all())
    with pytest.raises(PersistenceError):
        asyncio.run(store.save_all(sample_document()))
    with pytest.raises(PersistenceError):
        asyncio.run(store.create_backup(sample_document()))


def test_backup_is_stored_as_separate_row(client, store):
    backup_id = asyncio.run(store.create_backup(sample_document()))
    assert re.fullmatch(r"backup_\d+", backup_id)
    rows = client.tables["translation_documents"]
    assert [row["id"] for row in rows] == [backup_id]
    assert rows[0]["translations"]["home"]["translations"]["title"] == {"en": "Hi"}


def remote_write(client, updated_at, **fields):
    row = client.tables["translation_documents"][0]
    row.update(fields, updated_at=updated_at)


def test_polling_reports_only_foreign_writes(client, store):
    async def scenario():
        await store.save_all(sample_document())
        received = []
        unsubscribe = store.subscribe(received.append)
        await asyncio.sleep(0.05)
        own_writes = len(received)
        remote_write(client, "2030-01-01T00:00:00+00:00", languages=["en", "de"])
        await asyncio.sleep(0.05)
        unsubscribe()
        return own_writes, received

    own_writes, received = asyncio.run(scenario())
    assert own_writes == 0
    assert len(received) == 1
    assert received[0].languages == ["en", "de"]


def test_polling_survives_bad_rows_and_failing_callbacks(client, store):
    async def scenario():
        await store.save_all(sample_document())
        received = []

        def callback(document):
            received.append(document)
            if len(received) == 1:
                raise RuntimeError("listener failed")

        unsubscribe = store.subscribe(callback)
        remote_write(client, "2030-01-01T00:00:00+00:00", translations={"home": 5})
        await asyncio.sleep(0.05)
        remote_write(client, "2030-01-02T00:00:00+00:00", translations={}, languages=["de"])
        await asyncio.sleep(0.05)
        remote_write(client, "2030-01-03T00:00:00+00:00", languages=["fr"])
        await asyncio.sleep(0.05)
        unsubscribe()
        return received

    received = asyncio.run(scenario())
    assert [document.languages for document in received] == [["de"], ["fr"]]


@pytest.fixture
def activity(client):
    return SupabaseActivityLogger(client, "activity_logs")


def test_record_inserts_activity_row(client, activity):
    actor = Actor(user_id="u1", user_email="ayse@example.com", user_name="ayse")
    activity_id = asyncio.run(
        activity.record(
            actor, "update", "translation", entity_id="home/title", entity_name="title (en)",
            changes=[FieldChange(field="en", old_value="Hi", new_value="Hello")],
        )
    )
    assert activity_id == "1"
    operation, row = client.writes[0]
    assert operation == "insert"
    assert row["user_id"] == "u1"
    assert row["entity_type"] == "translation"
    assert row["changes"] == [{"field": "en", "old_value": "Hi", "new_value": "Hello"}]
    assert isinstance(row["timestamp"], str)


def test_record_never_raises(client, activity):
    client.error = RuntimeError("permission-denied")
    assert asyncio.run(activity.record(None, "create", "page", entity_id="home")) is None


def log_row(row_id, entity_type, entity_id, timestamp):
    return {
        "id": row_id,
        "user_id": "anonymous",
        "user_email": "anonymous@unknown.com",
        "action": "create",
        "entity_type": entity_type,
        "entity_id": entity_id,
        "timestamp": timestamp,
    }


def test_list_recent_filters_and_orders_newest_first(client, activity):
    client.tables["activity_logs"].extend(
        [
            log_row("1", "page", "home", "2024-01-01T10:00:00"),
            log_row("2", "language", "de", "2024-01-01T11:00:00"),
            log_row("3", "page", "about", "2024-01-01T12:00:00"),
            log_row("4", "page", "home", "2024-01-01T13:00:00"),
        ]
    )

    assert [a.id for a in asyncio.run(activity.list_recent())] == ["4", "3", "2", "1"]
    assert [a.id for a in asyncio.run(activity.list_recent(entity_type="page"))] == ["4", "3", "1"]
    assert [a.id for a in asyncio.run(activity.list_recent(entity_type="page", entity_id="home"))] == ["4", "1"]
    assert [a.id for a in asyncio.run(activity.list_recent(limit=2))] == ["4", "3"]


def test_list_recent_returns_empty_on_error(client, activity):
    client.error = RuntimeError("offline")
    assert asyncio.run(activity.list_recent()) == []
