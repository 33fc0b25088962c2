# test_offline_sync_engine.py
#
#
# Imports
from unittest.mock import MagicMock
#
# Third-Party Imports
import pytest
import requests
from hypothesis import given, strategies as st
#
# Local Imports
from studyvault.DB.Offline_Records import (
    AnalyticsPayload,
    EntityType,
    NotePayload,
    NoteRecord,
    ProfilePayload,
    SyncOperation,
    SyncQueueEntry,
)
from studyvault.Notifications.Notification_Service import NotificationService, NotificationType
from studyvault.Sync.Sync_Client import (
    OfflineSyncEngine,
    RemoteBackend,
    RemoteConnectionError,
    RemoteSyncError,
    RestRemoteBackend,
    coalesce_entries,
)
#
#######################################################################################################################
#
# Functions:

def create_mock_response(status_code=200, json_data=None, text_data=""):
    """Creates a mock requests.Response object."""
    mock_resp = MagicMock()
    mock_resp.status_code = status_code
    mock_resp.json.return_value = json_data
    mock_resp.text = text_data
    if status_code >= 400:
        mock_resp.raise_for_status.side_effect = requests.exceptions.HTTPError(response=mock_resp)
    else:
        mock_resp.raise_for_status.return_value = None
    return mock_resp


def make_entry(entity_id, operation, seq, entity_type="note", retry_count=0, title=None):
    record = NoteRecord(id=entity_id, title=title or f"{entity_id}-{seq}") if operation != "delete" else None
    return SyncQueueEntry(
        id=f"{entity_type}-{entity_id}-{operation}-{1735689600000 + seq}",
        entity_type=entity_type,
        entity_id=entity_id,
        operation=operation,
        payload=NotePayload(id=entity_id, record=record),
        created_at="2025-01-01T00:00:00.000Z",
        retry_count=retry_count,
    )


class FakeBackend(RemoteBackend):
    """Records every applied change; `failures` maps entity ids to exceptions to raise."""

    def __init__(self, failures=None, on_apply=None):
        self.calls = []
        self.failures = failures or {}
        self.on_apply = on_apply

    def apply(self, entity_type, entity_id, operation, payload):
        self.calls.append((entity_type, entity_id, operation, payload))
        if self.on_apply is not None:
            self.on_apply(entity_id)
        error = self.failures.get(entity_id)
        if error is not None:
            raise error


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def engine(store, backend):
    return OfflineSyncEngine(store, backend, max_retries=3, batch_size=50)


class TestCoalescing:
    def test_create_then_updates_sends_create_with_latest_payload(self):
        changes = coalesce_entries([make_entry("n1", "create", 0), make_entry("n1", "update", 1),
                                    make_entry("n1", "update", 2, title="final")])
        assert len(changes) == 1
        assert changes[0].operation == SyncOperation.CREATE
        assert changes[0].payload.record.title == "final"
        assert len(changes[0].entry_ids) == 3

    def test_updates_only_send_update(self):
        changes = coalesce_entries([make_entry("n1", "update", 0), make_entry("n1", "update", 1)])
        assert changes[0].operation == SyncOperation.UPDATE

    def test_update_then_delete_sends_delete(self):
        changes = coalesce_entries([make_entry("n1", "update", 0), make_entry("n1", "delete", 1)])
        assert changes[0].operation == SyncOperation.DELETE
        assert changes[0].payload.record is None

    def test_create_then_delete_sends_nothing(self):
        changes = coalesce_entries([make_entry("n1", "create", 0), make_entry("n1", "update", 1),
                                    make_entry("n1", "delete", 2)])
        assert changes[0].operation is None

    def test_groups_keep_first_seen_order(self):
        changes = coalesce_entries([make_entry("b", "create", 0), make_entry("a", "create", 1),
                                    make_entry("b", "update", 2)])
        assert [c.entity_id for c in changes] == ["b", "a"]

    def test_retry_count_is_highest_in_group(self):
        changes = coalesce_entries([make_entry("n1", "update", 0, retry_count=2),
                                    make_entry("n1", "update", 1, retry_count=0)])
        assert changes[0].retry_count == 2

    @given(ops=st.lists(st.tuples(st.sampled_from(["a", "b", "c"]),
                                  st.sampled_from(["create", "update", "delete"])), min_size=1, max_size=20))
    def test_every_entry_lands_in_exactly_one_group(self, ops):
        entries = [make_entry(entity_id, op, i) for i, (entity_id, op) in enumerate(ops)]
        changes = coalesce_entries(entries)
        grouped_ids = [entry_id for change in changes for entry_id in change.entry_ids]
        assert sorted(grouped_ids) == sorted(e.id for e in entries)
        assert len(changes) == len({entity_id for entity_id, _ in ops})
        for change in changes:
            first, last = change.entries[0].operation, change.entries[-1].operation
            if first == SyncOperation.CREATE and last == SyncOperation.DELETE:
                assert change.operation is None
            elif last == SyncOperation.DELETE:
                assert change.operation == SyncOperation.DELETE


class TestSyncCycle:
    def test_new_note_is_pushed_once_and_marked_synced(self, store, engine, backend):
        store.save_note({"id": "n1", "title": "draft"})
        store.save_note({"id": "n1", "title": "final"}, SyncOperation.UPDATE)

        result = engine.run_sync_cycle()

        assert result.pushed == 1 and result.failed == 0
        assert len(backend.calls) == 1
        entity_type, entity_id, operation, payload = backend.calls[0]
        assert (entity_type, entity_id, operation) == (EntityType.NOTE, "n1", SyncOperation.CREATE)
        assert payload.record.title == "final"
        assert store.get_sync_queue() == []
        note = store.get_note("n1")
        assert note.synced is True
        assert note.last_synced_at is not None

    def test_created_then_deleted_entity_is_dropped(self, store, engine, backend):
        store.save_note({"id": "n1"})
        store.add_to_sync_queue(NotePayload(id="n1"), SyncOperation.DELETE)

        result = engine.run_sync_cycle()

        assert result.dropped == 1
        assert backend.calls == []
        assert store.get_sync_queue() == []
        assert store.get_note("n1") is None

    def test_resaved_then_deleted_synced_note_sends_delete(self, store, engine, backend):
        store.save_note({"id": "n1", "title": "v1"})
        engine.run_sync_cycle()
        store.save_note({"id": "n1", "title": "v2"})
        store.delete_note("n1")
        assert [e.operation for e in store.get_sync_queue()] == [SyncOperation.CREATE, SyncOperation.DELETE]

        result = engine.run_sync_cycle()

        assert result.pushed == 1
        assert result.dropped == 0
        assert [call[2] for call in backend.calls] == [SyncOperation.CREATE, SyncOperation.DELETE]
        assert store.get_note("n1") is None
        assert store.get_sync_queue() == []

    def test_tombstone_is_pushed_and_purged(self, store, engine, backend):
        store.save_note({"id": "n1"})
        engine.run_sync_cycle()
        store.delete_note("n1")

        result = engine.run_sync_cycle()

        assert result.pushed == 1
        assert backend.calls[-1][2] == SyncOperation.DELETE
        assert store.get_note("n1") is None
        assert store.get_sync_queue() == []

    def test_rejected_change_is_retried_later(self, store, backend):
        backend.failures["n1"] = RemoteSyncError("HTTP 500", status_code=500)
        engine = OfflineSyncEngine(store, backend, max_retries=3)
        store.save_note({"id": "n1"})
        store.save_note({"id": "n2"})

        result = engine.run_sync_cycle()

        assert result.failed == 1
        assert result.pushed == 1
        assert result.aborted is False
        remaining = store.get_sync_queue()
        assert [e.entity_id for e in remaining] == ["n1"]
        assert remaining[0].retry_count == 1
        assert remaining[0].last_error == "HTTP 500"
        assert store.get_note("n1").synced is False
        assert store.get_note("n2").synced is True

    def test_exhausted_retries_are_skipped(self, store, backend):
        backend.failures["n1"] = RemoteSyncError("HTTP 500", status_code=500)
        engine = OfflineSyncEngine(store, backend, max_retries=2)
        store.save_note({"id": "n1"})

        engine.run_sync_cycle()
        engine.run_sync_cycle()
        result = engine.run_sync_cycle()

        assert result.skipped == 1
        assert len(backend.calls) == 2
        assert store.get_sync_queue()[0].retry_count == 2

    def test_connection_error_aborts_cycle_and_notifies(self, store, backend):
        received = []
        notifier = NotificationService()
        notifier.add_callback(received.append)
        backend.failures["n1"] = RemoteConnectionError("connection refused")
        engine = OfflineSyncEngine(store, backend, notifier=notifier)
        store.save_note({"id": "n1"})
        store.save_note({"id": "n2"})

        result = engine.run_sync_cycle()

        assert result.aborted is True
        assert result.failed == 1
        assert [call[1] for call in backend.calls] == ["n1"]
        assert len(store.get_sync_queue()) == 2
        assert len(received) == 1
        assert received[0].type == NotificationType.SYSTEM_ALERT
        assert received[0].priority.value == "high"

    def test_connection_errors_do_not_use_up_retries(self, store, backend):
        backend.failures["n1"] = RemoteConnectionError("offline")
        engine = OfflineSyncEngine(store, backend, max_retries=2)
        store.save_note({"id": "n1"})

        for _ in range(3):
            assert engine.run_sync_cycle().aborted is True
        entry = store.get_sync_queue()[0]
        assert entry.retry_count == 0
        assert entry.last_error == "offline"

        del backend.failures["n1"]
        result = engine.run_sync_cycle()

        assert result.pushed == 1
        assert result.skipped == 0
        assert store.get_note("n1").synced is True

    def test_batch_size_limits_changes_sent(self, store, backend):
        engine = OfflineSyncEngine(store, backend, batch_size=1)
        store.save_note({"id": "n1"})
        store.save_note({"id": "n2"})

        result = engine.run_sync_cycle()

        assert result.pushed == 1
        assert [e.entity_id for e in store.get_sync_queue()] == ["n2"]

    def test_edit_during_push_keeps_record_unsynced(self, store):
        edits = []

        def edit_while_pushing(entity_id):
            if not edits:
                edits.append(entity_id)
                store.save_note({"id": entity_id, "title": "edited mid-push"}, SyncOperation.UPDATE)

        backend = FakeBackend(on_apply=edit_while_pushing)
        engine = OfflineSyncEngine(store, backend)
        store.save_note({"id": "n1"})

        engine.run_sync_cycle()

        note = store.get_note("n1")
        assert note.synced is False
        assert note.pending_operation == SyncOperation.UPDATE
        assert note.last_synced_at is not None
        queue = store.get_sync_queue()
        assert len(queue) == 1
        assert queue[0].operation == SyncOperation.UPDATE

        store.delete_note("n1")
        assert store.get_note("n1").pending_operation == SyncOperation.DELETE

        result = engine.run_sync_cycle()

        assert result.pushed == 1
        assert backend.calls[-1][1:3] == ("n1", SyncOperation.DELETE)
        assert store.get_note("n1") is None
        assert store.get_sync_queue() == []

    def test_profile_and_analytics_entries_are_pushed(self, store, engine, backend):
        store.add_to_sync_queue(ProfilePayload(id="u1", fields={"full_name": "Ada"}), "update")
        store.add_to_sync_queue(AnalyticsPayload(id="evt-1", event="note_enhancement"), "create")

        result = engine.run_sync_cycle()

        assert result.pushed == 2
        assert [(c[0], c[2]) for c in backend.calls] == [(EntityType.PROFILE, SyncOperation.UPDATE),
                                                         (EntityType.ANALYTICS, SyncOperation.CREATE)]
        assert store.get_sync_queue() == []


class TestRestRemoteBackend:
    @pytest.fixture
    def session(self):
        return MagicMock(spec=requests.Session)

    @pytest.fixture
    def rest_backend(self, session):
        return RestRemoteBackend("https://backend.example.org/", "anon-key", access_token="user-jwt",
                                 timeout=5.0, session=session)

    def test_empty_base_url_rejected(self):
        with pytest.raises(ValueError):
            RestRemoteBackend("", "anon-key")

    def test_create_posts_row_without_local_fields(self, rest_backend, session):
        session.post.return_value = create_mock_response(201)
        record = NoteRecord(id="n1", user_id="u1", title="t", tags=["a"], synced=False,
                            pending_operation=SyncOperation.CREATE)

        rest_backend.apply(EntityType.NOTE, "n1", SyncOperation.CREATE, NotePayload(id="n1", record=record))

        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args[0] == "https://backend.example.org/rest/v1/notes"
        row = kwargs["json"]
        assert row["id"] == "n1" and row["title"] == "t" and row["tags"] == ["a"]
        assert "synced" not in row and "pending_operation" not in row and "last_synced_at" not in row
        headers = kwargs["headers"]
        assert headers["apikey"] == "anon-key"
        assert headers["Authorization"] == "Bearer user-jwt"
        assert "resolution=merge-duplicates" in headers["Prefer"]
        assert kwargs["timeout"] == 5.0

    def test_update_patches_by_id(self, rest_backend, session):
        session.patch.return_value = create_mock_response(204)
        rest_backend.apply(EntityType.PROFILE, "u1", SyncOperation.UPDATE,
                           ProfilePayload(id="u1", fields={"full_name": "Ada"}))
        args, kwargs = session.patch.call_args
        assert args[0] == "https://backend.example.org/rest/v1/profiles"
        assert kwargs["params"] == {"id": "eq.u1"}
        assert kwargs["json"] == {"id": "u1", "full_name": "Ada"}

    def test_delete_by_id(self, rest_backend, session):
        session.delete.return_value = create_mock_response(204)
        rest_backend.apply(EntityType.FILE, "f1", SyncOperation.DELETE, None)
        args, kwargs = session.delete.call_args
        assert args[0] == "https://backend.example.org/rest/v1/files"
        assert kwargs["params"] == {"id": "eq.f1"}

    def test_analytics_rows_carry_operation_type(self, rest_backend, session):
        session.post.return_value = create_mock_response(201)
        rest_backend.apply(EntityType.ANALYTICS, "e1", SyncOperation.CREATE,
                           AnalyticsPayload(id="e1", event="quiz_generation", properties={"tokens_used": 120}))
        args, kwargs = session.post.call_args
        assert args[0] == "https://backend.example.org/rest/v1/ai_usage_tracking"
        assert kwargs["json"] == {"id": "e1", "operation_type": "quiz_generation", "tokens_used": 120}

    def test_http_error_maps_to_remote_sync_error(self, rest_backend, session):
        session.post.return_value = create_mock_response(409, text_data="duplicate key")
        with pytest.raises(RemoteSyncError) as exc_info:
            rest_backend.apply(EntityType.NOTE, "n1", SyncOperation.CREATE, NotePayload(id="n1"))
        assert exc_info.value.status_code == 409
        assert exc_info.value.response_text == "duplicate key"

    def test_network_failure_maps_to_connection_error(self, rest_backend, session):
        session.patch.side_effect = requests.exceptions.ConnectionError("connection refused")
        with pytest.raises(RemoteConnectionError):
            rest_backend.apply(EntityType.NOTE, "n1", SyncOperation.UPDATE, NotePayload(id="n1"))

    def test_anon_key_used_without_access_token(self, session):
        session.delete.return_value = create_mock_response(204)
        backend = RestRemoteBackend("https://backend.example.org", "anon-key", session=session)
        backend.apply(EntityType.NOTE, "n1", SyncOperation.DELETE, NotePayload(id="n1"))
        assert session.delete.call_args.kwargs["headers"]["Authorization"] == "Bearer anon-key"

#
# End of test_offline_sync_engine.py
#######################################################################################################################
