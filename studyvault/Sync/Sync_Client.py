# Sync_Client.py
# Description: Drains the offline sync queue against the remote backend
#
"""
Sync_Client.py
--------------

Pushes pending local mutations from the offline store's sync queue to the remote
backend.

Queue entries are coalesced per entity before anything is sent. For each
`(entity_type, entity_id)` group, in first-seen order:
- first `create` and last `delete`: nothing is sent and the local row is purged,
  unless the local row shows it already reached the remote, in which case a
  delete is sent;
- first `create`: sent as a create;
- last `delete`: sent as a delete;
- anything else: sent as an update.
The payload sent is the one from the group's last entry.
"""
# Imports
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
#
# 3rd-Party Imports
import requests
from loguru import logger
#
# Local Imports
from studyvault.Constants import SYNC_BATCH_SIZE, SYNC_MAX_RETRIES
from studyvault.DB.Offline_Records import (
    AnalyticsPayload,
    EntityType,
    FilePayload,
    NotePayload,
    ProfilePayload,
    SyncOperation,
    SyncQueueEntry,
)
from studyvault.DB.Offline_Storage_DB import OfflineStorageDB
from studyvault.Notifications.Notification_Service import NotificationService
#
########################################################################################################################
#
# Functions:

# --- Exceptions ---
class SyncError(Exception):
    """Base exception for sync failures."""
    pass


class RemoteSyncError(SyncError):
    """The backend answered with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_text: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


class RemoteConnectionError(SyncError):
    """The backend could not be reached. Ends the current sync cycle."""
    pass


# --- Coalescing ---
@dataclass
class CoalescedChange:
    entity_type: EntityType
    entity_id: str
    operation: Optional[SyncOperation]  # None: nothing to send
    payload: Any
    entries: List[SyncQueueEntry]

    @property
    def entry_ids(self) -> List[str]:
        return [entry.id for entry in self.entries]

    @property
    def retry_count(self) -> int:
        return max(entry.retry_count for entry in self.entries)


def coalesce_entries(entries: List[SyncQueueEntry]) -> List[CoalescedChange]:
    groups: Dict[tuple, List[SyncQueueEntry]] = {}
    for entry in entries:
        groups.setdefault((entry.entity_type, entry.entity_id), []).append(entry)

    changes = []
    for (entity_type, entity_id), group in groups.items():
        first_op = group[0].operation
        last_op = group[-1].operation
        if first_op == SyncOperation.CREATE and last_op == SyncOperation.DELETE:
            net_op = None
        elif first_op == SyncOperation.CREATE:
            net_op = SyncOperation.CREATE
        elif last_op == SyncOperation.DELETE:
            net_op = SyncOperation.DELETE
        else:
            net_op = SyncOperation.UPDATE
        changes.append(CoalescedChange(entity_type=entity_type, entity_id=entity_id, operation=net_op,
                                       payload=group[-1].payload, entries=group))
    return changes


# --- Remote backends ---
class RemoteBackend(ABC):
    @abstractmethod
    def apply(self, entity_type: EntityType, entity_id: str, operation: SyncOperation, payload: Any) -> None:
        """
        Applies one net change remotely.

        Raises:
            RemoteSyncError: If the backend rejected the change.
            RemoteConnectionError: If the backend could not be reached.
        """


_LOCAL_ONLY_FIELDS = {'synced', 'pending_operation', 'last_synced_at'}


class RestRemoteBackend(RemoteBackend):
    """Backend speaking the PostgREST-style `/rest/v1/<table>` API."""

    TABLES = {
        EntityType.NOTE: "notes",
        EntityType.FILE: "files",
        EntityType.PROFILE: "profiles",
        EntityType.ANALYTICS: "ai_usage_tracking",
    }

    def __init__(self, base_url: str, anon_key: str, access_token: Optional[str] = None, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        if not base_url:
            raise ValueError("base_url cannot be empty.")
        self.rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self.anon_key = anon_key
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, prefer: str = "return=minimal") -> Dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
            "Content-Type": "application/json",
            "Prefer": prefer,
        }

    @staticmethod
    def _to_row(payload: Any) -> Dict[str, Any]:
        if isinstance(payload, (NotePayload, FilePayload)):
            if payload.record is None:
                return {"id": payload.id}
            return payload.record.model_dump(mode="json", exclude=_LOCAL_ONLY_FIELDS)
        if isinstance(payload, ProfilePayload):
            return {"id": payload.id, **payload.fields}
        if isinstance(payload, AnalyticsPayload):
            return {"id": payload.id, "operation_type": payload.event, **payload.properties}
        raise SyncError(f"Unsupported payload type: {type(payload).__name__}")

    def apply(self, entity_type: EntityType, entity_id: str, operation: SyncOperation, payload: Any) -> None:
        url = f"{self.rest_url}/{self.TABLES[entity_type]}"
        id_filter = {"id": f"eq.{entity_id}"}
        try:
            if operation == SyncOperation.CREATE:
                response = self.session.post(url, json=self._to_row(payload), timeout=self.timeout,
                                             headers=self._headers("resolution=merge-duplicates,return=minimal"))
            elif operation == SyncOperation.UPDATE:
                response = self.session.patch(url, params=id_filter, json=self._to_row(payload),
                                              headers=self._headers(), timeout=self.timeout)
            else:
                response = self.session.delete(url, params=id_filter, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            text = e.response.text if e.response is not None else None
            raise RemoteSyncError(f"Backend rejected {operation.value} of {entity_type.value} {entity_id}: {e}",
                                  status_code=status, response_text=text) from e
        except requests.exceptions.RequestException as e:
            raise RemoteConnectionError(f"Could not reach backend at {self.rest_url}: {e}") from e
        logger.debug(f"Remote {operation.value} applied for {entity_type.value} {entity_id}")


# --- Engine ---
@dataclass
class SyncResult:
    pushed: int = 0
    dropped: int = 0
    failed: int = 0
    skipped: int = 0
    aborted: bool = False
    errors: List[str] = field(default_factory=list)


class OfflineSyncEngine:
    """
    Pushes the offline store's sync queue to a RemoteBackend.

    Groups the backend rejected keep their entries with `retry_count` incremented;
    once a group reaches `max_retries` it is skipped until its entries are cleared
    or reset. A connection error records `last_error` without counting a retry.
    """

    def __init__(self, storage: OfflineStorageDB, backend: RemoteBackend, max_retries: int = SYNC_MAX_RETRIES,
                 batch_size: int = SYNC_BATCH_SIZE, notifier: Optional[NotificationService] = None):
        self.storage = storage
        self.backend = backend
        self.max_retries = max_retries
        self.batch_size = batch_size
        self.notifier = notifier

    def run_sync_cycle(self) -> SyncResult:
        """Sends up to `batch_size` coalesced changes. A connection error ends the cycle early."""
        result = SyncResult()
        changes = coalesce_entries(self.storage.get_sync_queue())
        logger.info(f"Starting sync cycle: {len(changes)} pending entities")

        sent = 0
        for change in changes:
            if sent >= self.batch_size:
                break
            if change.retry_count >= self.max_retries:
                result.skipped += 1
                continue
            if change.operation is None:
                if not self._reached_remote(change.entity_type, change.entity_id):
                    self._drop(change)
                    result.dropped += 1
                    continue
                change.operation = SyncOperation.DELETE

            sent += 1
            try:
                self.backend.apply(change.entity_type, change.entity_id, change.operation, change.payload)
            except RemoteConnectionError as e:
                self._record_failure(change, e, count_retry=False)
                result.failed += 1
                result.errors.append(str(e))
                result.aborted = True
                logger.error(f"Network error during sync, stopping cycle: {e}")
                if self.notifier is not None:
                    self.notifier.system_alert("Sync paused: the server could not be reached.", "warning")
                break
            except RemoteSyncError as e:
                self._record_failure(change, e)
                result.failed += 1
                result.errors.append(str(e))
                logger.warning(f"Sync of {change.entity_type.value} {change.entity_id} failed "
                               f"(status {e.status_code}): {e}")
                continue
            self._record_success(change)
            result.pushed += 1

        logger.info(f"Sync cycle finished: pushed={result.pushed} dropped={result.dropped} "
                    f"failed={result.failed} skipped={result.skipped}")
        return result

    def _purge_local(self, entity_type: EntityType, entity_id: str):
        if entity_type == EntityType.NOTE:
            self.storage.purge_note(entity_id)
        elif entity_type == EntityType.FILE:
            self.storage.purge_file(entity_id)

    def _reached_remote(self, entity_type: EntityType, entity_id: str) -> bool:
        if entity_type == EntityType.NOTE:
            record = self.storage.get_note(entity_id)
        elif entity_type == EntityType.FILE:
            record = self.storage.get_file(entity_id)
        else:
            return False
        return record is not None and record.last_synced_at is not None

    def _drop(self, change: CoalescedChange):
        self.storage.delete_sync_queue_items(change.entry_ids)
        self._purge_local(change.entity_type, change.entity_id)
        logger.debug(f"Dropped {len(change.entries)} entries for {change.entity_type.value} {change.entity_id}: "
                     f"created and deleted before sync")

    def _record_success(self, change: CoalescedChange):
        self.storage.delete_sync_queue_items(change.entry_ids)
        if change.operation == SyncOperation.DELETE:
            self._purge_local(change.entity_type, change.entity_id)
            return
        # A local edit queued while the push was running keeps the record unsynced,
        # but the remote copy now exists.
        still_pending = any(entry.entity_id == change.entity_id
                            for entry in self.storage.get_sync_queue(change.entity_type))
        if change.entity_type == EntityType.NOTE:
            if still_pending:
                self.storage.mark_note_pushed(change.entity_id)
            else:
                self.storage.mark_note_synced(change.entity_id)
        elif change.entity_type == EntityType.FILE:
            if still_pending:
                self.storage.mark_file_pushed(change.entity_id)
            else:
                self.storage.mark_file_synced(change.entity_id)

    def _record_failure(self, change: CoalescedChange, error: Exception, count_retry: bool = True):
        for entry in change.entries:
            updates = {"last_error": str(error)}
            if count_retry:
                updates["retry_count"] = entry.retry_count + 1
            self.storage.update_sync_queue_item(entry.id, updates)

#
# End of Sync_Client.py
########################################################################################################################
