# Offline_Records.py
# Description: Record and sync-queue models for the offline store
#
# Imports
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Optional, Dict, Any, Literal, Union
#
# 3rd-Party Imports
from pydantic import BaseModel, Field, ConfigDict
#
# Local Imports
#
########################################################################################################################
#
# Functions:

class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityType(str, Enum):
    NOTE = "note"
    FILE = "file"
    PROFILE = "profile"
    ANALYTICS = "analytics"


# --- Local records ---
class NoteRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    id: str
    user_id: str = ""
    title: str = ""
    content: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    is_favorite: bool = False
    is_pinned: bool = False
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    synced: bool = False
    pending_operation: Optional[SyncOperation] = None
    last_synced_at: Optional[str] = None  # set once the remote has acknowledged the record


class FileRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    id: str
    user_id: str = ""
    name: str = ""
    file_type: str = ""
    file_size: int = 0
    file_path: str = ""
    thumbnail_path: Optional[str] = None
    ocr_text: Optional[str] = None
    ocr_status: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    synced: bool = False
    pending_operation: Optional[SyncOperation] = None
    last_synced_at: Optional[str] = None


# --- Sync payloads (tagged on entity_type) ---
class NotePayload(BaseModel):
    entity_type: Literal["note"] = "note"
    id: str
    record: Optional[NoteRecord] = None  # None marks a delete tombstone


class FilePayload(BaseModel):
    entity_type: Literal["file"] = "file"
    id: str
    record: Optional[FileRecord] = None


class ProfilePayload(BaseModel):
    entity_type: Literal["profile"] = "profile"
    id: str
    fields: Dict[str, Any] = Field(default_factory=dict)


class AnalyticsPayload(BaseModel):
    entity_type: Literal["analytics"] = "analytics"
    id: str
    event: str
    properties: Dict[str, Any] = Field(default_factory=dict)


SyncPayload = Annotated[
    Union[NotePayload, FilePayload, ProfilePayload, AnalyticsPayload],
    Field(discriminator="entity_type"),
]


class SyncQueueEntry(BaseModel):
    id: str
    entity_type: EntityType
    entity_id: str
    operation: SyncOperation
    payload: SyncPayload
    created_at: str
    retry_count: int = 0
    last_error: Optional[str] = None


class CachedContentEntry(BaseModel):
    url: str
    data: Any = None
    cached_at: str
    expires_at: str


class QuizAutosaveSnapshot(BaseModel):
    """
    Persisted state of an in-progress quiz. One per quiz id.

    `config` and `questions` are kept as plain dicts here so the store does not
    depend on the quiz package; `studyvault.Quiz.quiz_models` validates them.
    """
    quiz_id: str
    question_index: int = 0
    answers: List[Any] = Field(default_factory=list)
    start_time: datetime
    elapsed_seconds: int = 0
    config: Dict[str, Any] = Field(default_factory=dict)
    questions: List[Dict[str, Any]] = Field(default_factory=list)
    last_saved: datetime

#
# End of Offline_Records.py
########################################################################################################################
