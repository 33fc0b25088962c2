# Notification_Service.py
# Description: In-process notification dispatch with per-type preferences persisted in the offline store
#
# Imports
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
#
# 3rd-Party Imports
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
#
# Local Imports
from studyvault.Constants import PREF_NOTIFICATION_PREFERENCES
from studyvault.DB.Offline_Storage_DB import OfflineStorageDB, OfflineStorageDBError
#
########################################################################################################################
#
# Functions:

class NotificationType(str, Enum):
    FILE_UPLOAD = "file_upload"
    OCR_COMPLETION = "ocr_completion"
    QUIZ_COMPLETED = "quiz_completed"
    ENHANCEMENT_READY = "enhancement_ready"
    STUDY_MILESTONE = "study_milestone"
    API_QUOTA = "api_quota"
    SYSTEM_ALERT = "system_alert"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationAction(BaseModel):
    label: str
    action: str


class Notification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.NORMAL
    actions: List[NotificationAction] = Field(default_factory=list)
    auto_close: bool = True
    duration_ms: Optional[int] = None


class NotificationPreferences(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file_upload: bool = True
    ocr_completion: bool = True
    quiz_completed: bool = True
    enhancement_ready: bool = True
    study_milestone: bool = True
    api_quota: bool = True
    system_alert: bool = True

    def is_enabled(self, notification_type: NotificationType) -> bool:
        return getattr(self, notification_type.value)


NOTIFICATION_TEMPLATES: Dict[NotificationType, Dict[str, Any]] = {
    NotificationType.FILE_UPLOAD: {"priority": "normal", "auto_close": True, "duration_ms": 5000},
    NotificationType.OCR_COMPLETION: {
        "priority": "normal", "auto_close": False,
        "actions": [{"label": "View Text", "action": "view_result"},
                    {"label": "Save to Notes", "action": "save_to_notes"}],
    },
    NotificationType.QUIZ_COMPLETED: {
        "priority": "normal", "auto_close": False,
        "actions": [{"label": "View Results", "action": "view_results"}],
    },
    NotificationType.ENHANCEMENT_READY: {
        "priority": "normal", "auto_close": False,
        "actions": [{"label": "View Enhancement", "action": "view_result"}],
    },
    NotificationType.STUDY_MILESTONE: {"priority": "normal", "auto_close": True, "duration_ms": 8000},
    NotificationType.API_QUOTA: {
        "priority": "high", "auto_close": False,
        "actions": [{"label": "Update API Key", "action": "update_key"},
                    {"label": "Settings", "action": "open_settings"}],
    },
    NotificationType.SYSTEM_ALERT: {
        "priority": "urgent", "auto_close": False,
        "actions": [{"label": "Acknowledge", "action": "dismiss"}],
    },
}

NotificationCallback = Callable[[Notification], None]


class NotificationService:
    """
    Builds notifications from per-type templates and hands them to registered callbacks.

    Preferences are read from and written to the offline store under the
    `notification_preferences` key. Without a store, preferences live in memory only.
    """

    def __init__(self, store: Optional[OfflineStorageDB] = None):
        self.store = store
        self._callbacks: List[NotificationCallback] = []
        self.preferences = self._load_preferences()

    # --- Callbacks ---
    def add_callback(self, callback: NotificationCallback):
        self._callbacks.append(callback)
        logger.debug(f"Added notification callback, total callbacks: {len(self._callbacks)}")

    def remove_callback(self, callback: NotificationCallback):
        self._callbacks = [cb for cb in self._callbacks if cb != callback]

    # --- Preferences ---
    def _load_preferences(self) -> NotificationPreferences:
        if self.store is None or not self.store.is_initialized:
            return NotificationPreferences()
        try:
            saved = self.store.get_preference(PREF_NOTIFICATION_PREFERENCES) or {}
            return NotificationPreferences.model_validate(saved)
        except (OfflineStorageDBError, ValueError) as e:
            logger.error(f"Failed to load notification preferences, using defaults: {e}")
            return NotificationPreferences()

    def get_preferences(self) -> NotificationPreferences:
        return self.preferences.model_copy()

    def set_preferences(self, preferences: Union[NotificationPreferences, Dict[str, bool]]):
        if isinstance(preferences, dict):
            preferences = NotificationPreferences.model_validate({**self.preferences.model_dump(), **preferences})
        self.preferences = preferences
        if self.store is None or not self.store.is_initialized:
            return
        try:
            self.store.set_preference(PREF_NOTIFICATION_PREFERENCES, self.preferences.model_dump())
        except OfflineStorageDBError as e:
            logger.error(f"Failed to save notification preferences: {e}")

    # --- Dispatch ---
    def create(self, notification_type: Union[NotificationType, str],
               data: Dict[str, Any]) -> Optional[Notification]:
        """
        Builds a notification of the given type and passes it to every callback.

        Template fields are applied first and overridden by `data`. Returns None when
        the type is disabled in preferences.
        """
        notification_type = NotificationType(notification_type)
        if not self.preferences.is_enabled(notification_type):
            logger.debug(f"Notification type {notification_type.value} is disabled in preferences")
            return None

        merged = {**NOTIFICATION_TEMPLATES.get(notification_type, {}), **data, "type": notification_type}
        notification = Notification.model_validate(merged)

        if not self._callbacks:
            logger.debug(f"No notification callbacks registered; '{notification.title}' is not delivered")
        for index, callback in enumerate(list(self._callbacks), start=1):
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Notification callback {index}/{len(self._callbacks)} failed: {e}")
        return notification

    # --- Helpers ---
    def file_uploaded(self, file_name: str, file_size: Optional[int] = None) -> Optional[Notification]:
        size_text = f" ({round(file_size / 1024)} KB)" if file_size else ""
        return self.create(NotificationType.FILE_UPLOAD, {
            "title": "File Uploaded",
            "message": f"{file_name} has been uploaded successfully{size_text}",
            "data": {"fileName": file_name, "fileSize": file_size},
        })

    def ocr_completed(self, file_name: str, text_length: int, file_id: Optional[str] = None) -> Optional[Notification]:
        return self.create(NotificationType.OCR_COMPLETION, {
            "title": "OCR Processing Complete",
            "message": f"Text extraction completed for {file_name}. {text_length} characters extracted.",
            "data": {"fileName": file_name, "textLength": text_length, "fileId": file_id},
        })

    def quiz_completed(self, quiz_name: str, score: Optional[float] = None) -> Optional[Notification]:
        score_text = f" with a score of {score}%" if score is not None else ""
        return self.create(NotificationType.QUIZ_COMPLETED, {
            "title": "Quiz Completed",
            "message": f"You've completed {quiz_name}{score_text}",
            "data": {"quizName": quiz_name, "score": score},
        })

    def study_milestone(self, milestone: str, details: str) -> Optional[Notification]:
        return self.create(NotificationType.STUDY_MILESTONE, {
            "title": "Study Milestone Achieved!",
            "message": f"{milestone}: {details}",
            "data": {"milestone": milestone, "details": details},
        })

    def api_quota_warning(self, service: str, usage: float) -> Optional[Notification]:
        return self.create(NotificationType.API_QUOTA, {
            "title": "API Quota Warning",
            "message": f"{service} API usage is at {usage}%. Consider updating your API key.",
            "data": {"service": service, "usage": usage},
        })

    def system_alert(self, message: str, severity: str = "info") -> Optional[Notification]:
        priority = {"error": "urgent", "warning": "high"}.get(severity, "normal")
        return self.create(NotificationType.SYSTEM_ALERT, {
            "title": "System Alert",
            "message": message,
            "priority": priority,
            "data": {"severity": severity},
        })

#
# End of Notification_Service.py
########################################################################################################################
