# Quiz_AutoSave.py
# Description: Debounced and periodic autosave of in-progress quizzes into the offline store
#
"""
Quiz_AutoSave.py
----------------

`QuizAutoSaver` keeps one in-progress quiz safe against accidental loss.

Two asyncio tasks feed a single `flush()`:
- a debounce task, re-armed whenever the answer list changes, that fires after
  `debounce_seconds` of quiet;
- an interval task that fires every `interval_seconds` and flushes if anything is unsaved.

`flush()` is guarded by an in-flight flag. A trigger that arrives while a write is
running does not start a second write; it asks the running flush for one follow-up
write once the current one finishes.

Writes run through `asyncio.to_thread`, so the store must be file-backed (each thread
gets its own SQLite connection).
"""
# Imports
import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
#
# 3rd-Party Imports
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from studyvault.Constants import (
    AUTOSAVE_DEBOUNCE_SECONDS,
    AUTOSAVE_ERROR_RESET_SECONDS,
    AUTOSAVE_INTERVAL_SECONDS,
    AUTOSAVE_PROGRESS_NOTIFY_EVERY,
    AUTOSAVE_SAVED_RESET_SECONDS,
    AUTOSAVE_UNLOAD_PROMPT,
)
from studyvault.DB.Offline_Records import QuizAutosaveSnapshot
from studyvault.DB.Offline_Storage_DB import OfflineStorageDB, OfflineStorageDBError
from studyvault.Notifications.Notification_Service import NotificationService, NotificationType
from studyvault.Quiz.quiz_models import QuizConfig, QuizQuestion
#
########################################################################################################################
#
# Functions:

class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class QuizAutoSaver:
    def __init__(self, store: OfflineStorageDB, quiz_id: str, *,
                 notifier: Optional[NotificationService] = None,
                 debounce_seconds: float = AUTOSAVE_DEBOUNCE_SECONDS,
                 interval_seconds: float = AUTOSAVE_INTERVAL_SECONDS,
                 saved_reset_seconds: float = AUTOSAVE_SAVED_RESET_SECONDS,
                 error_reset_seconds: float = AUTOSAVE_ERROR_RESET_SECONDS,
                 progress_notify_every: int = AUTOSAVE_PROGRESS_NOTIFY_EVERY,
                 on_status_change: Optional[Callable[[SaveStatus], None]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        if not quiz_id:
            raise ValueError("quiz_id cannot be empty.")
        self.store = store
        self.quiz_id = quiz_id
        self.notifier = notifier
        self.debounce_seconds = debounce_seconds
        self.interval_seconds = interval_seconds
        self.saved_reset_seconds = saved_reset_seconds
        self.error_reset_seconds = error_reset_seconds
        self.progress_notify_every = progress_notify_every
        self.on_status_change = on_status_change
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.status = SaveStatus.IDLE
        self.has_unsaved_changes = False
        self.last_saved: Optional[datetime] = None

        self._started = False
        self.question_index = 0
        self.answers: List[Any] = []
        self.start_time: Optional[datetime] = None
        self.elapsed_seconds = 0
        self.config: Optional[QuizConfig] = None
        self.questions: List[QuizQuestion] = []

        self._revision = 0
        self._save_in_flight = False
        self._rerun_requested = False
        self._last_notified_index: Optional[int] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._interval_task: Optional[asyncio.Task] = None
        self._status_reset_task: Optional[asyncio.Task] = None

    # --- Lifecycle ---
    def start(self, start_time: datetime, config: Union[QuizConfig, Dict[str, Any]],
              questions: Sequence[Union[QuizQuestion, Dict[str, Any]]], question_index: int = 0,
              answers: Optional[Sequence[Any]] = None, elapsed_seconds: int = 0):
        """
        Begins tracking a quiz session and arms the interval task.

        Must be called from inside a running event loop.
        """
        loop = asyncio.get_running_loop()
        self.start_time = start_time
        self.config = config if isinstance(config, QuizConfig) else QuizConfig.model_validate(config)
        self.questions = [q if isinstance(q, QuizQuestion) else QuizQuestion.model_validate(q) for q in questions]
        self.question_index = question_index
        self.answers = list(answers) if answers is not None else [None] * len(self.questions)
        self.elapsed_seconds = elapsed_seconds
        self._started = True
        if self._interval_task is None or self._interval_task.done():
            self._interval_task = loop.create_task(self._interval_loop())
        logger.debug(f"Autosave started for quiz {self.quiz_id} ({len(self.questions)} questions)")

    def stop(self):
        """Cancels every pending timer. Unsaved changes are left as they are."""
        for task in (self._debounce_task, self._interval_task, self._status_reset_task):
            if task is not None and not task.done():
                task.cancel()
        self._debounce_task = None
        self._interval_task = None
        self._status_reset_task = None
        self._started = False

    # --- Change tracking ---
    def update(self, question_index: Optional[int] = None, answers: Optional[Sequence[Any]] = None,
               elapsed_seconds: Optional[int] = None):
        """
        Records new quiz state. Any change marks the quiz as unsaved; a change to the
        answer list also (re)arms the debounced save.
        """
        if not self._started:
            raise RuntimeError("QuizAutoSaver.start() must be called before update().")
        changed = False
        if question_index is not None and question_index != self.question_index:
            self.question_index = question_index
            changed = True
        if elapsed_seconds is not None and elapsed_seconds != self.elapsed_seconds:
            self.elapsed_seconds = elapsed_seconds
            changed = True
        answers_changed = answers is not None and list(answers) != self.answers
        if answers_changed:
            self.answers = list(answers)
        if changed or answers_changed:
            self._revision += 1
            self.has_unsaved_changes = True
        if answers_changed:
            self._schedule_debounced_flush()

    def _cancel_pending_debounce(self):
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    def _schedule_debounced_flush(self):
        self._cancel_pending_debounce()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced_flush())

    async def _debounced_flush(self):
        await asyncio.sleep(self.debounce_seconds)
        # Past the delay: a later update() arms a new timer and leaves this write alone.
        self._debounce_task = None
        await self.flush()

    async def _interval_loop(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            if self.has_unsaved_changes:
                await self.flush()

    # --- Saving ---
    async def flush(self) -> bool:
        """
        Writes the current snapshot unless a write is already running.

        Returns:
            True if this call performed at least one successful write.
        """
        if not self._started:
            return False
        if self._save_in_flight:
            self._rerun_requested = True
            logger.debug(f"Autosave for quiz {self.quiz_id} already in flight; follow-up requested")
            return False
        self._save_in_flight = True
        try:
            saved = await self._save_once()
            while self._rerun_requested:
                self._rerun_requested = False
                if not self.has_unsaved_changes:
                    break
                saved = await self._save_once() or saved
            return saved
        finally:
            self._save_in_flight = False

    async def force_save(self) -> bool:
        """Saves now, dropping any pending debounce."""
        self._cancel_pending_debounce()
        return await self.flush()

    def before_unload(self) -> Optional[str]:
        """
        Synchronous last-chance save for shutdown paths.

        Returns:
            The confirmation prompt if there were unsaved changes, otherwise None.
        """
        if not self._started or not self.has_unsaved_changes:
            return None
        self._cancel_pending_debounce()
        if self._save_in_flight:
            self._rerun_requested = True
        else:
            self._save_in_flight = True
            try:
                snapshot, revision = self._build_snapshot()
                self._set_status(SaveStatus.SAVING)
                try:
                    saved = self.store.save_quiz_snapshot(snapshot)
                except OfflineStorageDBError as e:
                    self._record_failure(e)
                else:
                    self._record_success(saved, revision)
            finally:
                self._save_in_flight = False
        return AUTOSAVE_UNLOAD_PROMPT

    async def _save_once(self) -> bool:
        snapshot, revision = self._build_snapshot()
        self._set_status(SaveStatus.SAVING)
        try:
            saved = await asyncio.to_thread(self.store.save_quiz_snapshot, snapshot)
        except OfflineStorageDBError as e:
            self._record_failure(e)
            return False
        self._record_success(saved, revision)
        return True

    def _build_snapshot(self):
        snapshot = QuizAutosaveSnapshot(
            quiz_id=self.quiz_id,
            question_index=self.question_index,
            answers=list(self.answers),
            start_time=self.start_time,
            elapsed_seconds=self.elapsed_seconds,
            config=self.config.model_dump() if self.config else {},
            questions=[q.model_dump() for q in self.questions],
            last_saved=self._clock(),
        )
        return snapshot, self._revision

    def _record_success(self, saved: QuizAutosaveSnapshot, revision: int):
        self.last_saved = saved.last_saved
        # Changes made while the write was running stay unsaved.
        if revision == self._revision:
            self.has_unsaved_changes = False
        self._set_status(SaveStatus.SAVED, reset_after=self.saved_reset_seconds)
        answered = sum(1 for a in saved.answers if a is not None)
        logger.info(f"Quiz progress saved for {self.quiz_id}: question {saved.question_index}, "
                    f"{answered} answers, {saved.elapsed_seconds}s elapsed")
        self._maybe_notify_progress(saved.question_index)

    def _record_failure(self, error: Exception):
        logger.error(f"Failed to save quiz progress for {self.quiz_id}: {error}")
        self._set_status(SaveStatus.ERROR, reset_after=self.error_reset_seconds)

    def _maybe_notify_progress(self, question_index: int):
        if self.notifier is None or self.progress_notify_every <= 0:
            return
        if question_index <= 0 or question_index % self.progress_notify_every != 0:
            return
        if question_index == self._last_notified_index:
            return
        self._last_notified_index = question_index
        total = len(self.questions)
        self.notifier.create(NotificationType.SYSTEM_ALERT, {
            "title": "Quiz Progress Saved",
            "message": f"Your quiz progress has been automatically saved (Question {question_index + 1}/{total})",
            "priority": "low",
            "data": {"quizId": self.quiz_id, "questionIndex": question_index, "totalQuestions": total},
        })

    # --- Status ---
    def _set_status(self, status: SaveStatus, reset_after: Optional[float] = None):
        if self._status_reset_task is not None and not self._status_reset_task.done():
            self._status_reset_task.cancel()
        self._status_reset_task = None
        self.status = status
        if self.on_status_change is not None:
            self.on_status_change(status)
        if reset_after is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._status_reset_task = loop.create_task(self._reset_status_later(reset_after))

    async def _reset_status_later(self, delay: float):
        await asyncio.sleep(delay)
        self._status_reset_task = None
        self.status = SaveStatus.IDLE
        if self.on_status_change is not None:
            self.on_status_change(SaveStatus.IDLE)

    # --- Recovery ---
    def load_saved_quiz(self) -> Optional[QuizAutosaveSnapshot]:
        """Returns the stored snapshot for this quiz, or None if there is none or it is unreadable."""
        try:
            return self.store.get_quiz_snapshot(self.quiz_id)
        except (OfflineStorageDBError, ValidationError) as e:
            logger.error(f"Failed to load saved quiz {self.quiz_id}: {e}")
            return None

    def clear_saved_quiz(self) -> bool:
        """Deletes the stored snapshot, typically once the quiz is completed."""
        self._cancel_pending_debounce()
        try:
            removed = self.store.delete_quiz_snapshot(self.quiz_id)
        except OfflineStorageDBError as e:
            logger.error(f"Failed to clear saved quiz {self.quiz_id}: {e}")
            return False
        self.has_unsaved_changes = False
        logger.info(f"Cleared saved quiz data for {self.quiz_id}")
        return removed

#
# End of Quiz_AutoSave.py
########################################################################################################################
