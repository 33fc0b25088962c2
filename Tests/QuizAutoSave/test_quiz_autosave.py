# test_quiz_autosave.py
#
#
# Imports
import asyncio
import time
from datetime import datetime, timezone
#
# Third-Party Imports
import pytest
#
# Local Imports
from studyvault.Constants import AUTOSAVE_UNLOAD_PROMPT
from studyvault.DB.Offline_Storage_DB import OfflineStorageDBError
from studyvault.Notifications.Notification_Service import NotificationService, NotificationType
from studyvault.Quiz.Quiz_AutoSave import QuizAutoSaver, SaveStatus
#
#######################################################################################################################
#
# Functions:

pytestmark = pytest.mark.asyncio

QUIZ_START = datetime(2025, 1, 1, 9, 30, tzinfo=timezone.utc)


def _questions(count):
    return [{
        "id": f"q{i}",
        "type": "multiple_choice_extended",
        "question": f"Question {i}?",
        "options": ["A", "B", "C", "D"],
        "correct_answer": "A",
        "explanation": "Because A.",
    } for i in range(count)]


def _make_saver(store, **overrides):
    kwargs = dict(debounce_seconds=0.05, interval_seconds=60, saved_reset_seconds=0.05,
                  error_reset_seconds=0.05, progress_notify_every=5)
    kwargs.update(overrides)
    return QuizAutoSaver(store, "quiz-1", **kwargs)


async def _start(saver, question_count=3, **kwargs):
    saver.start(QUIZ_START, {"difficulty": "beginner", "question_count": question_count},
                _questions(question_count), **kwargs)


class TestLifecycle:
    async def test_update_before_start_raises(self, store):
        saver = _make_saver(store)
        with pytest.raises(RuntimeError):
            saver.update(answers=["A"])

    async def test_empty_quiz_id_rejected(self, store):
        with pytest.raises(ValueError):
            QuizAutoSaver(store, "")

    async def test_flush_before_start_does_nothing(self, store):
        saver = _make_saver(store)
        assert await saver.flush() is False
        assert store.get_quiz_snapshot("quiz-1") is None

    async def test_start_defaults_answers_to_question_count(self, store):
        saver = _make_saver(store)
        await _start(saver, question_count=4)
        assert saver.answers == [None, None, None, None]
        assert saver.has_unsaved_changes is False
        saver.stop()


class TestDebouncedSave:
    async def test_answer_change_saves_after_quiet_period(self, store):
        saver = _make_saver(store)
        await _start(saver)

        saver.update(question_index=1, answers=[None, "B", None])
        assert saver.has_unsaved_changes is True
        assert store.get_quiz_snapshot("quiz-1") is None

        await asyncio.sleep(0.3)
        snapshot = store.get_quiz_snapshot("quiz-1")
        assert snapshot is not None
        assert snapshot.question_index == 1
        assert snapshot.answers == [None, "B", None]
        assert snapshot.start_time == QUIZ_START
        assert snapshot.config["difficulty"] == "beginner"
        assert len(snapshot.questions) == 3
        assert saver.has_unsaved_changes is False
        assert saver.last_saved is not None
        saver.stop()

    async def test_rapid_changes_collapse_into_one_write(self, store, mocker):
        saver = _make_saver(store, debounce_seconds=0.1)
        await _start(saver)
        spy = mocker.spy(store, "save_quiz_snapshot")

        saver.update(answers=["A", None, None])
        await asyncio.sleep(0.03)
        saver.update(answers=["A", "C", None])
        await asyncio.sleep(0.03)
        saver.update(answers=["A", "C", "D"])
        await asyncio.sleep(0.4)

        assert spy.call_count == 1
        assert store.get_quiz_snapshot("quiz-1").answers == ["A", "C", "D"]
        saver.stop()

    async def test_non_answer_change_does_not_arm_debounce(self, store, mocker):
        saver = _make_saver(store)
        await _start(saver)
        spy = mocker.spy(store, "save_quiz_snapshot")

        saver.update(elapsed_seconds=15)
        await asyncio.sleep(0.2)
        assert spy.call_count == 0
        assert saver.has_unsaved_changes is True
        saver.stop()


class TestIntervalSave:
    async def test_interval_flushes_unsaved_changes(self, store):
        saver = _make_saver(store, interval_seconds=0.05)
        await _start(saver)

        saver.update(elapsed_seconds=42)
        await asyncio.sleep(0.3)
        snapshot = store.get_quiz_snapshot("quiz-1")
        assert snapshot is not None
        assert snapshot.elapsed_seconds == 42
        assert saver.has_unsaved_changes is False
        saver.stop()

    async def test_interval_skips_when_nothing_changed(self, store, mocker):
        saver = _make_saver(store, interval_seconds=0.05)
        await _start(saver)
        spy = mocker.spy(store, "save_quiz_snapshot")
        await asyncio.sleep(0.2)
        assert spy.call_count == 0
        saver.stop()


class TestInFlightGuard:
    async def test_trigger_during_write_runs_one_follow_up(self, store, mocker):
        saver = _make_saver(store, debounce_seconds=10)
        await _start(saver)
        real_save = store.save_quiz_snapshot
        written = []

        def slow_save(snapshot):
            written.append(snapshot)
            time.sleep(0.1)
            return real_save(snapshot)

        mocker.patch.object(store, "save_quiz_snapshot", side_effect=slow_save)

        saver.update(answers=["A", None, None])
        first = asyncio.create_task(saver.flush())
        await asyncio.sleep(0.03)

        saver.update(answers=["A", "B", None])
        assert await saver.flush() is False
        assert await saver.flush() is False

        assert await first is True
        assert len(written) == 2
        assert written[0].answers == ["A", None, None]
        assert written[1].answers == ["A", "B", None]
        assert store.get_quiz_snapshot("quiz-1").answers == ["A", "B", None]
        assert saver.has_unsaved_changes is False
        saver.stop()

    async def test_follow_up_skipped_when_nothing_new(self, store, mocker):
        saver = _make_saver(store, debounce_seconds=10)
        await _start(saver)
        real_save = store.save_quiz_snapshot
        written = []

        def slow_save(snapshot):
            written.append(snapshot)
            time.sleep(0.1)
            return real_save(snapshot)

        mocker.patch.object(store, "save_quiz_snapshot", side_effect=slow_save)

        saver.update(answers=["A", None, None])
        first = asyncio.create_task(saver.flush())
        await asyncio.sleep(0.03)
        await saver.flush()
        assert await first is True
        assert len(written) == 1
        saver.stop()


class TestSaveStatus:
    async def test_successful_save_reports_saved_then_idle(self, store):
        statuses = []
        saver = _make_saver(store, on_status_change=statuses.append)
        await _start(saver)

        saver.update(answers=["A", None, None])
        assert await saver.force_save() is True
        assert saver.status == SaveStatus.SAVED
        await asyncio.sleep(0.2)
        assert saver.status == SaveStatus.IDLE
        assert statuses == [SaveStatus.SAVING, SaveStatus.SAVED, SaveStatus.IDLE]
        saver.stop()

    async def test_failed_save_reports_error_and_keeps_changes(self, store, mocker):
        statuses = []
        saver = _make_saver(store, on_status_change=statuses.append)
        await _start(saver)
        mocker.patch.object(store, "save_quiz_snapshot", side_effect=OfflineStorageDBError("disk full"))

        saver.update(answers=["A", None, None])
        assert await saver.force_save() is False
        assert saver.status == SaveStatus.ERROR
        assert saver.has_unsaved_changes is True
        await asyncio.sleep(0.2)
        assert saver.status == SaveStatus.IDLE
        assert statuses == [SaveStatus.SAVING, SaveStatus.ERROR, SaveStatus.IDLE]
        saver.stop()

    async def test_force_save_drops_pending_debounce(self, store, mocker):
        saver = _make_saver(store, debounce_seconds=0.1)
        await _start(saver)
        spy = mocker.spy(store, "save_quiz_snapshot")

        saver.update(answers=["A", None, None])
        await saver.force_save()
        await asyncio.sleep(0.3)
        assert spy.call_count == 1
        saver.stop()


class TestProgressNotifications:
    async def test_milestone_question_notifies_once(self, store):
        received = []
        notifier = NotificationService()
        notifier.add_callback(received.append)
        saver = _make_saver(store, notifier=notifier)
        await _start(saver, question_count=10)

        saver.update(question_index=3, answers=["A"] * 4 + [None] * 6)
        await saver.force_save()
        assert received == []

        saver.update(question_index=5, answers=["A"] * 6 + [None] * 4)
        await saver.force_save()
        saver.update(elapsed_seconds=90)
        await saver.force_save()

        assert len(received) == 1
        notification = received[0]
        assert notification.type == NotificationType.SYSTEM_ALERT
        assert notification.title == "Quiz Progress Saved"
        assert notification.message == "Your quiz progress has been automatically saved (Question 6/10)"
        assert notification.priority.value == "low"
        saver.stop()


class TestUnloadAndRecovery:
    async def test_before_unload_without_changes(self, store):
        saver = _make_saver(store)
        await _start(saver)
        assert saver.before_unload() is None
        saver.stop()

    async def test_before_unload_saves_synchronously(self, store):
        saver = _make_saver(store, debounce_seconds=10)
        await _start(saver)

        saver.update(question_index=2, answers=["A", "B", None])
        assert saver.before_unload() == AUTOSAVE_UNLOAD_PROMPT
        snapshot = store.get_quiz_snapshot("quiz-1")
        assert snapshot.question_index == 2
        assert saver.has_unsaved_changes is False
        saver.stop()

    async def test_load_and_clear_saved_quiz(self, store):
        saver = _make_saver(store)
        await _start(saver)
        saver.update(question_index=1, answers=["C", None, None], elapsed_seconds=20)
        await saver.force_save()
        saver.stop()

        resumed = _make_saver(store)
        snapshot = resumed.load_saved_quiz()
        assert snapshot.answers == ["C", None, None]
        assert snapshot.elapsed_seconds == 20

        resumed.start(snapshot.start_time, snapshot.config, snapshot.questions,
                      question_index=snapshot.question_index, answers=snapshot.answers,
                      elapsed_seconds=snapshot.elapsed_seconds)
        assert resumed.answers == ["C", None, None]
        assert resumed.has_unsaved_changes is False

        assert resumed.clear_saved_quiz() is True
        assert resumed.load_saved_quiz() is None
        assert resumed.clear_saved_quiz() is False
        resumed.stop()

    async def test_load_from_unavailable_store_returns_none(self, uninitialized_store):
        saver = _make_saver(uninitialized_store)
        assert saver.load_saved_quiz() is None
        assert saver.clear_saved_quiz() is False

#
# End of test_quiz_autosave.py
#######################################################################################################################
