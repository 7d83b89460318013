"""Tests for status transitions, progress and feedback (task_engine/status.py)."""

from __future__ import annotations

from pathlib import Path

import pytest

from helpers import read_json, write_json
from taskmaster.errors import (
    InvalidInputError,
    InvalidStatusError,
    InvalidTaskIdError,
    NotFoundError,
    TaskNotFoundError,
    TransitionNotAllowedError,
)
from taskmaster.task_engine.model import Subtask, Task, TaskStatus
from taskmaster.task_engine.status import (
    TransitionPolicy,
    add_feedback,
    set_status,
    split_id_spec,
    update_progress,
)
from taskmaster.task_engine.store import TaskStore


@pytest.fixture
def store(tmp_path: Path) -> TaskStore:
    path = write_json(tmp_path / "tasks.json", {
        "tasks": [
            {"id": 1, "title": "One", "status": "pending"},
            {"id": 2, "title": "Two", "status": "done"},
            {
                "id": 3,
                "title": "Three",
                "status": "in-progress",
                "subtasks": [
                    {"id": 1, "title": "3a", "status": "done"},
                    {"id": 2, "title": "3b", "status": "pending"},
                    {"id": 3, "title": "3c", "status": "cancelled"},
                ],
            },
        ]
    })
    return TaskStore.open(path)


class TestSetStatus:
    def test_single_task_end_to_end(self, store: TaskStore) -> None:
        result = set_status(store, "1", "done")
        store.save()

        assert result.to_response() == {
            "success": True,
            "updatedTasks": [{"id": 1, "status": "done"}],
        }
        statuses = {t["id"]: t["status"] for t in read_json(store.path)["tasks"]}
        assert statuses == {1: "done", 2: "done", 3: "in-progress"}

    def test_multiple_ids(self, store: TaskStore) -> None:
        result = set_status(store, "1, 3", "review")
        assert result.updated_ids == ["1", "3"]
        assert store.get(1).status == TaskStatus.REVIEW
        assert store.get(3).status == TaskStatus.REVIEW

    def test_same_status_is_a_no_op(self, store: TaskStore) -> None:
        before = store.get(2).updated_at
        result = set_status(store, "2", "done")
        assert result.updated_ids == ["2"]
        assert not result.changed
        assert store.get(2).updated_at == before
        assert not store.dirty

    def test_invalid_status_leaves_store_untouched(self, store: TaskStore) -> None:
        with pytest.raises(InvalidStatusError, match="Invalid status value: finished"):
            set_status(store, "1", "finished")
        assert store.get(1).status == TaskStatus.PENDING
        assert not store.dirty

    def test_completed_alias_is_not_accepted_as_input(self, store: TaskStore) -> None:
        with pytest.raises(InvalidStatusError):
            set_status(store, "1", "completed")

    def test_unknown_id_fails_before_any_change(self, store: TaskStore) -> None:
        with pytest.raises(TaskNotFoundError):
            set_status(store, "1,99", "done")
        assert store.get(1).status == TaskStatus.PENDING
        assert not store.dirty

    def test_subtask_ref(self, store: TaskStore) -> None:
        result = set_status(store, "3.2", "in-progress")
        assert store.get(3).subtasks[1].status == TaskStatus.IN_PROGRESS
        assert store.get(3).status == TaskStatus.IN_PROGRESS
        assert result.to_response()["updatedTasks"] == [{"id": "3.2", "status": "in-progress"}]
        change = result.changes[0]
        assert change.is_subtask
        assert change.parent_id == 3

    def test_missing_subtask(self, store: TaskStore) -> None:
        with pytest.raises(NotFoundError):
            set_status(store, "3.9", "done")

    def test_invalid_id(self, store: TaskStore) -> None:
        with pytest.raises(InvalidTaskIdError):
            set_status(store, "one", "done")

    def test_cascade_to_unfinished_subtasks(self, store: TaskStore) -> None:
        result = set_status(store, "3", "done")
        subs = store.get(3).subtasks
        assert [s.status for s in subs] == [TaskStatus.DONE, TaskStatus.DONE, TaskStatus.CANCELLED]
        assert [c.task_id for c in result.changes] == ["3", "3.2"]
        assert result.updated_ids == ["3"]

    def test_non_terminal_status_does_not_cascade(self, store: TaskStore) -> None:
        set_status(store, "3", "blocked")
        assert store.get(3).subtasks[1].status == TaskStatus.PENDING

    def test_last_subtask_done_adds_note(self, store: TaskStore) -> None:
        store.get(3).subtasks[2].status = TaskStatus.DONE
        result = set_status(store, "3.2", "done")
        assert result.notes == ["All subtasks of task 3 are done; consider setting it to done"]
        assert store.get(3).status == TaskStatus.IN_PROGRESS

    def test_dependency_issues_do_not_roll_back(self, store: TaskStore) -> None:
        store.get(1).dependencies = [42]
        result = set_status(store, "1", "in-progress")
        assert store.get(1).status == TaskStatus.IN_PROGRESS
        assert [i.to_dict() for i in result.dependency_issues] == [
            {"id": "1", "dependency": 42, "reason": "missing"}
        ]
        assert result.to_dict()["dependencyIssues"][0]["reason"] == "missing"


class TestTransitionPolicy:
    def test_flat_allows_everything(self) -> None:
        policy = TransitionPolicy.flat()
        assert policy.is_allowed("done", "pending")
        assert "pending" in policy.targets("done")

    def test_strict_rejects_reopen(self, store: TaskStore) -> None:
        with pytest.raises(TransitionNotAllowedError) as exc_info:
            set_status(store, "2", "pending", policy=TransitionPolicy.strict())
        assert exc_info.value.details == {"id": "2", "from": "done", "to": "pending"}
        assert store.get(2).status == TaskStatus.DONE

    def test_strict_allows_listed_moves(self, store: TaskStore) -> None:
        set_status(store, "2", "review", policy=TransitionPolicy.strict())
        assert store.get(2).status == TaskStatus.REVIEW

    def test_strict_same_status_allowed(self) -> None:
        assert TransitionPolicy.strict().is_allowed("done", "done")


class TestSplitIdSpec:
    def test_strips_blanks(self) -> None:
        assert split_id_spec(" 1, 2 ,,3.1") == ["1", "2", "3.1"]

    def test_int_spec(self) -> None:
        assert split_id_spec(5) == ["5"]

    def test_empty(self) -> None:
        with pytest.raises(InvalidInputError):
            split_id_spec(" , ")


class TestProgress:
    def test_pending_moves_to_in_progress(self) -> None:
        task = Task(id=1)
        change = update_progress(task, 40)
        assert task.progress == 40
        assert task.status == TaskStatus.IN_PROGRESS
        assert change is not None
        assert (change.old_status, change.new_status) == ("pending", "in-progress")

    def test_hundred_completes(self) -> None:
        task = Task(id=1, status=TaskStatus.REVIEW)
        change = update_progress(task, 100.0)
        assert task.status == TaskStatus.DONE
        assert task.completed_at is not None
        assert change is not None and change.new_status == "done"

    def test_other_status_unchanged(self) -> None:
        task = Task(id=1, status=TaskStatus.BLOCKED)
        assert update_progress(task, 10) is None
        assert task.status == TaskStatus.BLOCKED

    @pytest.mark.parametrize("value", [-1, 101, "50", True, None])
    def test_rejects_bad_values(self, value: object) -> None:
        task = Task(id=1)
        with pytest.raises(InvalidInputError):
            update_progress(task, value)
        assert task.progress is None


class TestFeedback:
    def test_appends_entry(self) -> None:
        task = Task(id=1)
        entry = add_feedback(task, " Ada ", "Looks good")
        assert entry["agent"] == "Ada"
        assert entry["message"] == "Looks good"
        assert "timestamp" in entry
        assert task.feedback == [entry]

    @pytest.mark.parametrize("agent,message", [("", "hi"), ("Ada", "  "), (None, "hi")])
    def test_rejects_empty(self, agent: object, message: object) -> None:
        with pytest.raises(InvalidInputError):
            add_feedback(Task(id=1), agent, message)


def test_subtask_standalone_set_status() -> None:
    sub = Subtask(id=1)
    sub.set_status(TaskStatus.DONE)
    assert sub.is_done
