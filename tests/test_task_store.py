"""Tests for the file-backed task store (task_engine/store.py)."""

from __future__ import annotations

from pathlib import Path

import pytest

from helpers import read_json, write_json
from taskmaster.errors import (
    ConflictError,
    InvalidInputError,
    InvalidTaskIdError,
    IOFailureError,
    NotFoundError,
    TaskNotFoundError,
)
from taskmaster.task_engine.model import Subtask, Task, TaskStatus
from taskmaster.task_engine.status import set_status
from taskmaster.task_engine.store import TaskStore, format_ref, parse_ref


@pytest.fixture
def tasks_file(tmp_path: Path) -> Path:
    return tmp_path / "tasks" / "tasks.json"


@pytest.fixture
def store(tasks_file: Path) -> TaskStore:
    return TaskStore.open(tasks_file)


class TestRefs:
    def test_parse_task_and_subtask(self) -> None:
        assert parse_ref("3") == (3, None)
        assert parse_ref(" 3.2 ") == (3, 2)

    @pytest.mark.parametrize("text", ["", "abc", "0", "-1", "1.2.3", "1.x", "1."])
    def test_parse_invalid(self, text: str) -> None:
        with pytest.raises(InvalidTaskIdError):
            parse_ref(text)

    def test_format_ref(self) -> None:
        assert format_ref(3) == "3"
        assert format_ref(3, 2) == "3.2"


class TestLoadSave:
    def test_missing_file_is_empty(self, store: TaskStore) -> None:
        assert store.tasks == []
        assert store.revision == 0
        assert store.schema_version == 1
        assert store.is_open

    def test_round_trip(self, store: TaskStore, tasks_file: Path) -> None:
        store.add(Task(id=1, title="First", dependencies=[2]))
        store.add(Task(id=2, title="Second", subtasks=[Subtask(id=1, title="Child")]))
        store.save()

        reopened = TaskStore.open(tasks_file)
        assert reopened.tasks == store.tasks
        assert reopened.revision == 1

        doc = read_json(tasks_file)
        assert doc["schemaVersion"] == 1
        assert doc["revision"] == 1
        assert [t["id"] for t in doc["tasks"]] == [1, 2]

    def test_top_level_keys_preserved(self, tasks_file: Path) -> None:
        write_json(tasks_file, {"project": "demo", "tasks": [{"id": 1, "title": "x"}]})
        store = TaskStore.open(tasks_file)
        store.save()
        assert read_json(tasks_file)["project"] == "demo"

    def test_stale_revision_conflicts(self, tasks_file: Path) -> None:
        first = TaskStore.open(tasks_file)
        second = TaskStore.open(tasks_file)
        first.add(Task(id=1, title="from first"))
        first.save()

        second.add(Task(id=2, title="from second"))
        with pytest.raises(ConflictError):
            second.save()

        on_disk = read_json(tasks_file)
        assert [t["title"] for t in on_disk["tasks"]] == ["from first"]

    def test_invalid_json_is_io_failure(self, tasks_file: Path) -> None:
        tasks_file.parent.mkdir(parents=True)
        tasks_file.write_text("{not json", encoding="utf-8")
        with pytest.raises(IOFailureError):
            TaskStore.open(tasks_file)

    def test_tasks_must_be_array(self, tasks_file: Path) -> None:
        write_json(tasks_file, {"tasks": {"1": {}}})
        with pytest.raises(InvalidInputError):
            TaskStore.open(tasks_file)

    def test_closed_store_cannot_save(self, store: TaskStore) -> None:
        store.close()
        assert not store.is_open
        with pytest.raises(IOFailureError):
            store.save()

    @pytest.mark.parametrize(
        "call",
        [
            lambda s: s.get(1),
            lambda s: s.require(1),
            lambda s: s.resolve("1"),
            lambda s: s.list_all(),
            lambda s: s.find(status="pending"),
            lambda s: s.next_id(),
            lambda s: s.add(Task(id=2, title="late")),
            lambda s: s.update(1, {"title": "late"}),
            lambda s: s.remove(1),
            lambda s: s.validate_dependencies(),
        ],
    )
    def test_closed_store_rejects_use(self, store: TaskStore, call) -> None:
        store.add(Task(id=1, title="x"))
        store.close()
        with pytest.raises(IOFailureError):
            call(store)
        assert store.tasks == []

    def test_reopen_after_close(self, store: TaskStore, tasks_file: Path) -> None:
        store.add(Task(id=1, title="kept"))
        store.save()
        store.close()
        store.load()
        assert store.require(1).title == "kept"


class TestMalformedEntries:
    RAW = [
        {"id": 1, "title": "ok"},
        {"id": "abc", "title": "bad id"},
        {"id": 1, "title": "duplicate"},
        {"id": 2, "title": "bad status", "status": "bogus"},
    ]

    def test_lenient_load_keeps_what_it_can(self, tasks_file: Path) -> None:
        write_json(tasks_file, {"tasks": self.RAW})
        store = TaskStore.open(tasks_file)
        assert [t.id for t in store.tasks] == [1, 2]
        assert store.get(2).status == TaskStatus.PENDING
        assert [e["title"] for e in store.unparsed] == ["bad id", "duplicate"]

        store.save()
        titles = [t["title"] for t in read_json(tasks_file)["tasks"]]
        assert titles == ["ok", "bad status", "bad id", "duplicate"]

    def test_strict_load_rejects(self, tasks_file: Path) -> None:
        write_json(tasks_file, {"tasks": self.RAW})
        with pytest.raises(InvalidInputError) as exc_info:
            TaskStore.open(tasks_file, strict=True)
        assert len(exc_info.value.details["errors"]) == 3

    def test_untouched_malformed_entry_written_verbatim(self, tasks_file: Path) -> None:
        write_json(tasks_file, {"tasks": [{"id": 1, "status": "wip"}, {"id": 2, "status": "pending"}]})
        store = TaskStore.open(tasks_file)
        assert store.get(1).status == TaskStatus.PENDING

        set_status(store, "2", "done")
        store.save()

        on_disk = read_json(tasks_file)["tasks"]
        assert on_disk[0] == {"id": 1, "status": "wip"}
        assert on_disk[1]["status"] == "done"

    def test_edited_malformed_entry_written_normalised(self, tasks_file: Path) -> None:
        write_json(tasks_file, {"tasks": [{"id": 1, "title": "legacy", "status": "wip"}]})
        store = TaskStore.open(tasks_file)
        set_status(store, "1", "in-progress")
        store.save()

        entry = read_json(tasks_file)["tasks"][0]
        assert entry["status"] == "in-progress"
        assert entry["title"] == "legacy"

    def test_failed_strict_load_leaves_store_closed(self, tasks_file: Path) -> None:
        write_json(tasks_file, {"tasks": self.RAW})
        store = TaskStore(tasks_file, strict=True)
        with pytest.raises(InvalidInputError):
            store.load()
        assert not store.is_open


class TestLookups:
    def test_resolve_task_and_subtask(self, store: TaskStore) -> None:
        store.add(Task(id=3, subtasks=[Subtask(id=1), Subtask(id=2)]))
        assert store.resolve("3") is store.get(3)
        assert store.resolve("3.2") is store.get(3).subtasks[1]

    def test_resolve_missing(self, store: TaskStore) -> None:
        store.add(Task(id=3, subtasks=[Subtask(id=1)]))
        with pytest.raises(TaskNotFoundError):
            store.resolve("4")
        with pytest.raises(NotFoundError, match="Subtask 3.9 not found"):
            store.resolve("3.9")

    def test_find_filters(self, store: TaskStore) -> None:
        store.add(Task(id=1, title="Login page", status=TaskStatus.DONE, agent="A"))
        store.add(Task(id=2, title="Logout", description="session cleanup", sprint=1))
        store.add(Task(id=3, title="Billing", agent="A", sprint=1))
        assert [t.id for t in store.find(status="done")] == [1]
        assert [t.id for t in store.find(agent="A")] == [1, 3]
        assert [t.id for t in store.find(sprint=1)] == [2, 3]
        assert [t.id for t in store.find(search="SESSION")] == [2]

    def test_next_id(self, store: TaskStore) -> None:
        assert store.next_id() == 1
        store.add(Task(id=7))
        assert store.next_id() == 8


class TestMutations:
    def test_add_duplicate_raises(self, store: TaskStore) -> None:
        store.add(Task(id=1))
        with pytest.raises(InvalidInputError, match="already exists"):
            store.add(Task(id=1))

    def test_update_ignores_identity_fields(self, store: TaskStore) -> None:
        store.add(Task(id=1, title="old"))
        task = store.update(1, {"title": "new", "id": 99, "nonsense": True})
        assert task.id == 1
        assert task.title == "new"
        assert store.dirty

    def test_remove_strips_dependencies(self, store: TaskStore) -> None:
        store.add(Task(id=1))
        store.add(Task(id=2, dependencies=[1]))
        store.remove(1)
        assert store.get(1) is None
        assert store.get(2).dependencies == []
        assert store.next_id() == 3

    def test_transaction_saves_when_dirty(self, store: TaskStore, tasks_file: Path) -> None:
        with store.transaction() as tx:
            tx.add(Task(id=1, title="tx"))
        assert read_json(tasks_file)["revision"] == 1

        with store.transaction() as tx:
            tx.get(1)
        assert read_json(tasks_file)["revision"] == 1

    def test_transaction_discards_on_error(self, store: TaskStore, tasks_file: Path) -> None:
        with pytest.raises(TaskNotFoundError):
            with store.transaction() as tx:
                tx.add(Task(id=1))
                tx.require(42)
        assert not tasks_file.exists()


class TestDependencyValidation:
    def test_reports_missing_and_self(self, store: TaskStore) -> None:
        store.add(Task(id=1, dependencies=[1, 5]))
        store.add(Task(id=2, dependencies=[1], subtasks=[Subtask(id=1, dependencies=[3])]))
        issues = [i.to_dict() for i in store.validate_dependencies()]
        assert issues == [
            {"id": "1", "dependency": 1, "reason": "self"},
            {"id": "1", "dependency": 5, "reason": "missing"},
            {"id": "2.1", "dependency": 3, "reason": "missing"},
        ]
