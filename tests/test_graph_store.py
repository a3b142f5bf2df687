# tests/test_graph_store.py
import json

import pytest

from conftest import PROJECT, T0
from tqe.domain.errors import ValidationError
from tqe.domain.models import TaskCreate, TaskUpdate
from tqe.domain.states import TaskPriority, TaskStatus


def _raw_edges(conn, task_id: str):
    row = conn.execute(
        "SELECT blocked_by, blocks FROM tasks WHERE project_path = ? AND id = ?;",
        (PROJECT, task_id),
    ).fetchone()
    return row["blocked_by"], row["blocks"]


def test_add_task_trims_description_and_defaults(repo):
    task = repo.add_task(PROJECT, "  write the report  ")

    assert task.description == "write the report"
    assert task.status == TaskStatus.PENDING
    assert task.priority == TaskPriority.NORMAL
    assert task.created_at >= T0
    assert task.blocked_by is None and task.blocks is None
    assert task.is_recurring_template is False

    stored = repo.get_task(PROJECT, task.id)
    assert stored == task


def test_add_task_rejects_blank_description(repo):
    with pytest.raises(ValidationError):
        repo.add_task(PROJECT, "   ")
    assert repo.get_tasks(PROJECT) == []


def test_add_task_ignores_unknown_dependency_ids(repo):
    task = repo.add_task(
        PROJECT,
        TaskCreate(description="child", blocked_by=["missing-1"], blocks=["missing-2"]),
    )

    assert task.blocked_by is None
    assert task.blocks is None


def test_add_task_links_both_directions(repo):
    parent = repo.add_task(PROJECT, "parent")
    later = repo.add_task(PROJECT, "later")
    middle = repo.add_task(
        PROJECT,
        TaskCreate(description="middle", blocked_by=[parent.id, "nope"], blocks=[later.id]),
    )

    assert middle.blocked_by == [parent.id]
    assert middle.blocks == [later.id]
    assert repo.get_task(PROJECT, parent.id).blocks == [middle.id]
    assert repo.get_task(PROJECT, later.id).blocked_by == [middle.id]


def test_dependency_ids_from_other_projects_are_dropped(repo):
    foreign = repo.add_task("/work/other", "elsewhere")
    task = repo.add_task(PROJECT, TaskCreate(description="local", blocked_by=[foreign.id]))

    assert task.blocked_by is None
    assert repo.get_task("/work/other", foreign.id).blocks is None


def test_failed_link_rolls_back_the_insert(repo, monkeypatch):
    target = repo.add_task(PROJECT, "target")

    def boom(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(repo, "_append_edge", boom)
    with pytest.raises(RuntimeError):
        repo.add_task(PROJECT, TaskCreate(description="new", blocks=[target.id]))

    tasks = repo.get_tasks(PROJECT)
    assert [t.id for t in tasks] == [target.id]
    assert not repo.conn.in_transaction


def test_delete_task_removes_references(repo, conn):
    t1 = repo.add_task(PROJECT, "t1")
    t2 = repo.add_task(PROJECT, TaskCreate(description="t2", blocked_by=[t1.id]))
    t3 = repo.add_task(PROJECT, TaskCreate(description="t3", blocks=[t1.id]))

    assert repo.get_task(PROJECT, t2.id).blocked_by == [t1.id]

    assert repo.delete_task(PROJECT, t1.id) is True

    assert repo.get_task(PROJECT, t1.id) is None
    assert repo.get_task(PROJECT, t2.id).blocked_by is None
    assert repo.get_task(PROJECT, t3.id).blocks is None
    # Emptied edge lists are stored as NULL, not "[]"
    assert _raw_edges(conn, t2.id) == (None, None)
    assert _raw_edges(conn, t3.id) == (None, None)


def test_delete_keeps_unrelated_edges(repo, conn):
    a = repo.add_task(PROJECT, "a")
    b = repo.add_task(PROJECT, "b")
    c = repo.add_task(PROJECT, TaskCreate(description="c", blocked_by=[a.id, b.id]))

    repo.delete_task(PROJECT, a.id)

    assert repo.get_task(PROJECT, c.id).blocked_by == [b.id]
    assert json.loads(_raw_edges(conn, c.id)[0]) == [b.id]


def test_delete_missing_task_returns_false(repo):
    assert repo.delete_task(PROJECT, "does-not-exist") is False


def test_clear_pending_tasks_removes_references(repo):
    t1 = repo.add_task(PROJECT, "t1")
    t2 = repo.add_task(PROJECT, TaskCreate(description="t2", blocked_by=[t1.id]))
    running = repo.add_task(PROJECT, TaskCreate(description="running", blocked_by=[t1.id]))
    repo.start_task(PROJECT, running.id)

    removed = repo.clear_pending_tasks(PROJECT)

    assert removed == 2
    assert repo.get_task(PROJECT, t2.id) is None
    survivor = repo.get_task(PROJECT, running.id)
    assert survivor.status == TaskStatus.IN_PROGRESS
    assert survivor.blocked_by is None


def test_clear_completed_tasks_removes_completed_and_failed(repo):
    t1 = repo.add_task(PROJECT, "t1")
    t2 = repo.add_task(PROJECT, TaskCreate(description="t2", blocked_by=[t1.id]))
    t3 = repo.add_task(PROJECT, "t3")

    repo.update_task(PROJECT, t1.id, {"status": "completed"})
    repo.fail_task(PROJECT, t3.id, error="boom")

    assert repo.clear_completed_tasks(PROJECT) == 2
    assert repo.get_task(PROJECT, t2.id).blocked_by is None
    assert repo.clear_completed_tasks(PROJECT) == 0


def test_get_tasks_drops_orphaned_references(repo, conn):
    task = repo.add_task(PROJECT, "orphaned deps")
    conn.execute(
        "UPDATE tasks SET blocked_by = ?, blocks = ? WHERE id = ?;",
        (json.dumps(["missing-task"]), json.dumps(["missing-task", "missing-task"]), task.id),
    )

    tasks = repo.get_tasks(PROJECT)
    assert len(tasks) == 1
    assert tasks[0].blocked_by is None
    assert tasks[0].blocks is None

    single = repo.get_task(PROJECT, task.id)
    assert single.blocked_by is None and single.blocks is None


def test_get_tasks_is_scoped_and_ordered(repo, clock):
    first = repo.add_task(PROJECT, "first")
    clock.advance(10)
    second = repo.add_task(PROJECT, "second")
    repo.add_task("/work/other", "not mine")

    assert [t.id for t in repo.get_tasks(PROJECT)] == [first.id, second.id]


def test_resolve_task_id_by_exact_id_and_prefix(repo):
    a = repo.add_task(PROJECT, "a")
    b = repo.add_task(PROJECT, "b")

    exact = repo.resolve_task_id(PROJECT, a.id)
    assert exact.task.id == a.id
    assert [m.id for m in exact.matches] == [a.id]

    everything = repo.resolve_task_id(PROJECT, "")
    assert everything.task is None
    assert {m.id for m in everything.matches} == {a.id, b.id}

    narrowed = repo.resolve_task_id(PROJECT, "", lambda t: t.description == "b")
    assert narrowed.task.id == b.id

    unique_prefix = a.id[:12]
    if not b.id.startswith(unique_prefix):
        assert repo.resolve_task_id(PROJECT, unique_prefix).task.id == a.id

    assert repo.resolve_task_id(PROJECT, "zzzz-none").matches == []


def test_update_task_applies_whitelisted_fields_only(repo):
    task = repo.add_task(PROJECT, TaskCreate(description="t", priority=TaskPriority.LOW))

    updated = repo.update_task(
        PROJECT, task.id, TaskUpdate(priority=TaskPriority.URGENT, result="partial")
    )
    assert updated.priority == TaskPriority.URGENT
    assert updated.result == "partial"
    assert updated.status == TaskStatus.PENDING
    assert updated.description == "t"

    unchanged = repo.update_task(PROJECT, task.id, TaskUpdate())
    assert unchanged == updated

    with pytest.raises(ValidationError):
        repo.update_task(PROJECT, task.id, {"description": "renamed"})


def test_update_missing_task_returns_none(repo):
    assert repo.update_task(PROJECT, "missing", TaskUpdate(status=TaskStatus.COMPLETED)) is None
    assert repo.complete_task(PROJECT, "missing") is None


def test_lifecycle_helpers_stamp_times(repo, clock):
    task = repo.add_task(PROJECT, "work")

    clock.advance(1_000)
    started = repo.start_task(PROJECT, task.id)
    assert started.status == TaskStatus.IN_PROGRESS
    assert started.started_at == T0 + 1_000

    clock.advance(1_000)
    done = repo.complete_task(PROJECT, task.id, result="ok")
    assert done.status == TaskStatus.COMPLETED
    assert done.completed_at == T0 + 2_000
    assert done.result == "ok"

    other = repo.add_task(PROJECT, "other")
    failed = repo.fail_task(PROJECT, other.id, error="nope")
    assert failed.status == TaskStatus.FAILED
    assert failed.error == "nope"


def test_get_task_counts_includes_every_status(repo):
    a = repo.add_task(PROJECT, "a")
    repo.add_task(PROJECT, "b")
    repo.complete_task(PROJECT, a.id)

    counts = repo.get_task_counts(PROJECT)
    assert counts == {
        TaskStatus.PENDING: 1,
        TaskStatus.IN_PROGRESS: 0,
        TaskStatus.COMPLETED: 1,
        TaskStatus.FAILED: 0,
    }


def test_initialize_is_idempotent(db, conn):
    assert db.initialize() == []
    versions = [r["version"] for r in conn.execute("SELECT version FROM schema_migrations;")]
    assert versions == [1]


def _fail_cleanup(repo, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("cleanup failed")

    monkeypatch.setattr(repo, "_strip_references", boom)


def test_failed_cleanup_rolls_back_delete(repo, conn, monkeypatch):
    t1 = repo.add_task(PROJECT, "t1")
    t2 = repo.add_task(PROJECT, TaskCreate(description="t2", blocked_by=[t1.id]))
    before = {t.id: _raw_edges(conn, t.id) for t in (t1, t2)}

    _fail_cleanup(repo, monkeypatch)
    with pytest.raises(RuntimeError):
        repo.delete_task(PROJECT, t1.id)

    assert not conn.in_transaction
    assert repo.get_task(PROJECT, t1.id) is not None
    assert {t.id: _raw_edges(conn, t.id) for t in (t1, t2)} == before


@pytest.mark.parametrize("which", ["pending", "completed"])
def test_failed_cleanup_rolls_back_clear(repo, conn, monkeypatch, which):
    t1 = repo.add_task(PROJECT, "t1")
    t2 = repo.add_task(PROJECT, TaskCreate(description="t2", blocked_by=[t1.id]))
    repo.start_task(PROJECT, t2.id)
    if which == "completed":
        repo.complete_task(PROJECT, t1.id)
    before = {t.id: _raw_edges(conn, t.id) for t in (t1, t2)}

    _fail_cleanup(repo, monkeypatch)
    clear = repo.clear_pending_tasks if which == "pending" else repo.clear_completed_tasks
    with pytest.raises(RuntimeError):
        clear(PROJECT)

    assert not conn.in_transaction
    assert {t.id for t in repo.get_tasks(PROJECT)} == {t1.id, t2.id}
    assert {t.id: _raw_edges(conn, t.id) for t in (t1, t2)} == before
