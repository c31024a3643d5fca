"""
Tests for the persisted snapshot format.

Tests cover:
- Serialization with camelCase keys
- Version gate (mismatch resets to the empty state)
- Field-by-field sanitization of untrusted snapshots
- Repair of cross-references between todos and sub-tasks
"""

import json

import pytest

from pirido.models import DEFAULT_MODEL, AppSettings
from pirido.services.state_engine import find_invariant_violations, toggle_todo_collapsed
from pirido.snapshot import (
    CURRENT_SCHEMA_VERSION,
    STORAGE_KEY,
    create_initial_state,
    dump_snapshot,
    load_snapshot,
    migrate_state,
)


def _snapshot(**overrides):
    data = {
        "todos": {},
        "subTasks": {},
        "todoOrder": [],
        "collapsedTodoIds": [],
        "settings": {"apiKey": "", "model": DEFAULT_MODEL},
        "schemaVersion": CURRENT_SCHEMA_VERSION,
    }
    data.update(overrides)
    return data


def _todo(todo_id, text="Task", **fields):
    return {
        "id": todo_id,
        "text": text,
        "priority": 0,
        "completed": False,
        "createdAt": "2025-01-14T10:00:00.000Z",
        "subTaskIds": [],
        **fields,
    }


def _sub_task(sub_task_id, parent_id, text="Step", **fields):
    return {
        "id": sub_task_id,
        "parentId": parent_id,
        "text": text,
        "completed": False,
        "createdAt": "2025-01-14T10:00:00.000Z",
        "source": "ai",
        **fields,
    }


class TestDumpSnapshot:
    """Tests for serialization."""

    def test_storage_key(self):
        assert STORAGE_KEY == "pirido.app.v1"

    def test_dump_uses_camel_case_keys(self, make_state, add_sub_tasks):
        state, (a,) = make_state("A", settings=AppSettings(api_key="sk-1", model="gpt-4o"))
        state, _ = add_sub_tasks(state, a, "one")

        data = json.loads(dump_snapshot(state))

        assert data["schemaVersion"] == 1
        assert data["todoOrder"] == [a]
        assert data["todos"][a]["subTaskIds"] == state.todos[a].sub_task_ids
        assert data["settings"] == {"apiKey": "sk-1", "model": "gpt-4o"}

    def test_api_key_is_stored_in_plain_form(self):
        state = create_initial_state().model_copy(update={"settings": AppSettings(api_key="sk-visible")})

        assert "sk-visible" in dump_snapshot(state)

    def test_dump_then_load_preserves_state(self, make_state, add_sub_tasks):
        state, (a, b) = make_state("A", "B")
        state, _ = add_sub_tasks(state, b, "one", "two")
        state = toggle_todo_collapsed(state, b)

        assert load_snapshot(dump_snapshot(state)) == state


class TestVersionGate:
    """Tests for schema version handling."""

    @pytest.mark.parametrize("version", [2, 0, "1", None, True])
    def test_version_mismatch_resets(self, version):
        data = _snapshot(todos={"a": _todo("a")}, todoOrder=["a"], schemaVersion=version)

        state = migrate_state(data)

        assert state == create_initial_state()

    def test_missing_version_resets(self):
        data = _snapshot(todos={"a": _todo("a")}, todoOrder=["a"])
        del data["schemaVersion"]

        assert migrate_state(data) == create_initial_state()

    @pytest.mark.parametrize("raw", [None, "", "not json", "[1, 2]", "42"])
    def test_unreadable_snapshot_resets(self, raw):
        assert load_snapshot(raw) == create_initial_state()


class TestSanitization:
    """Tests for field-by-field sanitization."""

    def test_valid_snapshot_loads(self):
        data = _snapshot(
            todos={"a": _todo("a", "Alpha", priority=3, subTaskIds=["s1"])},
            subTasks={"s1": _sub_task("s1", "a")},
            todoOrder=["a"],
            collapsedTodoIds=["a"],
            settings={"apiKey": "sk-1", "model": "gpt-4.1"},
        )

        state = migrate_state(data)

        assert state.todos["a"].text == "Alpha"
        assert state.todos["a"].priority == 3
        assert state.sub_tasks["s1"].parent_id == "a"
        assert state.collapsed_todo_ids == ["a"]
        assert state.settings == AppSettings(api_key="sk-1", model="gpt-4.1")
        assert find_invariant_violations(state) == []

    def test_non_object_todos_are_dropped(self):
        data = _snapshot(todos={"a": _todo("a"), "b": "junk", "c": None}, todoOrder=["a", "b", "c"])

        state = migrate_state(data)

        assert list(state.todos) == ["a"]
        assert state.todo_order == ["a"]

    def test_todo_without_text_is_dropped(self):
        data = _snapshot(todos={"a": _todo("a", text="  "), "b": _todo("b", text=5)}, todoOrder=["a", "b"])

        assert migrate_state(data).todos == {}

    def test_todo_fields_are_defaulted(self):
        data = _snapshot(
            todos={"a": {"text": "Alpha", "priority": 99, "completed": 1, "subTaskIds": "nope"}},
            todoOrder=["a"],
        )

        todo = migrate_state(data).todos["a"]

        assert todo.id == "a"
        assert todo.priority == 5
        assert todo.completed is True
        assert todo.sub_task_ids == []
        assert todo.created_at.tzinfo is not None

    def test_invalid_priority_becomes_unranked(self):
        data = _snapshot(todos={"a": _todo("a", priority=2.5)}, todoOrder=["a"])

        assert migrate_state(data).todos["a"].priority == 0

    def test_order_is_repaired(self):
        data = _snapshot(
            todos={"a": _todo("a"), "b": _todo("b"), "c": _todo("c")},
            todoOrder=["b", 7, "ghost", "b", "a"],
        )

        state = migrate_state(data)

        assert state.todo_order == ["b", "a", "c"]
        assert find_invariant_violations(state) == []

    def test_collapsed_ids_are_filtered(self):
        data = _snapshot(
            todos={"a": _todo("a")},
            todoOrder=["a"],
            collapsedTodoIds=["ghost", "a", "a", 3],
        )

        assert migrate_state(data).collapsed_todo_ids == ["a"]

    def test_orphaned_sub_tasks_are_dropped(self):
        data = _snapshot(
            todos={"a": _todo("a", subTaskIds=["s1", "s2", "s3"])},
            subTasks={
                "s1": _sub_task("s1", "a"),
                "s2": _sub_task("s2", "ghost"),
                "s4": _sub_task("s4", "a"),
                "s5": "junk",
            },
            todoOrder=["a"],
        )

        state = migrate_state(data)

        assert list(state.sub_tasks) == ["s1"]
        assert state.todos["a"].sub_task_ids == ["s1"]
        assert find_invariant_violations(state) == []

    @pytest.mark.parametrize("parent_id", [["a"], {"id": "a"}, None, 7])
    def test_sub_task_with_non_string_parent_is_dropped(self, parent_id):
        data = _snapshot(
            todos={"a": _todo("a", subTaskIds=["s1", "s2"])},
            subTasks={
                "s1": _sub_task("s1", parent_id),
                "s2": _sub_task("s2", "a"),
            },
            todoOrder=["a"],
        )

        state = load_snapshot(json.dumps(data))

        assert list(state.sub_tasks) == ["s2"]
        assert state.todos["a"].sub_task_ids == ["s2"]

    def test_sub_task_claimed_by_wrong_parent_is_unlinked(self):
        data = _snapshot(
            todos={"a": _todo("a", subTaskIds=["s1"]), "b": _todo("b", subTaskIds=["s1"])},
            subTasks={"s1": _sub_task("s1", "b")},
            todoOrder=["a", "b"],
        )

        state = migrate_state(data)

        assert state.todos["a"].sub_task_ids == []
        assert state.todos["b"].sub_task_ids == ["s1"]

    def test_settings_are_sanitized(self):
        data = _snapshot(settings={"apiKey": 12345, "model": "gpt-unknown"})

        settings = migrate_state(data).settings

        assert settings.api_key == ""
        assert settings.model == DEFAULT_MODEL

    def test_missing_sections_default(self):
        state = migrate_state({"schemaVersion": 1})

        assert state == create_initial_state()
