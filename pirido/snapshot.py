"""
Persisted snapshot format for Pirido.

The whole AppState is stored as one JSON document under a fixed storage key.
Loading never trusts the stored shape: a schema version mismatch resets to
the empty state, and a matching document is re-sanitized field by field so
the state engine's invariants hold from the first operation.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pirido.logging_config import get_logger
from pirido.models import (
    APP_SCHEMA_VERSION,
    AppSettings,
    AppState,
    SubTask,
    SubTaskSource,
    Todo,
    clamp_priority,
    normalize_model,
    utc_now,
)

logger = get_logger(__name__)

CURRENT_SCHEMA_VERSION = APP_SCHEMA_VERSION
STORAGE_KEY = "pirido.app.v1"


def create_initial_state() -> AppState:
    """Return the empty default state."""
    return AppState()


def dump_snapshot(state: AppState) -> str:
    """
    Serialize a state to its persisted JSON form.

    Args:
        state: State to serialize

    Returns:
        JSON text with camelCase keys
    """
    return state.model_dump_json(by_alias=True)


def load_snapshot(raw: Optional[str]) -> AppState:
    """
    Deserialize a persisted snapshot.

    Args:
        raw: JSON text, or None when nothing was stored yet

    Returns:
        The sanitized state, or the empty state if the text is missing,
        unparsable or from another schema version
    """
    if not raw:
        return create_initial_state()

    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Discarding unreadable snapshot: {e}")
        return create_initial_state()

    return migrate_state(data)


def migrate_state(data: Any) -> AppState:
    """
    Turn decoded snapshot data into a valid AppState.

    There is no migration path between schema versions: anything other than
    the current version is discarded.

    Args:
        data: Decoded JSON value

    Returns:
        Sanitized AppState
    """
    if not isinstance(data, dict):
        logger.warning("Discarding snapshot: root is not an object")
        return create_initial_state()

    version = data.get("schemaVersion")
    if isinstance(version, bool) or version != CURRENT_SCHEMA_VERSION:
        logger.warning(
            f"Discarding snapshot: schemaVersion={version!r}, expected {CURRENT_SCHEMA_VERSION}"
        )
        return create_initial_state()

    todos = _sanitize_todos(data.get("todos"))
    sub_tasks = _sanitize_sub_tasks(data.get("subTasks"), todos)
    todos, sub_tasks = _link_sub_tasks(todos, sub_tasks)

    state = AppState(
        todos=todos,
        sub_tasks=sub_tasks,
        todo_order=_sanitize_order(data.get("todoOrder"), todos),
        collapsed_todo_ids=_unique_known_ids(data.get("collapsedTodoIds"), todos),
        settings=_sanitize_settings(data.get("settings")),
        schema_version=CURRENT_SCHEMA_VERSION,
    )

    logger.info(f"Loaded snapshot: todos={len(state.todos)}, sub_tasks={len(state.sub_tasks)}")
    return state


# ==============================================================================
# FIELD SANITIZERS
# ==============================================================================

def _clean_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return utc_now()


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _sanitize_todos(raw: Any) -> Dict[str, Todo]:
    if not isinstance(raw, dict):
        return {}

    todos: Dict[str, Todo] = {}
    for key, value in raw.items():
        if not isinstance(value, dict):
            logger.warning(f"Dropping todo {key!r}: not an object")
            continue
        text = _clean_text(value.get("text"))
        if not text:
            logger.warning(f"Dropping todo {key!r}: empty text")
            continue
        todo_id = value.get("id") if isinstance(value.get("id"), str) and value.get("id") else key
        todos[todo_id] = Todo(
            id=todo_id,
            text=text,
            priority=clamp_priority(value.get("priority")),
            completed=bool(value.get("completed")),
            created_at=_parse_timestamp(value.get("createdAt")),
            sub_task_ids=_string_list(value.get("subTaskIds")),
        )
    return todos


def _sanitize_sub_tasks(raw: Any, todos: Dict[str, Todo]) -> Dict[str, SubTask]:
    if not isinstance(raw, dict):
        return {}

    sub_tasks: Dict[str, SubTask] = {}
    for key, value in raw.items():
        if not isinstance(value, dict):
            logger.warning(f"Dropping sub-task {key!r}: not an object")
            continue
        text = _clean_text(value.get("text"))
        parent_id = value.get("parentId")
        if not text or not isinstance(parent_id, str) or parent_id not in todos:
            logger.warning(f"Dropping sub-task {key!r}: empty text or unknown parent")
            continue
        sub_task_id = value.get("id") if isinstance(value.get("id"), str) and value.get("id") else key
        sub_tasks[sub_task_id] = SubTask(
            id=sub_task_id,
            parent_id=parent_id,
            text=text,
            completed=bool(value.get("completed")),
            created_at=_parse_timestamp(value.get("createdAt")),
            source=SubTaskSource.AI,
        )
    return sub_tasks


def _link_sub_tasks(todos: Dict[str, Todo], sub_tasks: Dict[str, SubTask]):
    """Keep only sub-task links that agree in both directions."""
    linked_todos: Dict[str, Todo] = {}
    claimed = set()
    for todo_id, todo in todos.items():
        sub_task_ids = []
        for sub_task_id in todo.sub_task_ids:
            sub_task = sub_tasks.get(sub_task_id)
            if sub_task is None or sub_task.parent_id != todo_id or sub_task_id in claimed:
                continue
            claimed.add(sub_task_id)
            sub_task_ids.append(sub_task_id)
        linked_todos[todo_id] = todo.model_copy(update={"sub_task_ids": sub_task_ids})

    dropped = len(sub_tasks) - len(claimed)
    if dropped:
        logger.warning(f"Dropping {dropped} sub-tasks not listed by their parent")
    return linked_todos, {sid: s for sid, s in sub_tasks.items() if sid in claimed}


def _unique_known_ids(raw: Any, todos: Dict[str, Todo]) -> List[str]:
    result: List[str] = []
    for todo_id in _string_list(raw):
        if todo_id in todos and todo_id not in result:
            result.append(todo_id)
    return result


def _sanitize_order(raw: Any, todos: Dict[str, Todo]) -> List[str]:
    order = _unique_known_ids(raw, todos)
    listed = set(order)
    missing = [todo_id for todo_id in todos if todo_id not in listed]
    if missing:
        logger.warning(f"Appending {len(missing)} todos missing from todoOrder")
    return order + missing


def _sanitize_settings(raw: Any) -> AppSettings:
    if not isinstance(raw, dict):
        return AppSettings()
    api_key = raw.get("apiKey")
    return AppSettings(
        api_key=api_key if isinstance(api_key, str) else "",
        model=normalize_model(raw.get("model")),
    )
