"""
State engine for Pirido.

Every state transition of the application is a function here. Each takes the
current AppState plus arguments and returns a new AppState; the input is
never modified. An operation that names an unknown id returns the input
state unchanged instead of raising, since AI results can land after the
todo they target was edited or deleted.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pirido.logging_config import get_logger
from pirido.models import (
    AppState,
    GeneratedSubTask,
    SubTask,
    SubTaskSource,
    Todo,
    clamp_priority,
    new_id,
    normalize_model,
    utc_now,
)

logger = get_logger(__name__)


# ==============================================================================
# TODO OPERATIONS
# ==============================================================================

def create_todo(state: AppState, text: str) -> Tuple[AppState, Optional[str]]:
    """
    Create a todo at the front of the list.

    Args:
        state: Current state
        text: Todo text, trimmed before use

    Returns:
        Tuple of (new state, new todo id). The id is None and the state
        unchanged when the trimmed text is empty.
    """
    text = text.strip()
    if not text:
        logger.debug("create_todo ignored: empty text")
        return state, None

    todo = Todo(text=text)
    new_state = state.model_copy(update={
        "todos": {**state.todos, todo.id: todo},
        "todo_order": [todo.id, *state.todo_order],
    })

    logger.info(f"Created todo: id={todo.id}")
    return new_state, todo.id


def toggle_todo_completed(state: AppState, todo_id: str) -> AppState:
    """
    Flip a todo's completion flag.

    Completing a todo moves it just behind the last remaining incomplete
    todo and completes all of its sub-tasks. Reopening it touches neither
    the order nor the sub-tasks.
    """
    todo = state.todos.get(todo_id)
    if todo is None:
        logger.debug(f"toggle_todo_completed ignored: unknown todo {todo_id}")
        return state

    completed = not todo.completed
    update = {
        "todos": {**state.todos, todo_id: todo.model_copy(update={"completed": completed})},
    }

    if completed:
        others = [tid for tid in state.todo_order if tid != todo_id and tid in state.todos]
        incomplete = [tid for tid in others if not state.todos[tid].completed]
        complete = [tid for tid in others if state.todos[tid].completed]
        update["todo_order"] = [*incomplete, todo_id, *complete]

        sub_tasks = dict(state.sub_tasks)
        cascaded = 0
        for sub_task_id in todo.sub_task_ids:
            sub_task = sub_tasks.get(sub_task_id)
            if sub_task is None or sub_task.completed:
                continue
            sub_tasks[sub_task_id] = sub_task.model_copy(update={"completed": True})
            cascaded += 1
        update["sub_tasks"] = sub_tasks
        logger.info(f"Todo completed: id={todo_id}, cascaded_sub_tasks={cascaded}")
    else:
        logger.info(f"Todo reopened: id={todo_id}")

    return state.model_copy(update=update)


def delete_todo(state: AppState, todo_id: str) -> AppState:
    """Delete a todo together with its sub-tasks and view state."""
    todo = state.todos.get(todo_id)
    if todo is None:
        logger.debug(f"delete_todo ignored: unknown todo {todo_id}")
        return state

    todos = {tid: t for tid, t in state.todos.items() if tid != todo_id}
    owned = set(todo.sub_task_ids)
    sub_tasks = {
        sid: s for sid, s in state.sub_tasks.items()
        if sid not in owned and s.parent_id != todo_id
    }

    logger.info(f"Deleted todo: id={todo_id}, sub_tasks_removed={len(state.sub_tasks) - len(sub_tasks)}")
    return state.model_copy(update={
        "todos": todos,
        "sub_tasks": sub_tasks,
        "todo_order": [tid for tid in state.todo_order if tid != todo_id],
        "collapsed_todo_ids": [tid for tid in state.collapsed_todo_ids if tid != todo_id],
    })


def update_todo_text(state: AppState, todo_id: str, text: str) -> AppState:
    """Replace a todo's text; blank text keeps the original."""
    text = text.strip()
    todo = state.todos.get(todo_id)
    if not text or todo is None:
        logger.debug(f"update_todo_text ignored: todo={todo_id}, blank={not text}")
        return state

    return state.model_copy(update={
        "todos": {**state.todos, todo_id: todo.model_copy(update={"text": text})},
    })


def toggle_todo_collapsed(state: AppState, todo_id: str) -> AppState:
    """Toggle whether a todo's sub-tasks are collapsed."""
    if todo_id not in state.todos:
        return state

    if todo_id in state.collapsed_todo_ids:
        collapsed = [tid for tid in state.collapsed_todo_ids if tid != todo_id]
    else:
        collapsed = [*state.collapsed_todo_ids, todo_id]
    return state.model_copy(update={"collapsed_todo_ids": collapsed})


# ==============================================================================
# SUB-TASK OPERATIONS
# ==============================================================================

def add_generated_sub_tasks(
    state: AppState,
    todo_id: str,
    items: Sequence[GeneratedSubTask],
) -> AppState:
    """
    Append AI-generated sub-tasks to a todo, keeping the given order.

    Args:
        state: Current state
        todo_id: Parent todo id
        items: Proposals to append; blank texts are skipped

    Returns:
        New state, or the input state if nothing was added
    """
    todo = state.todos.get(todo_id)
    if not items or todo is None:
        logger.debug(f"add_generated_sub_tasks ignored: todo={todo_id}, items={len(items)}")
        return state

    created: List[SubTask] = []
    for item in items:
        text = item.text.strip()
        if not text:
            continue
        created.append(SubTask(parent_id=todo_id, text=text, source=SubTaskSource.AI))

    if not created:
        return state

    sub_tasks = dict(state.sub_tasks)
    sub_tasks.update({sub_task.id: sub_task for sub_task in created})
    updated_todo = todo.model_copy(update={
        "sub_task_ids": [*todo.sub_task_ids, *(sub_task.id for sub_task in created)],
    })

    logger.info(f"Added {len(created)} generated sub-tasks to todo {todo_id}")
    return state.model_copy(update={
        "sub_tasks": sub_tasks,
        "todos": {**state.todos, todo_id: updated_todo},
    })


def toggle_sub_task_completed(state: AppState, sub_task_id: str) -> AppState:
    """Flip a sub-task's completion flag."""
    sub_task = state.sub_tasks.get(sub_task_id)
    if sub_task is None:
        return state

    return state.model_copy(update={
        "sub_tasks": {
            **state.sub_tasks,
            sub_task_id: sub_task.model_copy(update={"completed": not sub_task.completed}),
        },
    })


def update_sub_task_text(state: AppState, sub_task_id: str, text: str) -> AppState:
    """Replace a sub-task's text; blank text keeps the original."""
    text = text.strip()
    sub_task = state.sub_tasks.get(sub_task_id)
    if not text or sub_task is None:
        return state

    return state.model_copy(update={
        "sub_tasks": {**state.sub_tasks, sub_task_id: sub_task.model_copy(update={"text": text})},
    })


def delete_sub_task(state: AppState, sub_task_id: str) -> AppState:
    """Delete a sub-task and unlink it from its parent."""
    sub_task = state.sub_tasks.get(sub_task_id)
    if sub_task is None:
        return state

    sub_tasks = {sid: s for sid, s in state.sub_tasks.items() if sid != sub_task_id}
    update = {"sub_tasks": sub_tasks}

    parent = state.todos.get(sub_task.parent_id)
    if parent is not None:
        update["todos"] = {
            **state.todos,
            parent.id: parent.model_copy(update={
                "sub_task_ids": [sid for sid in parent.sub_task_ids if sid != sub_task_id],
            }),
        }

    logger.info(f"Deleted sub-task: id={sub_task_id}, parent={sub_task.parent_id}")
    return state.model_copy(update=update)


# ==============================================================================
# SETTINGS
# ==============================================================================

def update_settings(
    state: AppState,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
) -> AppState:
    """
    Merge the provided settings fields; None leaves a field as it is.

    The key is trimmed and the model falls back to the default preset when
    it is not a known one.
    """
    changes = {}
    if api_key is not None:
        changes["api_key"] = api_key.strip()
    if model is not None:
        changes["model"] = normalize_model(model)
    if not changes:
        return state

    logger.info(f"Updated settings: fields={sorted(changes)}")
    return state.model_copy(update={"settings": state.settings.model_copy(update=changes)})


def clear_settings(state: AppState) -> AppState:
    """Forget the API key, keeping the selected model."""
    logger.info("Cleared API key")
    return state.model_copy(update={"settings": state.settings.model_copy(update={"api_key": ""})})


# ==============================================================================
# ORDERING
# ==============================================================================

def reorder_todos(
    state: AppState,
    ordered_ids: Sequence[str],
    priorities: Optional[Mapping[str, int]] = None,
) -> AppState:
    """
    Apply a candidate ordering, typically from the AI ranking pass.

    Unknown ids and repeats in the candidate are dropped (first occurrence
    wins). Todos the candidate leaves out follow in their current relative
    order, so the result is always a full permutation.

    Args:
        state: Current state
        ordered_ids: Candidate order, possibly partial or stale
        priorities: Optional new priorities for listed todos

    Returns:
        New state with the sanitized order and priorities applied
    """
    existing = set(state.todo_order)
    head: List[str] = []
    seen = set()
    for todo_id in ordered_ids:
        if todo_id in existing and todo_id not in seen:
            seen.add(todo_id)
            head.append(todo_id)
    tail = [tid for tid in state.todo_order if tid not in seen]

    dropped = len(ordered_ids) - len(head)
    if dropped:
        logger.warning(f"reorder_todos dropped {dropped} unknown or duplicate ids")

    todos = state.todos
    if priorities:
        todos = dict(state.todos)
        for todo_id, priority in priorities.items():
            todo = todos.get(todo_id)
            if todo is None:
                continue
            todos[todo_id] = todo.model_copy(update={"priority": clamp_priority(priority)})

    return state.model_copy(update={"todos": todos, "todo_order": head + tail})


def move_todo_to_index(state: AppState, todo_id: str, target_index: int) -> AppState:
    """
    Move a todo to a new position, as a drag-and-drop would.

    ``target_index`` is the drop position in the current list; when the
    todo moves down, the index is shifted by one to account for its own
    removal.
    """
    if target_index < 0 or target_index > len(state.todo_order):
        return state
    try:
        from_index = state.todo_order.index(todo_id)
    except ValueError:
        return state

    order = list(state.todo_order)
    order.pop(from_index)
    adjusted = target_index - 1 if from_index < target_index else target_index
    order.insert(adjusted, todo_id)

    logger.debug(f"Moved todo {todo_id}: {from_index} -> {adjusted}")
    return state.model_copy(update={"todo_order": order})


# ==============================================================================
# QUERIES
# ==============================================================================

def ordered_todos(state: AppState) -> List[Todo]:
    """Todos in display order."""
    return [state.todos[tid] for tid in state.todo_order if tid in state.todos]


def incomplete_todos(state: AppState) -> List[Todo]:
    """Incomplete todos in display order."""
    return [todo for todo in ordered_todos(state) if not todo.completed]


def sub_tasks_for(state: AppState, todo_id: str) -> List[SubTask]:
    """Sub-tasks of a todo in display order; empty for an unknown todo."""
    todo = state.todos.get(todo_id)
    if todo is None:
        return []
    return [state.sub_tasks[sid] for sid in todo.sub_task_ids if sid in state.sub_tasks]


def _find_by_prefix(ids: Iterable[str], prefix: str) -> Optional[str]:
    prefix = prefix.strip()
    if not prefix:
        return None
    matches = [item_id for item_id in ids if item_id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    return None


def find_todo_id(state: AppState, prefix: str) -> Optional[str]:
    """Resolve a unique todo id prefix, or None when absent or ambiguous."""
    return _find_by_prefix(state.todos, prefix)


def find_sub_task_id(state: AppState, prefix: str) -> Optional[str]:
    """Resolve a unique sub-task id prefix, or None when absent or ambiguous."""
    return _find_by_prefix(state.sub_tasks, prefix)


def find_invariant_violations(state: AppState) -> List[str]:
    """
    Check the structural invariants of a state.

    Returns:
        Human-readable descriptions of every violation; empty when healthy
    """
    violations: List[str] = []

    order_counts: Dict[str, int] = {}
    for todo_id in state.todo_order:
        order_counts[todo_id] = order_counts.get(todo_id, 0) + 1
    for todo_id, count in order_counts.items():
        if count > 1:
            violations.append(f"todo_order lists {todo_id} {count} times")
        if todo_id not in state.todos:
            violations.append(f"todo_order references missing todo {todo_id}")
    for todo_id in state.todos:
        if todo_id not in order_counts:
            violations.append(f"todo {todo_id} missing from todo_order")

    for todo_id, todo in state.todos.items():
        if not 0 <= todo.priority <= 5:
            violations.append(f"todo {todo_id} has priority {todo.priority}")
        for sub_task_id in todo.sub_task_ids:
            sub_task = state.sub_tasks.get(sub_task_id)
            if sub_task is None:
                violations.append(f"todo {todo_id} references missing sub-task {sub_task_id}")
            elif sub_task.parent_id != todo_id:
                violations.append(f"sub-task {sub_task_id} listed by {todo_id} but points to {sub_task.parent_id}")

    for sub_task_id, sub_task in state.sub_tasks.items():
        parent = state.todos.get(sub_task.parent_id)
        if parent is None:
            violations.append(f"sub-task {sub_task_id} is orphaned")
        elif sub_task_id not in parent.sub_task_ids:
            violations.append(f"sub-task {sub_task_id} not listed by parent {parent.id}")

    for todo_id in state.collapsed_todo_ids:
        if todo_id not in state.todos:
            violations.append(f"collapsed_todo_ids references missing todo {todo_id}")

    return violations
