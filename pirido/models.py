"""
Pydantic models for Pirido.

Defines the todo/sub-task entities, user settings and the aggregate
application state, plus the priority normalization rules shared by the
state engine, the snapshot loader and the AI ranking pass.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


APP_SCHEMA_VERSION = 1

DEFAULT_MODEL = "gpt-4.1-mini"
MODEL_PRESETS = ("gpt-4.1-mini", "gpt-4.1", "gpt-4o-mini", "gpt-4o")

MIN_PRIORITY = 0
MAX_PRIORITY = 5
MIN_RANK_PRIORITY = 1
NEUTRAL_RANK_PRIORITY = 3


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid4())


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _coerce_integer(raw: Any) -> Optional[int]:
    """
    Interpret a loosely typed value as an integer.

    Numeric strings and integral floats are accepted. Booleans, None,
    NaN, infinities and fractional values are not.

    Args:
        raw: Value to interpret

    Returns:
        The integer value, or None if the input is not an integer
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or not value.is_integer():
        return None
    return int(value)


def clamp_priority(raw: Any) -> int:
    """
    Normalize a priority value into [0, 5].

    Non-numeric or non-integer input maps to 0 ("unranked").

    Examples:
        >>> clamp_priority(-5)
        0
        >>> clamp_priority(3.5)
        0
        >>> clamp_priority(7)
        5
        >>> clamp_priority(2)
        2
    """
    value = _coerce_integer(raw)
    if value is None or value <= MIN_PRIORITY:
        return MIN_PRIORITY
    if value >= MAX_PRIORITY:
        return MAX_PRIORITY
    return value


def clamp_rank_priority(raw: Any) -> int:
    """
    Normalize a priority assigned by the AI ranking pass into [1, 5].

    Ranking never assigns 0, which is reserved for new, unranked todos.
    Invalid input maps to 3, the neutral midpoint.

    Examples:
        >>> clamp_rank_priority(0)
        1
        >>> clamp_rank_priority("abc")
        3
        >>> clamp_rank_priority(6)
        5
    """
    value = _coerce_integer(raw)
    if value is None:
        return NEUTRAL_RANK_PRIORITY
    if value <= MIN_RANK_PRIORITY:
        return MIN_RANK_PRIORITY
    if value >= MAX_PRIORITY:
        return MAX_PRIORITY
    return value


def normalize_model(model: Any) -> str:
    """Return the model if it is a known preset, otherwise the default."""
    if isinstance(model, str) and model.strip() in MODEL_PRESETS:
        return model.strip()
    return DEFAULT_MODEL


class SubTaskSource(str, Enum):
    """Origin of a sub-task."""

    AI = "ai"


class _Entity(BaseModel):
    """Shared configuration: immutable, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Todo(_Entity):
    """
    A top-level task.

    Owns its sub-tasks through ``sub_task_ids``; the order of that list is
    the display order of the sub-tasks.
    """

    id: str = Field(default_factory=new_id, min_length=1, description="Unique identifier")
    text: str = Field(..., min_length=1, description="Task text")
    priority: int = Field(default=0, description="Priority 0-5, 0 means unranked")
    completed: bool = Field(default=False, description="Whether the todo is completed")
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")
    sub_task_ids: List[str] = Field(default_factory=list, description="Ordered sub-task ids")

    @field_validator("priority", mode="before")
    @classmethod
    def validate_priority(cls, v: Any) -> int:
        """Clamp any priority input into the allowed range."""
        return clamp_priority(v)


class SubTask(_Entity):
    """
    A decomposition step of a todo.

    ``parent_id`` is a back-reference used for lookup and cleanup only; the
    parent's ``sub_task_ids`` is the owning relation.
    """

    id: str = Field(default_factory=new_id, min_length=1, description="Unique identifier")
    parent_id: str = Field(..., min_length=1, description="Owning todo id")
    text: str = Field(..., min_length=1, description="Sub-task text")
    completed: bool = Field(default=False, description="Whether the sub-task is completed")
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")
    source: SubTaskSource = Field(default=SubTaskSource.AI, description="Where the sub-task came from")


class AppSettings(_Entity):
    """
    User settings.

    The API key is stored as entered, without encryption. Pirido is a
    single-user local tool and the snapshot is the user's own file.
    """

    api_key: str = Field(default="", description="API key for the AI endpoint")
    model: str = Field(default=DEFAULT_MODEL, description="Model identifier")

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.strip())


class AppState(_Entity):
    """
    Aggregate root of the application.

    Entities live in id-indexed mappings; ``todo_order`` defines the display
    order of todos and ``collapsed_todo_ids`` is a view-state cache used as
    an ordered set.
    """

    todos: Dict[str, Todo] = Field(default_factory=dict)
    sub_tasks: Dict[str, SubTask] = Field(default_factory=dict)
    todo_order: List[str] = Field(default_factory=list)
    collapsed_todo_ids: List[str] = Field(default_factory=list)
    settings: AppSettings = Field(default_factory=AppSettings)
    schema_version: int = Field(default=APP_SCHEMA_VERSION)


class GeneratedSubTask(BaseModel):
    """A sub-task proposal returned by the AI generation call."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., min_length=1)


class RankingResult(BaseModel):
    """
    Outcome of the AI ranking pass.

    Feed ``ordered_ids`` and ``priorities`` into ``reorder_todos``.
    """

    model_config = ConfigDict(frozen=True)

    ordered_ids: List[str] = Field(default_factory=list)
    priorities: Dict[str, int] = Field(default_factory=dict)
