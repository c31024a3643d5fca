"""
Pytest configuration and fixtures for Pirido tests.

Provides database fixtures, state factories, and a mock AI endpoint.
"""

from typing import Callable, List, Optional

import httpx
import pytest
import pytest_asyncio

from pirido.database import DatabaseManager
from pirido.models import AppSettings, AppState, GeneratedSubTask
from pirido.services import state_engine
from pirido.services.ai_service import AIService
from pirido.services.state_store import StateStore


@pytest_asyncio.fixture
async def db_manager():
    """
    Create an in-memory SQLite database for testing.

    Yields:
        DatabaseManager instance with in-memory database
    """
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.initialize()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def state_store(db_manager):
    """StateStore backed by the in-memory database."""
    return StateStore(db_manager)


@pytest.fixture
def make_state():
    """
    Factory fixture for states with todos in a given display order.

    Returns:
        Function taking todo texts and returning (state, ids) where ids
        follow the same order as the texts

    Example:
        def test_something(make_state):
            state, (a, b) = make_state("A", "B")
    """
    def _make_state(*texts: str, settings: Optional[AppSettings] = None):
        state = AppState(settings=settings or AppSettings())
        ids: List[str] = []
        # create_todo prepends, so build back to front
        for text in reversed(texts):
            state, todo_id = state_engine.create_todo(state, text)
            ids.insert(0, todo_id)
        return state, ids
    return _make_state


@pytest.fixture
def add_sub_tasks():
    """
    Factory fixture that appends sub-tasks to a todo.

    Returns:
        Function returning (state, sub_task_ids) for the added sub-tasks
    """
    def _add_sub_tasks(state: AppState, todo_id: str, *texts: str):
        before = list(state.todos[todo_id].sub_task_ids)
        state = state_engine.add_generated_sub_tasks(
            state, todo_id, [GeneratedSubTask(text=text) for text in texts]
        )
        return state, state.todos[todo_id].sub_task_ids[len(before):]
    return _add_sub_tasks


@pytest.fixture
def keyed_settings():
    """Settings with an API key configured."""
    return AppSettings(api_key="sk-test", model="gpt-4o-mini")


@pytest.fixture
def mock_endpoint():
    """
    Factory fixture for an AIService whose HTTP calls hit a handler.

    Returns:
        Function taking a handler ``(httpx.Request) -> httpx.Response`` and
        returning (service, requests) where requests records every call

    Example:
        def test_something(mock_endpoint):
            service, requests = mock_endpoint(
                lambda request: httpx.Response(200, json={"output_text": "{}"})
            )
    """
    def _mock_endpoint(handler: Callable[[httpx.Request], httpx.Response]):
        requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
        return AIService(endpoint="https://ai.test/v1", client=client), requests

    return _mock_endpoint
