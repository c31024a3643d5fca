"""
Application controller for Pirido.

Holds the current state, routes every mutation through the state engine,
schedules debounced saves, and runs the AI-assisted actions against the
latest state. Tracks which AI calls are in flight so the same target is
not requested twice at once.
"""

from typing import Callable, List, Optional, Set

from pirido.logging_config import get_logger
from pirido.models import AppState, GeneratedSubTask, RankingResult
from pirido.services import state_engine
from pirido.services.ai_service import AIService
from pirido.services.state_store import DebouncedSaver, StateStore
from pirido.snapshot import create_initial_state

logger = get_logger(__name__)


class TodoApp:
    """
    Single-writer owner of the application state.

    All methods must run inside an event loop, since mutations schedule
    asynchronous saves.
    """

    def __init__(
        self,
        store: StateStore,
        ai_service: AIService,
        save_debounce_ms: int = 200,
    ) -> None:
        """
        Initialize the controller.

        Args:
            store: Snapshot store
            ai_service: Client for the AI-assisted actions
            save_debounce_ms: Quiet period before a save is written
        """
        self.store = store
        self.ai_service = ai_service
        self.saver = DebouncedSaver(store, save_debounce_ms)
        self.state: AppState = create_initial_state()
        self._generating: Set[str] = set()
        self._ranking = False

    async def load(self) -> AppState:
        """Replace the in-memory state with the stored snapshot."""
        self.state = await self.store.load()
        return self.state

    async def close(self) -> None:
        """Write any pending save."""
        await self.saver.flush()

    def apply(self, operation: Callable[..., AppState], *args, **kwargs) -> AppState:
        """
        Run a state engine operation against the current state.

        A save is scheduled only when the operation changed something.

        Returns:
            The current state after the operation
        """
        new_state = operation(self.state, *args, **kwargs)
        if new_state is not self.state:
            self.state = new_state
            self.saver.schedule(new_state)
        return self.state

    def add_todo(self, text: str) -> Optional[str]:
        """
        Create a todo.

        Returns:
            The new todo id, or None if the text was blank
        """
        new_state, todo_id = state_engine.create_todo(self.state, text)
        if todo_id is not None:
            self.state = new_state
            self.saver.schedule(new_state)
        return todo_id

    # ==============================================================================
    # AI-ASSISTED ACTIONS
    # ==============================================================================

    def is_generating(self, todo_id: str) -> bool:
        return todo_id in self._generating

    @property
    def is_ranking(self) -> bool:
        return self._ranking

    async def generate_sub_tasks(self, todo_id: str) -> List[GeneratedSubTask]:
        """
        Ask the AI for new sub-tasks of a todo and append them.

        The result is applied to whatever the state is when the reply
        arrives; if the todo was deleted meanwhile, nothing is added.

        Returns:
            The proposals that were requested for the todo, possibly empty

        Raises:
            AIServiceError: If the AI call fails
        """
        todo = self.state.todos.get(todo_id)
        if todo is None:
            logger.debug(f"generate_sub_tasks ignored: unknown todo {todo_id}")
            return []
        if todo_id in self._generating:
            logger.info(f"Sub-task generation already running for todo {todo_id}")
            return []

        existing = [sub_task.text for sub_task in state_engine.sub_tasks_for(self.state, todo_id)]
        self._generating.add(todo_id)
        try:
            generated = await self.ai_service.generate_sub_tasks(todo.text, existing, self.state.settings)
        finally:
            self._generating.discard(todo_id)

        self.apply(state_engine.add_generated_sub_tasks, todo_id, generated)
        return generated

    async def rank_todos(self) -> Optional[RankingResult]:
        """
        Let the AI order the incomplete todos and assign priorities.

        Returns:
            The applied ranking, or None if there was nothing to rank or a
            ranking is already running

        Raises:
            AIServiceError: If the AI call fails
        """
        todos = state_engine.incomplete_todos(self.state)
        if not todos:
            return None
        if self._ranking:
            logger.info("Ranking already running")
            return None

        self._ranking = True
        try:
            result = await self.ai_service.rank_todos(
                [(todo.id, todo.text) for todo in todos], self.state.settings
            )
        finally:
            self._ranking = False

        self.apply(state_engine.reorder_todos, result.ordered_ids, result.priorities)
        return result
