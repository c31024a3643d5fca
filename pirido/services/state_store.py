"""
State store for Pirido.

Loads and saves the application snapshot through the key-value table, and
debounces writes so a burst of mutations produces a single write of the
latest state.
"""

import asyncio
from typing import Optional

from pirido.database import DatabaseManager, KeyValueORM
from pirido.logging_config import get_logger
from pirido.models import AppState, utc_now
from pirido.snapshot import STORAGE_KEY, dump_snapshot, load_snapshot

logger = get_logger(__name__)


class StateStoreError(Exception):
    """Base exception for state store errors."""
    pass


class StateStore:
    """
    Reads and writes the snapshot blob under a fixed storage key.
    """

    def __init__(self, db_manager: DatabaseManager, storage_key: str = STORAGE_KEY) -> None:
        """
        Initialize the store.

        Args:
            db_manager: Initialized database manager
            storage_key: Key the snapshot is stored under
        """
        self.db_manager = db_manager
        self.storage_key = storage_key

    def _ensure_ready(self) -> None:
        if self.db_manager.session_maker is None:
            raise StateStoreError("State store used before the database was initialized")

    async def load_raw(self) -> Optional[str]:
        """Return the stored JSON text, or None if nothing is stored."""
        self._ensure_ready()
        async with self.db_manager.get_session() as session:
            row = await session.get(KeyValueORM, self.storage_key)
            return row.value if row is not None else None

    async def load(self) -> AppState:
        """
        Load and sanitize the stored state.

        Returns:
            Stored state, or the empty state if none is stored or it is invalid
        """
        raw = await self.load_raw()
        if raw is None:
            logger.info(f"No snapshot stored under {self.storage_key}, starting empty")
        return load_snapshot(raw)

    async def save(self, state: AppState) -> None:
        """
        Write a state snapshot, replacing any previous one.

        Args:
            state: State to persist

        Raises:
            StateStoreError: If the database is not initialized
        """
        self._ensure_ready()
        payload = dump_snapshot(state)
        async with self.db_manager.get_session() as session:
            row = await session.get(KeyValueORM, self.storage_key)
            if row is None:
                session.add(KeyValueORM(key=self.storage_key, value=payload, updated_at=utc_now()))
            else:
                row.value = payload
                row.updated_at = utc_now()

        logger.debug(f"Saved snapshot: key={self.storage_key}, bytes={len(payload)}")


class DebouncedSaver:
    """
    Coalesces rapid saves into one write of the latest state.

    Each ``schedule`` call restarts the countdown. Only the countdown is
    ever cancelled: once a write has started it runs to completion, and
    writes are serialized so a later snapshot never lands before an
    earlier one. Must be used from within a running event loop.
    """

    def __init__(self, store: StateStore, delay_ms: int = 200) -> None:
        """
        Initialize the saver.

        Args:
            store: Store to write through
            delay_ms: Quiet period before a write, in milliseconds
        """
        self.store = store
        self.delay = delay_ms / 1000
        self._pending_state: Optional[AppState] = None
        self._task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()

    @property
    def has_pending(self) -> bool:
        return self._pending_state is not None

    def schedule(self, state: AppState) -> None:
        """
        Schedule a write of ``state``, replacing any pending one.

        Args:
            state: Latest state snapshot
        """
        self._pending_state = state
        self._cancel_countdown()
        self._task = asyncio.get_running_loop().create_task(self._write_later())

    def _cancel_countdown(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _write_later(self) -> None:
        await asyncio.sleep(self.delay)
        # Past the countdown; detach so nothing cancels the write itself.
        if self._task is asyncio.current_task():
            self._task = None
        try:
            await self._write_pending()
        except Exception as e:
            logger.error(f"Debounced save failed: {e}", exc_info=True)

    async def _write_pending(self) -> None:
        """
        Write the pending state, waiting for any write already running.

        On failure the state is put back as pending unless a newer one was
        scheduled meanwhile, so a later flush retries it.
        """
        async with self._write_lock:
            state = self._pending_state
            if state is None:
                return
            self._pending_state = None
            try:
                await self.store.save(state)
            except Exception:
                if self._pending_state is None:
                    self._pending_state = state
                raise

    async def flush(self) -> None:
        """
        Write any pending state immediately.

        Waits for a write that is already in progress before returning.

        Raises:
            Exception: Whatever the store raised while saving
        """
        self._cancel_countdown()
        await self._write_pending()
        logger.debug("Flushed pending snapshot")

    def cancel(self) -> None:
        """Drop any pending write that has not started yet."""
        self._cancel_countdown()
        self._pending_state = None
