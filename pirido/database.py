"""
Database layer for Pirido.

Provides the key-value blob table the snapshot is stored in, plus async
engine/session management for SQLite persistence.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Optional

from sqlalchemy import DateTime, String, Text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from pirido.config import CONFIG_DIR, DEFAULT_DATABASE_URL
from pirido.logging_config import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class KeyValueORM(Base):
    """
    SQLAlchemy ORM model for opaque blobs stored under a fixed key.

    The application state is a single JSON document, so the table is a
    plain key-value store rather than one table per entity.
    """
    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<KeyValueORM(key={self.key}, size={len(self.value)})>"


class DatabaseManager:
    """
    Manages database connections and session lifecycle.

    Handles async engine creation, session management, and database
    initialization for both production and testing scenarios.
    """

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL):
        """
        Initialize database manager with connection URL.

        Args:
            database_url: SQLAlchemy database URL (default: ~/.pirido/pirido.db)
        """
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self) -> None:
        """
        Initialize the database engine and create tables.

        Creates the async engine, session maker, and all tables defined
        in the Base metadata.
        """
        try:
            logger.info(f"Initializing database: {self.database_url}")
            if self.database_url == DEFAULT_DATABASE_URL:
                CONFIG_DIR.mkdir(parents=True, exist_ok=True)

            self.engine = create_async_engine(
                self.database_url,
                echo=False,  # Set to True for SQL query logging
                future=True,
            )

            self.session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            # Create all tables
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise

    async def close(self) -> None:
        """
        Close the database engine and cleanup resources.
        """
        if self.engine:
            logger.info("Closing database connection")
            try:
                await self.engine.dispose()
                self.engine = None
                self.session_maker = None
                logger.info("Database connection closed successfully")
            except Exception as e:
                logger.error(f"Error closing database connection: {e}", exc_info=True)
                raise

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session with automatic transaction management.

        Yields:
            AsyncSession for database operations

        Example:
            async with db_manager.get_session() as session:
                row = await session.get(KeyValueORM, "pirido.app.v1")
        """
        if not self.session_maker:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                logger.error(f"Database session error, rolling back: {e}", exc_info=True)
                await session.rollback()
                raise
