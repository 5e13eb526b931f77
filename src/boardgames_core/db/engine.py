import os

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .models import Base


class Database:
    """Async SQLAlchemy engine plus session factory for the catalog database."""

    def __init__(self, db_url: str):
        self.db_url = db_url
        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_path(cls, path: str) -> "Database":
        """Builds a Database for a SQLite file, creating its directory if needed."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        return cls(f"sqlite+aiosqlite:///{path}")

    async def connect(self):
        """Opens the engine and creates missing tables."""
        if self.db_url.startswith("sqlite://"):
            self.db_url = self.db_url.replace("sqlite://", "sqlite+aiosqlite://", 1)

        self.engine = create_async_engine(self.db_url, echo=False)

        if "sqlite" in self.db_url:

            @event.listens_for(self.engine.sync_engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                # WAL lets request handlers read while the janitor writes
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
                cursor.execute("PRAGMA busy_timeout=5000")
                cursor.close()

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    async def close(self):
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None

    @property
    def session(self) -> AsyncSession:
        """Returns a new session context manager."""
        if not self.session_factory:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self.session_factory()
