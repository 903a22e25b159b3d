import logging
import urllib.parse
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

SQLITE_MEMORY_URL = "sqlite+aiosqlite:///:memory:"

Base = declarative_base()


def normalize_database_url(url: Optional[str]) -> str:
    """Map DATABASE_URL onto an async driver URL"""
    if not url:
        logger.warning("DATABASE_URL not set, using in-memory SQLite")
        return SQLITE_MEMORY_URL

    # Преобразуем postgres:// в postgresql+asyncpg://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    # asyncpg не понимает sslmode, ему нужен ssl=require
    if "sslmode=" in url:
        parsed = urllib.parse.urlparse(url)
        query_params = urllib.parse.parse_qs(parsed.query)
        query_params.pop("sslmode", None)
        query_params["ssl"] = ["require"]
        new_query = urllib.parse.urlencode(query_params, doseq=True)
        url = urllib.parse.urlunparse((
            parsed.scheme,
            parsed.netloc,
            parsed.path,
            parsed.params,
            new_query,
            parsed.fragment,
        ))

    return url


class Database:
    """Owns the async engine and session factory"""

    def __init__(self, url: Optional[str] = None, echo: bool = False):
        self.url = normalize_database_url(url)

        if self.url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.url or self.url.endswith("://"):
                # one shared connection, otherwise every session sees an empty DB
                kwargs["poolclass"] = StaticPool
        else:
            kwargs = {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}

        self.engine = create_async_engine(self.url, echo=echo, **kwargs)
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        safe_url = self.url.split("@")[-1] if "@" in self.url else self.url
        logger.info(f"Using database: {safe_url}")

    def session(self) -> AsyncSession:
        return self.session_maker()

    async def create_all(self):
        """Create tables that do not exist yet"""
        # models must be imported so that Base.metadata knows every table
        from . import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")

    async def drop_all(self):
        from . import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self):
        await self.engine.dispose()


async def get_db(request: Request):
    database: Database = request.app.state.container.database
    async with database.session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
