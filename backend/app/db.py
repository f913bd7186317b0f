from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from loguru import logger
from sqlalchemy.engine import make_url
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from .core.config import settings
from .domain.errors import StoreUnavailableError


def _ensure_sqlite_path(url: str) -> None:
    parsed = make_url(url)
    database = parsed.database
    if not database or database == ":memory:":
        return

    path = Path(database)
    path.parent.mkdir(parents=True, exist_ok=True)


def create_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    connect_args: dict[str, object] = {}
    engine_kwargs: dict[str, object] = {"echo": echo}

    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        # Concurrent writers queue on the database lock instead of failing fast.
        connect_args["timeout"] = settings.db_busy_timeout_seconds
        _ensure_sqlite_path(url)
    else:
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_recycle"] = 300

    if connect_args:
        engine_kwargs["connect_args"] = connect_args

    return create_async_engine(url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Objects stay readable after commit; services hand them to reports.
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=True)


engine = create_engine(settings.database_url, echo=settings.debug)
SessionLocal = create_session_factory(engine)
Base = declarative_base()


async def create_schema(target: AsyncEngine) -> None:
    from . import models  # noqa: F401

    async with target.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    await create_schema(engine)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session bound to one unit of work.

    The unit commits when the block exits cleanly and rolls back otherwise.
    Driver level connectivity failures surface as ``StoreUnavailableError``.
    """

    factory = session_factory or SessionLocal
    session = factory()
    try:
        yield session
        await session.commit()
    except (OperationalError, InterfaceError) as exc:
        await session.rollback()
        logger.warning("Ledger store unavailable: {}", exc)
        raise StoreUnavailableError(str(exc.orig) if exc.orig else str(exc)) from exc
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()

