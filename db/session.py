from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from core.config import settings
from models.base import Base


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless the pragma is set per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str = None, echo: bool = None) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    engine = create_async_engine(
        url,
        echo=settings.DATABASE_ECHO if echo is None else echo,
        pool_pre_ping=True,
        future=True
    )
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


async def init_models(bind: AsyncEngine = None):
    """Create the session tables if they do not exist yet."""
    import models.session  # noqa: F401  registers the tables on Base.metadata
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

