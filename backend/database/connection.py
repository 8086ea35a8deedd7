import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text

from config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

DATABASE_URL = settings.DATABASE_URL


def _engine_options(url: str) -> dict:
    """Pool/connect options per backend; SQLite has no pool sizing or SSL."""
    if url.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "pool_size": 5,
            "max_overflow": 10,
            "connect_args": {"ssl": "require"} if settings.is_production else {},
        }
    return {}


# Create async engine
engine = create_async_engine(
    DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    **_engine_options(DATABASE_URL)
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


class Base(DeclarativeBase):
    pass


async def get_db():
    """Request-scoped session. Services commit; anything left open is rolled back."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    """Initialize database connection and create reconciliation tables"""
    # Models must be imported so their tables are registered on Base.metadata
    from database import reconciliation_models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info(f"Database connection successful ({engine.dialect.name})")

            await conn.run_sync(Base.metadata.create_all)
            logger.info(f"Available tables: {sorted(Base.metadata.tables)}")

            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise
