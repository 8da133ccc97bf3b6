from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config.settings import settings

# 'pool_pre_ping=True' checks the health of connections before using them.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,  # Set to True to see generated SQL statements
    pool_pre_ping=True,
)

# 'expire_on_commit=False' keeps rentals readable after a commit; the store
# hands them to the saga after its session has closed.
async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)


async def init_db(bind=None):
    """
    Creates all tables known to the models.

    Production deployments should run migrations instead; this is used on
    first start and by the test-suite.
    """
    # Imported here so every mapped class is registered on Base.metadata.
    from models.base import Base
    import models.user  # noqa: F401
    import models.rental  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
