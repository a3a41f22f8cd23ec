from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from subscription_service.config import settings

DATABASE_URL = settings.DATABASE_URL
# Convert PostgreSQL URL to async version
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

engine = create_async_engine(DATABASE_URL)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()

async def get_db() -> AsyncSession:
    """
    Dependency for getting async database session
    """
    async with async_session() as session:
        try:
            yield session
        finally:
            # Anything not committed (failed or cancelled request) is rolled back here
            await session.close()

async def create_tables():
    """
    Create all tables defined in the models
    """
    # Import models so they register on Base.metadata
    from subscription_service.models import billing, otp, session, token, user  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
