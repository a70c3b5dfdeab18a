from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel
from homedecor.core.config import settings

# Import ALL models to ensure they're registered with SQLModel.metadata
from homedecor.modules.requests.models import GenerationRequest, RequestLog  # noqa: F401

# Create async engine
engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)

# Create async session factory
async_session_maker = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def create_db_and_tables(db_engine=None):
    """Create all tables if they don't exist."""
    async with (db_engine or engine).begin() as conn:
        await conn.run_sync(lambda sync_conn: SQLModel.metadata.create_all(sync_conn, checkfirst=True))
