from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from app.config.config import settings


engine = create_async_engine(
    settings.DATABASE_URL, future=True, echo=settings.DATABASE_ECHO
)
AsyncSessionLocal = async_sessionmaker(
    bind=engine, class_=AsyncSession, expire_on_commit=False
)
