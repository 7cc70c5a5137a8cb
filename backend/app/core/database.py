from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.app.core.settings import get_settings
from backend.app.core.base import Base  # noqa: F401 - re-exported for compatibility

_settings = get_settings()

engine = create_async_engine(
    url=_settings.db_url,
    echo=False,
    pool_size=_settings.DB_POOL_SIZE,
    max_overflow=_settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,  # drop dead connections before handing them out
    pool_recycle=_settings.DB_POOL_RECYCLE,
    pool_timeout=30,
)
# expire_on_commit=False: events are built from ORM rows after commit
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
