from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.settings import settings

DATABASE_URL = settings.database_url


data_engine = create_async_engine(DATABASE_URL, future=True)
AsyncSessionMaker = async_sessionmaker(data_engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    # Tables are declared in the top-level database module
    import database  # noqa: F401

    async with data_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    await data_engine.dispose()
