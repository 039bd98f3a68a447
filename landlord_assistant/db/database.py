"""
Database Connection and Session Management
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from landlord_assistant.core.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency for getting database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def background_session(
    session_factory: async_sessionmaker | None = None,
) -> AsyncIterator[AsyncSession]:
    """
    Session לעבודה שרצה מחוץ לבקשת HTTP (flush של תשובות ממתינות).

    ה-flush רץ על אותו event loop, לכן משתמשים ב-sessionmaker הרגיל
    ולא ב-engine ייעודי.
    """
    factory = session_factory or AsyncSessionLocal
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def get_task_session() -> AsyncIterator[AsyncSession]:
    """
    Session למשימות Celery.

    כל משימה רצה ב-event loop חדש, לכן נוצר engine ייעודי שנסגר בסוף
    במקום ה-engine של המודול, שקשור ל-loop אחר.
    """
    task_engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
    )
    task_session_maker = async_sessionmaker(
        bind=task_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    try:
        async with task_session_maker() as session:
            try:
                yield session
            finally:
                await session.close()
    finally:
        await task_engine.dispose()
