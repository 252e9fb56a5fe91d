"""FastAPI dependency injection helpers."""

from fastapi import BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.infrastructure.database import async_session_factory
from dispatch.infrastructure.notifications import Notifier, get_notifier
from dispatch.infrastructure.timezone_lookup import TimezoneLookup, get_timezone_lookup
from dispatch.services.admin import AdminService
from dispatch.services.chat import ChatService
from dispatch.services.rides import RideLifecycle


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_lifecycle(
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> RideLifecycle:
    """Notifications run after the response has been sent."""
    return RideLifecycle(db, notifier=notifier, defer=background_tasks.add_task)


async def get_chat_service(db: AsyncSession = Depends(get_db)) -> ChatService:
    return ChatService(db)


async def get_admin_service(
    db: AsyncSession = Depends(get_db),
    timezones: TimezoneLookup = Depends(get_timezone_lookup),
) -> AdminService:
    return AdminService(db, timezones)
