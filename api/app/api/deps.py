from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.session import async_session, get_session
from app.services.dispatcher import TriggerDispatcher


async def get_db() -> AsyncSession:
    async for session in get_session():
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session


def get_dispatcher(request: Request) -> TriggerDispatcher:
    """Return the process-wide dispatcher, creating it on first use."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = TriggerDispatcher(get_session_factory())
        request.app.state.dispatcher = dispatcher
    return dispatcher
