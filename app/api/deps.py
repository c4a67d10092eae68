"""
API Dependencies
Request-scoped access to the queue registry and database sessions
"""

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import session_scope
from app.queues.registry import QueueRegistry


def get_registry(request: Request) -> QueueRegistry:
    """The registry built by the application lifespan."""
    return request.app.state.registry


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with session_scope(request.app.state.session_factory) as session:
        yield session
