"""
One database transaction per public operation
"""
from contextlib import asynccontextmanager
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..exceptions import InternalError, InvalidTransition

logger = logging.getLogger(__name__)


@asynccontextmanager
async def transaction(session_factory: async_sessionmaker):
    """Yield a session whose work commits on exit and rolls back on any error.

    StaleDataError means another writer bumped the row version first, which
    is a lost race on the state machine; other database failures surface as
    InternalError.
    """
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except StaleDataError as e:
        raise InvalidTransition("Payment intent was modified concurrently, refresh and try again") from e
    except SQLAlchemyError as e:
        logger.error(f"Database error, transaction rolled back: {e}")
        raise InternalError("Database operation failed") from e


@asynccontextmanager
async def read_only(session_factory: async_sessionmaker):
    try:
        async with session_factory() as session:
            yield session
    except SQLAlchemyError as e:
        logger.error(f"Database read failed: {e}")
        raise InternalError("Database operation failed") from e
