import asyncio
import logging
from typing import Any, AsyncGenerator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm.exc import StaleDataError

from creatorbook.config import settings
from creatorbook.errors import StorageFailure

logger = logging.getLogger("creatorbook.db")

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}

engine = create_async_engine(
    settings.database_url,
    echo=settings.DB_ECHO,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async_session = AsyncSessionLocal()
    try:
        yield async_session
    finally:
        await async_session.close()


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (StaleDataError, OperationalError)):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return code in RETRYABLE_SQLSTATES
    return False


async def _attempt(session: AsyncSession, work: Callable[..., Awaitable[T]], *args: Any) -> T:
    try:
        result = await work(session, *args)
        await session.commit()
        return result
    except BaseException:
        await session.rollback()
        raise


async def run_transaction(session: AsyncSession, work: Callable[..., Awaitable[T]], *args: Any) -> T:
    """
    Runs ``work(session, *args)`` as one atomic unit.

    Commits on success and rolls back on any error. Transient storage errors
    (lost optimistic version checks, lock timeouts, serialization failures)
    re-run the whole unit with exponential backoff; once the attempts are
    exhausted, or the request timeout fires, StorageFailure is raised.
    """
    attempts = max(1, settings.TX_RETRY_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(
                _attempt(session, work, *args), timeout=settings.REQUEST_TIMEOUT
            )
        except asyncio.TimeoutError as e:
            await session.rollback()
            logger.error("[DB] %s timed out after %.1fs, rolled back", work.__name__, settings.REQUEST_TIMEOUT)
            raise StorageFailure("Request timed out, no changes were applied") from e
        except Exception as e:
            if not is_transient(e):
                raise
            if attempt == attempts:
                logger.error("[DB] %s failed after %d attempts: %s", work.__name__, attempts, e)
                raise StorageFailure("Storage is busy, retry later") from e
            delay = settings.TX_RETRY_BACKOFF * 2 ** (attempt - 1)
            logger.warning(
                "[DB] Transient failure in %s (attempt %d/%d), retrying in %.2fs: %s",
                work.__name__, attempt, attempts, delay, e,
            )
            await asyncio.sleep(delay)
    raise StorageFailure("Storage is busy, retry later")
