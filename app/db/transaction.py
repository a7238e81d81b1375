from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, ConstraintError
from app.core.utils import logger


@asynccontextmanager
async def atomic(
    db: AsyncSession, conflict_message: Optional[str] = None
) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one unit of work.

    Commits when the block exits cleanly and rolls back on any exception.
    An ``IntegrityError`` raised by a flush or the commit is translated:
    into ``ConflictError(conflict_message)`` when the block guards an
    invariant, otherwise into ``ConstraintError``.

    Usage:
        async with atomic(self.db, conflict_message="already assigned"):
            ...
    """
    try:
        yield db
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.log_warning(
            {
                "event_type": "transaction_integrity_error",
                "error": str(e.orig) if e.orig is not None else str(e),
            }
        )
        if conflict_message:
            raise ConflictError(conflict_message) from e
        raise ConstraintError("Record violates a uniqueness constraint") from e
    except BaseException:
        await db.rollback()
        raise
