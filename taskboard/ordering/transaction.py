from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from taskboard.errors import ConcurrencyHazard, TransactionFailure

logger = logging.getLogger(__name__)


@asynccontextmanager
async def atomic(db: AsyncSession, action: str) -> AsyncIterator[AsyncSession]:
  """Commit everything done in the block, or roll all of it back.

  Version mismatches detected at flush time surface as ConcurrencyHazard; any
  other store error becomes a TransactionFailure, which is safe to retry.
  """
  try:
    yield db
    await db.commit()
  except StaleDataError as exc:
    await db.rollback()
    logger.info("version conflict during %s: %s", action, exc)
    raise ConcurrencyHazard("Resource was modified by another request; reload and retry") from exc
  except SQLAlchemyError as exc:
    await db.rollback()
    logger.exception("transaction failed during %s", action)
    raise TransactionFailure("Could not complete the request, please retry", detail=str(exc)) from exc
  except Exception:
    await db.rollback()
    raise
