"""
Atomic unit helper

Every write path that must be all-or-nothing (a build, a reversal, BOM
activation) runs inside atomic_unit(db). Services that only stage rows
(TransactionService and friends) never commit; their caller wraps them.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from buildledger.logging_config import get_logger

logger = get_logger(__name__)


@contextmanager
def atomic_unit(db: Session) -> Iterator[Session]:
    """
    Commit everything staged in the block, or nothing.

    On any exception the session is rolled back and the exception re-raised
    unchanged.
    """
    try:
        yield db
        db.commit()
    except Exception:
        logger.debug("Rolling back atomic unit", exc_info=True)
        db.rollback()
        raise
