"""
Database session management
"""
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from buildledger.core.config import settings
from buildledger.logging_config import get_logger

logger = get_logger(__name__)

connection_string = settings.database_url

# Log connection info (without password)
logger.info(f"Database connection: {settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}")

engine = create_engine(
    connection_string,
    echo=settings.DB_ECHO,
    pool_pre_ping=True,  # Verify connections before using
    pool_recycle=3600,  # Recycle connections after 1 hour
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """
    Yield a session and always close it afterwards.

    Usage:
        for db in get_db():
            with atomic_unit(db):
                TransactionService(db).create_receipt(...)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
