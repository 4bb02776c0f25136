"""
Shared test fixtures for BuildLedger tests

Provides database setup plus a tenant with a default location and a user
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from buildledger.db.base import Base

from tests.factories import (
    create_test_company,
    create_test_location,
    create_test_user,
    reset_sequences,
)


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(engine):
    """Create all tables for testing using SQLAlchemy metadata"""
    # Registers every model with Base
    import buildledger.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def drop_tables(engine):
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _reset_factory_sequences():
    reset_sequences()
    yield


@pytest.fixture
def db_session():
    """Create a fresh database session for each test"""
    create_tables(engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        drop_tables(engine)


@pytest.fixture
def company(db_session):
    company = create_test_company(db_session, name="Acme Candles")
    db_session.commit()
    return company


@pytest.fixture
def other_company(db_session):
    """A second tenant for isolation tests"""
    company = create_test_company(db_session, name="Other Tenant")
    db_session.commit()
    return company


@pytest.fixture
def user(db_session, company):
    user = create_test_user(db_session, company)
    db_session.commit()
    return user


@pytest.fixture
def main_location(db_session, company):
    """Default location of the company"""
    location = create_test_location(db_session, company, name="Main Warehouse", is_default=True)
    db_session.commit()
    return location
