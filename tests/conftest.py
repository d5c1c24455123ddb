"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from models import Base
from core.config import PipelineConfig
from typing import AsyncGenerator
import json
import os


def _survey(satisfaction, work_life, career, communication, teamwork) -> str:
    return json.dumps({
        "satisfaction_score": satisfaction,
        "work_life_balance_score": work_life,
        "career_growth_score": career,
        "communication_score": communication,
        "teamwork_score": teamwork,
    })


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """
    Create test database engine.

    Uses a SQLite file per test unless TEST_DATABASE_URL points at a
    PostgreSQL test database.
    """
    database_url = os.environ.get(
        "TEST_DATABASE_URL",
        f"sqlite+aiosqlite:///{tmp_path / 'elt_test.db'}"
    )
    engine = create_async_engine(
        database_url,
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker:
    """Session factory bound to the test engine"""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Small batches so multi-batch paths are exercised"""
    return PipelineConfig(batch_size=3)


@pytest.fixture
def employee_records():
    """Raw bronze records across two departments"""
    return [
        {
            "employee_number": "1001",
            "employee_name": "Ada Byrne",
            "gender": "Female",
            "city": "Austin",
            "job_title": "Analyst",
            "department": "Finance",
            "store_location": "North",
            "business_unit": "Corporate",
            "division": "Operations",
            "age": 34,
            "length_of_service": 5.5,
            "hours_absent": 12,
            "engagement_survey": _survey(4, 3, 5, 4, 4),
        },
        {
            "employee_number": "1002",
            "employee_name": "Ben Okafor",
            "gender": "MALE",
            "city": "Austin",
            "job_title": "Controller",
            "department": "Finance",
            "store_location": "North",
            "business_unit": "Corporate",
            "division": "Operations",
            "age": 46,
            "length_of_service": 12,
            "hours_absent": 3,
            "engagement_survey": _survey(2, 2, 3, 0, 3),
        },
        {
            "employee_number": "1003",
            "employee_name": "Chen Li",
            "gender": "male",
            "city": "Denver",
            "job_title": "Stocker",
            "department": "Produce",
            "store_location": "West",
            "business_unit": "Stores",
            "division": "Retail",
            "age": 22,
            "length_of_service": 1,
            "hours_absent": 40,
            "engagement_survey": _survey(5, 5, 4, 5, 5),
        },
        {
            "employee_number": "1004",
            "employee_name": "Dana Park",
            "gender": "Nonbinary",
            "city": "Denver",
            "job_title": "Cashier",
            "department": "Produce",
            "store_location": "West",
            "business_unit": "Stores",
            "division": "Retail",
            "age": 29,
            "length_of_service": 3,
            "hours_absent": 8,
            "engagement_survey": "not json at all",
        },
    ]


@pytest.fixture
def survey():
    """Build an engagement_survey JSON string from five scores"""
    return _survey
