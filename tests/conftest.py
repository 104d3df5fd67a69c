"""Shared fixtures: a throwaway SQLite database per test."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.database import init_db
from backend.models import Child, Subject, Topic, Unit


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(bind=engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def child(db: AsyncSession) -> Child:
    child = Child(name="Ada", grade="3")
    db.add(child)
    await db.commit()
    return child


@pytest_asyncio.fixture
async def topic(db: AsyncSession) -> Topic:
    subject = Subject(name="Science")
    db.add(subject)
    await db.flush()
    unit = Unit(subject_id=subject.id, name="Cells")
    db.add(unit)
    await db.flush()
    topic = Topic(unit_id=unit.id, title="Organelles")
    db.add(topic)
    await db.commit()
    return topic
