"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
from pathlib import Path

# Тесты не должны зависеть от локального .env
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Добавить корень проекта в PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base, CareerLevel, TreeNode
from binary_system.services.placement_service import PlacementService
from binary_system.events.event_bus import eventBus
from binary_system.utils.time_machine import timeMachine


@pytest.fixture
def engine():
    """In-memory SQLite shared by every connection of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def reset_singletons():
    """Event handlers and virtual time must not leak between tests."""
    eventBus.clear()
    timeMachine.resetToRealTime()
    yield
    eventBus.clear()
    timeMachine.resetToRealTime()


@pytest.fixture
def enroll(session):
    """Async factory: enroll(name, sponsorId=None, leg=None) -> participant id."""

    async def _enroll(name, sponsorId=None, leg=None):
        placement = await PlacementService(session).enrollParticipant(
            name=name,
            email=f"{name.lower()}@example.com",
            sponsorId=sponsorId,
            leg=leg
        )
        return placement.participantId

    return _enroll


@pytest.fixture
def add_level(session):
    """Factory for career tiers."""

    def _add_level(rank, name, threshold, reward, isActive=True):
        level = CareerLevel(
            rank=rank,
            name=name,
            threshold=Decimal(str(threshold)),
            rewardAmount=Decimal(str(reward)),
            isActive=isActive
        )
        session.add(level)
        session.commit()
        return level.levelID

    return _add_level


@pytest.fixture
def node_of(session):
    """Fresh read of a tree node."""

    def _node_of(participantId):
        session.expire_all()
        return session.get(TreeNode, participantId)

    return _node_of
