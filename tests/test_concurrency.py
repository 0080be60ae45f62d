"""
Tests for optimistic-lock retries.

Two sessions on one SQLite file stand in for two workers writing the
same tree node.
"""

import pytest
from decimal import Decimal
from unittest.mock import MagicMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

import config
from models import Base, TreeNode
from binary_system.config.compensation import Leg, WalletPurpose
from binary_system.errors import ConcurrentModification, InvalidAmount
from binary_system.services.ledger_service import LedgerService
from binary_system.services.placement_service import PlacementService
from binary_system.services.volume_service import VolumeService
from binary_system.utils.retry import withOptimisticRetry


@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sessions(file_engine):
    factory = sessionmaker(bind=file_engine)
    first, second = factory(), factory()
    yield first, second
    first.close()
    second.close()


class RacingWriter:
    """Loses the first attempt to a rival session that commits in between."""

    def __init__(self, session, rival, conflicts=1):
        self.session = session
        self.rival = rival
        self.conflicts = conflicts
        self.attempts = 0

    @withOptimisticRetry
    async def addLeftBusiness(self, participantId, amount):
        self.attempts += 1
        node = self.session.get(TreeNode, participantId)
        current = node.leftBusiness

        if self.attempts <= self.conflicts:
            other = self.rival.get(TreeNode, participantId)
            other.rightBusiness = other.rightBusiness + Decimal("1")
            self.rival.commit()
            self.rival.expire_all()

        node.leftBusiness = current + Decimal(amount)
        self.session.commit()
        return node.version


class TestOptimisticRetry:

    @pytest.mark.asyncio
    async def test_conflict_is_retried_from_fresh_read(self, sessions):
        first, second = sessions
        placement = await PlacementService(first).enrollParticipant(name="Admin")
        rootId = placement.participantId

        writer = RacingWriter(first, second)
        await writer.addLeftBusiness(rootId, 10)

        first.expire_all()
        node = first.get(TreeNode, rootId)
        assert writer.attempts == 2
        assert node.leftBusiness == Decimal("10")
        assert node.rightBusiness == Decimal("1")

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, sessions, monkeypatch):
        first, second = sessions
        placement = await PlacementService(first).enrollParticipant(name="Admin")
        monkeypatch.setattr(config, "MAX_WRITE_RETRIES", 2)

        writer = RacingWriter(first, second, conflicts=5)

        with pytest.raises(ConcurrentModification):
            await writer.addLeftBusiness(placement.participantId, 10)

        assert writer.attempts == 2
        first.expire_all()
        assert first.get(TreeNode, placement.participantId).leftBusiness == Decimal("0")

    @pytest.mark.asyncio
    async def test_two_sessions_posting_volume(self, sessions):
        """Both postings land; neither overwrites the other."""
        first, second = sessions
        rootId = (await PlacementService(first).enrollParticipant(name="Admin")).participantId
        childId = (await PlacementService(first).enrollParticipant(name="S")).participantId

        await VolumeService(first).postVolume(childId, 10, Leg.LEFT)
        await VolumeService(second).postVolume(childId, 15, Leg.LEFT)

        first.expire_all()
        assert first.get(TreeNode, childId).leftBusiness == Decimal("25")
        assert first.get(TreeNode, rootId).leftBusiness == Decimal("25")

    @pytest.mark.asyncio
    async def test_stale_wallet_write_is_rejected(self, sessions):
        first, second = sessions
        rootId = (await PlacementService(first).enrollParticipant(name="Admin")).participantId

        staleWallet = await LedgerService(first).getWallet(rootId, WalletPurpose.BINARY)

        await LedgerService(second).credit(rootId, WalletPurpose.BINARY, 5, "matching_bonus")
        second.commit()

        staleWallet.balance = Decimal("100")
        with pytest.raises(StaleDataError):
            first.commit()
        first.rollback()

        wallet = await LedgerService(first).getWallet(rootId, WalletPurpose.BINARY)
        assert wallet.balance == Decimal("5")


class TestRetryDecorator:

    class Flaky:
        def __init__(self, error):
            self.session = MagicMock()
            self.error = error
            self.calls = 0

        @withOptimisticRetry
        async def write(self):
            self.calls += 1
            raise self.error

    @pytest.mark.asyncio
    async def test_stale_data_exhausts_retries(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_WRITE_RETRIES", 3)
        flaky = self.Flaky(StaleDataError("version mismatch"))

        with pytest.raises(ConcurrentModification):
            await flaky.write()

        assert flaky.calls == 3
        assert flaky.session.rollback.call_count == 3

    @pytest.mark.asyncio
    async def test_other_errors_roll_back_once_and_propagate(self):
        flaky = self.Flaky(InvalidAmount("bad"))

        with pytest.raises(InvalidAmount):
            await flaky.write()

        assert flaky.calls == 1
        assert flaky.session.rollback.call_count == 1
