"""
Tests for binary matching cycles.

Covers:
- Single-cycle match with carry forward
- Carry consumption
- Idempotence of repeated cycles
- Several consecutive cycles on a multi-level tree
- Capping
- Daily batch over all nodes
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from models import Investment, LedgerEntry, TreeNode
from binary_system.config.compensation import Leg, PackageConfig
from binary_system.errors import InvalidAmount, ParticipantNotFound
from binary_system.events.event_bus import eventBus, MLMEvents
from binary_system.services.ledger_service import LedgerService
from binary_system.services.matching_service import MatchingService
from binary_system.services.volume_service import VolumeService
from binary_system.utils.time_machine import timeMachine


def assert_node_invariants(node):
    assert Decimal("0") <= node.leftMatched <= node.leftBusiness
    assert Decimal("0") <= node.rightMatched <= node.rightBusiness
    for value in (node.leftCarry, node.rightCarry, node.leftBusiness, node.rightBusiness):
        assert value >= 0


@pytest.fixture
def sponsor(enroll):
    """Root plus one root child S. Returns S id."""

    async def _sponsor():
        await enroll("Admin")
        return await enroll("S")

    return _sponsor


async def binary_balance(session, participantId):
    snapshot = await LedgerService(session).getWalletSnapshot(participantId)
    return snapshot["binary"]["balance"]


class TestSingleCycle:

    @pytest.mark.asyncio
    async def test_match_smaller_leg_and_carry_remainder(self, session, sponsor, node_of):
        """left business 100 vs right 500: 100 matched, 400 carried on the right."""
        sId = await sponsor()
        volume = VolumeService(session)
        await volume.postVolume(sId, 100, Leg.LEFT)
        await volume.postVolume(sId, 500, Leg.RIGHT)

        result = await MatchingService(session).runMatchingCycle(sId, 10, 1000)

        node = node_of(sId)
        assert result.bonus == Decimal("10")
        assert result.matched == Decimal("100")
        assert node.rightCarry == Decimal("400")
        assert node.leftCarry == Decimal("0")
        assert node.leftMatched == Decimal("100")
        assert node.rightMatched == Decimal("100")
        assert await binary_balance(session, sId) == Decimal("10")
        assert_node_invariants(node)

    @pytest.mark.asyncio
    async def test_existing_carry_is_matched_first(self, session, sponsor, node_of):
        """Existing left carry 400 plus 400 each side: 400 matched, 400 left carry remains."""
        sId = await sponsor()
        node = node_of(sId)
        node.leftCarry = Decimal("400")
        session.commit()

        volume = VolumeService(session)
        await volume.postVolume(sId, 400, Leg.LEFT)
        await volume.postVolume(sId, 400, Leg.RIGHT)

        result = await MatchingService(session).runMatchingCycle(sId, 10, 1000)

        node = node_of(sId)
        assert result.bonus == Decimal("40")
        assert node.leftCarry == Decimal("400")
        assert node.rightCarry == Decimal("0")
        assert node.leftMatched == Decimal("400")
        assert node.rightMatched == Decimal("400")
        assert_node_invariants(node)

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, session, sponsor, node_of):
        sId = await sponsor()
        volume = VolumeService(session)
        await volume.postVolume(sId, 300, Leg.LEFT)
        await volume.postVolume(sId, 200, Leg.RIGHT)
        service = MatchingService(session)
        await service.runMatchingCycle(sId, 10, 1000)

        before = node_of(sId)
        state = (
            before.leftCarry, before.rightCarry, before.leftMatched,
            before.rightMatched, before.version
        )

        result = await service.runMatchingCycle(sId, 10, 1000)

        after = node_of(sId)
        assert result.matched == Decimal("0")
        assert result.bonus == Decimal("0")
        assert (
            after.leftCarry, after.rightCarry, after.leftMatched,
            after.rightMatched, after.version
        ) == state
        assert session.query(LedgerEntry).filter_by(reason="matching_bonus").count() == 1

    @pytest.mark.asyncio
    async def test_cap_limits_payable_amount(self, session, sponsor, node_of):
        sId = await sponsor()
        volume = VolumeService(session)
        await volume.postVolume(sId, 5000, Leg.LEFT)
        await volume.postVolume(sId, 5000, Leg.RIGHT)

        result = await MatchingService(session).runMatchingCycle(sId, 10, 1000)

        node = node_of(sId)
        assert result.matched == Decimal("5000")
        assert result.payableMatched == Decimal("1000")
        assert result.bonus == Decimal("100")
        assert node.leftCarry == Decimal("0")
        assert node.rightCarry == Decimal("0")

    @pytest.mark.asyncio
    async def test_zero_bonus_writes_no_entry(self, session, sponsor, node_of):
        sId = await sponsor()
        volume = VolumeService(session)
        await volume.postVolume(sId, 50, Leg.LEFT)
        await volume.postVolume(sId, 50, Leg.RIGHT)

        result = await MatchingService(session).runMatchingCycle(sId, 10, 0)

        assert result.bonus == Decimal("0")
        assert result.entryId is None
        assert node_of(sId).leftMatched == Decimal("50")
        assert session.query(LedgerEntry).filter_by(reason="matching_bonus").count() == 0

    @pytest.mark.asyncio
    async def test_root_is_matched_on_its_own_legs(self, session, enroll, node_of):
        rootId = await enroll("Admin")
        leftId = await enroll("L", leg="left")
        rightId = await enroll("R", leg="right")
        volume = VolumeService(session)
        await volume.postVolume(leftId, 70, Leg.LEFT)
        await volume.postVolume(rightId, 30, Leg.LEFT)

        result = await MatchingService(session).runMatchingCycle(rootId, 10, 1000)

        assert result.matched == Decimal("30")
        assert node_of(rootId).leftCarry == Decimal("40")

    @pytest.mark.asyncio
    async def test_bonus_rounds_half_up_to_cents(self, session, sponsor):
        sId = await sponsor()
        volume = VolumeService(session)
        await volume.postVolume(sId, "10.05", Leg.LEFT)
        await volume.postVolume(sId, "10.05", Leg.RIGHT)

        result = await MatchingService(session).runMatchingCycle(sId, 10, 1000)

        assert result.bonus == Decimal("1.01")

    @pytest.mark.asyncio
    async def test_cycle_tag_defaults_to_current_day(self, session, sponsor):
        timeMachine.setTime(datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc))
        sId = await sponsor()
        volume = VolumeService(session)
        await volume.postVolume(sId, 100, Leg.LEFT)
        await volume.postVolume(sId, 100, Leg.RIGHT)

        result = await MatchingService(session).runMatchingCycle(sId, 10, 1000)

        entry = session.get(LedgerEntry, result.entryId)
        assert result.cycleTag == "2024-01-15"
        assert entry.reference == "binary-2024-01-15"
        assert entry.meta["matched"] == "100.00"

    @pytest.mark.asyncio
    async def test_invalid_parameters(self, session, sponsor):
        sId = await sponsor()
        service = MatchingService(session)

        with pytest.raises(InvalidAmount):
            await service.runMatchingCycle(sId, -1, 1000)
        with pytest.raises(InvalidAmount):
            await service.runMatchingCycle(sId, 10, "lots")
        with pytest.raises(ParticipantNotFound):
            await service.runMatchingCycle(999, 10, 1000)

    @pytest.mark.asyncio
    async def test_matching_event(self, session, sponsor):
        sId = await sponsor()
        volume = VolumeService(session)
        await volume.postVolume(sId, 100, Leg.LEFT)
        await volume.postVolume(sId, 100, Leg.RIGHT)
        received = []
        eventBus.subscribe(MLMEvents.MATCHING_BONUS_PAID, lambda data: received.append(data))

        await MatchingService(session).runMatchingCycle(sId, 10, 1000)

        assert len(received) == 1
        assert received[0]["participantId"] == sId
        assert received[0]["matched"] == Decimal("100")
        assert received[0]["bonus"] == Decimal("10")


class TestConsecutiveCycles:
    """Carry and newly accrued business are never counted twice."""

    @pytest.mark.asyncio
    async def test_multi_level_tree_across_cycles(self, session, enroll, node_of):
        await enroll("Admin")
        sId = await enroll("S")
        bId = await enroll("B", sponsorId=sId, leg="left")
        cId = await enroll("C", sponsorId=sId, leg="right")
        dId = await enroll("D", sponsorId=bId, leg="left")

        volume = VolumeService(session)
        matching = MatchingService(session)

        # Cycle 1: S has 500 left (via B and D), 100 right (via C)
        await volume.postVolume(dId, 300, Leg.LEFT)
        await volume.postVolume(bId, 200, Leg.RIGHT)
        await volume.postVolume(cId, 100, Leg.LEFT)
        first = await matching.runMatchingCycle(sId, 10, 1000, "day-1")
        assert first.matched == Decimal("100")
        assert node_of(sId).leftCarry == Decimal("400")

        # Cycle 2: nothing new
        second = await matching.runMatchingCycle(sId, 10, 1000, "day-2")
        assert second.matched == Decimal("0")
        assert node_of(sId).leftCarry == Decimal("400")

        # Cycle 3: more left business and some right business
        await volume.postVolume(dId, 50, Leg.RIGHT)
        await volume.postVolume(cId, 300, Leg.RIGHT)
        third = await matching.runMatchingCycle(sId, 10, 1000, "day-3")

        node = node_of(sId)
        assert third.matched == Decimal("300")
        assert node.leftCarry == Decimal("150")
        assert node.rightCarry == Decimal("0")

        # Cycle 4: nothing new again
        fourth = await matching.runMatchingCycle(sId, 10, 1000, "day-4")
        assert fourth.matched == Decimal("0")

        # Lifetime matched equals the smaller lifetime leg
        totalMatched = first.matched + second.matched + third.matched + fourth.matched
        assert node.leftBusiness == Decimal("550")
        assert node.rightBusiness == Decimal("400")
        assert totalMatched == Decimal("400")
        assert node.leftCarry == node.leftBusiness - totalMatched
        assert await binary_balance(session, sId) == Decimal("40")
        assert_node_invariants(node)

        # B was matched independently: 300 left vs 200 right
        bResult = await matching.runMatchingCycle(bId, 10, 1000, "day-4")
        assert bResult.matched == Decimal("200")
        assert node_of(bId).leftCarry == Decimal("150")


class TestDailyCycle:

    @pytest.mark.asyncio
    async def test_runs_every_node_with_unmatched_business(self, session, sponsor, node_of):
        sId = await sponsor()
        volume = VolumeService(session)
        await volume.postVolume(sId, 200, Leg.LEFT)
        await volume.postVolume(sId, 100, Leg.RIGHT)
        package = PackageConfig(name="Test", binaryPct=Decimal("10"), capAmount=Decimal("1000"))

        results = await MatchingService(session).runDailyCycle(package)

        # S and root both carry the posted business
        assert results["checked"] == 2
        assert results["processed"] == 2
        assert results["paid"] == 2
        assert results["totalBonus"] == Decimal("20")
        assert node_of(sId).leftCarry == Decimal("100")
        assert results["errors"] == 0

        again = await MatchingService(session).runDailyCycle(package)
        assert again["checked"] == 0

    @pytest.mark.asyncio
    async def test_uses_latest_active_investment_snapshot(self, session, sponsor):
        sId = await sponsor()
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        session.add(Investment(
            participantID=sId,
            externalPaymentRef="pay-1",
            packageName="Gold",
            binaryPct=Decimal("20"),
            cappingLimit=Decimal("50"),
            amount=Decimal("1000"),
            principal=Decimal("1000"),
            startDate=now,
            endDate=now
        ))
        session.commit()
        volume = VolumeService(session)
        await volume.postVolume(sId, 100, Leg.LEFT)
        await volume.postVolume(sId, 100, Leg.RIGHT)

        await MatchingService(session).runDailyCycle()

        # 20% of the 50 cap
        assert await binary_balance(session, sId) == Decimal("10")

    @pytest.mark.asyncio
    async def test_node_failure_is_counted_and_others_continue(self, session, sponsor, monkeypatch):
        sId = await sponsor()
        volume = VolumeService(session)
        await volume.postVolume(sId, 100, Leg.LEFT)
        await volume.postVolume(sId, 100, Leg.RIGHT)

        original = MatchingService.runMatchingCycle

        async def flaky(self, participantId, binaryPct, capAmount, cycleTag=None):
            if participantId == sId:
                raise RuntimeError("boom")
            return await original(self, participantId, binaryPct, capAmount, cycleTag)

        monkeypatch.setattr(MatchingService, "runMatchingCycle", flaky)

        results = await MatchingService(session).runDailyCycle()

        assert results["errors"] == 1
        assert results["processed"] == 1

    @pytest.mark.asyncio
    async def test_invariants_hold_after_batch(self, session, enroll):
        await enroll("Admin")
        sId = await enroll("S")
        ids = [await enroll(f"N{i}", sponsorId=sId) for i in range(6)]
        volume = VolumeService(session)
        for index, participantId in enumerate(ids):
            await volume.postVolume(participantId, 10 * (index + 1), Leg.LEFT if index % 2 else Leg.RIGHT)

        await MatchingService(session).runDailyCycle()

        session.expire_all()
        for node in session.query(TreeNode).all():
            assert_node_invariants(node)
