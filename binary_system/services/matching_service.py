# binary_system/services/matching_service.py
"""
Binary matching - pairs the two legs of a node once per cycle, pays
the capped bonus and rolls the leftover into carry forward.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

from models import TreeNode, Investment
from binary_system.config.compensation import (
    Leg, WalletPurpose, PackageConfig, DEFAULT_PACKAGE, REASON_MATCHING_BONUS
)
from binary_system.errors import ParticipantNotFound, InvalidAmount
from binary_system.events.event_bus import eventBus, MLMEvents
from binary_system.services.ledger_service import LedgerService
from binary_system.utils.money import toMoney, percentOf, ZERO
from binary_system.utils.retry import withOptimisticRetry
from binary_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    participantId: int
    cycleTag: str
    matched: Decimal
    payableMatched: Decimal
    bonus: Decimal
    leftMatchedDelta: Decimal
    rightMatchedDelta: Decimal
    leftCarry: Decimal
    rightCarry: Decimal
    entryId: Optional[int] = None


def _nonNegative(value, name: str) -> Decimal:
    try:
        value = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Malformed {name}: {value!r}")
    if not value.is_finite() or value < 0:
        raise InvalidAmount(f"{name} must be a non-negative number, got {value!r}")
    return value


class MatchingService:
    """Service for binary matching cycles."""

    def __init__(self, session: Session):
        self.session = session

    @withOptimisticRetry
    async def runMatchingCycle(
            self,
            participantId: int,
            binaryPct,
            capAmount,
            cycleTag: Optional[str] = None
    ) -> MatchResult:
        """
        One matching cycle for one node. Node counters and the bonus
        credit are committed together. A repeated run without new volume
        changes nothing.
        """
        binaryPct = _nonNegative(binaryPct, "binaryPct")
        capAmount = toMoney(_nonNegative(capAmount, "capAmount"))
        cycleTag = cycleTag or timeMachine.currentDay

        node = self.session.get(TreeNode, participantId)
        if not node:
            raise ParticipantNotFound(f"Participant {participantId} is not placed")

        leftUnmatched = max(ZERO, toMoney(node.unmatched(Leg.LEFT)))
        rightUnmatched = max(ZERO, toMoney(node.unmatched(Leg.RIGHT)))
        leftCarry = toMoney(node.leftCarry)
        rightCarry = toMoney(node.rightCarry)

        if leftUnmatched == ZERO and rightUnmatched == ZERO:
            return MatchResult(
                participantId, cycleTag, ZERO, ZERO, ZERO, ZERO, ZERO, leftCarry, rightCarry
            )

        leftAvailable = leftCarry + leftUnmatched
        rightAvailable = rightCarry + rightUnmatched

        matched = min(leftAvailable, rightAvailable)
        payableMatched = min(matched, capAmount)
        bonus = percentOf(payableMatched, binaryPct)

        # Only business (not carry) advances the matched counters
        leftMatchedDelta = min(matched, leftUnmatched)
        rightMatchedDelta = min(matched, rightUnmatched)

        node.leftMatched = toMoney(node.leftMatched) + leftMatchedDelta
        node.rightMatched = toMoney(node.rightMatched) + rightMatchedDelta
        # The unmatched remainder now lives in carry
        node.leftCarried = toMoney(node.leftCarried) + (leftUnmatched - leftMatchedDelta)
        node.rightCarried = toMoney(node.rightCarried) + (rightUnmatched - rightMatchedDelta)
        node.leftCarry = leftAvailable - matched
        node.rightCarry = rightAvailable - matched

        entryId = None
        if bonus > ZERO:
            entry = await LedgerService(self.session).credit(
                participantId,
                WalletPurpose.BINARY,
                bonus,
                REASON_MATCHING_BONUS,
                reference=f"binary-{cycleTag}",
                meta={
                    "cycle": cycleTag,
                    "matched": str(matched),
                    "payableMatched": str(payableMatched),
                    "binaryPct": str(binaryPct)
                }
            )
            entryId = entry.entryID

        self.session.commit()

        result = MatchResult(
            participantId=participantId,
            cycleTag=cycleTag,
            matched=matched,
            payableMatched=payableMatched,
            bonus=bonus,
            leftMatchedDelta=leftMatchedDelta,
            rightMatchedDelta=rightMatchedDelta,
            leftCarry=toMoney(node.leftCarry),
            rightCarry=toMoney(node.rightCarry),
            entryId=entryId
        )

        logger.info(
            f"Matching cycle {cycleTag} for participant {participantId}: "
            f"matched={matched}, bonus={bonus}, carry L={result.leftCarry} R={result.rightCarry}"
        )

        if bonus > ZERO:
            await eventBus.emit(MLMEvents.MATCHING_BONUS_PAID, {
                "participantId": participantId,
                "cycle": cycleTag,
                "matched": matched,
                "bonus": bonus
            })

        return result

    def _packageFor(self, participantId: int, fallback: Optional[PackageConfig]) -> PackageConfig:
        """Snapshot of the owner's latest active investment, else fallback, else default."""
        investment = self.session.query(Investment).filter_by(
            participantID=participantId,
            isActive=True
        ).order_by(Investment.investmentID.desc()).first()

        if investment:
            return PackageConfig(
                name=investment.packageName,
                binaryPct=Decimal(investment.binaryPct),
                capAmount=toMoney(investment.cappingLimit),
                referralPct=Decimal(investment.referralPct),
                totalOutputPct=Decimal(investment.totalOutputPct),
                renewablePct=Decimal(investment.renewablePct),
                durationDays=investment.durationDays
            )
        return fallback or DEFAULT_PACKAGE

    async def runDailyCycle(self, package: Optional[PackageConfig] = None) -> Dict:
        """Run one matching cycle for every node with unmatched business."""
        cycleTag = timeMachine.currentDay
        results = {
            "cycle": cycleTag,
            "checked": 0,
            "processed": 0,
            "paid": 0,
            "totalBonus": ZERO,
            "errors": 0
        }

        candidates = [
            node.participantID
            for node in self.session.query(TreeNode).order_by(TreeNode.participantID).all()
            if node.unmatched(Leg.LEFT) > 0 or node.unmatched(Leg.RIGHT) > 0
        ]

        for participantId in candidates:
            try:
                results["checked"] += 1
                pkg = self._packageFor(participantId, package)
                result = await self.runMatchingCycle(
                    participantId, pkg.binaryPct, pkg.capAmount, cycleTag
                )
                results["processed"] += 1
                if result.bonus > ZERO:
                    results["paid"] += 1
                    results["totalBonus"] += result.bonus
            except Exception as e:
                logger.error(f"Error in matching cycle {cycleTag} for participant {participantId}: {e}")
                results["errors"] += 1

        logger.info(
            f"Daily cycle {cycleTag} complete: checked={results['checked']}, "
            f"paid={results['paid']}, total={results['totalBonus']}, errors={results['errors']}"
        )

        await eventBus.emit(MLMEvents.DAILY_CYCLE_COMPLETED, dict(results))
        return results
