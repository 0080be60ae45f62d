# binary_system/services/investment_service.py
"""
Investment processing - entry point for a confirmed payment.
Places the investor, records the investment, pays the direct referral
bonus and posts business volume up the tree.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Optional, Union
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from models import Participant, TreeNode, Investment
from binary_system.config.compensation import (
    Leg, WalletPurpose, PackageConfig, REASON_INVESTMENT, REASON_REFERRAL
)
from binary_system.errors import InvalidAmount, DuplicatePayment, ParticipantNotFound, InvestmentNotFound
from binary_system.events.event_bus import eventBus, MLMEvents
from binary_system.services.ledger_service import LedgerService
from binary_system.services.placement_service import PlacementService
from binary_system.services.volume_service import VolumeService
from binary_system.utils.money import requirePositive, percentOf, ZERO
from binary_system.utils.retry import withOptimisticRetry
from binary_system.utils.time_machine import timeMachine
from binary_system.utils import tree_walk

logger = logging.getLogger(__name__)


class InvestmentService:
    """Service for recording investments and their immediate effects."""

    def __init__(self, session: Session):
        self.session = session

    async def createInvestment(
            self,
            participantId: int,
            package: PackageConfig,
            amount,
            externalPaymentRef: str,
            sponsorId: Optional[int] = None,
            leg: Union[Leg, str, None] = None
    ) -> Dict:
        """
        Main entry point. Returns the investor's wallet snapshot.

        Guards (duplicate reference, amount bounds, unknown participant) run
        before anything is written. Volume posting and career evaluation run
        after the investment is committed; their failures are logged.
        """
        amount = requirePositive(amount)
        if not package.accepts(amount):
            raise InvalidAmount(
                f"Amount {amount} is outside package {package.name} bounds "
                f"({package.minAmount} - {package.maxAmount or 'unlimited'})"
            )

        if not externalPaymentRef:
            raise InvalidAmount("External payment reference is required")

        if self.session.query(Investment).filter_by(externalPaymentRef=externalPaymentRef).first():
            raise DuplicatePayment(f"Payment {externalPaymentRef} was already processed")

        if not self.session.get(Participant, participantId):
            raise ParticipantNotFound(f"Participant {participantId} not found")

        try:
            investmentId, referral = await self._recordInvestment(
                participantId, package, amount, externalPaymentRef, sponsorId, leg
            )
        except IntegrityError:
            self.session.rollback()
            # Concurrent insert of the same payment reference
            if self.session.query(Investment).filter_by(externalPaymentRef=externalPaymentRef).first():
                raise DuplicatePayment(f"Payment {externalPaymentRef} was already processed")
            raise

        await eventBus.emit(MLMEvents.INVESTMENT_CREATED, {
            "investmentId": investmentId,
            "participantId": participantId,
            "amount": amount,
            "package": package.name,
            "externalPaymentRef": externalPaymentRef
        })

        if referral:
            await eventBus.emit(MLMEvents.REFERRAL_BONUS_PAID, referral)

        try:
            await self.postInvestmentVolume(investmentId)
        except Exception as e:
            logger.error(f"Volume posting failed for investment {investmentId}: {e}")

        return await LedgerService(self.session).getWalletSnapshot(participantId)

    @withOptimisticRetry
    async def _recordInvestment(
            self,
            participantId: int,
            package: PackageConfig,
            amount: Decimal,
            externalPaymentRef: str,
            sponsorId: Optional[int],
            leg: Union[Leg, str, None]
    ):
        await PlacementService(self.session).insert(participantId, sponsorId, leg)

        now = timeMachine.now
        investment = Investment(
            participantID=participantId,
            externalPaymentRef=externalPaymentRef,
            packageName=package.name,
            binaryPct=package.binaryPct,
            cappingLimit=package.capAmount,
            referralPct=package.referralPct,
            totalOutputPct=package.totalOutputPct,
            renewablePct=package.renewablePct,
            durationDays=package.durationDays,
            dailyRoiRate=package.dailyRoiRate,
            amount=amount,
            principal=amount,
            startDate=now,
            endDate=now + timedelta(days=package.durationDays),
            daysElapsed=0,
            totalRoiEarned=ZERO,
            totalReinvested=ZERO,
            isActive=True,
            referralPaid=False,
            isBinaryUpdated=False
        )
        self.session.add(investment)
        self.session.flush()

        ledger = LedgerService(self.session)
        await ledger.credit(
            participantId,
            WalletPurpose.INVESTMENT,
            amount,
            REASON_INVESTMENT,
            reference=externalPaymentRef,
            meta={"investmentId": investment.investmentID, "package": package.name}
        )

        referral = await self._payReferralBonus(investment, package)

        self.session.commit()

        logger.info(
            f"Investment {investment.investmentID} recorded: participant {participantId}, "
            f"amount {amount}, package {package.name}"
        )
        return investment.investmentID, referral

    async def _payReferralBonus(self, investment: Investment, package: PackageConfig) -> Optional[Dict]:
        """Direct sponsor gets referralPct of the amount, once per investment."""
        if investment.referralPaid or not package.referralPct:
            return None

        participant = self.session.get(Participant, investment.participantID)
        if not participant.sponsorID:
            return None

        sponsor = self.session.get(Participant, participant.sponsorID)
        if not sponsor or not sponsor.isActive:
            logger.info(f"Sponsor of participant {participant.participantID} is not active, no referral bonus")
            return None

        bonus = percentOf(investment.amount, package.referralPct)
        if bonus <= ZERO:
            return None

        await LedgerService(self.session).credit(
            sponsor.participantID,
            WalletPurpose.REFERRAL,
            bonus,
            REASON_REFERRAL,
            reference=f"investment-{investment.investmentID}",
            meta={
                "fromParticipantId": participant.participantID,
                "investmentId": investment.investmentID,
                "referralPct": str(package.referralPct)
            }
        )
        investment.sponsorID = sponsor.participantID
        investment.referralPaid = True

        logger.info(
            f"Referral bonus {bonus} paid to {sponsor.participantID} "
            f"for investment {investment.investmentID}"
        )
        return {
            "participantId": sponsor.participantID,
            "fromParticipantId": participant.participantID,
            "investmentId": investment.investmentID,
            "amount": bonus
        }

    def _investorLeg(self, node: TreeNode, parent: TreeNode) -> Leg:
        leg = tree_walk.legOfChild(parent, node.participantID)
        if leg:
            return leg
        participant = self.session.get(Participant, node.participantID)
        if participant and participant.leg:
            return Leg(participant.leg)
        return Leg.LEFT

    async def postInvestmentVolume(self, investmentId: int) -> bool:
        """
        Post the investment amount to the investor's parent on the leg
        the investor occupies. Re-driving a posted investment does nothing.
        """
        investment = self.session.get(Investment, investmentId)
        if not investment:
            raise InvestmentNotFound(f"Investment {investmentId} not found")
        if investment.isBinaryUpdated:
            return False

        node = self.session.get(TreeNode, investment.participantID)
        parent = self.session.get(TreeNode, node.parentID) if node and node.parentID else None

        if not parent:
            investment.isBinaryUpdated = True
            self.session.commit()
            return True

        def markPosted():
            # Re-read after a rollback between attempts
            self.session.get(Investment, investmentId).isBinaryUpdated = True

        await VolumeService(self.session).postVolume(
            parent.participantID,
            investment.amount,
            self._investorLeg(node, parent),
            reference=f"investment-{investmentId}",
            beforeCommit=markPosted
        )
        return True
