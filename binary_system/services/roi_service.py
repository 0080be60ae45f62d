# binary_system/services/roi_service.py
"""
Daily ROI accrual for active investments.

daily = principal * dailyRoiRate, split into a renewable part credited
to the investment wallet and a cashable part credited to the ROI wallet.
"""
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

from models import Investment
from binary_system.config.compensation import WalletPurpose, REASON_ROI, REASON_ROI_RENEWABLE
from binary_system.events.event_bus import eventBus, MLMEvents
from binary_system.services.ledger_service import LedgerService
from binary_system.utils.money import toMoney, percentOf, ZERO
from binary_system.utils.retry import withOptimisticRetry
from binary_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class RoiService:
    """Service for daily ROI payouts."""

    def __init__(self, session: Session):
        self.session = session

    async def accrueDailyRoi(self) -> Dict:
        """Accrue one day for every active investment not yet accrued today."""
        today = timeMachine.today
        results = {
            "day": today.isoformat(),
            "checked": 0,
            "processed": 0,
            "skipped": 0,
            "deactivated": 0,
            "errors": 0,
            "totalPaid": ZERO,
            "totalReinvested": ZERO
        }

        investmentIds = [
            row[0] for row in self.session.query(Investment.investmentID).filter_by(
                isActive=True
            ).order_by(Investment.investmentID).all()
        ]

        for investmentId in investmentIds:
            try:
                results["checked"] += 1
                outcome = await self._accrueInvestment(investmentId)

                if outcome is None:
                    results["skipped"] += 1
                    continue

                results["processed"] += 1
                results["totalPaid"] += outcome["cashable"]
                results["totalReinvested"] += outcome["renewable"]
                if outcome["deactivated"]:
                    results["deactivated"] += 1

                await eventBus.emit(MLMEvents.ROI_ACCRUED, outcome)
            except Exception as e:
                logger.error(f"Error accruing ROI for investment {investmentId}: {e}")
                results["errors"] += 1

        logger.info(
            f"ROI accrual for {results['day']} complete: processed={results['processed']}, "
            f"skipped={results['skipped']}, deactivated={results['deactivated']}, "
            f"errors={results['errors']}"
        )
        return results

    @withOptimisticRetry
    async def _accrueInvestment(self, investmentId: int) -> Optional[Dict]:
        """Returns None when there is nothing to do today."""
        today = timeMachine.today
        investment = self.session.get(Investment, investmentId)

        if not investment or not investment.isActive:
            return None
        if investment.lastRoiDate and investment.lastRoiDate >= today:
            return None

        if investment.daysElapsed >= investment.durationDays:
            investment.isActive = False
            self.session.commit()
            logger.info(f"Investment {investmentId} expired after {investment.daysElapsed} days")
            return None

        daily = toMoney(investment.principal * investment.dailyRoiRate)
        renewable = percentOf(daily, investment.renewablePct)
        cashable = daily - renewable

        ledger = LedgerService(self.session)
        reference = f"investment-{investmentId}"
        meta = {"investmentId": investmentId, "day": today.isoformat()}

        if cashable > ZERO:
            await ledger.credit(
                investment.participantID, WalletPurpose.ROI, cashable, REASON_ROI, reference, meta
            )
        if renewable > ZERO:
            await ledger.credit(
                investment.participantID, WalletPurpose.INVESTMENT, renewable,
                REASON_ROI_RENEWABLE, reference, meta
            )

        investment.totalRoiEarned = toMoney(investment.totalRoiEarned) + cashable
        investment.totalReinvested = toMoney(investment.totalReinvested) + renewable
        investment.daysElapsed = (investment.daysElapsed or 0) + 1
        investment.lastRoiDate = today

        deactivated = investment.daysElapsed >= investment.durationDays
        if deactivated:
            investment.isActive = False

        self.session.commit()

        logger.info(
            f"ROI for investment {investmentId} on {today}: "
            f"paid {cashable}, reinvested {renewable}, day {investment.daysElapsed}/{investment.durationDays}"
        )

        return {
            "investmentId": investmentId,
            "participantId": investment.participantID,
            "day": today.isoformat(),
            "cashable": cashable,
            "renewable": renewable,
            "deactivated": deactivated
        }
