# binary_system/services/withdrawal_service.py
"""
Withdrawal requests - funds are reserved on request, debited on
approval and released on rejection.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Union
from sqlalchemy.orm import Session
import logging

import config
from models import Participant, TreeNode, Withdrawal
from binary_system.config.compensation import (
    WalletPurpose, WithdrawalStatus, WITHDRAWABLE_PURPOSES, REASON_WITHDRAWAL
)
from binary_system.errors import (
    ParticipantNotFound, InvalidWalletPurpose, WithdrawalNotFound,
    InvalidWithdrawalState, WithdrawalLimitExceeded
)
from binary_system.events.event_bus import eventBus, MLMEvents
from binary_system.services.ledger_service import LedgerService
from binary_system.utils.money import toMoney, requirePositive, percentOf, ZERO
from binary_system.utils.retry import withOptimisticRetry
from binary_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class WithdrawalService:
    """Service for withdrawal requests and their approval."""

    def __init__(self, session: Session):
        self.session = session

    @withOptimisticRetry
    async def requestWithdrawal(
            self,
            participantId: int,
            purpose: Union[WalletPurpose, str],
            amount,
            method: str = "regular"
    ) -> Withdrawal:
        """Reserve amount in the wallet and create a pending request."""
        amount = requirePositive(amount)
        purpose = LedgerService.normalizePurpose(purpose)

        if purpose not in WITHDRAWABLE_PURPOSES:
            raise InvalidWalletPurpose(f"Withdrawals from {purpose.value} wallet are not allowed")

        participant = self.session.get(Participant, participantId)
        if not participant:
            raise ParticipantNotFound(f"Participant {participantId} not found")

        node = self.session.get(TreeNode, participantId)
        cappingLimit = toMoney(node.cappingLimit) if node else ZERO
        if cappingLimit > ZERO and amount > cappingLimit:
            raise WithdrawalLimitExceeded(
                f"Withdrawal amount {amount} exceeds capping limit of {cappingLimit}"
            )

        await LedgerService(self.session).reserve(participantId, purpose, amount)

        charges = percentOf(amount, config.WITHDRAWAL_CHARGE_PCT)
        withdrawal = Withdrawal(
            participantID=participantId,
            purpose=purpose.value,
            amount=amount,
            charges=charges,
            finalAmount=amount - charges,
            status=WithdrawalStatus.PENDING.value,
            method=method
        )
        self.session.add(withdrawal)
        self.session.commit()

        logger.info(
            f"Withdrawal {withdrawal.withdrawalID} requested by {participantId}: "
            f"{amount} from {purpose.value} (charges {charges})"
        )

        await eventBus.emit(MLMEvents.WITHDRAWAL_REQUESTED, self._eventData(withdrawal))
        return withdrawal

    def _getPending(self, withdrawalId: int) -> Withdrawal:
        withdrawal = self.session.get(Withdrawal, withdrawalId)
        if not withdrawal:
            raise WithdrawalNotFound(f"Withdrawal {withdrawalId} not found")
        if withdrawal.status != WithdrawalStatus.PENDING.value:
            raise InvalidWithdrawalState(
                f"Withdrawal {withdrawalId} is already {withdrawal.status}"
            )
        return withdrawal

    @withOptimisticRetry
    async def approveWithdrawal(self, withdrawalId: int, notes: Optional[str] = None) -> Withdrawal:
        """Release the reservation and debit the full amount in one transaction."""
        withdrawal = self._getPending(withdrawalId)
        amount = toMoney(withdrawal.amount)

        ledger = LedgerService(self.session)
        await ledger.release(withdrawal.participantID, withdrawal.purpose, amount)
        await ledger.debit(
            withdrawal.participantID,
            withdrawal.purpose,
            amount,
            REASON_WITHDRAWAL,
            reference=f"withdrawal-{withdrawal.withdrawalID}",
            meta={
                "charges": str(withdrawal.charges),
                "finalAmount": str(withdrawal.finalAmount),
                "method": withdrawal.method
            }
        )

        withdrawal.status = WithdrawalStatus.APPROVED.value
        withdrawal.processedAt = timeMachine.now
        withdrawal.notes = notes
        self.session.commit()

        logger.info(f"Withdrawal {withdrawalId} approved: {amount} debited")

        await eventBus.emit(MLMEvents.WITHDRAWAL_APPROVED, self._eventData(withdrawal))
        return withdrawal

    @withOptimisticRetry
    async def rejectWithdrawal(self, withdrawalId: int, reason: Optional[str] = None) -> Withdrawal:
        """Return the reserved amount to the free balance."""
        withdrawal = self._getPending(withdrawalId)
        amount = toMoney(withdrawal.amount)

        await LedgerService(self.session).release(withdrawal.participantID, withdrawal.purpose, amount)

        withdrawal.status = WithdrawalStatus.REJECTED.value
        withdrawal.processedAt = timeMachine.now
        withdrawal.notes = reason
        self.session.commit()

        logger.info(f"Withdrawal {withdrawalId} rejected: {reason}")

        await eventBus.emit(MLMEvents.WITHDRAWAL_REJECTED, self._eventData(withdrawal))
        return withdrawal

    async def getWithdrawals(self, participantId: int, status: Optional[str] = None) -> List[Withdrawal]:
        query = self.session.query(Withdrawal).filter_by(participantID=participantId)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(Withdrawal.withdrawalID).all()

    @staticmethod
    def _eventData(withdrawal: Withdrawal) -> Dict:
        return {
            "withdrawalId": withdrawal.withdrawalID,
            "participantId": withdrawal.participantID,
            "purpose": withdrawal.purpose,
            "amount": Decimal(withdrawal.amount),
            "finalAmount": Decimal(withdrawal.finalAmount),
            "status": withdrawal.status
        }
