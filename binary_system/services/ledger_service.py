# binary_system/services/ledger_service.py
"""
Wallet ledger - per-participant, per-purpose balances and the
append-only entry log every money movement is written through.

Methods flush but never commit: the calling operation owns the transaction.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Union
from uuid import uuid4
from sqlalchemy.orm import Session
import logging

from models import Participant, Wallet, LedgerEntry
from binary_system.config.compensation import WalletPurpose, Direction, REASON_WALLET_EXCHANGE
from binary_system.errors import (
    InvalidAmount, InsufficientBalance, InsufficientReserve,
    InvalidWalletPurpose, ParticipantNotFound
)
from binary_system.utils.money import toMoney, requirePositive, ZERO

logger = logging.getLogger(__name__)

PurposeLike = Union[WalletPurpose, str]


class LedgerService:
    """Service for wallet balances and ledger entries."""

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def normalizePurpose(purpose: PurposeLike) -> WalletPurpose:
        if isinstance(purpose, WalletPurpose):
            return purpose
        try:
            return WalletPurpose(purpose)
        except ValueError:
            raise InvalidWalletPurpose(f"Unknown wallet purpose: {purpose!r}")

    async def getWallet(self, participantId: int, purpose: PurposeLike) -> Optional[Wallet]:
        purpose = self.normalizePurpose(purpose)
        return self.session.query(Wallet).filter_by(
            participantID=participantId,
            purpose=purpose.value
        ).first()

    async def getOrCreateWallet(self, participantId: int, purpose: PurposeLike) -> Wallet:
        """Locate the wallet or lazily create it with zero balance."""
        purpose = self.normalizePurpose(purpose)
        wallet = await self.getWallet(participantId, purpose)
        if wallet:
            return wallet

        if not self.session.get(Participant, participantId):
            raise ParticipantNotFound(f"Participant {participantId} not found")

        wallet = Wallet(
            participantID=participantId,
            purpose=purpose.value,
            balance=ZERO,
            reserved=ZERO
        )
        self.session.add(wallet)
        self.session.flush()

        logger.debug(f"Created {purpose.value} wallet for participant {participantId}")
        return wallet

    async def initializeWallets(self, participantId: int) -> List[Wallet]:
        """Eager onboarding: one wallet per purpose."""
        wallets = []
        for purpose in WalletPurpose:
            wallets.append(await self.getOrCreateWallet(participantId, purpose))
        return wallets

    async def credit(
            self,
            participantId: int,
            purpose: PurposeLike,
            amount,
            reason: str,
            reference: Optional[str] = None,
            meta: Optional[Dict] = None
    ) -> LedgerEntry:
        """Increase balance and append a credit entry."""
        amount = requirePositive(amount)
        wallet = await self.getOrCreateWallet(participantId, purpose)
        return self._applyEntry(wallet, Direction.CREDIT, amount, reason, reference, meta)

    async def debit(
            self,
            participantId: int,
            purpose: PurposeLike,
            amount,
            reason: str,
            reference: Optional[str] = None,
            meta: Optional[Dict] = None
    ) -> LedgerEntry:
        """Decrease balance and append a debit entry. Reserved funds are untouchable."""
        amount = requirePositive(amount)
        wallet = await self.getOrCreateWallet(participantId, purpose)

        available = toMoney(wallet.available)
        if amount > available:
            raise InsufficientBalance(
                f"Wallet {wallet.purpose} of participant {participantId}: "
                f"requested {amount}, available {available}"
            )

        return self._applyEntry(wallet, Direction.DEBIT, amount, reason, reference, meta)

    async def reserve(self, participantId: int, purpose: PurposeLike, amount) -> Wallet:
        """Earmark free funds. Balance and ledger are unchanged."""
        amount = requirePositive(amount)
        wallet = await self.getOrCreateWallet(participantId, purpose)

        available = toMoney(wallet.available)
        if amount > available:
            raise InsufficientBalance(
                f"Cannot reserve {amount} from {wallet.purpose} wallet of "
                f"participant {participantId}: available {available}"
            )

        wallet.reserved = toMoney(wallet.reserved) + amount
        self.session.flush()

        logger.info(f"Reserved {amount} in {wallet.purpose} wallet of participant {participantId}")
        return wallet

    async def release(self, participantId: int, purpose: PurposeLike, amount) -> Wallet:
        """Return earmarked funds to the free part of the balance."""
        amount = requirePositive(amount)
        wallet = await self.getOrCreateWallet(participantId, purpose)

        reserved = toMoney(wallet.reserved)
        if amount > reserved:
            raise InsufficientReserve(
                f"Cannot release {amount} from {wallet.purpose} wallet of "
                f"participant {participantId}: reserved {reserved}"
            )

        wallet.reserved = reserved - amount
        self.session.flush()

        logger.info(f"Released {amount} in {wallet.purpose} wallet of participant {participantId}")
        return wallet

    async def exchange(
            self,
            participantId: int,
            fromPurpose: PurposeLike,
            toPurpose: PurposeLike,
            amount,
            rate=Decimal("1")
    ) -> Dict:
        """
        Move funds between two wallets of the same participant.
        Both entries share one exchange reference.
        """
        fromPurpose = self.normalizePurpose(fromPurpose)
        toPurpose = self.normalizePurpose(toPurpose)
        if fromPurpose == toPurpose:
            raise InvalidWalletPurpose("Source and target wallets must differ")

        amount = requirePositive(amount)
        try:
            rate = Decimal(str(rate))
        except ArithmeticError:
            raise InvalidAmount(f"Malformed exchange rate: {rate!r}")
        if not rate.is_finite() or rate <= 0:
            raise InvalidAmount(f"Exchange rate must be positive, got {rate!r}")

        converted = requirePositive(amount * rate)
        reference = f"exchange-{uuid4().hex[:12]}"
        meta = {"from": fromPurpose.value, "to": toPurpose.value, "rate": str(rate)}

        debitEntry = await self.debit(
            participantId, fromPurpose, amount, REASON_WALLET_EXCHANGE, reference, meta
        )
        creditEntry = await self.credit(
            participantId, toPurpose, converted, REASON_WALLET_EXCHANGE, reference, meta
        )

        return {
            "reference": reference,
            "debited": amount,
            "credited": converted,
            "debitEntryId": debitEntry.entryID,
            "creditEntryId": creditEntry.entryID
        }

    def _applyEntry(
            self,
            wallet: Wallet,
            direction: Direction,
            amount: Decimal,
            reason: str,
            reference: Optional[str],
            meta: Optional[Dict]
    ) -> LedgerEntry:
        before = toMoney(wallet.balance)
        after = before + amount if direction == Direction.CREDIT else before - amount

        wallet.balance = after

        entry = LedgerEntry(
            walletID=wallet.walletID,
            participantID=wallet.participantID,
            purpose=wallet.purpose,
            direction=direction.value,
            amount=amount,
            balanceBefore=before,
            balanceAfter=after,
            currency=wallet.currency,
            status="completed",
            reference=str(reference) if reference is not None else None,
            reason=reason,
            meta=meta
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            f"{direction.value.capitalize()} {amount} {wallet.currency} "
            f"{'to' if direction == Direction.CREDIT else 'from'} {wallet.purpose} wallet "
            f"of participant {wallet.participantID} ({reason}): {before} -> {after}"
        )
        return entry

    async def getWalletSnapshot(self, participantId: int) -> Dict[str, Dict]:
        """Read-only projection: purpose -> balance/reserved/available/currency."""
        wallets = self.session.query(Wallet).filter_by(
            participantID=participantId
        ).order_by(Wallet.walletID).all()

        return {
            wallet.purpose: {
                "balance": toMoney(wallet.balance),
                "reserved": toMoney(wallet.reserved),
                "available": toMoney(wallet.available),
                "currency": wallet.currency
            }
            for wallet in wallets
        }

    async def getEntries(
            self,
            participantId: int,
            purpose: Optional[PurposeLike] = None,
            reason: Optional[str] = None,
            limit: Optional[int] = None
    ) -> List[LedgerEntry]:
        query = self.session.query(LedgerEntry).filter_by(participantID=participantId)
        if purpose is not None:
            query = query.filter_by(purpose=self.normalizePurpose(purpose).value)
        if reason is not None:
            query = query.filter_by(reason=reason)

        query = query.order_by(LedgerEntry.entryID)
        if limit:
            query = query.limit(limit)
        return query.all()

    async def verifyWallet(self, walletId: int) -> Dict:
        """
        Replay entries in creation order.
        Every entry must chain from the previous balanceAfter and the
        final running total must equal the stored balance.
        """
        wallet = self.session.get(Wallet, walletId)
        if not wallet:
            raise InvalidWalletPurpose(f"Wallet {walletId} not found")

        entries = self.session.query(LedgerEntry).filter_by(
            walletID=walletId
        ).order_by(LedgerEntry.entryID).all()

        running = ZERO
        problems = []

        for entry in entries:
            amount = toMoney(entry.amount)
            before = toMoney(entry.balanceBefore)
            after = toMoney(entry.balanceAfter)
            expected = before + amount if entry.direction == Direction.CREDIT.value else before - amount

            if before != running:
                problems.append(f"entry {entry.entryID}: balanceBefore {before} != running {running}")
            if after != expected:
                problems.append(f"entry {entry.entryID}: balanceAfter {after} != {expected}")

            running = running + amount if entry.direction == Direction.CREDIT.value else running - amount

        balance = toMoney(wallet.balance)
        if running != balance:
            problems.append(f"replayed total {running} != balance {balance}")

        return {
            "walletId": walletId,
            "ok": not problems,
            "balance": balance,
            "replayed": toMoney(running),
            "entries": len(entries),
            "problems": problems
        }

    async def auditAll(self) -> Dict:
        """Replay every wallet."""
        results = {
            "checked": 0,
            "mismatched": 0,
            "wallets": []
        }

        for (walletId,) in self.session.query(Wallet.walletID).order_by(Wallet.walletID).all():
            report = await self.verifyWallet(walletId)
            results["checked"] += 1
            if not report["ok"]:
                results["mismatched"] += 1
                results["wallets"].append(report)
                logger.error(f"Ledger mismatch in wallet {walletId}: {report['problems']}")

        logger.info(
            f"Ledger audit complete: checked={results['checked']}, "
            f"mismatched={results['mismatched']}"
        )
        return results
