# models/ledger_entry.py
"""
LedgerEntry model - immutable record of a single wallet mutation.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, JSON, ForeignKey, event
from sqlalchemy.orm import relationship

from models.base import Base, utcnow


class LedgerEntry(Base):
    __tablename__ = 'ledger_entries'

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=utcnow, index=True)

    # Relations
    walletID = Column(Integer, ForeignKey('wallets.walletID'), nullable=False, index=True)
    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False, index=True)
    purpose = Column(String, nullable=False)  # Денормализовано из кошелька

    # Transaction details
    direction = Column(String, nullable=False)  # credit, debit
    amount = Column(DECIMAL(18, 2), nullable=False)
    balanceBefore = Column(DECIMAL(18, 2), nullable=False)
    balanceAfter = Column(DECIMAL(18, 2), nullable=False)
    currency = Column(String, nullable=True)
    status = Column(String, default='completed', nullable=False)  # completed, pending, failed, reversed

    # Transaction metadata
    reference = Column(String, nullable=True, index=True)  # investment=12, payment ref, exchange id
    reason = Column(String, nullable=True, index=True)  # matching_bonus, career_reward, referral...
    meta = Column(JSON, nullable=True)

    wallet = relationship('Wallet', backref='entries')

    @property
    def signedAmount(self):
        return self.amount if self.direction == "credit" else -self.amount

    def __repr__(self):
        return f"<LedgerEntry(id={self.entryID}, wallet={self.walletID}, {self.direction} {self.amount})>"


@event.listens_for(LedgerEntry, "before_update")
def _rejectLedgerUpdate(mapper, connection, target):
    raise ValueError(f"Ledger entry {target.entryID} is immutable")
