# models/wallet.py
"""
Wallet model - one balance per (participant, purpose).
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship

import config
from models.base import Base, AuditMixin


class Wallet(Base, AuditMixin):
    __tablename__ = 'wallets'

    walletID = Column(Integer, primary_key=True, autoincrement=True)
    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False, index=True)
    purpose = Column(String, nullable=False)  # withdrawal, binary, career_level, investment, referral, roi, interest

    balance = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    reserved = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))  # Заблокировано под вывод
    currency = Column(String, nullable=False, default=config.DEFAULT_CURRENCY)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint('participantID', 'purpose', name='uq_wallet_participant_purpose'),
        CheckConstraint('balance >= 0', name='ck_wallet_balance_non_negative'),
        CheckConstraint('reserved >= 0 AND reserved <= balance', name='ck_wallet_reserved_within_balance'),
    )

    participant = relationship('Participant', backref='wallets')

    @property
    def available(self) -> Decimal:
        return (self.balance or Decimal("0")) - (self.reserved or Decimal("0"))

    def __repr__(self):
        return f"<Wallet(id={self.walletID}, participant={self.participantID}, purpose={self.purpose}, balance={self.balance})>"
