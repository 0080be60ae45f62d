# models/withdrawal.py
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Withdrawal(Base, AuditMixin):
    __tablename__ = 'withdrawals'

    withdrawalID = Column(Integer, primary_key=True, autoincrement=True)
    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False, index=True)

    purpose = Column(String, nullable=False)  # Кошелек, из которого выводим
    amount = Column(DECIMAL(18, 2), nullable=False)  # Зарезервировано и будет списано
    charges = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    finalAmount = Column(DECIMAL(18, 2), nullable=False)  # К выплате после комиссии

    status = Column(String, nullable=False, default="pending", index=True)  # pending, approved, rejected
    method = Column(String, nullable=False, default="regular")  # regular, card, crypto, bank
    processedAt = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    participant = relationship('Participant', backref='withdrawals')

    def __repr__(self):
        return f"<Withdrawal(id={self.withdrawalID}, participant={self.participantID}, amount={self.amount}, status={self.status})>"
