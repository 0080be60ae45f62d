# models/investment.py
"""
Investment model - one row per recorded investment, with a snapshot
of the package configuration it was made under.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, Date, ForeignKey
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin


class Investment(Base, AuditMixin):
    __tablename__ = 'investments'

    investmentID = Column(Integer, primary_key=True, autoincrement=True)
    participantID = Column(Integer, ForeignKey('participants.participantID'), nullable=False, index=True)
    sponsorID = Column(Integer, ForeignKey('participants.participantID'), nullable=True)

    # Внешний платежный идентификатор (дубликаты отклоняются)
    externalPaymentRef = Column(String, unique=True, nullable=False)

    # Package snapshot
    packageName = Column(String, nullable=False)
    binaryPct = Column(DECIMAL(8, 4), nullable=False)
    cappingLimit = Column(DECIMAL(18, 2), nullable=False)
    referralPct = Column(DECIMAL(8, 4), nullable=False, default=Decimal("0"))
    totalOutputPct = Column(DECIMAL(8, 4), nullable=False, default=Decimal("0"))
    renewablePct = Column(DECIMAL(8, 4), nullable=False, default=Decimal("0"))
    durationDays = Column(Integer, nullable=False, default=0)
    dailyRoiRate = Column(DECIMAL(12, 8), nullable=False, default=Decimal("0"))

    # Amounts
    amount = Column(DECIMAL(18, 2), nullable=False)
    principal = Column(DECIMAL(18, 2), nullable=False)

    # ROI schedule
    startDate = Column(DateTime, nullable=False)
    endDate = Column(DateTime, nullable=False)
    daysElapsed = Column(Integer, nullable=False, default=0)
    lastRoiDate = Column(Date, nullable=True)
    totalRoiEarned = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))  # Только выплачиваемая часть
    totalReinvested = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))

    # Flags
    isActive = Column(Boolean, nullable=False, default=True, index=True)
    referralPaid = Column(Boolean, nullable=False, default=False)
    isBinaryUpdated = Column(Boolean, nullable=False, default=False)

    participant = relationship('Participant', foreign_keys=[participantID], backref='investments')

    @property
    def daysRemaining(self) -> int:
        return max(0, (self.durationDays or 0) - (self.daysElapsed or 0))

    def __repr__(self):
        return (
            f"<Investment(id={self.investmentID}, participant={self.participantID}, "
            f"amount={self.amount}, package={self.packageName})>"
        )
