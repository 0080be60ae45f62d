# models/participant.py
"""
Participant model - central entity for the system.
"""
import re

from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship

import config
from models.base import Base, AuditMixin

_CODE_PATTERN = re.compile(rf"^{re.escape(config.BUSINESS_CODE_PREFIX)}-(\d+)$")


class Participant(Base, AuditMixin):
    __tablename__ = 'participants'

    # Primary identification
    participantID = Column(Integer, primary_key=True, autoincrement=True)
    businessCode = Column(String, unique=True, nullable=False, index=True)  # CROWN-000042

    # Personal information
    name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)

    # Sponsor requested at signup (actual tree parent lives on TreeNode)
    sponsorID = Column(Integer, ForeignKey('participants.participantID'), nullable=True, index=True)
    leg = Column(String, nullable=True)  # left, right or None for root and root children

    status = Column(String, default="active", nullable=False)  # active, inactive, suspended, blocked

    sponsor = relationship('Participant', remote_side=[participantID], backref='sponsored')

    @classmethod
    def nextBusinessCode(cls, session) -> str:
        """
        Следующий последовательный код PREFIX-NNNNNN.
        Если участников еще нет, первым выдается код корня.
        Номер сравнивается как число: PREFIX-10 идет после PREFIX-9.
        """
        codes = (
            session.query(cls.businessCode)
            .filter(cls.businessCode.like(f"{config.BUSINESS_CODE_PREFIX}-%"))
            .all()
        )

        lastNumber = None
        for (code,) in codes:
            match = _CODE_PATTERN.match(code)
            if match and (lastNumber is None or int(match.group(1)) > lastNumber):
                lastNumber = int(match.group(1))

        if lastNumber is None:
            return config.ROOT_BUSINESS_CODE

        return f"{config.BUSINESS_CODE_PREFIX}-{lastNumber + 1:0{config.BUSINESS_CODE_DIGITS}d}"

    @classmethod
    def create(cls, session, name=None, email=None, sponsorID=None, status="active"):
        """Создает участника с очередным бизнес-кодом (без commit)."""
        participant = cls(
            businessCode=cls.nextBusinessCode(session),
            name=name,
            email=email,
            sponsorID=sponsorID,
            status=status
        )
        session.add(participant)
        session.flush()
        return participant

    @property
    def isActive(self) -> bool:
        return self.status == "active"

    def __repr__(self):
        return f"<Participant(id={self.participantID}, code={self.businessCode}, status={self.status})>"
