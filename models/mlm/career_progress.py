# models/mlm/career_progress.py
"""
CareerProgress model - per-participant career snapshot.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin


class CareerProgress(Base, AuditMixin):
    __tablename__ = 'career_progress'

    progressID = Column(Integer, primary_key=True, autoincrement=True)
    participantID = Column(Integer, ForeignKey('participants.participantID'), unique=True, nullable=False)

    # Next tier to achieve (None when everything is completed)
    currentLevelID = Column(Integer, ForeignKey('career_levels.levelID'), nullable=True)
    currentLevelName = Column(String, nullable=True)

    levelProgress = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    totalBusinessVolume = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    totalRewardsEarned = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))

    completedLevels = Column(JSON, nullable=True)
    # [
    #   {"levelId": 1, "levelName": "Bronze", "rank": 1, "threshold": "1000.00",
    #    "completedAt": "2024-01-01T10:00:00+00:00", "rewardAmount": "200.00"}
    # ]

    lastCheckedAt = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    participant = relationship('Participant', backref='careerProgress')
    currentLevel = relationship('CareerLevel')

    @property
    def completedLevelIds(self) -> set:
        return {item["levelId"] for item in (self.completedLevels or [])}

    def __repr__(self):
        return f"<CareerProgress(participant={self.participantID}, level={self.currentLevelName})>"
