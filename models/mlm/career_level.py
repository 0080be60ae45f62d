# models/mlm/career_level.py
"""
CareerLevel model - ordered reward tiers, administered externally.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, Text

from models.base import Base, AuditMixin


class CareerLevel(Base, AuditMixin):
    __tablename__ = 'career_levels'

    levelID = Column(Integer, primary_key=True, autoincrement=True)
    rank = Column(Integer, unique=True, nullable=False)  # 1, 2, 3... порядок уровней
    name = Column(String, unique=True, nullable=False)  # Bronze, Silver, Gold...

    threshold = Column(DECIMAL(18, 2), nullable=False)  # Требуется на КАЖДОЙ ноге
    rewardAmount = Column(DECIMAL(18, 2), nullable=False)
    isActive = Column(Boolean, default=True, nullable=False, index=True)
    description = Column(Text, nullable=True)

    def __repr__(self):
        return f"<CareerLevel(rank={self.rank}, name={self.name}, threshold={self.threshold})>"
