# models/base.py
"""
Base model and mixins for all database tables.
"""
from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, DateTime
from datetime import datetime, timezone

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class AuditMixin:
    createdAt = Column(DateTime, default=utcnow)
    updatedAt = Column(DateTime, default=utcnow, onupdate=utcnow)
