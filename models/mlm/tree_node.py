# models/mlm/tree_node.py
"""
TreeNode model - placement of a participant in the binary tree
and the business volume / carry state used by matching.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship, backref

from models.base import Base, AuditMixin


class TreeNode(Base, AuditMixin):
    __tablename__ = 'tree_nodes'

    # One-to-one with participant
    participantID = Column(Integer, ForeignKey('participants.participantID'), primary_key=True)
    kind = Column(String, nullable=False, default="binary")  # root, binary

    # Links (participant ids)
    parentID = Column(Integer, ForeignKey('participants.participantID'), nullable=True, index=True)
    leftChildID = Column(Integer, ForeignKey('participants.participantID'), nullable=True)
    rightChildID = Column(Integer, ForeignKey('participants.participantID'), nullable=True)

    # Cumulative business volume, never decreases
    leftBusiness = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    rightBusiness = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))

    # Leftover available amount after the last matching cycle
    leftCarry = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    rightCarry = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))

    # Business consumed by matching (cumulative)
    leftMatched = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    rightMatched = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))

    # Business folded into carry by a cycle without being matched (cumulative)
    leftCarried = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))
    rightCarried = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))

    # Subtree population; root counts direct children in leftDownlines
    leftDownlines = Column(Integer, nullable=False, default=0)
    rightDownlines = Column(Integer, nullable=False, default=0)

    # Optional lifetime cap, 0 = none
    cappingLimit = Column(DECIMAL(18, 2), nullable=False, default=Decimal("0"))

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint('leftBusiness >= 0 AND rightBusiness >= 0', name='ck_tree_business_non_negative'),
        CheckConstraint('leftCarry >= 0 AND rightCarry >= 0', name='ck_tree_carry_non_negative'),
        CheckConstraint('leftMatched >= 0 AND rightMatched >= 0', name='ck_tree_matched_non_negative'),
        CheckConstraint('leftCarried >= 0 AND rightCarried >= 0', name='ck_tree_carried_non_negative'),
        CheckConstraint(
            'leftMatched <= leftBusiness AND rightMatched <= rightBusiness',
            name='ck_tree_matched_within_business'
        ),
    )

    participant = relationship('Participant', foreign_keys=[participantID], backref=backref('treeNode', uselist=False))

    def business(self, leg) -> Decimal:
        return self.leftBusiness if leg.value == "left" else self.rightBusiness

    def childID(self, leg):
        return self.leftChildID if leg.value == "left" else self.rightChildID

    def unmatched(self, leg) -> Decimal:
        """Business on the leg not yet consumed by any cycle."""
        if leg.value == "left":
            return (self.leftBusiness or 0) - (self.leftMatched or 0) - (self.leftCarried or 0)
        return (self.rightBusiness or 0) - (self.rightMatched or 0) - (self.rightCarried or 0)

    @property
    def isRoot(self) -> bool:
        return self.kind == "root"

    def __repr__(self):
        return (
            f"<TreeNode(participant={self.participantID}, kind={self.kind}, "
            f"L={self.leftBusiness}/{self.leftCarry}, R={self.rightBusiness}/{self.rightCarry})>"
        )
