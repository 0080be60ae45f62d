# models/__init__.py
"""
Database models for the binary compensation engine.
Import all models here so Base.metadata knows every table.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.participant import Participant
from models.wallet import Wallet
from models.ledger_entry import LedgerEntry
from models.investment import Investment
from models.withdrawal import Withdrawal

# Tree and career models
from models.mlm.tree_node import TreeNode
from models.mlm.career_level import CareerLevel
from models.mlm.career_progress import CareerProgress

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'Participant',
    'Wallet',
    'LedgerEntry',
    'Investment',
    'Withdrawal',

    # Tree and career
    'TreeNode',
    'CareerLevel',
    'CareerProgress',
]
