# models/mlm/__init__.py
"""
Binary tree and career level models.
"""

from models.mlm.tree_node import TreeNode
from models.mlm.career_level import CareerLevel
from models.mlm.career_progress import CareerProgress

__all__ = [
    'TreeNode',
    'CareerLevel',
    'CareerProgress',
]
