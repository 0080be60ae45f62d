# binary_system/utils/tree_walk.py
"""
Iterative walks over the binary tree.
"""
from typing import Iterator, Tuple, Optional
import logging

from sqlalchemy.orm import Session

from models.mlm.tree_node import TreeNode
from binary_system.config.compensation import Leg
from binary_system.errors import TreeIntegrityError

logger = logging.getLogger(__name__)


def legOfChild(parent: TreeNode, childId: int) -> Optional[Leg]:
    """Which link of the parent points at the child (None for root children)."""
    if parent.leftChildID == childId:
        return Leg.LEFT
    if parent.rightChildID == childId:
        return Leg.RIGHT
    return None


def walkAncestors(session: Session, node: TreeNode) -> Iterator[Tuple[TreeNode, Optional[Leg]]]:
    """
    Yield (ancestor, legCameFrom) from the immediate parent up to the root.

    A repeated node raises TreeIntegrityError; a parent link without a row
    ends the walk.
    legCameFrom is None when the child hangs under the root without a leg link.
    """
    visited = {node.participantID}
    current = node

    while current.parentID is not None:
        if current.parentID in visited:
            raise TreeIntegrityError(
                f"Cycle detected at node {current.parentID} above {node.participantID}"
            )

        parent = session.get(TreeNode, current.parentID)
        if parent is None:
            logger.warning(
                f"Node {current.participantID} points to missing parent {current.parentID}"
            )
            return

        visited.add(parent.participantID)
        yield parent, legOfChild(parent, current.participantID)
        current = parent


def childrenOf(session: Session, node: TreeNode) -> list:
    """Direct children; root children are found by parent link."""
    if node.isRoot:
        return (
            session.query(TreeNode)
            .filter(TreeNode.parentID == node.participantID)
            .order_by(TreeNode.participantID)
            .all()
        )

    children = []
    for childId in (node.leftChildID, node.rightChildID):
        if childId is not None:
            child = session.get(TreeNode, childId)
            if child is None:
                raise TreeIntegrityError(f"Node {node.participantID} points to missing child {childId}")
            children.append(child)
    return children


def countSubtree(session: Session, startId: Optional[int]) -> int:
    """Number of nodes in the subtree rooted at startId (0 for an empty slot)."""
    if startId is None:
        return 0

    count = 0
    visited = set()
    stack = [startId]

    while stack:
        nodeId = stack.pop()
        if nodeId in visited:
            raise TreeIntegrityError(f"Cycle detected at node {nodeId}")
        visited.add(nodeId)

        node = session.get(TreeNode, nodeId)
        if node is None:
            raise TreeIntegrityError(f"Dangling link to node {nodeId}")

        count += 1
        for child in childrenOf(session, node):
            stack.append(child.participantID)

    return count
