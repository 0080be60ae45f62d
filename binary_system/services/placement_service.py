# binary_system/services/placement_service.py
"""
Binary placement - inserts participants under a sponsor, resolves
spillover and maintains downline counts.
"""
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Tuple, Union
from sqlalchemy.orm import Session
import logging

import config
from models import Participant, TreeNode
from binary_system.config.compensation import Leg, NodeKind
from binary_system.errors import (
    ParticipantNotFound, SponsorNotFound, NoAvailableSlot,
    SlotOccupied, TreeIntegrityError
)
from binary_system.events.event_bus import eventBus, MLMEvents
from binary_system.services.ledger_service import LedgerService
from binary_system.utils.money import toMoney
from binary_system.utils.retry import withOptimisticRetry
from binary_system.utils import tree_walk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlacementResult:
    participantId: int
    sponsorId: Optional[int]  # Actual parent in the tree
    leg: Optional[Leg]


def normalizeLeg(leg: Union[Leg, str, None]) -> Optional[Leg]:
    if leg is None or isinstance(leg, Leg):
        return leg
    return Leg(str(leg).lower())


class PlacementService:
    """Service for placing participants in the binary tree."""

    def __init__(self, session: Session):
        self.session = session

    def getRootNode(self) -> Optional[TreeNode]:
        return self.session.query(TreeNode).filter_by(kind=NodeKind.ROOT.value).first()

    async def insert(
            self,
            participantId: int,
            sponsorId: Optional[int] = None,
            requestedLeg: Union[Leg, str, None] = None
    ) -> PlacementResult:
        """
        Place participant under sponsor (root when omitted).
        Does not commit. Re-inserting an already placed participant
        returns the existing placement.
        """
        participant = self.session.get(Participant, participantId)
        if not participant:
            raise ParticipantNotFound(f"Participant {participantId} not found")

        requestedLeg = normalizeLeg(requestedLeg)

        existing = self.session.get(TreeNode, participantId)
        if existing:
            logger.info(f"Participant {participantId} is already placed under {existing.parentID}")
            return PlacementResult(participantId, existing.parentID, normalizeLeg(participant.leg))

        # Root is detected once, here, and stored as the node kind
        if participant.businessCode == config.ROOT_BUSINESS_CODE:
            node = TreeNode(participantID=participantId, kind=NodeKind.ROOT.value)
            self.session.add(node)
            participant.sponsorID = None
            participant.leg = None
            self.session.flush()
            logger.info(f"Root node created for participant {participantId}")
            return PlacementResult(participantId, None, None)

        sponsorNode = await self._resolveSponsorNode(sponsorId)
        participant.sponsorID = sponsorNode.participantID

        if sponsorNode.isRoot:
            parent, leg = sponsorNode, requestedLeg
        elif requestedLeg is not None:
            parent, leg = await self.findSlotInLeg(sponsorNode, requestedLeg), requestedLeg
        else:
            parent, leg = await self.findFirstFreeSlot(sponsorNode)

        node = TreeNode(
            participantID=participantId,
            kind=NodeKind.BINARY.value,
            parentID=parent.participantID
        )
        self.session.add(node)

        if not parent.isRoot:
            if leg == Leg.LEFT:
                parent.leftChildID = participantId
            else:
                parent.rightChildID = participantId

        participant.leg = leg.value if leg else None
        self.session.flush()

        await self._incrementDownlines(node)

        logger.info(
            f"Placed participant {participantId} under {parent.participantID} "
            f"(sponsor {sponsorNode.participantID}, leg {leg.value if leg else '-'})"
        )
        return PlacementResult(participantId, parent.participantID, leg)

    async def _resolveSponsorNode(self, sponsorId: Optional[int]) -> TreeNode:
        if sponsorId is None:
            root = self.getRootNode()
            if not root:
                raise SponsorNotFound("Root node does not exist yet")
            return root

        sponsor = self.session.get(Participant, sponsorId)
        if not sponsor or not sponsor.isActive:
            raise SponsorNotFound(f"Sponsor {sponsorId} not found or not active")

        sponsorNode = self.session.get(TreeNode, sponsorId)
        if not sponsorNode:
            raise SponsorNotFound(f"Sponsor {sponsorId} is not placed in the tree")
        return sponsorNode

    async def findSlotInLeg(self, sponsorNode: TreeNode, leg: Leg) -> TreeNode:
        """
        Spillover along one leg only: follow the same-direction child
        until a node with that slot free is found.
        """
        current = sponsorNode
        visited = set()
        depth = 0

        while True:
            if current.participantID in visited:
                raise TreeIntegrityError(f"Cycle detected at node {current.participantID}")
            visited.add(current.participantID)

            childId = current.childID(leg)
            if childId is None:
                return current

            depth += 1
            if depth > config.MAX_PLACEMENT_DEPTH:
                raise SlotOccupied(
                    f"No free {leg.value} slot along the {leg.value} leg "
                    f"of {sponsorNode.participantID}"
                )

            child = self.session.get(TreeNode, childId)
            if child is None:
                raise TreeIntegrityError(f"Node {current.participantID} points to missing child {childId}")
            current = child

    async def findFirstFreeSlot(self, sponsorNode: TreeNode) -> Tuple[TreeNode, Leg]:
        """Left, right, then depth-first into the left subtree before the right one."""
        stack = [(sponsorNode, 0)]
        visited = set()

        while stack:
            node, depth = stack.pop()
            if node.participantID in visited:
                raise TreeIntegrityError(f"Cycle detected at node {node.participantID}")
            visited.add(node.participantID)

            if node.leftChildID is None:
                return node, Leg.LEFT
            if node.rightChildID is None:
                return node, Leg.RIGHT

            if depth >= config.MAX_PLACEMENT_DEPTH:
                continue

            for childId in (node.rightChildID, node.leftChildID):
                child = self.session.get(TreeNode, childId)
                if child is None:
                    raise TreeIntegrityError(f"Node {node.participantID} points to missing child {childId}")
                stack.append((child, depth + 1))

        raise NoAvailableSlot(f"No free slot under sponsor {sponsorNode.participantID}")

    async def _incrementDownlines(self, node: TreeNode):
        """New node adds one to the leg it hangs from on every binary ancestor."""
        isImmediate = True
        for ancestor, legFrom in tree_walk.walkAncestors(self.session, node):
            if ancestor.isRoot:
                # Root counts its direct children only
                if isImmediate:
                    ancestor.leftDownlines = (ancestor.leftDownlines or 0) + 1
                break

            if legFrom == Leg.LEFT:
                ancestor.leftDownlines = (ancestor.leftDownlines or 0) + 1
            elif legFrom == Leg.RIGHT:
                ancestor.rightDownlines = (ancestor.rightDownlines or 0) + 1
            else:
                raise TreeIntegrityError(
                    f"Node {ancestor.participantID} does not link to its child on the path"
                )
            isImmediate = False

        self.session.flush()

    async def countSubtree(self, node: TreeNode, leg: Leg) -> int:
        """Population of the subtree hanging on leg (root: direct children)."""
        if node.isRoot:
            if leg == Leg.RIGHT:
                return 0
            return self.session.query(TreeNode).filter(
                TreeNode.parentID == node.participantID
            ).count()
        return tree_walk.countSubtree(self.session, node.childID(leg))

    async def recountDownlines(self) -> int:
        """
        Recompute every downline counter from tree shape alone.
        Returns how many nodes were corrected. Idempotent.
        """
        nodes = {node.participantID: node for node in self.session.query(TreeNode).all()}
        sizes: Dict[int, int] = {}

        def subtreeSize(startId: Optional[int]) -> int:
            if startId is None:
                return 0
            if startId in sizes:
                return sizes[startId]

            # Iterative post-order
            stack = [(startId, False)]
            onPath = set()
            while stack:
                nodeId, expanded = stack.pop()
                if nodeId in sizes:
                    continue
                node = nodes.get(nodeId)
                if node is None:
                    raise TreeIntegrityError(f"Dangling link to node {nodeId}")

                childIds = [c for c in (node.leftChildID, node.rightChildID) if c is not None]
                if expanded:
                    onPath.discard(nodeId)
                    sizes[nodeId] = 1 + sum(sizes[c] for c in childIds)
                    continue

                if nodeId in onPath:
                    raise TreeIntegrityError(f"Cycle detected at node {nodeId}")
                onPath.add(nodeId)
                stack.append((nodeId, True))
                for childId in childIds:
                    if childId in onPath:
                        raise TreeIntegrityError(f"Cycle detected at node {childId}")
                    if childId not in sizes:
                        stack.append((childId, False))
            return sizes[startId]

        corrected = 0
        for node in nodes.values():
            if node.isRoot:
                left = sum(1 for other in nodes.values() if other.parentID == node.participantID)
                right = 0
            else:
                left = subtreeSize(node.leftChildID)
                right = subtreeSize(node.rightChildID)

            if node.leftDownlines != left or node.rightDownlines != right:
                logger.info(
                    f"Downlines of {node.participantID} corrected: "
                    f"{node.leftDownlines}/{node.rightDownlines} -> {left}/{right}"
                )
                node.leftDownlines = left
                node.rightDownlines = right
                corrected += 1

        self.session.commit()
        logger.info(f"Downline recount complete: {len(nodes)} nodes, {corrected} corrected")
        return corrected

    @withOptimisticRetry
    async def enrollParticipant(
            self,
            name: Optional[str] = None,
            email: Optional[str] = None,
            sponsorId: Optional[int] = None,
            leg: Union[Leg, str, None] = None
    ) -> PlacementResult:
        """
        Create participant, place it and open its wallets in one transaction.
        A placement failure rolls back so no participant record survives.
        """
        participant = Participant.create(self.session, name=name, email=email, sponsorID=sponsorId)
        placement = await self.insert(participant.participantID, sponsorId, leg)
        await LedgerService(self.session).initializeWallets(participant.participantID)
        self.session.commit()

        await eventBus.emit(MLMEvents.PARTICIPANT_PLACED, {
            "participantId": placement.participantId,
            "businessCode": participant.businessCode,
            "parentId": placement.sponsorId,
            "leg": placement.leg.value if placement.leg else None
        })
        return placement

    async def getDownline(self, participantId: int, depth: int = 3) -> Dict:
        """Read-only nested projection of the subtree for display."""
        rootNode = self.session.get(TreeNode, participantId)
        if not rootNode:
            raise ParticipantNotFound(f"Participant {participantId} is not placed")

        tree = self._nodeView(rootNode)
        queue: Deque[Tuple[TreeNode, Dict, int]] = deque([(rootNode, tree, 0)])
        visited = {participantId}

        while queue:
            node, view, level = queue.popleft()
            if level >= depth:
                continue

            for child in tree_walk.childrenOf(self.session, node):
                if child.participantID in visited:
                    raise TreeIntegrityError(f"Cycle detected at node {child.participantID}")
                visited.add(child.participantID)

                childView = self._nodeView(child)
                view["children"].append(childView)
                queue.append((child, childView, level + 1))

        return tree

    def _nodeView(self, node: TreeNode) -> Dict:
        participant = node.participant
        return {
            "participantId": node.participantID,
            "businessCode": participant.businessCode if participant else None,
            "name": participant.name if participant else None,
            "kind": node.kind,
            "leg": participant.leg if participant else None,
            "leftBusiness": toMoney(node.leftBusiness),
            "rightBusiness": toMoney(node.rightBusiness),
            "leftCarry": toMoney(node.leftCarry),
            "rightCarry": toMoney(node.rightCarry),
            "leftDownlines": node.leftDownlines or 0,
            "rightDownlines": node.rightDownlines or 0,
            "children": []
        }
