# binary_system/services/volume_service.py
"""
Business volume posting for the binary tree.
"""
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Union
from sqlalchemy.orm import Session
import logging

from models import Participant, TreeNode
from binary_system.config.compensation import Leg
from binary_system.errors import ParticipantNotFound, TreeIntegrityError
from binary_system.events.event_bus import eventBus, MLMEvents
from binary_system.services.career_service import CareerService
from binary_system.services.placement_service import normalizeLeg
from binary_system.utils.money import toMoney, requirePositive
from binary_system.utils.retry import withOptimisticRetry
from binary_system.utils import tree_walk

logger = logging.getLogger(__name__)


def getUnmatched(node: TreeNode) -> Dict[Leg, Decimal]:
    """Business on each leg not yet consumed by a matching cycle."""
    return {
        Leg.LEFT: toMoney(node.unmatched(Leg.LEFT)),
        Leg.RIGHT: toMoney(node.unmatched(Leg.RIGHT))
    }


class VolumeService:
    """Service for posting business volume up the tree."""

    def __init__(self, session: Session):
        self.session = session

    async def postVolume(
            self,
            participantId: int,
            amount,
            leg: Union[Leg, str],
            reference: Optional[str] = None,
            beforeCommit: Optional[Callable[[], None]] = None
    ) -> List[int]:
        """
        Add amount to the node's leg and to every ancestor on the leg the
        walk came from. Business and the ancestor chain are written in one
        transaction; career evaluation then runs per touched node and its
        failures are only logged.

        beforeCommit runs inside the posting transaction, once per attempt,
        so whatever it writes is committed together with the business.
        """
        amount = requirePositive(amount)
        leg = normalizeLeg(leg)

        touched = await self._applyVolume(participantId, amount, leg, beforeCommit)

        await eventBus.emit(MLMEvents.VOLUME_POSTED, {
            "participantId": participantId,
            "amount": amount,
            "leg": leg.value,
            "reference": reference,
            "touched": touched
        })

        careerService = CareerService(self.session)
        for nodeId in touched:
            try:
                await careerService.evaluate(nodeId)
            except Exception as e:
                logger.error(f"Career evaluation failed for participant {nodeId}: {e}")

        return touched

    @withOptimisticRetry
    async def _applyVolume(
            self,
            participantId: int,
            amount: Decimal,
            leg: Leg,
            beforeCommit: Optional[Callable[[], None]] = None
    ) -> List[int]:
        node = self.session.get(TreeNode, participantId)
        if not node:
            raise ParticipantNotFound(f"Participant {participantId} is not placed")

        self._addBusiness(node, leg, amount)
        touched = [node.participantID]

        child = node
        for ancestor, legFrom in tree_walk.walkAncestors(self.session, node):
            if legFrom is None:
                if not ancestor.isRoot:
                    raise TreeIntegrityError(
                        f"Node {ancestor.participantID} does not link to child {child.participantID}"
                    )
                # Root children carry no link; use their recorded leg
                legFrom = self._rootChildLeg(child, leg)

            self._addBusiness(ancestor, legFrom, amount)
            touched.append(ancestor.participantID)
            child = ancestor

        if beforeCommit:
            beforeCommit()

        self.session.commit()

        logger.info(
            f"Posted {amount} on {leg.value} leg of participant {participantId}, "
            f"{len(touched) - 1} ancestors updated"
        )
        return touched

    def _rootChildLeg(self, child: TreeNode, postedLeg: Leg) -> Leg:
        participant = self.session.get(Participant, child.participantID)
        if participant and participant.leg:
            return Leg(participant.leg)
        return postedLeg

    @staticmethod
    def _addBusiness(node: TreeNode, leg: Leg, amount: Decimal):
        if leg == Leg.LEFT:
            node.leftBusiness = toMoney(node.leftBusiness) + amount
        else:
            node.rightBusiness = toMoney(node.rightBusiness) + amount

    async def getLegVolumes(self, participantId: int) -> Dict:
        """Read-only projection of the node's volume state."""
        node = self.session.get(TreeNode, participantId)
        if not node:
            raise ParticipantNotFound(f"Participant {participantId} is not placed")

        unmatched = getUnmatched(node)
        return {
            "participantId": participantId,
            "leftBusiness": toMoney(node.leftBusiness),
            "rightBusiness": toMoney(node.rightBusiness),
            "leftCarry": toMoney(node.leftCarry),
            "rightCarry": toMoney(node.rightCarry),
            "leftMatched": toMoney(node.leftMatched),
            "rightMatched": toMoney(node.rightMatched),
            "leftUnmatched": unmatched[Leg.LEFT],
            "rightUnmatched": unmatched[Leg.RIGHT]
        }
