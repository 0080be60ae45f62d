# binary_system/services/career_service.py
"""
Career level service - checks both legs against ordered tier thresholds
and pays each tier's one-time reward.
"""
from decimal import Decimal
from typing import Dict, List
from sqlalchemy.orm import Session
import logging

from models import TreeNode, CareerLevel, CareerProgress
from binary_system.config.compensation import WalletPurpose, REASON_CAREER_REWARD
from binary_system.errors import ParticipantNotFound
from binary_system.events.event_bus import eventBus, MLMEvents
from binary_system.services.ledger_service import LedgerService
from binary_system.utils.money import toMoney, ZERO
from binary_system.utils.retry import withOptimisticRetry
from binary_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class CareerService:
    """Service for career level qualification and rewards."""

    def __init__(self, session: Session):
        self.session = session

    def _activeLevels(self) -> List[CareerLevel]:
        return self.session.query(CareerLevel).filter_by(
            isActive=True
        ).order_by(CareerLevel.rank).all()

    def _getOrCreateProgress(self, participantId: int) -> CareerProgress:
        progress = self.session.query(CareerProgress).filter_by(
            participantID=participantId
        ).first()
        if progress:
            return progress

        progress = CareerProgress(
            participantID=participantId,
            levelProgress=ZERO,
            totalBusinessVolume=ZERO,
            totalRewardsEarned=ZERO,
            completedLevels=[]
        )
        self.session.add(progress)
        self.session.flush()
        return progress

    @staticmethod
    def _levelProgress(totalVolume: Decimal, completed: List[Dict]) -> Decimal:
        """Total volume beyond the highest completed threshold, floored at zero."""
        if not completed:
            return toMoney(totalVolume)
        highest = max(Decimal(item["threshold"]) for item in completed)
        return toMoney(max(ZERO, totalVolume - highest))

    @withOptimisticRetry
    async def evaluate(self, participantId: int) -> List[Dict]:
        """
        Award every active tier whose threshold both legs meet.
        Returns the tiers completed in this pass. Commits.
        """
        node = self.session.get(TreeNode, participantId)
        if not node:
            raise ParticipantNotFound(f"Participant {participantId} is not placed")

        levels = self._activeLevels()
        progress = self._getOrCreateProgress(participantId)

        leftBusiness = toMoney(node.leftBusiness)
        rightBusiness = toMoney(node.rightBusiness)
        totalVolume = leftBusiness + rightBusiness

        # New list so the JSON column is seen as changed
        completed = list(progress.completedLevels or [])
        completedIds = {item["levelId"] for item in completed}
        totalRewards = toMoney(progress.totalRewardsEarned)
        newlyCompleted = []
        ledger = LedgerService(self.session)

        for level in levels:
            if level.levelID in completedIds:
                continue

            threshold = toMoney(level.threshold)
            # Both legs must reach the threshold
            if leftBusiness < threshold or rightBusiness < threshold:
                continue

            reward = toMoney(level.rewardAmount)
            if reward > ZERO:
                await ledger.credit(
                    participantId,
                    WalletPurpose.CAREER_LEVEL,
                    reward,
                    REASON_CAREER_REWARD,
                    reference=f"career-level-{level.levelID}",
                    meta={"levelId": level.levelID, "levelName": level.name, "rank": level.rank}
                )

            record = {
                "levelId": level.levelID,
                "levelName": level.name,
                "rank": level.rank,
                "threshold": str(threshold),
                "completedAt": timeMachine.now.isoformat(),
                "rewardAmount": str(reward)
            }
            completed.append(record)
            completedIds.add(level.levelID)
            newlyCompleted.append(record)
            totalRewards += reward

            logger.info(
                f"Participant {participantId} completed career level {level.name} "
                f"and received {reward} reward"
            )

        nextLevel = next((level for level in levels if level.levelID not in completedIds), None)

        progress.completedLevels = completed
        progress.totalRewardsEarned = totalRewards
        progress.totalBusinessVolume = totalVolume
        progress.currentLevelID = nextLevel.levelID if nextLevel else None
        progress.currentLevelName = nextLevel.name if nextLevel else None
        progress.levelProgress = self._levelProgress(totalVolume, completed) if levels else ZERO
        progress.lastCheckedAt = timeMachine.now

        self.session.commit()

        for record in newlyCompleted:
            await eventBus.emit(MLMEvents.CAREER_LEVEL_COMPLETED, {
                "participantId": participantId,
                **record
            })

        return newlyCompleted

    async def getProgress(self, participantId: int) -> Dict:
        """Read-only projection of career progress."""
        node = self.session.get(TreeNode, participantId)
        if not node:
            raise ParticipantNotFound(f"Participant {participantId} is not placed")

        progress = self.session.query(CareerProgress).filter_by(
            participantID=participantId
        ).first()

        if not progress:
            # Nothing evaluated yet: report the first active tier
            levels = self._activeLevels()
            firstLevel = levels[0] if levels else None
            totalVolume = toMoney(node.leftBusiness) + toMoney(node.rightBusiness)
            return {
                "participantId": participantId,
                "currentLevelId": firstLevel.levelID if firstLevel else None,
                "currentLevelName": firstLevel.name if firstLevel else None,
                "levelProgress": totalVolume if firstLevel else ZERO,
                "totalBusinessVolume": totalVolume,
                "completedLevels": [],
                "totalRewardsEarned": ZERO,
                "lastCheckedAt": None
            }

        return {
            "participantId": participantId,
            "currentLevelId": progress.currentLevelID,
            "currentLevelName": progress.currentLevelName,
            "levelProgress": toMoney(progress.levelProgress),
            "totalBusinessVolume": toMoney(progress.totalBusinessVolume),
            "completedLevels": list(progress.completedLevels or []),
            "totalRewardsEarned": toMoney(progress.totalRewardsEarned),
            "lastCheckedAt": progress.lastCheckedAt
        }

    async def evaluateAll(self) -> Dict[str, int]:
        """Re-evaluate every node. Safe to repeat."""
        results = {
            "checked": 0,
            "completed": 0,
            "errors": 0
        }

        nodeIds = [row[0] for row in self.session.query(TreeNode.participantID).all()]

        for nodeId in nodeIds:
            try:
                results["checked"] += 1
                completed = await self.evaluate(nodeId)
                results["completed"] += len(completed)
            except Exception as e:
                logger.error(f"Error evaluating career for participant {nodeId}: {e}")
                results["errors"] += 1

        logger.info(
            f"Career check complete: checked={results['checked']}, "
            f"completed={results['completed']}, errors={results['errors']}"
        )

        return results

