"""
Операторские задачи движка компенсаций.

Usage:
    python maintenance.py init-db
    python maintenance.py daily-cycle
    python maintenance.py accrue-roi
    python maintenance.py recount-downlines
    python maintenance.py evaluate-careers
    python maintenance.py audit-ledger

Когда запускать daily-cycle и accrue-roi, решает внешний планировщик.
"""
import argparse
import asyncio
import logging

from init import get_session, init_tables
from binary_system.services.career_service import CareerService
from binary_system.services.ledger_service import LedgerService
from binary_system.services.matching_service import MatchingService
from binary_system.services.placement_service import PlacementService
from binary_system.services.roi_service import RoiService
import config

logger = logging.getLogger(__name__)


async def runDailyCycle(session):
    return await MatchingService(session).runDailyCycle()


async def accrueRoi(session):
    return await RoiService(session).accrueDailyRoi()


async def recountDownlines(session):
    corrected = await PlacementService(session).recountDownlines()
    return {"corrected": corrected}


async def evaluateCareers(session):
    return await CareerService(session).evaluateAll()


async def auditLedger(session):
    return await LedgerService(session).auditAll()


COMMANDS = {
    "daily-cycle": runDailyCycle,
    "accrue-roi": accrueRoi,
    "recount-downlines": recountDownlines,
    "evaluate-careers": evaluateCareers,
    "audit-ledger": auditLedger,
}


async def run(command: str, databaseUrl: str = None) -> dict:
    session_factory, engine = get_session(databaseUrl)

    if command == "init-db":
        init_tables(engine)
        logger.info("Таблицы созданы")
        return {"initialized": True}

    session = session_factory()
    try:
        return await COMMANDS[command](session)
    finally:
        session.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Binary compensation engine maintenance")
    parser.add_argument("command", choices=["init-db"] + sorted(COMMANDS))
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override DATABASE_URL from environment"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        result = asyncio.run(run(args.command, args.database_url))
    except Exception as e:
        logger.critical(f"Command {args.command} failed: {e}")
        raise

    logger.info(f"{args.command}: {result}")
    audit_failed = args.command == "audit-ledger" and result.get("mismatched")
    return 1 if audit_failed else 0


if __name__ == '__main__':
    raise SystemExit(main())
