# binary_system/utils/retry.py
"""
Optimistic-lock retry for service methods that own a transaction.

Shared rows (TreeNode, Wallet, CareerProgress) carry a version column.
A concurrent writer makes the flush fail with StaleDataError; the whole
method is then re-run from a fresh read.
"""
from functools import wraps
import logging

from sqlalchemy.orm.exc import StaleDataError

import config
from binary_system.errors import ConcurrentModification

logger = logging.getLogger(__name__)


def withOptimisticRetry(func):
    """
    Decorator for async service methods (self.session is the Session).

    On StaleDataError: rollback and retry up to MAX_WRITE_RETRIES times,
    then raise ConcurrentModification. Any other error rolls back and
    propagates unchanged.
    """

    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        attempts = max(1, config.MAX_WRITE_RETRIES)

        for attempt in range(1, attempts + 1):
            try:
                return await func(self, *args, **kwargs)
            except StaleDataError as e:
                self.session.rollback()
                logger.warning(
                    f"Version conflict in {func.__name__} "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
            except Exception:
                self.session.rollback()
                raise

        raise ConcurrentModification(
            f"{func.__name__} gave up after {attempts} conflicting attempts"
        )

    return wrapper
