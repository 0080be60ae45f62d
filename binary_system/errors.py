# binary_system/errors.py
"""
Exception taxonomy for the compensation engine.

Every guard raises before any row is mutated, so callers can treat an
EngineError as "nothing was applied" and retry from a fresh read.
"""


class EngineError(Exception):
    """Base class for all compensation engine errors."""
    pass


class InvalidAmount(EngineError):
    """Non-positive or malformed monetary input."""
    pass


class ParticipantNotFound(EngineError):
    pass


class SponsorNotFound(EngineError):
    """Sponsor reference is unknown or the sponsor is not active."""
    pass


class NoAvailableSlot(EngineError):
    """No free position could be found under the sponsor."""
    pass


class SlotOccupied(NoAvailableSlot):
    """The requested leg has no free position anywhere along it."""
    pass


class InsufficientBalance(EngineError):
    pass


class InsufficientReserve(EngineError):
    pass


class ConcurrentModification(EngineError):
    """Optimistic-lock conflict that survived all retries."""
    pass


class TreeIntegrityError(EngineError):
    """Cycle or dangling link detected while walking the tree."""
    pass


class DuplicatePayment(EngineError):
    """External payment reference was already processed."""
    pass


class InvalidWalletPurpose(EngineError):
    pass


class WithdrawalNotFound(EngineError):
    pass


class InvalidWithdrawalState(EngineError):
    pass


class WithdrawalLimitExceeded(EngineError):
    pass


class InvestmentNotFound(EngineError):
    pass
