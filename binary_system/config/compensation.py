# binary_system/config/compensation.py
"""
Binary compensation plan configuration and constants.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

import config


class Leg(Enum):
    LEFT = "left"
    RIGHT = "right"

    @property
    def opposite(self) -> "Leg":
        return Leg.RIGHT if self is Leg.LEFT else Leg.LEFT


class NodeKind(Enum):
    ROOT = "root"  # Unlimited direct children, no leg constraint
    BINARY = "binary"  # Strict two-child node


class ParticipantStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    BLOCKED = "blocked"


class WalletPurpose(Enum):
    WITHDRAWAL = "withdrawal"
    BINARY = "binary"
    CAREER_LEVEL = "career_level"
    INVESTMENT = "investment"
    REFERRAL = "referral"
    ROI = "roi"
    INTEREST = "interest"


class Direction(Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class WithdrawalStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Wallets a participant may request a withdrawal from
WITHDRAWABLE_PURPOSES = (
    WalletPurpose.WITHDRAWAL,
    WalletPurpose.BINARY,
    WalletPurpose.CAREER_LEVEL,
    WalletPurpose.REFERRAL,
    WalletPurpose.ROI,
    WalletPurpose.INTEREST,
)

# Ledger reason tags
REASON_INVESTMENT = "investment"
REASON_REFERRAL = "referral"
REASON_MATCHING_BONUS = "matching_bonus"
REASON_CAREER_REWARD = "career_reward"
REASON_ROI = "roi_payout"
REASON_ROI_RENEWABLE = "roi_renewable"
REASON_WALLET_EXCHANGE = "wallet_exchange"
REASON_WITHDRAWAL = "withdrawal"


@dataclass(frozen=True)
class PackageConfig:
    """Per-package percentages and caps supplied with every investment."""

    name: str
    binaryPct: Decimal
    capAmount: Decimal
    referralPct: Decimal = Decimal("0")
    totalOutputPct: Decimal = Decimal("0")
    renewablePct: Decimal = Decimal("0")
    durationDays: int = 0
    minAmount: Decimal = Decimal("0")
    maxAmount: Decimal = Decimal("0")  # 0 = no upper bound

    @property
    def dailyRoiRate(self) -> Decimal:
        """(totalOutputPct / 100) / durationDays."""
        if not self.durationDays:
            return Decimal("0")
        return self.totalOutputPct / Decimal("100") / Decimal(self.durationDays)

    def accepts(self, amount: Decimal) -> bool:
        if amount < self.minAmount:
            return False
        if self.maxAmount and amount > self.maxAmount:
            return False
        return True


DEFAULT_PACKAGE = PackageConfig(
    name=config.DEFAULT_PACKAGE_NAME,
    binaryPct=config.DEFAULT_BINARY_PCT,
    capAmount=config.DEFAULT_CAPPING_LIMIT,
    referralPct=config.DEFAULT_REFERRAL_PCT,
    totalOutputPct=config.DEFAULT_TOTAL_OUTPUT_PCT,
    renewablePct=config.DEFAULT_RENEWABLE_PCT,
    durationDays=config.DEFAULT_DURATION_DAYS,
    minAmount=config.DEFAULT_MIN_AMOUNT,
    maxAmount=config.DEFAULT_MAX_AMOUNT,
)
