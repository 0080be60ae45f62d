# binary_system/__init__.py
"""
Binary compensation engine - placement, volume matching, career levels
and the wallet ledger they write through.
"""

# Services
from binary_system.services.ledger_service import LedgerService
from binary_system.services.placement_service import PlacementService, PlacementResult
from binary_system.services.volume_service import VolumeService
from binary_system.services.matching_service import MatchingService, MatchResult
from binary_system.services.career_service import CareerService
from binary_system.services.investment_service import InvestmentService
from binary_system.services.withdrawal_service import WithdrawalService
from binary_system.services.roi_service import RoiService

# Configuration
from binary_system.config.compensation import (
    Leg, NodeKind, WalletPurpose, PackageConfig, DEFAULT_PACKAGE
)

# Utilities
from binary_system.utils.time_machine import timeMachine

# Events
from binary_system.events.event_bus import eventBus, MLMEvents

__all__ = [
    # Services
    'LedgerService',
    'PlacementService',
    'PlacementResult',
    'VolumeService',
    'MatchingService',
    'MatchResult',
    'CareerService',
    'InvestmentService',
    'WithdrawalService',
    'RoiService',

    # Config
    'Leg',
    'NodeKind',
    'WalletPurpose',
    'PackageConfig',
    'DEFAULT_PACKAGE',

    # Utils
    'timeMachine',

    # Events
    'eventBus',
    'MLMEvents',
]
