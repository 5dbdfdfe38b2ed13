"""
Domain module - Business rules of prize dispensing.

Contains:
- Tier classification
- Slot allocation
- Dispense strategies
- Dispensing orchestrator
"""

from .dispense_strategies import (
    ChainResult,
    DispenseChain,
    EnhancedProtocolStrategy,
    LegacyProtocolStrategy,
    SimulatedStrategy,
)
from .orchestrator import DispensingOrchestrator
from .slot_allocator import SlotAllocator
from .tiers import DEFAULT_THRESHOLDS, ThresholdTable, TierThreshold


__all__ = [
    "ChainResult",
    "DispenseChain",
    "EnhancedProtocolStrategy",
    "LegacyProtocolStrategy",
    "SimulatedStrategy",
    "DispensingOrchestrator",
    "SlotAllocator",
    "DEFAULT_THRESHOLDS",
    "ThresholdTable",
    "TierThreshold",
]
