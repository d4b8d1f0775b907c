"""
Wheel configuration, weight modifiers and the weighted outcome selector.
"""

from .models import (
    ActiveConfiguration,
    ByIndex,
    ByName,
    EntryRef,
    SpinOutcome,
    SpinPhase,
    SpinTicket,
    WheelConfig,
    entry_ref,
)
from .selector import OutcomeSelector, pick_index, segment_at, segment_bounds
from .weights import ALL, WeightStore

__all__ = [
    "ActiveConfiguration",
    "ByIndex",
    "ByName",
    "EntryRef",
    "SpinOutcome",
    "SpinPhase",
    "SpinTicket",
    "WheelConfig",
    "entry_ref",
    "OutcomeSelector",
    "pick_index",
    "segment_at",
    "segment_bounds",
    "ALL",
    "WeightStore",
]
