"""RPI (Research, Plan, Impl, Review) phase engine."""

from ohmyccg.rpi.engine import (
    PHASE_TRANSITIONS,
    InvalidTransitionError,
    NoActiveStateError,
    RpiEngine,
    can_transition,
)

__all__ = [
    "PHASE_TRANSITIONS",
    "InvalidTransitionError",
    "NoActiveStateError",
    "RpiEngine",
    "can_transition",
]
