from .base import BookingRequest, BusinessConfig, Decision, ResourceClass, TimeWindow
from .availability import AvailabilityProber, ProbeFailurePolicy
from .allocator import Allocation, ResourceAllocator
from .nearest_slot import NearestSlotFinder, SlotSuggestion
from .orchestrator import BookingOrchestrator, BookingOutcome, BookingStage, CalendarFailurePolicy
from .cancellation import CancellationMatcher, CancellationOutcome

__all__ = [
    "Allocation",
    "AvailabilityProber",
    "BookingOrchestrator",
    "BookingOutcome",
    "BookingRequest",
    "BookingStage",
    "BusinessConfig",
    "CalendarFailurePolicy",
    "CancellationMatcher",
    "CancellationOutcome",
    "Decision",
    "NearestSlotFinder",
    "ProbeFailurePolicy",
    "ResourceAllocator",
    "ResourceClass",
    "SlotSuggestion",
    "TimeWindow",
]
