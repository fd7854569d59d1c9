"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .conflict_detector import ConflictDetector, ResourceClaim
from .notifications import BookingNotifier, SessionBooked
from .participants import ParticipantService
from .scheduling import SchedulingEngine
from .schemas import SessionCreate, SessionQuery, SessionUpdate

__all__ = [
    "BookingNotifier",
    "ConflictDetector",
    "ParticipantService",
    "ResourceClaim",
    "SchedulingEngine",
    "SessionBooked",
    "SessionCreate",
    "SessionQuery",
    "SessionUpdate",
]
