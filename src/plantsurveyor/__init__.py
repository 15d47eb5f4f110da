"""
PlantSurveyor

Spatial anchoring engine for field planting sessions: captures tree positions
relative to a scanned origin marker, persists them in SQLite, and rebuilds the
whole layout from any single recognised tree when the marker is lost.
"""

__version__ = "0.1.0"

from .geometry import Position
from .models import PlantedPoint, Session, build_point
from .reconstruction import ReconstructionResult, reconstruct, restore_from_origin
from .session_controller import CalibrationState, LivePoint, SessionController
from .session_store import SessionStore

__all__ = [
    "Position",
    "PlantedPoint",
    "Session",
    "build_point",
    "ReconstructionResult",
    "reconstruct",
    "restore_from_origin",
    "CalibrationState",
    "LivePoint",
    "SessionController",
    "SessionStore",
]
