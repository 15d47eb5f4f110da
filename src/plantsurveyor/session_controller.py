"""
Calibration state machine and live point list for one plantation session.

The controller binds a scanned origin marker to its stored session, aligns the
session to the current world frame (either by seeing the origin again or by
recognising an already planted tree) and records new trees against it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .config import PlantSurveyorConfig, get_config
from .errors import (
    DuplicateOrigin,
    InvalidPose,
    InvalidState,
    NoActiveSession,
    PoseUnavailable,
    UnknownOrigin,
)
from .geometry import Position
from .interfaces import PoseSource
from .logging import module_logger
from .models import PlantedPoint, Session, build_point, find_chain_violations, utc_now
from .reconstruction import ReconstructionResult, reconstruct, restore_from_origin
from .schemas import MarkerMetadata
from .session_store import SessionStore

logger = module_logger(service='plantsurveyor', component='session_controller')


class CalibrationState(Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_ORIGIN = "awaiting_origin"
    CALIBRATED = "calibrated"


@dataclass(frozen=True)
class LivePoint:
    """A stored point resolved into the current world frame."""
    id: int
    name: str
    world_position: Position


@dataclass(frozen=True)
class ControllerStatus:
    state: CalibrationState
    surface_count: int
    message: str
    is_ready: bool
    point_count: int
    distance: Optional[float] = None
    origin_id: Optional[str] = None


MESSAGE_SCAN_MARKER = "Scan the origin marker to start"
MESSAGE_FIND_ORIGIN = "Point the camera at the origin marker"
MESSAGE_READY = "Ready to place trees"
MESSAGE_TRACKING_LIMITED = "Tracking limited, move the device slowly"
MESSAGE_RELOCATE = "Tracking was lost, locate the origin marker or a known tree again"


class SessionController:
    """Owns the bound session, the calibration frame and the live point list.

    Every public command holds the controller lock for its whole
    read-then-apply section, so placement and recovery never interleave.
    """

    def __init__(self, store: SessionStore, pose_source: Optional[PoseSource] = None,
                 config: Optional[PlantSurveyorConfig] = None):
        self._store = store
        self._pose_source = pose_source
        self._config = config or get_config()
        self._lock = threading.RLock()

        self._state = CalibrationState.UNINITIALIZED
        self._session: Optional[Session] = None
        self._origin_frame: Optional[Position] = None
        self._live: Tuple[LivePoint, ...] = ()
        self._surface_count = 0
        self._message = MESSAGE_SCAN_MARKER

    # =====================================================================
    # PROPERTIES
    # =====================================================================

    @property
    def state(self) -> CalibrationState:
        return self._state

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def origin_world_position(self) -> Optional[Position]:
        return self._origin_frame

    @property
    def live_points(self) -> Tuple[LivePoint, ...]:
        return self._live

    @property
    def is_calibrated(self) -> bool:
        return self._state is CalibrationState.CALIBRATED

    @property
    def saved_point_count(self) -> int:
        session = self._session
        return session.point_count if session else 0

    @property
    def has_existing_points(self) -> bool:
        return self.saved_point_count > 0

    # =====================================================================
    # HELPERS
    # =====================================================================

    def _resolve_pose(self, pose: Optional[Position]) -> Position:
        if pose is None and self._pose_source is not None:
            pose = self._pose_source.current_world_pose()
        if pose is None:
            raise PoseUnavailable("No current camera pose is available")
        if not pose.is_finite():
            raise InvalidPose(f"Pose has non-finite components: {pose.as_tuple()}",
                              details={"position": list(pose.as_tuple())})
        return pose

    def _require_session(self) -> Session:
        if self._session is None:
            raise NoActiveSession("No origin marker has been scanned")
        return self._session

    def _require_state(self, expected: CalibrationState, operation: str) -> None:
        if self._state is not expected:
            raise InvalidState(
                f"{operation} requires state {expected.value}, current state is {self._state.value}",
                details={"operation": operation, "state": self._state.value, "expected": expected.value},
            )

    def _drop_frame(self, message: str) -> None:
        self._origin_frame = None
        self._live = ()
        self._state = CalibrationState.AWAITING_ORIGIN
        self._message = message

    # =====================================================================
    # CALIBRATION
    # =====================================================================

    def bind_origin(self, marker: MarkerMetadata) -> Session:
        """Open the session for a scanned marker, creating it on first scan.

        Metadata of a known marker is left as stored.
        """
        with self._lock:
            self._require_state(CalibrationState.UNINITIALIZED, "bind_origin")

            session = self._store.get_by_origin_id(marker.id)
            if session is None:
                session = Session.new(marker.id, marker.name, marker.lat, marker.lon)
                try:
                    self._store.create(session)
                except DuplicateOrigin:
                    # Another controller bound the same marker first
                    session = self._store.get_by_origin_id(marker.id)
                    if session is None:
                        raise
                else:
                    logger.info(f"New session {session.session_id} for marker {marker.id} ({marker.name})")
            else:
                logger.info(f"Resumed session for marker {marker.id} with {session.point_count} points")

            violations = find_chain_violations(session.points, self._config.chain_tolerance)
            for violation in violations:
                logger.warning(f"Session {marker.id}: point {violation.point_id} {violation.reason}")

            self._session = session
            self._state = CalibrationState.AWAITING_ORIGIN
            self._message = MESSAGE_FIND_ORIGIN
            return session

    def calibrate(self, origin_world_position: Position) -> Tuple[LivePoint, ...]:
        """Fix the origin in the world frame and restore stored points from it."""
        with self._lock:
            session = self._require_session()
            self._require_state(CalibrationState.AWAITING_ORIGIN, "calibrate")
            origin = self._resolve_pose(origin_world_position)

            positions = restore_from_origin(session.points, origin)
            self._live = tuple(LivePoint(p.id, p.name, positions[p.id]) for p in session.points)
            self._origin_frame = origin
            self._state = CalibrationState.CALIBRATED
            self._message = MESSAGE_READY

            logger.info(f"Calibrated origin {session.origin_id} at {origin}, restored {len(self._live)} points")
            return self._live

    def handle_marker_located(self, marker_id: str, world_pose: Position) -> bool:
        """Origin locator callback. Returns True when it calibrated the session."""
        with self._lock:
            if self._session is None or self._state is not CalibrationState.AWAITING_ORIGIN:
                logger.debug(f"Ignoring marker {marker_id} in state {self._state.value}")
                return False
            if marker_id != self._session.origin_id:
                logger.debug(f"Ignoring marker {marker_id}, bound origin is {self._session.origin_id}")
                return False
            self.calibrate(world_pose)
            return True

    def force_calibration(self) -> Position:
        """Treat the current camera pose as the origin."""
        with self._lock:
            self._require_session()
            self._require_state(CalibrationState.AWAITING_ORIGIN, "force_calibration")
            pose = self._resolve_pose(None)
            logger.info(f"Forcing calibration at current pose {pose}")
            self.calibrate(pose)
            return pose

    def reset_calibration(self) -> Session:
        """Forget the current frame and reload the session from the store.

        Allowed whenever a session is bound, including after tracking loss.
        """
        with self._lock:
            session = self._require_session()

            reloaded = self._store.get_by_origin_id(session.origin_id)
            if reloaded is None:
                self._session = None
                self._origin_frame = None
                self._live = ()
                self._state = CalibrationState.UNINITIALIZED
                self._message = MESSAGE_SCAN_MARKER
                raise UnknownOrigin(f"Session for origin {session.origin_id} no longer exists",
                                    details={"origin_id": session.origin_id})

            self._session = reloaded
            self._drop_frame(MESSAGE_FIND_ORIGIN)
            logger.info(f"Calibration reset for origin {session.origin_id}")
            return reloaded

    # =====================================================================
    # PLACEMENT AND RECOVERY
    # =====================================================================

    def place_point(self, current_world_position: Optional[Position] = None) -> PlantedPoint:
        """Record a tree at the given (or current) pose.

        The live list and session copy change only after the store has
        committed the point.
        """
        with self._lock:
            session = self._require_session()
            self._require_state(CalibrationState.CALIBRATED, "place_point")
            pose = self._resolve_pose(current_world_position)

            point_id = session.next_point_id()
            placed_at = utc_now()
            last = session.last_point
            if last is not None and placed_at < last.placed_at:
                placed_at = last.placed_at

            point = build_point(
                point_id,
                self._config.point_name(point_id),
                pose,
                self._origin_frame,
                previous=self._live[-1] if self._live else None,
                placed_at=placed_at,
            )

            updated_at = self._store.append_point(session.origin_id, point, updated_at=placed_at)

            self._session = session.with_point(point, updated_at)
            self._live = self._live + (LivePoint(point.id, point.name, pose),)
            logger.info(f"Placed {point.name} at {pose}, {point.distance_from_previous:.2f} m from previous")
            return point

    def recover_from_known_point(self, point_id: int,
                                 current_world_position: Optional[Position] = None) -> ReconstructionResult:
        """Re-anchor the session on a recognised tree standing at the given pose."""
        with self._lock:
            session = self._require_session()
            pose = self._resolve_pose(current_world_position)

            result = reconstruct(
                session,
                point_id,
                pose,
                verify_chain=self._config.verify_chain_on_recovery,
                tolerance=self._config.chain_tolerance,
            )

            self._live = tuple(LivePoint(p.id, p.name, result.positions[p.id]) for p in session.points)
            self._origin_frame = result.origin
            self._state = CalibrationState.CALIBRATED
            self._message = MESSAGE_READY

            logger.info(f"Recovered {len(self._live)} points from point {point_id}, origin now at {result.origin}")
            return result

    def available_points_for_recovery(self) -> List[Tuple[int, str]]:
        session = self._session
        if session is None:
            return []
        return [(point.id, point.name) for point in session.points]

    # =====================================================================
    # TRACKING EVENTS
    # =====================================================================

    def handle_tracking_interrupted(self) -> None:
        with self._lock:
            self._message = MESSAGE_TRACKING_LIMITED
            logger.warning("Tracking interrupted")

    def handle_tracking_resumed(self) -> bool:
        """Returns True when the session has to be located again."""
        with self._lock:
            if self._state is not CalibrationState.CALIBRATED:
                if self._session is not None:
                    self._message = MESSAGE_FIND_ORIGIN
                return False
            self._drop_frame(MESSAGE_RELOCATE)
            logger.warning("Tracking resumed after interruption, calibration dropped")
            return True

    def record_surface_detected(self, count: int = 1) -> int:
        with self._lock:
            self._surface_count += count
            return self._surface_count

    # =====================================================================
    # STATUS
    # =====================================================================

    def distance_from_reference(self, pose: Optional[Position] = None) -> Optional[float]:
        """Distance from the last live point (or the origin) to the pose.

        None when uncalibrated or when no usable pose is available.
        """
        with self._lock:
            if self._state is not CalibrationState.CALIBRATED or self._origin_frame is None:
                return None
            if pose is None and self._pose_source is not None:
                pose = self._pose_source.current_world_pose()
            if pose is None or not pose.is_finite():
                return None
            reference = self._live[-1].world_position if self._live else self._origin_frame
            return pose.distance_to(reference)

    def status(self) -> ControllerStatus:
        with self._lock:
            return ControllerStatus(
                state=self._state,
                surface_count=self._surface_count,
                message=self._message,
                is_ready=self._state is CalibrationState.CALIBRATED,
                point_count=self.saved_point_count,
                distance=self.distance_from_reference(),
                origin_id=self._session.origin_id if self._session else None,
            )
