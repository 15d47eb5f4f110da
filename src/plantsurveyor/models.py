"""
Data models for planted points and plantation sessions.

A planted point stores two offsets: one to the session origin (the scanned
marker) and one to the point placed just before it. The second offset chains
the whole session together so positions can be rebuilt from any single tree.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from .geometry import Position

ORIGIN_POINT_ID = 0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PlantedPoint:
    """Persisted tree position, relative to the origin and to its predecessor."""
    id: int
    name: str
    offset_from_origin: Position
    offset_from_previous: Position
    previous_point_id: int
    distance_from_previous: float
    placed_at: datetime

    @property
    def is_first(self) -> bool:
        return self.previous_point_id == ORIGIN_POINT_ID


@dataclass(frozen=True)
class Session:
    """One plantation session bound to one origin marker.

    Treated as a value: appending returns a new Session, the stored copy is
    owned by the SessionStore.
    """
    session_id: str
    origin_id: str
    display_name: str
    latitude: float
    longitude: float
    created_at: datetime
    updated_at: datetime
    points: Tuple[PlantedPoint, ...] = field(default_factory=tuple)

    @classmethod
    def new(cls, origin_id: str, display_name: str, latitude: float = 0.0,
            longitude: float = 0.0, now: Optional[datetime] = None) -> "Session":
        timestamp = now or utc_now()
        return cls(
            session_id=str(uuid.uuid4()),
            origin_id=origin_id,
            display_name=display_name,
            latitude=float(latitude),
            longitude=float(longitude),
            created_at=timestamp,
            updated_at=timestamp,
            points=(),
        )

    @property
    def point_count(self) -> int:
        return len(self.points)

    @property
    def last_point(self) -> Optional[PlantedPoint]:
        return self.points[-1] if self.points else None

    def find_point(self, point_id: int) -> Optional[PlantedPoint]:
        for point in self.points:
            if point.id == point_id:
                return point
        return None

    def next_point_id(self) -> int:
        last = self.last_point
        return last.id + 1 if last else 1

    def with_point(self, point: PlantedPoint, updated_at: datetime) -> "Session":
        return replace(self, points=self.points + (point,), updated_at=updated_at)


def build_point(
    point_id: int,
    name: str,
    current_world_position: Position,
    origin_world_position: Position,
    previous=None,
    placed_at: Optional[datetime] = None,
) -> PlantedPoint:
    """Capture a new point against the origin and the previous live point.

    ``previous`` is anything exposing ``id`` and ``world_position`` (normally a
    LivePoint), or None for the first point of a session.
    """
    offset_from_origin = current_world_position - origin_world_position

    if previous is None:
        offset_from_previous = offset_from_origin
        previous_point_id = ORIGIN_POINT_ID
    else:
        offset_from_previous = current_world_position - previous.world_position
        previous_point_id = previous.id

    return PlantedPoint(
        id=point_id,
        name=name,
        offset_from_origin=offset_from_origin,
        offset_from_previous=offset_from_previous,
        previous_point_id=previous_point_id,
        distance_from_previous=offset_from_previous.magnitude(),
        placed_at=placed_at or utc_now(),
    )


@dataclass(frozen=True)
class ChainViolation:
    point_id: int
    reason: str


def find_chain_violations(points: Sequence[PlantedPoint], tolerance: float = 1e-5) -> List[ChainViolation]:
    """Check the stored chain. An empty list means every link is consistent."""
    violations: List[ChainViolation] = []
    previous: Optional[PlantedPoint] = None

    for point in points:
        if previous is None:
            if point.previous_point_id != ORIGIN_POINT_ID:
                violations.append(ChainViolation(point.id, "first point must link to the origin"))
            if not point.offset_from_previous.isclose(point.offset_from_origin, tolerance):
                violations.append(ChainViolation(point.id, "first point offsets differ"))
        else:
            if point.previous_point_id != previous.id:
                violations.append(ChainViolation(
                    point.id, f"links to {point.previous_point_id}, expected {previous.id}"))
            if point.id <= previous.id:
                violations.append(ChainViolation(point.id, "ids are not increasing"))
            if point.placed_at < previous.placed_at:
                violations.append(ChainViolation(point.id, "placed before its predecessor"))
            expected = point.offset_from_origin - previous.offset_from_origin
            if not point.offset_from_previous.isclose(expected, tolerance):
                violations.append(ChainViolation(point.id, "offset from previous drifts from origin offsets"))

        if abs(point.distance_from_previous - point.offset_from_previous.magnitude()) > tolerance:
            violations.append(ChainViolation(point.id, "cached distance does not match offset"))

        previous = point

    return violations
