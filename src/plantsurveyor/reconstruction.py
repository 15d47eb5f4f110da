"""
Rebuild world positions of a session from one recognised tree.

Each stored point carries the offset to the point placed just before it, so
pinning any one point in the current world frame fixes every other point by
walking the chain forward and backward in placement order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Sequence, Union

from .errors import ChainIntegrityError, PointNotFound
from .geometry import Position
from .models import PlantedPoint, Session, find_chain_violations


@dataclass(frozen=True)
class ReconstructionResult:
    positions: Dict[int, Position]
    origin: Position
    anchor_point_id: int


def _points_of(session_or_points: Union[Session, Sequence[PlantedPoint]]) -> Sequence[PlantedPoint]:
    if isinstance(session_or_points, Session):
        return session_or_points.points
    return session_or_points


def reconstruct(
    session_or_points: Union[Session, Sequence[PlantedPoint]],
    known_point_id: int,
    known_world_position: Position,
    *,
    verify_chain: bool = False,
    tolerance: float = 1e-5,
) -> ReconstructionResult:
    """Place every point of a session given the world position of one of them.

    Traversal follows placement (list) order, not numeric id order.

    Raises:
        PointNotFound: ``known_point_id`` is not in the session.
        ChainIntegrityError: ``verify_chain`` is set and the stored chain is
            inconsistent.
    """
    points = list(_points_of(session_or_points))

    anchor_index = next((i for i, p in enumerate(points) if p.id == known_point_id), None)
    if anchor_index is None:
        raise PointNotFound(f"Point {known_point_id} does not exist in this session",
                            details={"point_id": known_point_id})

    if verify_chain:
        violations = find_chain_violations(points, tolerance)
        if violations:
            raise ChainIntegrityError(
                f"Stored chain has {len(violations)} inconsistent link(s)",
                details={"violations": [{"point_id": v.point_id, "reason": v.reason} for v in violations]},
            )

    anchor = points[anchor_index]
    positions: Dict[int, Position] = {anchor.id: known_world_position}

    for i in range(anchor_index + 1, len(points)):
        point = points[i]
        positions[point.id] = positions[points[i - 1].id] + point.offset_from_previous

    for i in range(anchor_index - 1, -1, -1):
        following = points[i + 1]
        positions[points[i].id] = positions[following.id] - following.offset_from_previous

    return ReconstructionResult(
        positions=positions,
        origin=known_world_position - anchor.offset_from_origin,
        anchor_point_id=anchor.id,
    )


def restore_from_origin(points: Sequence[PlantedPoint], origin: Position) -> Dict[int, Position]:
    """World positions of stored points once the origin is seen again."""
    return {point.id: origin + point.offset_from_origin for point in points}
