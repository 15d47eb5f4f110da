"""3D position primitive shared by the anchoring engine."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Tuple


@dataclass(frozen=True)
class Position:
    """Immutable world-space (or offset) vector in metres."""
    x: float
    y: float
    z: float

    @classmethod
    def zero(cls) -> "Position":
        return cls(0.0, 0.0, 0.0)

    @classmethod
    def from_sequence(cls, values: Iterable[float]) -> "Position":
        """Build from an [x, y, z] sequence. Raises ValueError on bad shape."""
        items = list(values)
        if len(items) != 3:
            raise ValueError(f"position must have exactly 3 components, got {len(items)}")
        try:
            return cls(float(items[0]), float(items[1]), float(items[2]))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"position components must be numeric: {items}") from exc

    def __add__(self, other: "Position") -> "Position":
        if not isinstance(other, Position):
            return NotImplemented
        return Position(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Position") -> "Position":
        if not isinstance(other, Position):
            return NotImplemented
        return Position(self.x - other.x, self.y - other.y, self.z - other.z)

    def __neg__(self) -> "Position":
        return Position(-self.x, -self.y, -self.z)

    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def distance_to(self, other: "Position") -> float:
        return (self - other).magnitude()

    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y) and math.isfinite(self.z)

    def isclose(self, other: "Position", tolerance: float = 1e-5) -> bool:
        """Component-wise comparison with an absolute tolerance."""
        return (
            abs(self.x - other.x) <= tolerance
            and abs(self.y - other.y) <= tolerance
            and abs(self.z - other.z) <= tolerance
        )

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def __str__(self) -> str:
        return f"({self.x:.3f}, {self.y:.3f}, {self.z:.3f})"
