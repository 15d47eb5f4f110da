"""Boundaries between the engine and the tracking runtime that feeds it."""

from __future__ import annotations

import threading
from typing import Optional, Protocol

from .geometry import Position


class PoseSource(Protocol):
    """Anything able to report the device's current world position."""

    def current_world_pose(self) -> Optional[Position]:
        ...


class StaticPoseSource:
    """Pose source holding the last pose pushed into it.

    Used by tests and by runtimes that push frames rather than being polled.
    """

    def __init__(self, pose: Optional[Position] = None):
        self._lock = threading.Lock()
        self._pose = pose

    def set_pose(self, pose: Optional[Position]) -> None:
        with self._lock:
            self._pose = pose

    def clear(self) -> None:
        self.set_pose(None)

    def current_world_pose(self) -> Optional[Position]:
        with self._lock:
            return self._pose
