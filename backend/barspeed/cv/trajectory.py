"""Append-only pixel trajectory produced by the tracking loop."""

import logging
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackedPoint:
    """Tracked target position in pixel space."""
    x: float
    y: float
    time: float


class Trajectory:
    """
    Ordered sequence of tracked points.

    Times are strictly increasing. A point whose time is not after the last
    one is rejected, so re-delivered frames never create duplicates.
    """

    def __init__(self):
        self._points: List[TrackedPoint] = []

    def append(self, x: float, y: float, time: float) -> bool:
        """Append a point. Returns False if it was dropped as out of order."""
        if self._points and time <= self._points[-1].time:
            logger.debug(
                f"Dropping point at t={time:.4f}s (last t={self._points[-1].time:.4f}s)"
            )
            return False
        self._points.append(TrackedPoint(x=float(x), y=float(y), time=float(time)))
        return True

    @property
    def points(self) -> Tuple[TrackedPoint, ...]:
        return tuple(self._points)

    def as_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return (xs, ys, times)."""
        xs = np.array([p.x for p in self._points], dtype=float)
        ys = np.array([p.y for p in self._points], dtype=float)
        ts = np.array([p.time for p in self._points], dtype=float)
        return xs, ys, ts

    def to_list(self) -> List[dict]:
        return [{"x": p.x, "y": p.y, "time": p.time} for p in self._points]

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[TrackedPoint]:
        return iter(self._points)

    def __getitem__(self, index: int) -> TrackedPoint:
        return self._points[index]
