"""Value types shared by the geometry kernel: points, segments and loops."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from shapely.geometry import LineString, Point


class Point3(NamedTuple):
    """3D point in meters."""
    x: float
    y: float
    z: float = 0.0

    def __add__(self, other: "Point3") -> "Point3":  # type: ignore[override]
        return Point3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Point3") -> "Point3":
        return Point3(self.x - other.x, self.y - other.y, self.z - other.z)

    def scaled(self, factor: float) -> "Point3":
        return Point3(self.x * factor, self.y * factor, self.z * factor)

    def multiply(self, other: "Point3") -> "Point3":
        """Component-wise product."""
        return Point3(self.x * other.x, self.y * other.y, self.z * other.z)

    def norm(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def distance_to(self, other: "Point3") -> float:
        return (self - other).norm()

    def is_almost_equal(self, other: "Point3", tolerance: float) -> bool:
        return self.distance_to(other) <= tolerance


ORIGIN = Point3(0.0, 0.0, 0.0)


@dataclass(frozen=True)
class Segment:
    """Oriented straight line between two points."""
    start: Point3
    end: Point3

    @property
    def length(self) -> float:
        return self.start.distance_to(self.end)

    @property
    def vector(self) -> Point3:
        return self.end - self.start

    @property
    def direction(self) -> Point3:
        length = self.length
        if length <= 0.0:
            return ORIGIN
        return self.vector.scaled(1.0 / length)

    @property
    def midpoint(self) -> Point3:
        return Point3(
            (self.start.x + self.end.x) / 2.0,
            (self.start.y + self.end.y) / 2.0,
            (self.start.z + self.end.z) / 2.0,
        )

    def reversed(self) -> "Segment":
        return Segment(self.end, self.start)

    def extended(self, length: float) -> "Segment":
        """Return the segment grown by ``length`` at both ends."""
        if length == 0.0 or self.length <= 0.0:
            return self
        offset = self.direction.scaled(length)
        return Segment(self.start - offset, self.end + offset)

    def with_end(self, end: Point3) -> "Segment":
        return Segment(self.start, end)

    def as_line(self) -> LineString:
        """Planar shapely representation used for distance and intersection tests."""
        return LineString([(self.start.x, self.start.y), (self.end.x, self.end.y)])

    def parameter_of(self, point: Point3) -> float:
        """Planar projection parameter of ``point`` (0 at start, 1 at end)."""
        vx, vy = self.end.x - self.start.x, self.end.y - self.start.y
        len_sq = vx * vx + vy * vy
        if len_sq <= 1e-18:
            return 0.0
        return ((point.x - self.start.x) * vx + (point.y - self.start.y) * vy) / len_sq

    def distance_to_point(self, point: Point3) -> float:
        """Planar distance from ``point`` to the bounded segment."""
        if self.length <= 0.0:
            return math.hypot(point.x - self.start.x, point.y - self.start.y)
        return float(self.as_line().distance(Point(point.x, point.y)))

    def intersection_point(self, other: "Segment") -> Optional[Point3]:
        """Single crossing point with ``other`` in plan, or None.

        Collinear overlaps are not crossings and return None.
        """
        if self.length <= 0.0 or other.length <= 0.0:
            return None
        hit = self.as_line().intersection(other.as_line())
        if hit.is_empty or hit.geom_type != "Point":
            return None
        t = self.parameter_of(Point3(hit.x, hit.y, 0.0))
        z = self.start.z + (self.end.z - self.start.z) * max(0.0, min(1.0, t))
        return Point3(float(hit.x), float(hit.y), z)

    def is_parallel(self, other: "Segment", tolerance: float) -> bool:
        """Same or opposite planar direction within ``tolerance`` (sine of angle)."""
        a, b = self.direction, other.direction
        if a == ORIGIN or b == ORIGIN:
            return False
        cross = a.x * b.y - a.y * b.x
        return abs(cross) <= tolerance

    def is_overlapping(self, other: "Segment", *, parallel_tolerance: float, offset_tolerance: float) -> bool:
        """Parallel, on the same line within ``offset_tolerance`` and sharing a parametric range."""
        if not self.is_parallel(other, parallel_tolerance):
            return False
        d = self.direction
        # lateral offset of the other segment's endpoints from this line
        for p in (other.start, other.end):
            rel = p - self.start
            if abs(rel.x * d.y - rel.y * d.x) > offset_tolerance:
                return False
        t0 = self.parameter_of(other.start)
        t1 = self.parameter_of(other.end)
        lo, hi = min(t0, t1), max(t0, t1)
        slack = offset_tolerance / self.length
        return hi >= -slack and lo <= 1.0 + slack

    def endpoints(self) -> Tuple[Point3, Point3]:
        return self.start, self.end


@dataclass(frozen=True)
class Loop:
    """Ordered cyclic sequence of segments."""
    segments: Tuple[Segment, ...]

    def __iter__(self) -> Iterator[Segment]:
        return iter(self.segments)

    def __len__(self) -> int:
        return len(self.segments)

    def __getitem__(self, index: int) -> Segment:
        return self.segments[index]

    @property
    def perimeter(self) -> float:
        return sum(seg.length for seg in self.segments)

    @property
    def points(self) -> List[Point3]:
        return [seg.start for seg in self.segments]

    def is_closed(self, tolerance: float) -> bool:
        if not self.segments:
            return False
        count = len(self.segments)
        for i, seg in enumerate(self.segments):
            nxt = self.segments[(i + 1) % count]
            if not seg.end.is_almost_equal(nxt.start, tolerance):
                return False
        return True

    @classmethod
    def from_points(cls, points: Iterable[Point3]) -> "Loop":
        pts = list(points)
        if len(pts) < 2:
            return cls(tuple())
        segs = [Segment(pts[i], pts[(i + 1) % len(pts)]) for i in range(len(pts))]
        return cls(tuple(segs))


def centroid_of_midpoints(segments: Sequence[Segment]) -> Point3:
    """Average of segment midpoints."""
    if not segments:
        return ORIGIN
    total_x = total_y = total_z = 0.0
    for seg in segments:
        mid = seg.midpoint
        total_x += mid.x
        total_y += mid.y
        total_z += mid.z
    count = float(len(segments))
    return Point3(total_x / count, total_y / count, total_z / count)
