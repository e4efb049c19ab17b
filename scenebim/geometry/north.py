"""Project north alignment.

One rotation about the vertical axis through the world origin, fixed before
any element is placed and read-only afterwards.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

from scenebim.exceptions import ConfigurationError
from scenebim.geometry.contract import NORTH_SNAP_LIMIT_DEG, QUARTER_TURN_DEG
from scenebim.geometry.primitives import Point3, Segment
from scenebim.geometry.transforms import Transform


logger = logging.getLogger(__name__)


def angle_to_north(apartment_rotations_deg: Iterable[float]) -> float:
    """Angle to north in radians from apartment rotations about the vertical.

    Rotations are reduced modulo 90 degrees and the smallest one decides:
    up to 45 degrees it is used as is, above that the angle wraps to
    ``360 - (90 - minimum)``. No rotations means no correction.
    """
    reduced = [float(r) % QUARTER_TURN_DEG for r in apartment_rotations_deg]
    if not reduced:
        return 0.0
    minimum = min(reduced)
    if minimum <= NORTH_SNAP_LIMIT_DEG:
        return math.radians(minimum)
    return math.radians(360.0 - (QUARTER_TURN_DEG - minimum))


class NorthAlignment:
    """Write-once holder of the run's angle to north."""

    def __init__(self) -> None:
        self._angle: Optional[float] = None
        self._transform: Optional[Transform] = None

    @classmethod
    def fixed(cls, angle_rad: float) -> "NorthAlignment":
        north = cls()
        north.fix(angle_rad)
        return north

    @property
    def is_fixed(self) -> bool:
        return self._angle is not None

    @property
    def angle(self) -> float:
        if self._angle is None:
            raise ConfigurationError("Angle to north has not been fixed for this run")
        return self._angle

    def fix(self, angle_rad: float) -> None:
        if self._angle is not None:
            raise ConfigurationError(
                "Angle to north is already fixed for this run",
                {"angle": f"{self._angle:.6f}", "requested": f"{angle_rad:.6f}"},
            )
        self._angle = float(angle_rad)
        self._transform = Transform.about_vertical(-self._angle)
        logger.debug("Angle to north fixed at %.4f deg", math.degrees(self._angle))

    def to_project_space(self, world_point: Point3) -> Point3:
        if self._transform is None:
            raise ConfigurationError("Angle to north has not been fixed for this run")
        return self._transform.apply(world_point)

    def segment(self, segment: Segment) -> Segment:
        return Segment(self.to_project_space(segment.start), self.to_project_space(segment.end))
