from __future__ import annotations

"""
Geometry Contract

Single source of truth for geometric thresholds, tolerances, and defaults used
throughout the kernel. All modules should import from here instead of hardcoding.
"""

import math

# Lengths in meters unless noted

# Loops
LOOP_GAP_TOLERANCE = 0.007  # m, gaps above this get a closing segment
POLYGON_VERTEX_TOLERANCE = 0.001  # m, polygon edges shorter than this are skipped
MIN_CURVE_LENGTH = 0.0008  # m, shortest segment the CAD side accepts

# Levels
LEVEL_TOLERANCE = 0.001  # m, elevations closer than this are the same level
SITE_LEVEL_NAME = "00"

# Walls
MIN_WALL_LENGTH = 0.10  # m
WALL_EXTENSION = 0.40  # m, added at both ends before communal merging
INTERIOR_TRIM_DISTANCE = 1.0  # m, trimmed pieces closer to the centroid are interior
ORDER_TOLERANCE = 0.001  # m, endpoint connectivity while ordering
COLLINEAR_TOLERANCE = 0.01  # m, lateral offset still treated as the same line
PARALLEL_TOLERANCE = 1e-3  # sine of the angle between two directions

# Rooms
ROOM_POINT_OFFSET = 0.5  # m, shift of the room seed point off the centre

# Angles
QUARTER_TURN_DEG = 90.0
NORTH_SNAP_LIMIT_DEG = 45.0


def deg(value_rad: float) -> float:
    """Convert radians to degrees."""
    return float(math.degrees(value_rad))
