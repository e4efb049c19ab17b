"""Outline builders: node boxes and polygons to project-space curves.

Every builder runs pivot evaluation, then the ancestor walk, then north
alignment, in that order.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

from scenebim.geometry.contract import MIN_CURVE_LENGTH, POLYGON_VERTEX_TOLERANCE
from scenebim.geometry.north import NorthAlignment
from scenebim.geometry.primitives import Loop, Point3, Segment
from scenebim.geometry.transforms import PlacementContext, world_pivot, world_point
from scenebim.reconstruct.loops import close_loop

if TYPE_CHECKING:
    from scenebim.scene.nodes import SceneNode


logger = logging.getLogger(__name__)

CENTERLINE_START = Point3(0.0, 0.5, 0.0)
CENTERLINE_END = Point3(1.0, 0.5, 0.0)
RECTANGLE_CORNERS = (
    Point3(0.0, 0.0, 0.0),
    Point3(1.0, 0.0, 0.0),
    Point3(1.0, 1.0, 0.0),
    Point3(0.0, 1.0, 0.0),
)


def project_pivot(node: "SceneNode", t: Point3, context: PlacementContext, north: NorthAlignment) -> Point3:
    return north.to_project_space(world_pivot(node, t, context))


def horizontal_centerline(
    node: "SceneNode",
    context: PlacementContext,
    north: NorthAlignment,
    min_length: float = MIN_CURVE_LENGTH,
) -> Optional[Segment]:
    """Centerline along the node's local X axis at half depth, or None if too short."""
    line = Segment(
        project_pivot(node, CENTERLINE_START, context, north),
        project_pivot(node, CENTERLINE_END, context, north),
    )
    if line.length < min_length:
        logger.debug("Dropped centerline of %s: %.5f m", node.id, line.length)
        return None
    return line


def horizontal_rectangle(node: "SceneNode", context: PlacementContext, north: NorthAlignment) -> Loop:
    """Bottom face of the node's box as a four segment loop."""
    corners = [project_pivot(node, t, context, north) for t in RECTANGLE_CORNERS]
    return Loop.from_points(corners)


def polygon_loop(
    node: "SceneNode",
    context: PlacementContext,
    north: NorthAlignment,
    vertices: Sequence[Point3],
    vertex_tolerance: float = POLYGON_VERTEX_TOLERANCE,
    gap_tolerance: Optional[float] = None,
) -> Loop:
    """Closed loop through polygon vertices given in the node's own frame.

    A closing vertex equal to the first is dropped. Edges shorter than
    ``vertex_tolerance`` are skipped and the result goes through
    :func:`close_loop` to repair what the skipping opened.
    """
    points = list(vertices)
    if len(points) > 1 and points[0] == points[-1]:
        points.pop()
    if len(points) < 2:
        return Loop(tuple())

    placed = [north.to_project_space(world_point(node, p, context)) for p in points]
    edges: List[Segment] = []
    for i, start in enumerate(placed):
        edge = Segment(start, placed[(i + 1) % len(placed)])
        if edge.length < vertex_tolerance:
            logger.debug("Skipped polygon edge %d of %s: %.5f m", i, node.id, edge.length)
            continue
        edges.append(edge)
    if gap_tolerance is None:
        return close_loop(edges)
    return close_loop(edges, gap_tolerance)

