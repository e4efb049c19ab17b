"""Communal wall topology: merge independently authored centerlines per space.

Walls bounding a shared space (core, entrance, technical space) are authored
once per adjacent module, so the same wall arrives several times, slightly
offset and with overlapping ends. The pipeline below turns one space's
centerlines into a minimal set of perimeter walls:

1. extend every centerline at both ends so corners overlap,
2. merge collinear overlapping centerlines,
3. cut every centerline at its crossings and drop interior pieces,
4. chain the pieces by connectivity, bridging breaks with gap segments,
5. coalesce consecutive parallel pieces.

Every resulting wall takes its level, offset, type and height from the first
member of the group it was merged from.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional, Sequence

from scenebim.geometry.contract import (
    COLLINEAR_TOLERANCE,
    INTERIOR_TRIM_DISTANCE,
    MIN_CURVE_LENGTH,
    ORDER_TOLERANCE,
    PARALLEL_TOLERANCE,
    WALL_EXTENSION,
)
from scenebim.geometry.primitives import Point3, Segment, centroid_of_midpoints
from scenebim.reconstruct.loops import order_segments
from scenebim.settings import KernelSettings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WallCandidate:
    """Wall waiting to be built: centerline plus what the materializer needs."""
    space_id: str
    centerline: Segment
    level: Any
    height: float
    base_offset: float
    type_ref: Optional[str]
    source_id: str
    synthetic: bool = False


@dataclass(frozen=True)
class DoorCandidate:
    """Door hosted by whichever communal wall of its space ends up nearest."""
    space_id: str
    position: Point3
    type_ref: Optional[str]
    source_id: str


@dataclass(frozen=True)
class WallPiece:
    """Centerline in flight through the merge stages and the candidate it came from."""
    segment: Segment
    origin: WallCandidate
    synthetic: bool = False


@dataclass
class WallMergeResult:
    space_id: str
    walls: List[WallCandidate] = field(default_factory=list)
    gaps: List[WallCandidate] = field(default_factory=list)
    dropped: int = 0


@dataclass(frozen=True)
class DoorPlacement:
    door: DoorCandidate
    wall_index: int
    distance: float


def merge_colinear(segments: Sequence[Segment]) -> Segment:
    """Single segment joining the two endpoints of ``segments`` furthest apart."""
    if not segments:
        raise ValueError("merge_colinear needs at least one segment")
    points: List[Point3] = list(
        OrderedDict.fromkeys(p for seg in segments for p in seg.endpoints())
    )
    best: Optional[Segment] = None
    best_length = 0.0
    for i in range(len(points) - 1):
        for j in range(i + 1, len(points)):
            d = points[i].distance_to(points[j])
            if d > best_length:
                best_length = d
                best = Segment(points[i], points[j])
    return best if best is not None else segments[0]


def _merge_group(group: Sequence[WallPiece]) -> WallPiece:
    if len(group) == 1:
        return group[0]
    return WallPiece(
        segment=merge_colinear([piece.segment for piece in group]),
        origin=group[0].origin,
        synthetic=all(piece.synthetic for piece in group),
    )


def extend_pieces(pieces: Sequence[WallPiece], length: float = WALL_EXTENSION) -> List[WallPiece]:
    return [replace(piece, segment=piece.segment.extended(length)) for piece in pieces]


def merge_overlapping(
    pieces: Sequence[WallPiece],
    *,
    parallel_tolerance: float = PARALLEL_TOLERANCE,
    offset_tolerance: float = COLLINEAR_TOLERANCE,
) -> List[WallPiece]:
    """Group collinear overlapping pieces and reduce each group to one piece.

    Groups are seeded from the end of the list and grown until no remaining
    piece overlaps any member.
    """
    remaining = list(pieces)
    merged: List[WallPiece] = []
    while remaining:
        group = [remaining.pop()]
        grown = True
        while grown:
            grown = False
            for i in range(len(remaining) - 1, -1, -1):
                candidate = remaining[i].segment
                if any(
                    member.segment.is_overlapping(
                        candidate,
                        parallel_tolerance=parallel_tolerance,
                        offset_tolerance=offset_tolerance,
                    )
                    for member in group
                ):
                    group.append(remaining.pop(i))
                    grown = True
        merged.append(_merge_group(group))
    return merged


def trim_interior(
    pieces: Sequence[WallPiece],
    *,
    interior_distance: float = INTERIOR_TRIM_DISTANCE,
    min_length: float = MIN_CURVE_LENGTH,
) -> List[WallPiece]:
    """Cut pieces at their crossings, keeping spans further than ``interior_distance`` from the centroid.

    Pieces crossing fewer than two others have nothing to keep and are dropped.
    """
    if not pieces:
        return []
    centroid = centroid_of_midpoints([piece.segment for piece in pieces])
    trimmed: List[WallPiece] = []
    for i, piece in enumerate(pieces):
        crossings: List[Point3] = []
        for j, other in enumerate(pieces):
            if i == j:
                continue
            hit = piece.segment.intersection_point(other.segment)
            if hit is not None:
                crossings.append(hit)
        if len(crossings) < 2:
            logger.debug("Dropped wall piece from %s with %d crossing(s)", piece.origin.source_id, len(crossings))
            continue
        crossings.sort(key=piece.segment.parameter_of)
        for a, b in zip(crossings, crossings[1:]):
            span = Segment(a, b)
            if span.length < min_length:
                continue
            if span.distance_to_point(centroid) > interior_distance:
                trimmed.append(replace(piece, segment=span))
    return trimmed


def order_pieces(pieces: Sequence[WallPiece], tolerance: float = ORDER_TOLERANCE) -> List[WallPiece]:
    """Chain pieces by connectivity. Bridging gaps come back marked synthetic."""
    ordered: List[WallPiece] = []
    for item in order_segments([piece.segment for piece in pieces], tolerance, close_loop=False):
        if item.source is not None:
            ordered.append(replace(pieces[item.source], segment=item.segment))
        else:
            previous = ordered[-1].origin if ordered else pieces[0].origin
            ordered.append(WallPiece(item.segment, previous, synthetic=True))
    return ordered


def merge_parallel_runs(
    pieces: Sequence[WallPiece],
    *,
    parallel_tolerance: float = PARALLEL_TOLERANCE,
) -> List[WallPiece]:
    """One pass from the end: coalesce each run of consecutive parallel pieces.

    Gap pieces end a run and stay on their own.
    """
    remaining = list(pieces)
    merged: List[WallPiece] = []
    while remaining:
        group = [remaining.pop()]
        while (
            remaining
            and not group[-1].synthetic
            and not remaining[-1].synthetic
            and group[-1].segment.is_parallel(remaining[-1].segment, parallel_tolerance)
        ):
            group.append(remaining.pop())
        merged.append(_merge_group(group))
    return merged


def merge_communal_walls(
    space_id: str,
    candidates: Sequence[WallCandidate],
    config: KernelSettings | None = None,
) -> WallMergeResult:
    """Run the five merge stages on one space's wall candidates."""
    cfg = config or KernelSettings()
    result = WallMergeResult(space_id=space_id)
    if not candidates:
        return result

    pieces = [WallPiece(c.centerline, c) for c in candidates]
    pieces = extend_pieces(pieces, cfg.wall_extension)
    pieces = merge_overlapping(
        pieces,
        parallel_tolerance=cfg.parallel_tolerance,
        offset_tolerance=cfg.collinear_tolerance,
    )
    pieces = trim_interior(
        pieces,
        interior_distance=cfg.interior_trim_distance,
        min_length=cfg.min_curve_length,
    )
    pieces = order_pieces(pieces, cfg.order_tolerance)
    pieces = merge_parallel_runs(pieces, parallel_tolerance=cfg.parallel_tolerance)

    for piece in pieces:
        if piece.segment.length < cfg.min_curve_length:
            result.dropped += 1
            continue
        wall = replace(piece.origin, centerline=piece.segment, synthetic=piece.synthetic)
        if piece.synthetic:
            logger.warning(
                "Space %s: synthesized gap wall of %.3f m next to %s",
                space_id,
                piece.segment.length,
                piece.origin.source_id,
            )
            result.gaps.append(wall)
            if not cfg.build_gap_walls:
                continue
        result.walls.append(wall)

    logger.debug(
        "Space %s: %d candidate(s) merged into %d wall(s), %d gap(s)",
        space_id,
        len(candidates),
        len(result.walls),
        len(result.gaps),
    )
    return result


def place_door(door: DoorCandidate, walls: Sequence[WallCandidate]) -> Optional[DoorPlacement]:
    """Nearest wall to the door's position; the first one wins a tie."""
    best: Optional[DoorPlacement] = None
    for index, wall in enumerate(walls):
        distance = wall.centerline.distance_to_point(door.position)
        if best is None or distance < best.distance:
            best = DoorPlacement(door=door, wall_index=index, distance=distance)
    return best
