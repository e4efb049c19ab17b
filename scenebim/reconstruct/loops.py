from __future__ import annotations

import logging
import math
from typing import List, NamedTuple, Optional, Sequence, Tuple

from scenebim.geometry.contract import LOOP_GAP_TOLERANCE, ORDER_TOLERANCE
from scenebim.geometry.primitives import Loop, Segment


logger = logging.getLogger(__name__)

_ZERO_LENGTH = 1e-12


class OrderedSegment(NamedTuple):
    """Segment placed by :func:`order_segments`.

    ``source`` is the index of the input segment it came from, or None for a
    gap segment synthesized to bridge two unconnected ends.
    """
    segment: Segment
    source: Optional[int]
    synthetic: bool = False


def _nearest_end(tail, candidates: Sequence[Segment]) -> Tuple[int, bool]:
    """Index of the candidate with an endpoint closest to ``tail`` and whether it must flip."""
    best_index = 0
    best_distance = math.inf
    flip = False
    for i, seg in enumerate(candidates):
        d_start = tail.distance_to(seg.start)
        d_end = tail.distance_to(seg.end)
        if d_start < best_distance:
            best_distance = d_start
            best_index = i
            flip = False
        if d_end < best_distance:
            best_distance = d_end
            best_index = i
            flip = True
    return best_index, flip


def close_loop(segments: Sequence[Segment], tolerance: float = LOOP_GAP_TOLERANCE) -> Loop:
    """Chain boundary segments into an ordered, closed loop.

    The first segment seeds the chain; each following one is the remaining
    segment with an endpoint nearest to the current tail, reversed when its
    end is the nearer point. Gaps wider than ``tolerance`` between
    consecutive segments (last to first included) get a closing segment;
    narrower non-zero gaps are snapped by moving the current segment's end.

    A single segment is returned as is, closed or not.
    """
    remaining = list(segments)
    if len(remaining) <= 1:
        return Loop(tuple(remaining))

    ordered: List[Segment] = [remaining.pop(0)]
    while remaining:
        index, flip = _nearest_end(ordered[-1].end, remaining)
        chosen = remaining.pop(index)
        ordered.append(chosen.reversed() if flip else chosen)

    closed: List[Segment] = []
    count = len(ordered)
    for i, current in enumerate(ordered):
        following = ordered[(i + 1) % count]
        gap = current.end.distance_to(following.start)
        if gap > tolerance:
            closed.append(current)
            closed.append(Segment(current.end, following.start))
            logger.debug("Closed loop gap of %.4f m after segment %d", gap, i)
        elif gap > 0.0:
            snapped = current.with_end(following.start)
            if snapped.length <= _ZERO_LENGTH:
                logger.debug("Dropped degenerate loop segment %d", i)
                continue
            closed.append(snapped)
        else:
            closed.append(current)
    return Loop(tuple(closed))


def order_segments(
    segments: Sequence[Segment],
    tolerance: float = ORDER_TOLERANCE,
    close_loop: bool = False,
) -> List[OrderedSegment]:
    """Order segments by connectivity, bridging breaks with gap segments.

    From the current tail the first remaining segment with an endpoint within
    ``tolerance`` is taken (reversed if it connects by its end). When none
    connects, the nearest one is taken instead and a synthetic gap segment is
    inserted before it. Closure is only added when ``close_loop`` is set.
    """
    if len(segments) < 2:
        return [OrderedSegment(seg, i) for i, seg in enumerate(segments)]

    remaining: List[Tuple[int, Segment]] = list(enumerate(segments))
    first_index, first = remaining.pop(0)
    ordered: List[OrderedSegment] = [OrderedSegment(first, first_index)]

    while remaining:
        tail = ordered[-1].segment.end
        connected: Optional[Tuple[int, bool]] = None
        for pos, (_source, seg) in enumerate(remaining):
            if tail.distance_to(seg.start) < tolerance:
                connected = (pos, False)
                break
            if tail.distance_to(seg.end) < tolerance:
                connected = (pos, True)
                break

        if connected is not None:
            pos, flip = connected
            source, seg = remaining.pop(pos)
            ordered.append(OrderedSegment(seg.reversed() if flip else seg, source))
            continue

        pos, flip = _nearest_end(tail, [seg for _source, seg in remaining])
        source, seg = remaining.pop(pos)
        placed = seg.reversed() if flip else seg
        gap = Segment(tail, placed.start)
        logger.debug("Inserted gap segment of %.4f m before input %d", gap.length, source)
        ordered.append(OrderedSegment(gap, None, True))
        ordered.append(OrderedSegment(placed, source))

    if close_loop:
        head = ordered[0].segment.start
        tail = ordered[-1].segment.end
        if not tail.is_almost_equal(head, tolerance):
            ordered.append(OrderedSegment(Segment(tail, head), None, True))
    return ordered
