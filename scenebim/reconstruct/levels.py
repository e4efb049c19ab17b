from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, List, Optional

from scenebim.exceptions import UnresolvedLevelError
from scenebim.geometry.contract import LEVEL_TOLERANCE


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevelEntry:
    """Registered level: elevation in meters and the materializer's handle."""
    elevation: float
    handle: Any
    name: Optional[str] = None


@dataclass(frozen=True)
class LevelMatch:
    """Level chosen for an element and the element's offset above it."""
    entry: LevelEntry
    offset: float

    @property
    def handle(self) -> Any:
        return self.entry.handle


class LevelRegistry:
    """Insertion-ordered levels keyed by elevation, unique within tolerance.

    Append-only for the duration of a run.
    """

    def __init__(self, tolerance: float = LEVEL_TOLERANCE) -> None:
        self.tolerance = tolerance
        self._entries: List[LevelEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LevelEntry]:
        return iter(self._entries)

    def find(self, elevation: float) -> Optional[LevelEntry]:
        for entry in self._entries:
            if abs(entry.elevation - elevation) <= self.tolerance:
                return entry
        return None

    def contains(self, elevation: float) -> bool:
        return self.find(elevation) is not None

    def register(self, elevation: float, handle: Any, name: Optional[str] = None) -> bool:
        """Add a level; an elevation already present within tolerance is rejected."""
        if self.contains(elevation):
            logger.debug("Level at %.3f m already registered", elevation)
            return False
        self._entries.append(LevelEntry(float(elevation), handle, name))
        return True

    def merge(self, entries: Iterable[LevelEntry]) -> int:
        """Register pre-existing levels, skipping duplicates. Returns the number added."""
        added = 0
        for entry in entries:
            if self.register(entry.elevation, entry.handle, entry.name):
                added += 1
        return added

    def at(self, index: int) -> LevelEntry:
        """Level by registration order."""
        return self._entries[index]


LevelFallback = Callable[[], Optional[LevelEntry]]


def resolve_level(
    registry: LevelRegistry,
    elevation: float,
    fallback: LevelFallback | None = None,
) -> LevelMatch:
    """Nearest registered level to ``elevation`` and the offset above it.

    Ties go to the level registered first. With an empty registry the
    ``fallback`` lookup is tried and a level it finds is registered.

    Raises:
        UnresolvedLevelError: If no level can be found.
    """
    best: Optional[LevelEntry] = None
    best_gap = float("inf")
    for entry in registry:
        gap = abs(elevation - entry.elevation)
        if gap < best_gap:
            best_gap = gap
            best = entry

    if best is None and fallback is not None:
        found = fallback()
        if found is not None:
            registry.register(found.elevation, found.handle, found.name)
            best = registry.find(found.elevation)

    if best is None:
        raise UnresolvedLevelError(
            f"No level available for elevation {elevation:.3f}",
            {"elevation": f"{elevation:.3f}"},
        )
    return LevelMatch(entry=best, offset=elevation - best.elevation)
