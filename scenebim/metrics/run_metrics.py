"""
Run Metrics Collection

Counters and timings collected while a scene is materialized.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class RunMetrics:
    """
    Metrics collected during one run.

    Tracks traversal, geometry and timing statistics for the run log.
    """

    # Traversal statistics
    nodes_visited: int = 0
    elements_skipped: int = 0
    subtrees_skipped: int = 0
    unknown_tags: int = 0

    # Level statistics
    levels_pre_existing: int = 0
    levels_created: int = 0
    levels_fallback: int = 0

    # Communal wall statistics
    wall_candidates: int = 0
    communal_spaces: int = 0
    communal_walls_built: int = 0
    gap_segments: int = 0
    degenerate_dropped: int = 0
    door_candidates: int = 0
    doors_placed: int = 0

    # Performance metrics (in seconds)
    time_preparation: float = 0.0
    time_traversal: float = 0.0
    time_communal: float = 0.0
    time_total: float = 0.0

    warnings_by_category: dict[str, int] = field(default_factory=dict)

    def add_warning(self, category: str) -> None:
        self.warnings_by_category[category] = self.warnings_by_category.get(category, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        """Convert metrics to dictionary for serialization."""
        return {
            "traversal": {
                "nodes_visited": self.nodes_visited,
                "elements_skipped": self.elements_skipped,
                "subtrees_skipped": self.subtrees_skipped,
                "unknown_tags": self.unknown_tags,
            },
            "levels": {
                "pre_existing": self.levels_pre_existing,
                "created": self.levels_created,
                "fallback": self.levels_fallback,
            },
            "communal": {
                "spaces": self.communal_spaces,
                "wall_candidates": self.wall_candidates,
                "walls_built": self.communal_walls_built,
                "gap_segments": self.gap_segments,
                "degenerate_dropped": self.degenerate_dropped,
                "door_candidates": self.door_candidates,
                "doors_placed": self.doors_placed,
            },
            "performance": {
                "preparation": self.time_preparation,
                "traversal": self.time_traversal,
                "communal": self.time_communal,
                "total": self.time_total,
            },
            "warnings": dict(self.warnings_by_category),
        }
