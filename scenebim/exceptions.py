"""Custom exception hierarchy for scenebim."""

from __future__ import annotations


class SceneBimError(Exception):
    """Base exception for all scenebim-specific errors."""
    
    def __init__(self, message: str, details: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(SceneBimError):
    """Raised when configuration is invalid or missing."""
    pass


class SceneError(SceneBimError):
    """Base class for scene graph errors."""
    pass


class EmptySceneError(SceneError):
    """Raised when the input scene has nothing to materialize."""
    pass


class BrokenHierarchyError(SceneError):
    """Raised when a node has no resolvable parent chain."""
    pass


class GeometryError(SceneBimError):
    """Raised when geometry operations fail."""
    pass


class DegenerateGeometryError(GeometryError):
    """Raised when a segment or loop collapses below tolerance."""
    pass


class LevelError(SceneBimError):
    """Base class for level resolution errors."""
    pass


class UnresolvedLevelError(LevelError):
    """Raised when no level can host an element."""
    pass


class MaterializationError(SceneBimError):
    """Raised by a materializer when a CAD entity cannot be created."""
    pass


class UnknownTypeError(MaterializationError):
    """Raised when the target document has no element type for a type reference."""
    pass
