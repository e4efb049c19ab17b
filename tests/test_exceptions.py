"""Tests for custom exception hierarchy."""

import pytest

from scenebim.exceptions import (
    BrokenHierarchyError,
    ConfigurationError,
    DegenerateGeometryError,
    EmptySceneError,
    GeometryError,
    LevelError,
    MaterializationError,
    SceneBimError,
    SceneError,
    UnknownTypeError,
    UnresolvedLevelError,
)


def test_scenebim_error_base():
    """Test base SceneBimError."""
    error = SceneBimError("Test error", {"key": "value"})
    assert str(error) == "Test error"
    assert error.message == "Test error"
    assert error.details == {"key": "value"}


def test_details_default_to_empty():
    assert ConfigurationError("Config missing").details == {}


@pytest.mark.parametrize(
    "error_cls, parent",
    [
        (ConfigurationError, SceneBimError),
        (SceneError, SceneBimError),
        (EmptySceneError, SceneError),
        (BrokenHierarchyError, SceneError),
        (GeometryError, SceneBimError),
        (DegenerateGeometryError, GeometryError),
        (LevelError, SceneBimError),
        (UnresolvedLevelError, LevelError),
        (MaterializationError, SceneBimError),
        (UnknownTypeError, MaterializationError),
    ],
)
def test_hierarchy(error_cls, parent):
    error = error_cls("failed", {"element": "w-1"})
    assert isinstance(error, parent)
    assert error.details == {"element": "w-1"}


def test_catching_base_class():
    """Test that all custom exceptions can be caught by the base class."""
    with pytest.raises(SceneBimError):
        raise UnresolvedLevelError("No level for element")

    with pytest.raises(MaterializationError):
        raise UnknownTypeError("No such type", {"type": "WAL|X"})
