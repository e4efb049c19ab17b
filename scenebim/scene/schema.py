"""JSON schema of the input scene graph (Y-up, meters)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, model_validator

from scenebim.exceptions import EmptySceneError


def _match_field_names(model: type, values: Any) -> Any:
    """Map keys to field names ignoring case ("FFL", "Pos", "uuid" ...)."""
    if not isinstance(values, Mapping):
        return values
    by_lower = {name.lower(): name for name in model.model_fields}
    return {by_lower.get(str(key).lower(), key): value for key, value in values.items()}


class LevelPayload(BaseModel):
    """Storey declared by a building or block."""
    id: Optional[str] = None
    uuId: Optional[str] = None
    floorWorldBottom: float = 0.0
    ffl: float = 0.0
    levelConfig: Optional[str] = None
    levelIndex: str = "0"
    isRoof: bool = False
    geaPolygon: Optional[List[List[float]]] = Field(None, description="Gross external area outline")
    giaPolygon: Optional[List[List[float]]] = Field(None, description="Gross internal area outline")

    @model_validator(mode="before")
    @classmethod
    def _case_insensitive(cls, values: Any) -> Any:  # noqa: D401
        values = _match_field_names(cls, values)
        if isinstance(values, dict) and values.get("levelIndex") is not None:
            values["levelIndex"] = str(values["levelIndex"])
        return values


class NodeData(BaseModel):
    """Per-type payload attached to a node."""
    levels: Optional[List[LevelPayload]] = None
    level: float = 0.0
    category: Optional[str] = None
    polygon: Optional[List[List[float]]] = None
    dtoMuscleUnit: bool = False
    latitude: float = 0.0
    longitude: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _case_insensitive(cls, values: Any) -> Any:  # noqa: D401
        return _match_field_names(cls, values)


class NodePayload(BaseModel):
    """One scene graph node as authored."""
    name: str = ""
    pos: List[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0], min_length=3, max_length=3)
    rot: List[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0], min_length=3, max_length=3)
    size: List[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0], min_length=3, max_length=3)
    anchor: List[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0], min_length=3, max_length=3)
    modulousId: Optional[str] = Field(None, description="'Category|Type' code of the element type")
    children: List["NodePayload"] = Field(default_factory=list)
    type: str = ""
    uuid: Optional[str] = None
    data: Optional[NodeData] = None
    templates: List["NodePayload"] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _case_insensitive(cls, values: Any) -> Any:  # noqa: D401
        values = _match_field_names(cls, values)
        if isinstance(values, dict):
            # null collections are authored as often as empty ones
            for key in ("children", "templates"):
                if values.get(key) is None:
                    values.pop(key, None)
        return values


NodePayload.model_rebuild()


def parse_scene(payload: Mapping[str, Any]) -> NodePayload:
    """Validate a decoded scene document.

    Raises:
        EmptySceneError: If the document is empty.
    """
    if not payload:
        raise EmptySceneError("Scene document is empty")
    return NodePayload.model_validate(dict(payload))


def load_scene(path: Path | str) -> NodePayload:
    scene_path = Path(path)
    with scene_path.open("r", encoding="utf-8") as fp:
        payload: Dict[str, Any] = json.load(fp)
    return parse_scene(payload)
