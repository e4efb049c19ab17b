"""Scene graph nodes in kernel axes (Z up) and scene preparation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Sequence, Tuple

from scenebim.geometry.contract import QUARTER_TURN_DEG
from scenebim.geometry.primitives import Point3
from scenebim.scene.schema import NodeData, NodePayload


logger = logging.getLogger(__name__)


class ElementKind(str, Enum):
    WORLD = "World"
    SITE = "Site"
    ZONE = "Zone"
    PLOT = "Plot"
    BUILDING = "Building"
    CORE = "Core"
    CORRIDOR = "Corridor"
    ENTRANCE = "Entrance"
    TECHNICAL_SPACE = "TechnicalSpace"
    APARTMENT = "Apartment"
    MODULE = "Module"
    BALCONY = "Balcony"
    LEVELS = "Levels"
    WALL = "Wall"
    PARAPET = "Parapet"
    FACADE = "Facade"
    FLOOR = "Floor"
    CEILING = "Ceiling"
    DOOR = "Door"
    WINDOW = "Window"
    BEAM = "Beam"
    COLUMN = "Column"
    ROOF = "Roof"
    ROOM = "Room"
    OPENING = "Opening"
    UNKNOWN = "Unknown"

    @classmethod
    def from_tag(cls, tag: str) -> "ElementKind":
        try:
            return cls(tag)
        except ValueError:
            return cls.UNKNOWN


# Spaces whose walls are authored per adjacent module and merged afterwards.
COMMUNAL_SPACE_KINDS = frozenset({ElementKind.CORE, ElementKind.ENTRANCE})


def _position(values: Sequence[float]) -> Point3:
    return Point3(float(values[0]), -float(values[2]), float(values[1]))


def _size(values: Sequence[float]) -> Point3:
    return Point3(float(values[0]), float(values[2]), float(values[1]))


def _anchor(values: Sequence[float]) -> Point3:
    return Point3(float(values[0]), 1.0 - float(values[2]), float(values[1]))


def _rotation(values: Sequence[float]) -> Tuple[float, float, float]:
    return float(values[0]), float(values[2]), float(values[1])


def convert_vertices(vertices: Optional[Sequence[Sequence[float]]]) -> Tuple[Point3, ...]:
    """Authored polygon vertices to kernel axes; vertices without 3 values are skipped."""
    if not vertices:
        return ()
    return tuple(_position(v) for v in vertices if len(v) >= 3)


@dataclass(frozen=True)
class SceneNode:
    """Placed element of the scene graph.

    ``id`` is the node's path from the root ("0", "0/2", "0/2/1") and is unique
    even when templates repeat authored uuids.
    """
    id: str
    type: str
    kind: ElementKind
    name: str = ""
    uuid: Optional[str] = None
    position: Point3 = Point3(0.0, 0.0, 0.0)
    rotation: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    size: Point3 = Point3(0.0, 0.0, 0.0)
    anchor: Point3 = Point3(0.0, 0.0, 0.0)
    type_code: Optional[str] = None
    data: Optional[NodeData] = None
    polygon: Tuple[Point3, ...] = ()
    children: Tuple["SceneNode", ...] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, payload: NodePayload, node_id: str = "0") -> "SceneNode":
        data = payload.data
        return cls(
            id=node_id,
            type=payload.type,
            kind=ElementKind.from_tag(payload.type),
            name=payload.name,
            uuid=payload.uuid,
            position=_position(payload.pos),
            rotation=_rotation(payload.rot),
            size=_size(payload.size),
            anchor=_anchor(payload.anchor),
            type_code=payload.modulousId,
            data=data,
            polygon=convert_vertices(data.polygon if data else None),
            children=tuple(
                cls.from_payload(child, f"{node_id}/{i}") for i, child in enumerate(payload.children)
            ),
        )

    @property
    def space_key(self) -> str:
        return self.uuid or self.id

    @property
    def code_category(self) -> str:
        return (self.type_code or "").split("|")[0]

    @property
    def code_type(self) -> str:
        parts = (self.type_code or "").split("|")
        return parts[1] if len(parts) > 1 else ""

    def walk(self) -> Iterator["SceneNode"]:
        """Depth-first, parent before children."""
        yield self
        for child in self.children:
            yield from child.walk()


def apply_templates(
    payload: NodePayload,
    templates: Optional[Sequence[NodePayload]] = None,
    missing: Optional[List[str]] = None,
) -> NodePayload:
    """Give every apartment the children of the template sharing its name.

    Templates come from the root's ``templates`` list. Names of apartments
    without a template are appended to ``missing``; they keep their children.
    """
    if templates is None:
        templates = payload.templates
    if payload.type == ElementKind.APARTMENT.value:
        template = next((t for t in templates if t.name == payload.name), None)
        if template is None:
            if missing is not None and payload.name not in missing:
                missing.append(payload.name)
            return payload
        return payload.model_copy(update={"children": list(template.children)})
    if not payload.children:
        return payload
    return payload.model_copy(
        update={"children": [apply_templates(child, templates, missing) for child in payload.children]}
    )


def remove_muscle_units(payload: NodePayload) -> NodePayload:
    """Drop every descendant flagged as a muscle unit."""
    kept = [
        remove_muscle_units(child)
        for child in payload.children
        if child.data is None or not child.data.dtoMuscleUnit
    ]
    return payload.model_copy(update={"children": kept})


def collect_apartment_rotations(root: SceneNode) -> List[float]:
    """Distinct apartment rotations about the vertical, modulo 90 degrees.

    A building without children contributes a rotation of zero.
    """
    rotations: List[float] = []
    for node in root.walk():
        if node.kind is ElementKind.APARTMENT:
            angle = node.rotation[2] % QUARTER_TURN_DEG
        elif node.kind is ElementKind.BUILDING and not node.children:
            angle = 0.0
        else:
            continue
        if angle not in rotations:
            rotations.append(angle)
    logger.debug("Collected %d apartment rotation(s)", len(rotations))
    return rotations
