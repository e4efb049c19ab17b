"""Synthetic scene graphs in kernel axes (Z up) for tests."""

from __future__ import annotations

import dataclasses
from typing import Iterable, Optional, Sequence

from scenebim.geometry.primitives import Point3
from scenebim.scene.nodes import ElementKind, SceneNode
from scenebim.scene.schema import LevelPayload, NodeData

WALL_HEIGHT = 3.0
WALL_THICKNESS = 0.2


def make_node(
    tag: str,
    *children: SceneNode,
    position: Sequence[float] = (0.0, 0.0, 0.0),
    rotation: Sequence[float] = (0.0, 0.0, 0.0),
    size: Sequence[float] = (0.0, 0.0, 0.0),
    anchor: Sequence[float] = (0.0, 0.0, 0.0),
    **kwargs,
) -> SceneNode:
    return SceneNode(
        id="",
        type=tag,
        kind=ElementKind.from_tag(tag),
        position=Point3(*position),
        rotation=tuple(float(r) for r in rotation),
        size=Point3(*size),
        anchor=Point3(*anchor),
        children=tuple(children),
        **kwargs,
    )


def with_ids(node: SceneNode, node_id: str = "0") -> SceneNode:
    """Assign path ids the way the payload conversion does."""
    return dataclasses.replace(
        node,
        id=node_id,
        children=tuple(with_ids(child, f"{node_id}/{i}") for i, child in enumerate(node.children)),
    )


def wall(
    start: Sequence[float],
    angle_deg: float,
    length: float,
    *children: SceneNode,
    tag: str = "Wall",
    type_code: Optional[str] = "WAL|STD",
    uuid: Optional[str] = None,
) -> SceneNode:
    """Wall whose centerline starts at ``start`` and runs ``length`` along ``angle_deg``."""
    return make_node(
        tag,
        *children,
        position=start,
        rotation=(0.0, 0.0, angle_deg),
        size=(length, WALL_THICKNESS, WALL_HEIGHT),
        anchor=(0.0, 0.5, 0.0),
        type_code=type_code,
        uuid=uuid,
    )


def rectangle_walls(width: float, depth: float) -> list:
    return [
        wall((0.0, 0.0, 0.0), 0.0, width, uuid="w-south"),
        wall((width, 0.0, 0.0), 90.0, depth, uuid="w-east"),
        wall((width, depth, 0.0), 180.0, width, uuid="w-north"),
        wall((0.0, depth, 0.0), 270.0, depth, uuid="w-west"),
    ]


def levels_data(*elevations: float) -> NodeData:
    return NodeData(
        levels=[
            LevelPayload(floorWorldBottom=elevation, levelIndex=str(i))
            for i, elevation in enumerate(elevations)
        ]
    )


def core(
    uuid: str,
    elevation: float,
    level_index: int,
    children: Iterable[SceneNode],
    width: float,
    depth: float,
) -> SceneNode:
    return make_node(
        "Core",
        *children,
        position=(0.0, 0.0, elevation),
        size=(width, depth, WALL_HEIGHT),
        uuid=uuid,
        data=NodeData(level=level_index),
    )


def two_level_building(width: float = 10.0, depth: float = 6.0, duplicate_south: bool = True) -> SceneNode:
    """Building with one rectangular core per level.

    The south wall of every core is authored twice, as two adjacent modules would.
    """
    cores = []
    for index, elevation in enumerate((0.0, 3.0)):
        walls = rectangle_walls(width, depth)
        if duplicate_south:
            walls.append(wall((0.0, 0.0, 0.0), 0.0, width, uuid=f"w-south-dup-{index}"))
        floor = make_node(
            "Floor",
            size=(width, depth, 0.2),
            type_code="FLR|STD",
            uuid=f"floor-{index}",
        )
        cores.append(core(f"core-{index}", elevation, index, walls + [floor], width, depth))
    building = make_node("Building", *cores, name="Block A", data=levels_data(0.0, 3.0))
    return with_ids(make_node("World", building, name="Project"))
