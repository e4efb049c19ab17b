"""Placement of scene nodes: local transforms, pivots and ancestor composition.

A node never stores a reference to its parent. Placement is carried down the
traversal as a :class:`PlacementContext` holding the parent's id and the
accumulated transform of every ancestor, so world coordinates are a pure
function of the node and its context.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Sequence, Tuple

import numpy as np

from scenebim.exceptions import BrokenHierarchyError
from scenebim.geometry.primitives import Point3

if TYPE_CHECKING:
    from scenebim.scene.nodes import SceneNode


def _rot_x(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


def _rot_y(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def _rot_z(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def rotation_matrix(rotation_deg: Sequence[float]) -> np.ndarray:
    """R = Rx @ Ry @ Rz for a rotation given in degrees about X, Y, Z."""
    rx, ry, rz = (math.radians(float(a)) for a in rotation_deg)
    return _rot_x(rx) @ _rot_y(ry) @ _rot_z(rz)


@dataclass(frozen=True, eq=False)
class Transform:
    """Rigid transform ``p' = translation + rotation @ p``."""
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @classmethod
    def identity(cls) -> "Transform":
        return cls()

    @classmethod
    def from_placement(cls, position: Point3, rotation_deg: Sequence[float]) -> "Transform":
        return cls(rotation=rotation_matrix(rotation_deg), translation=np.array(position, dtype=float))

    @classmethod
    def about_vertical(cls, angle_rad: float, center: Point3 = Point3(0.0, 0.0, 0.0)) -> "Transform":
        """Rotation by ``angle_rad`` about the vertical axis through ``center``."""
        rot = _rot_z(angle_rad)
        c = np.array(center, dtype=float)
        return cls(rotation=rot, translation=c - rot @ c)

    def apply(self, point: Point3) -> Point3:
        out = self.translation + self.rotation @ np.array(point, dtype=float)
        return Point3(float(out[0]), float(out[1]), float(out[2]))

    def rotate(self, vector: Point3) -> Point3:
        """Apply only the rotational part."""
        out = self.rotation @ np.array(vector, dtype=float)
        return Point3(float(out[0]), float(out[1]), float(out[2]))

    def compose(self, inner: "Transform") -> "Transform":
        """Return ``self ∘ inner``: apply ``inner`` first, then ``self``."""
        return Transform(
            rotation=self.rotation @ inner.rotation,
            translation=self.translation + self.rotation @ inner.translation,
        )


def local_transform(node: "SceneNode") -> Transform:
    return Transform.from_placement(node.position, node.rotation)


@dataclass(frozen=True)
class PlacementContext:
    """Where a node sits: its parent's id and the ancestors' accumulated transform.

    ``ancestors`` maps a point expressed in the node's parent frame to world
    coordinates. The root's context has no parent and the identity transform.
    """
    node_id: str
    parent_id: Optional[str] = None
    ancestors: Transform = field(default_factory=Transform.identity)
    lineage: Tuple[str, ...] = ()
    lineage_ids: Tuple[str, ...] = ()

    @classmethod
    def root(cls, node: "SceneNode") -> "PlacementContext":
        return cls(node_id=node.id)

    def child(self, parent: "SceneNode", child: "SceneNode") -> "PlacementContext":
        if parent.id != self.node_id:
            raise BrokenHierarchyError(
                f"Context of {self.node_id} cannot place a child of {parent.id}",
                {"node": child.id, "parent": parent.id},
            )
        # ids are paths, so a child's id names its parent
        if child.id.rpartition("/")[0] != parent.id:
            raise BrokenHierarchyError(
                f"Node {child.id} is not a child of {parent.id}",
                {"node": child.id, "parent": parent.id},
            )
        return PlacementContext(
            node_id=child.id,
            parent_id=parent.id,
            ancestors=self.ancestors.compose(local_transform(parent)),
            lineage=self.lineage + (parent.type,),
            lineage_ids=self.lineage_ids + (parent.id,),
        )

    def kind_above(self, levels: int) -> Optional[str]:
        """Type tag ``levels`` generations up (1 = parent)."""
        if levels < 1 or levels > len(self.lineage):
            return None
        return self.lineage[-levels]

    def id_above(self, levels: int) -> Optional[str]:
        if levels < 1 or levels > len(self.lineage_ids):
            return None
        return self.lineage_ids[-levels]


def _check_context(node: "SceneNode", context: PlacementContext) -> None:
    if context.node_id != node.id:
        raise BrokenHierarchyError(
            f"Placement context belongs to {context.node_id}, not {node.id}",
            {"node": node.id},
        )


def world_point(node: "SceneNode", local_point: Point3, context: PlacementContext) -> Point3:
    """World coordinates of a point given in the node's own frame."""
    _check_context(node, context)
    return context.ancestors.apply(local_transform(node).apply(local_point))


def evaluate_pivot(node: "SceneNode", t: Point3) -> Point3:
    """Point on the node's box at normalized coordinates ``t``, in the parent frame.

    The anchor is the local origin: ``position - R(size * anchor) + R(size * t)``.
    """
    own = local_transform(node)
    return node.position - own.rotate(node.size.multiply(node.anchor)) + own.rotate(node.size.multiply(t))


def to_world(context: PlacementContext, point: Point3) -> Point3:
    """Run a parent-frame point through the ancestor chain."""
    return context.ancestors.apply(point)


def world_pivot(node: "SceneNode", t: Point3, context: PlacementContext) -> Point3:
    _check_context(node, context)
    return to_world(context, evaluate_pivot(node, t))


def absolute_position(node: "SceneNode", context: PlacementContext) -> Point3:
    """World position of the node's placement point, anchor included."""
    _check_context(node, context)
    own = local_transform(node)
    offset = node.size.multiply(node.anchor)
    local = node.position + own.rotate(Point3(-offset.x, -offset.y, -offset.z)) + offset
    return to_world(context, local)

