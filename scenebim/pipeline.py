"""
Run driver: walks a scene graph and hands the resulting geometry to a materializer.

One :class:`RunContext` per run holds all mutable state (level registry,
north alignment, communal wall and door candidates, created counts and
messages). Nodes are visited depth-first, parent before children, and
dispatched once through a table from element kind to handler. Communal walls
are merged per space after the traversal and communal doors are placed on
the walls that were built.
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from loguru import logger

from scenebim.exceptions import (
    BrokenHierarchyError,
    DegenerateGeometryError,
    EmptySceneError,
    MaterializationError,
    UnknownTypeError,
    UnresolvedLevelError,
)
from scenebim.export.materializer import Materializer
from scenebim.geometry.contract import deg
from scenebim.geometry.north import NorthAlignment, angle_to_north
from scenebim.geometry.primitives import ORIGIN, Loop, Point3, Segment
from scenebim.geometry.transforms import PlacementContext, absolute_position, to_world, world_pivot
from scenebim.metrics.run_metrics import RunMetrics
from scenebim.reconstruct.levels import LevelEntry, LevelMatch, LevelRegistry, resolve_level
from scenebim.reconstruct.outlines import horizontal_centerline, horizontal_rectangle, polygon_loop
from scenebim.reconstruct.walls import DoorCandidate, WallCandidate, merge_communal_walls, place_door
from scenebim.scene.nodes import (
    COMMUNAL_SPACE_KINDS,
    ElementKind,
    SceneNode,
    apply_templates,
    collect_apartment_rotations,
    convert_vertices,
    remove_muscle_units,
)
from scenebim.scene.schema import LevelPayload, NodePayload
from scenebim.settings import KernelSettings, Settings


FLOOR_LEVEL_PIVOT = Point3(0.0, 0.0, 1.0)
ROOM_CENTRE_PIVOT = Point3(0.5, 0.5, 0.0)
OPENING_MAX_PIVOT = Point3(1.0, 1.0, 1.0)


@dataclass
class SiteInfo:
    latitude: float = 0.0
    longitude: float = 0.0


@dataclass
class RunContext:
    """Mutable state of one run, discarded when the run ends."""
    materializer: Materializer
    settings: KernelSettings = field(default_factory=KernelSettings)
    levels: Optional[LevelRegistry] = None
    north: NorthAlignment = field(default_factory=NorthAlignment)
    nodes: Dict[str, SceneNode] = field(default_factory=dict)
    handles: Dict[str, Any] = field(default_factory=dict)
    wall_levels: Dict[Any, Any] = field(default_factory=dict)
    wall_candidates: Dict[str, List[WallCandidate]] = field(default_factory=dict)
    door_candidates: Dict[str, List[DoorCandidate]] = field(default_factory=dict)
    communal_walls: Dict[str, List[Tuple[WallCandidate, Any]]] = field(default_factory=dict)
    created: Counter = field(default_factory=Counter)
    messages: List[str] = field(default_factory=list)
    metrics: RunMetrics = field(default_factory=RunMetrics)
    project_name: Optional[str] = None
    building_name: Optional[str] = None
    site: Optional[SiteInfo] = None
    model_types: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.levels is None:
            self.levels = LevelRegistry(self.settings.level_tolerance)

    def add_message(self, message: str, category: str = "element") -> None:
        """Record a message once; repeats are ignored."""
        if message in self.messages:
            return
        self.messages.append(message)
        self.metrics.add_warning(category)
        logger.warning(message)

    def record_created(self, tag: str) -> None:
        self.created[tag or ElementKind.UNKNOWN.value] += 1

    def result(self) -> "RunResult":
        return RunResult(
            created=dict(self.created),
            messages=list(self.messages),
            metrics=self.metrics,
            angle_to_north=self.north.angle,
            levels=list(self.levels),
            project_name=self.project_name,
            building_name=self.building_name,
            site=self.site,
            model_types=list(self.model_types),
        )


@dataclass
class RunResult:
    """Summary of a finished run."""
    created: Dict[str, int]
    messages: List[str]
    metrics: RunMetrics
    angle_to_north: float
    levels: List[LevelEntry]
    project_name: Optional[str] = None
    building_name: Optional[str] = None
    site: Optional[SiteInfo] = None
    model_types: List[str] = field(default_factory=list)

    @property
    def total_created(self) -> int:
        return sum(self.created.values())

    def format_log(self) -> str:
        lines = ["Created Elements:"]
        for tag, count in self.created.items():
            if count > 0:
                lines.append(f"  {tag}: {count}")
        lines.append(f"Total of created elements: {self.total_created}")
        if self.messages:
            lines.append("")
            lines.append("-" * 40)
            lines.append("Errors:")
            lines.extend(f"  - {message}" for message in self.messages)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectName": self.project_name,
            "buildingName": self.building_name,
            "modelTypes": self.model_types,
            "site": asdict(self.site) if self.site else None,
            "angleToNorth": self.angle_to_north,
            "angleToNorthDeg": deg(self.angle_to_north),
            "levels": [
                {"elevation": entry.elevation, "handle": entry.handle, "name": entry.name}
                for entry in self.levels
            ],
            "created": self.created,
            "totalCreated": self.total_created,
            "messages": self.messages,
            "metrics": self.metrics.to_dict(),
        }


Handler = Callable[[RunContext, SceneNode, PlacementContext], None]


def _label(node: SceneNode) -> str:
    return node.uuid or node.id


def _kind_above(placement: PlacementContext, levels: int) -> ElementKind:
    return ElementKind.from_tag(placement.kind_above(levels) or "")


def _space_key(ctx: RunContext, placement: PlacementContext, levels: int) -> str:
    """Uuid of the owning space ``levels`` generations up, skipping a module in between."""
    if _kind_above(placement, levels) is ElementKind.MODULE:
        levels += 1
    owner_id = placement.id_above(levels)
    if owner_id is None:
        raise BrokenHierarchyError(f"No owning space {levels} level(s) up", {"node": placement.node_id})
    return ctx.nodes[owner_id].space_key


def _project(ctx: RunContext, point: Point3) -> Point3:
    return ctx.north.to_project_space(point)


def _fallback_level(ctx: RunContext, placement: PlacementContext) -> Optional[LevelEntry]:
    """Existing document level at the parent's elevation."""
    parent_elevation = to_world(placement, ORIGIN).z
    for entry in ctx.materializer.existing_levels():
        if abs(entry.elevation - parent_elevation) <= ctx.settings.level_tolerance:
            ctx.metrics.levels_fallback += 1
            return entry
    return None


def _resolve(ctx: RunContext, node: SceneNode, placement: PlacementContext, pivot: Point3) -> LevelMatch:
    elevation = world_pivot(node, pivot, placement).z
    return resolve_level(ctx.levels, elevation, fallback=lambda: _fallback_level(ctx, placement))


def level_name(level: LevelPayload) -> str:
    name = str(level.levelIndex).zfill(2)
    return f"{name}_RF" if level.isRoof else name


def _create_levels(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    for level in node.data.levels or []:
        elevation = level.floorWorldBottom if level.floorWorldBottom != 0 else level.ffl
        if ctx.levels.contains(elevation):
            continue
        name = level_name(level)
        handle = ctx.materializer.create_level(elevation, name)
        ctx.levels.register(elevation, handle, name)
        ctx.metrics.levels_created += 1
        ctx.record_created("Level")
        logger.debug(f"Created level {name} at {elevation:.3f} m")

        for kind, vertices in (("gea", level.geaPolygon), ("gia", level.giaPolygon)):
            if not vertices:
                continue
            loop = polygon_loop(
                node,
                placement,
                ctx.north,
                convert_vertices(vertices),
                ctx.settings.polygon_vertex_tolerance,
                ctx.settings.loop_gap_tolerance,
            )
            ctx.materializer.create_loop_boundary(loop, handle, kind)


def _create_site_level(ctx: RunContext) -> None:
    if ctx.levels.contains(0.0):
        return
    name = ctx.settings.site_level_name
    handle = ctx.materializer.create_level(0.0, name)
    ctx.levels.register(0.0, handle, name)
    ctx.metrics.levels_created += 1
    ctx.record_created("Level")


def _handle_world(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    ctx.project_name = node.name


def _handle_site(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    data = node.data
    ctx.site = SiteInfo(latitude=data.latitude, longitude=data.longitude) if data else SiteInfo()
    ctx.record_created(node.type)
    # property lines are authored in world axes and left open
    points = [_project(ctx, p) for p in node.polygon]
    lines = [
        Segment(a, b)
        for a, b in zip(points, points[1:])
        if a.distance_to(b) >= ctx.settings.polygon_vertex_tolerance
    ]
    if lines:
        ctx.materializer.create_loop_boundary(Loop(tuple(lines)), None, "site")


def _handle_building(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    if node.children:
        ctx.building_name = node.name
        ctx.model_types.append("Building")
    else:
        _create_site_level(ctx)
        ctx.model_types.append("Site")


def _handle_container(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    ctx.record_created(node.type)


def _handle_unknown(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    logger.warning(f"Unknown element type '{node.type}' on {_label(node)}, treated as a container")
    ctx.metrics.unknown_tags += 1
    ctx.record_created(node.type)


def _handle_not_implemented(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    ctx.add_message(f"Support for the '{node.type}' category has not been implemented yet", "not_implemented")


def _create_wall(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    centerline = horizontal_centerline(node, placement, ctx.north, ctx.settings.min_curve_length)
    if centerline is None:
        ctx.metrics.degenerate_dropped += 1
        return
    match = _resolve(ctx, node, placement, ORIGIN)
    if centerline.length <= ctx.settings.min_wall_length:
        logger.debug(f"Skipped wall {_label(node)}: {centerline.length:.3f} m")
        ctx.metrics.degenerate_dropped += 1
        return
    handle = ctx.materializer.create_wall(centerline, match.handle, node.size.z, match.offset, node.type_code)
    ctx.handles[node.id] = handle
    ctx.wall_levels[handle] = match.handle
    ctx.record_created(node.type)


def _collect_communal_wall(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    space_id = _space_key(ctx, placement, 1)
    centerline = horizontal_centerline(node, placement, ctx.north, ctx.settings.min_curve_length)
    if centerline is None:
        ctx.metrics.degenerate_dropped += 1
        return
    match = _resolve(ctx, node, placement, ORIGIN)
    candidate = WallCandidate(
        space_id=space_id,
        centerline=centerline,
        level=match.handle,
        height=node.size.z,
        base_offset=match.offset,
        type_ref=node.type_code,
        source_id=node.id,
    )
    ctx.wall_candidates.setdefault(space_id, []).append(candidate)
    ctx.metrics.wall_candidates += 1


def _handle_wall(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    communal = (
        _kind_above(placement, 1) in COMMUNAL_SPACE_KINDS
        or _kind_above(placement, 2) is ElementKind.TECHNICAL_SPACE
    )
    if communal:
        _collect_communal_wall(ctx, node, placement)
    else:
        _create_wall(ctx, node, placement)


def _create_hosted(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    host = ctx.handles.get(placement.parent_id)
    if host is None:
        raise MaterializationError(f"{node.type} has no host wall", {"node": node.id})
    position = _project(ctx, absolute_position(node, placement))
    handle = ctx.materializer.create_door(
        position,
        node.type_code,
        host,
        ctx.wall_levels.get(host),
        kind=node.kind.value.lower(),
    )
    ctx.handles[node.id] = handle
    ctx.record_created(node.type)


def _handle_door(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    communal = (
        _kind_above(placement, 2) in COMMUNAL_SPACE_KINDS
        or _kind_above(placement, 3) is ElementKind.TECHNICAL_SPACE
    )
    if not communal:
        _create_hosted(ctx, node, placement)
        return
    door = DoorCandidate(
        space_id=_space_key(ctx, placement, 2),
        position=_project(ctx, absolute_position(node, placement)),
        type_ref=node.type_code,
        source_id=node.id,
    )
    ctx.door_candidates.setdefault(door.space_id, []).append(door)
    ctx.metrics.door_candidates += 1


def _handle_floor(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    loop = horizontal_rectangle(node, placement, ctx.north)
    match = _resolve(ctx, node, placement, FLOOR_LEVEL_PIVOT)
    handle = ctx.materializer.create_loop_boundary(loop, match.handle, "floor", match.offset, node.type_code)
    ctx.handles[node.id] = handle
    ctx.record_created(node.type)


def _handle_ceiling(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    loop = horizontal_rectangle(node, placement, ctx.north)
    match = _resolve(ctx, node, placement, ORIGIN)
    handle = ctx.materializer.create_loop_boundary(loop, match.handle, "ceiling", match.offset, node.type_code)
    ctx.handles[node.id] = handle
    ctx.record_created(node.type)


def _handle_roof(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    if not node.polygon:
        ctx.add_message(f"Roof without polygon. Element: {_label(node)}")
        return
    loop = polygon_loop(
        node,
        placement,
        ctx.north,
        node.polygon,
        ctx.settings.polygon_vertex_tolerance,
        ctx.settings.loop_gap_tolerance,
    )
    if len(loop) < 3:
        raise DegenerateGeometryError(f"Roof outline collapsed to {len(loop)} segment(s)", {"node": node.id})
    match = _resolve(ctx, node, placement, ORIGIN)
    handle = ctx.materializer.create_loop_boundary(loop, match.handle, "roof", match.offset, node.type_code)
    ctx.handles[node.id] = handle
    ctx.record_created(node.type)


def _handle_space(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    centre = _project(ctx, world_pivot(node, ROOM_CENTRE_PIVOT, placement))
    shift = ctx.settings.room_point_offset
    point = Point3(centre.x + shift, centre.y + shift, centre.z)

    index = int(node.data.level) if node.data else 0
    if index < 0 or index >= len(ctx.levels):
        raise UnresolvedLevelError(f"Level index {index} does not exist", {"index": str(index)})
    entry = ctx.levels.at(index)
    if entry.name and "Roof" in entry.name:
        return

    name = node.type[:1].upper() + node.type[1:]
    handle = ctx.materializer.create_room(entry.handle, point, name)
    ctx.handles[node.id] = handle
    ctx.record_created(node.type)

    if node.polygon:
        loop = polygon_loop(
            node,
            placement,
            ctx.north,
            node.polygon,
            ctx.settings.polygon_vertex_tolerance,
            ctx.settings.loop_gap_tolerance,
        )
        ctx.materializer.create_loop_boundary(loop, entry.handle, "room")


def _handle_opening(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    host = ctx.handles.get(placement.parent_id)
    if host is None:
        raise MaterializationError("Opening has no host wall", {"node": node.id})
    offset = 0.0 if _kind_above(placement, 1) is ElementKind.FACADE else -node.position.z
    lower = _project(ctx, world_pivot(node, ORIGIN, placement))
    upper = _project(ctx, world_pivot(node, OPENING_MAX_PIVOT, placement))
    handle = ctx.materializer.create_opening(
        host,
        Point3(lower.x, lower.y, lower.z + offset),
        Point3(upper.x, upper.y, upper.z + offset),
    )
    ctx.handles[node.id] = handle
    ctx.record_created(node.type)


HANDLERS: Dict[ElementKind, Handler] = {
    ElementKind.WORLD: _handle_world,
    ElementKind.SITE: _handle_site,
    ElementKind.ZONE: _handle_container,
    ElementKind.PLOT: _handle_container,
    ElementKind.BUILDING: _handle_building,
    ElementKind.CORE: _handle_space,
    ElementKind.CORRIDOR: _handle_space,
    ElementKind.ENTRANCE: _handle_space,
    ElementKind.TECHNICAL_SPACE: _handle_space,
    ElementKind.APARTMENT: _handle_container,
    ElementKind.MODULE: _handle_container,
    ElementKind.BALCONY: _handle_container,
    ElementKind.LEVELS: _handle_container,
    ElementKind.WALL: _handle_wall,
    ElementKind.PARAPET: _create_wall,
    ElementKind.FACADE: _create_wall,
    ElementKind.FLOOR: _handle_floor,
    ElementKind.CEILING: _handle_ceiling,
    ElementKind.DOOR: _handle_door,
    ElementKind.WINDOW: _create_hosted,
    ElementKind.BEAM: _handle_not_implemented,
    ElementKind.COLUMN: _handle_not_implemented,
    ElementKind.ROOF: _handle_roof,
    ElementKind.ROOM: _handle_not_implemented,
    ElementKind.OPENING: _handle_opening,
    ElementKind.UNKNOWN: _handle_unknown,
}


def _type_message(node_type: str, type_ref: Optional[str], label: str) -> str:
    parts = (type_ref or "").split("|")
    category = parts[0]
    code = parts[1] if len(parts) > 1 else ""
    return f"Type of {node_type} with Code: Category {category} and Code: Type {code} does not exist. Element: {label}"


def _visit(ctx: RunContext, node: SceneNode, placement: PlacementContext) -> None:
    ctx.metrics.nodes_visited += 1
    ctx.nodes[node.id] = node
    try:
        if node.data is not None and node.data.levels:
            _create_levels(ctx, node, placement)
        HANDLERS.get(node.kind, _handle_unknown)(ctx, node, placement)
    except UnknownTypeError:
        ctx.metrics.elements_skipped += 1
        ctx.add_message(_type_message(node.type, node.type_code, _label(node)), "type")
    except BrokenHierarchyError as exc:
        ctx.metrics.subtrees_skipped += 1
        ctx.add_message(f"{exc.message}. Element: {_label(node)}", "hierarchy")
        return
    except (UnresolvedLevelError, DegenerateGeometryError, MaterializationError) as exc:
        ctx.metrics.elements_skipped += 1
        ctx.add_message(f"{exc.message}. Element: {_label(node)}", type(exc).__name__)

    for child in node.children:
        try:
            child_placement = placement.child(node, child)
        except BrokenHierarchyError as exc:
            ctx.metrics.subtrees_skipped += 1
            ctx.add_message(f"{exc.message}. Element: {_label(child)}", "hierarchy")
            continue
        _visit(ctx, child, child_placement)


def _build_communal_walls(ctx: RunContext) -> None:
    for space_id, candidates in ctx.wall_candidates.items():
        result = merge_communal_walls(space_id, candidates, ctx.settings)
        ctx.metrics.communal_spaces += 1
        ctx.metrics.gap_segments += len(result.gaps)
        ctx.metrics.degenerate_dropped += result.dropped
        for gap in result.gaps:
            action = "built" if ctx.settings.build_gap_walls else "not built"
            ctx.add_message(
                f"Gap of {gap.centerline.length:.3f} m between communal walls of space {space_id} was {action}",
                "gap",
            )

        built = ctx.communal_walls.setdefault(space_id, [])
        for wall in result.walls:
            source = ctx.nodes.get(wall.source_id)
            try:
                handle = ctx.materializer.create_wall(
                    wall.centerline, wall.level, wall.height, wall.base_offset, wall.type_ref
                )
            except UnknownTypeError:
                ctx.add_message(_type_message("Wall", wall.type_ref, _label(source) if source else wall.source_id), "type")
                continue
            except MaterializationError as exc:
                ctx.add_message(f"{exc.message}. Space: {space_id}", type(exc).__name__)
                continue
            built.append((wall, handle))
            ctx.wall_levels[handle] = wall.level
            ctx.metrics.communal_walls_built += 1
            ctx.record_created(source.type if source else ElementKind.WALL.value)
        logger.info(f"Space {space_id}: {len(candidates)} wall candidate(s) -> {len(built)} communal wall(s)")


def _place_communal_doors(ctx: RunContext) -> None:
    for space_id, doors in ctx.door_candidates.items():
        built = ctx.communal_walls.get(space_id, [])
        walls = [wall for wall, _handle in built]
        for door in doors:
            source = ctx.nodes.get(door.source_id)
            label = _label(source) if source else door.source_id
            placement = place_door(door, walls)
            if placement is None:
                ctx.add_message(f"No communal wall to host door. Space: {space_id}. Element: {label}", "door")
                continue
            wall, host = built[placement.wall_index]
            try:
                handle = ctx.materializer.create_door(door.position, door.type_ref, host, wall.level)
            except UnknownTypeError:
                ctx.add_message(_type_message("Door", door.type_ref, label), "type")
                continue
            except MaterializationError as exc:
                ctx.add_message(f"{exc.message}. Element: {label}", type(exc).__name__)
                continue
            ctx.handles[door.source_id] = handle
            ctx.metrics.doors_placed += 1
            ctx.record_created(source.type if source else ElementKind.DOOR.value)


def prepare_scene(payload: NodePayload, messages: Optional[List[str]] = None) -> SceneNode:
    """Substitute apartment templates, drop muscle units and convert to kernel axes."""
    missing: List[str] = []
    prepared = remove_muscle_units(apply_templates(payload, missing=missing))
    if messages is not None:
        messages.extend(f"No template found for apartment '{name}'" for name in missing)
    return SceneNode.from_payload(prepared)


def run(
    root: Union[SceneNode, NodePayload],
    materializer: Materializer,
    settings: Union[Settings, KernelSettings, None] = None,
) -> RunResult:
    """Materialize a scene graph.

    Raises:
        EmptySceneError: If the scene has no children and no payload.
    """
    if isinstance(settings, Settings):
        settings = settings.kernel
    started = time.perf_counter()

    preparation_messages: List[str] = []
    scene = prepare_scene(root, preparation_messages) if isinstance(root, NodePayload) else root
    if not scene.children and scene.data is None:
        raise EmptySceneError("Scene has nothing to materialize", {"root": scene.type or scene.id})

    ctx = RunContext(materializer=materializer, settings=settings or KernelSettings())
    for message in preparation_messages:
        ctx.add_message(message, "template")

    ctx.north.fix(angle_to_north(collect_apartment_rotations(scene)))
    ctx.metrics.levels_pre_existing = ctx.levels.merge(materializer.existing_levels())
    ctx.metrics.time_preparation = time.perf_counter() - started
    logger.info(
        f"Run started: root '{scene.name or scene.type}', angle to north {deg(ctx.north.angle):.2f} deg, "
        f"{ctx.metrics.levels_pre_existing} existing level(s)"
    )

    step = time.perf_counter()
    _visit(ctx, scene, PlacementContext.root(scene))
    ctx.metrics.time_traversal = time.perf_counter() - step

    step = time.perf_counter()
    _build_communal_walls(ctx)
    _place_communal_doors(ctx)
    ctx.metrics.time_communal = time.perf_counter() - step

    ctx.metrics.time_total = time.perf_counter() - started
    result = ctx.result()
    logger.info(f"Run finished: {result.total_created} element(s) created, {len(result.messages)} message(s)")
    return result
