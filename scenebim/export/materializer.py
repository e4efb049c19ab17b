"""CAD-side collaborator: the calls the kernel makes to author elements."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Set, runtime_checkable

from pydantic import BaseModel, Field

from scenebim.exceptions import MaterializationError, UnknownTypeError
from scenebim.geometry.primitives import Loop, Point3, Segment
from scenebim.reconstruct.levels import LevelEntry


@runtime_checkable
class Materializer(Protocol):
    """Author of CAD entities from kernel geometry.

    Every ``create_*`` call returns an opaque handle and may raise
    :class:`MaterializationError`, which the run driver logs and skips.
    """

    def existing_levels(self) -> Iterable[LevelEntry]:
        ...

    def create_level(self, elevation: float, name: Optional[str] = None) -> Any:
        ...

    def create_wall(
        self,
        centerline: Segment,
        level: Any,
        height: float,
        offset: float,
        type_ref: Optional[str],
    ) -> Any:
        ...

    def create_room(self, level: Any, point_inside: Point3, name: Optional[str] = None) -> Any:
        ...

    def create_loop_boundary(
        self,
        loop: Loop,
        level: Any,
        kind: str,
        offset: float = 0.0,
        type_ref: Optional[str] = None,
    ) -> Any:
        ...

    def create_door(
        self,
        position: Point3,
        type_ref: Optional[str],
        host: Any,
        level: Any,
        kind: str = "door",
    ) -> Any:
        ...

    def create_opening(self, host: Any, lower: Point3, upper: Point3) -> Any:
        ...


class XYZ(BaseModel):
    """3D point in meters."""
    x: float
    y: float
    z: float

    @classmethod
    def of(cls, point: Point3) -> "XYZ":
        return cls(x=point.x, y=point.y, z=point.z)


class LevelRecord(BaseModel):
    handle: int
    elevation: float
    name: Optional[str] = None
    preExisting: bool = False


class WallRecord(BaseModel):
    handle: int
    start: XYZ
    end: XYZ
    levelHandle: int
    height: float
    baseOffset: float
    typeRef: Optional[str] = None


class RoomRecord(BaseModel):
    handle: int
    levelHandle: int
    point: XYZ
    name: Optional[str] = None


class BoundaryRecord(BaseModel):
    handle: int
    kind: str = Field(..., description="floor, ceiling, roof, gea, gia, room or site")
    points: List[XYZ] = Field(..., description="Loop vertices in order")
    closed: bool
    levelHandle: Optional[int] = None
    offset: float = 0.0
    typeRef: Optional[str] = None


class DoorRecord(BaseModel):
    handle: int
    kind: str = "door"
    position: XYZ
    hostHandle: int
    levelHandle: Optional[int] = None
    typeRef: Optional[str] = None


class OpeningRecord(BaseModel):
    handle: int
    hostHandle: int
    lower: XYZ
    upper: XYZ


class MaterializedDocument(BaseModel):
    """Everything a run authored, in creation order."""
    levels: List[LevelRecord] = Field(default_factory=list)
    walls: List[WallRecord] = Field(default_factory=list)
    rooms: List[RoomRecord] = Field(default_factory=list)
    boundaries: List[BoundaryRecord] = Field(default_factory=list)
    doors: List[DoorRecord] = Field(default_factory=list)
    openings: List[OpeningRecord] = Field(default_factory=list)


class RecordingMaterializer:
    """In-memory materializer handing out integer handles.

    ``available_types``, when given, is the set of type references the
    target document knows; any other reference is refused. ``levels`` seeds
    the document with pre-existing ``(elevation, name)`` levels.
    """

    def __init__(
        self,
        available_types: Optional[Iterable[str]] = None,
        levels: Sequence[tuple] = (),
    ) -> None:
        self.document = MaterializedDocument()
        self.available_types: Optional[Set[str]] = set(available_types) if available_types is not None else None
        self._next_handle = 1
        self._levels: Dict[int, LevelRecord] = {}
        self._walls: Dict[int, WallRecord] = {}
        for elevation, name in levels:
            self._add_level(float(elevation), name, pre_existing=True)

    def _handle(self) -> int:
        handle = self._next_handle
        self._next_handle += 1
        return handle

    def _add_level(self, elevation: float, name: Optional[str], pre_existing: bool = False) -> int:
        record = LevelRecord(handle=self._handle(), elevation=elevation, name=name, preExisting=pre_existing)
        self._levels[record.handle] = record
        self.document.levels.append(record)
        return record.handle

    def _check_level(self, level: Any) -> int:
        if level not in self._levels:
            raise MaterializationError(f"Level {level} does not exist", {"level": str(level)})
        return level

    def _check_host(self, host: Any) -> int:
        if host not in self._walls:
            raise MaterializationError(f"Host wall {host} does not exist", {"host": str(host)})
        return host

    def _check_type(self, type_ref: Optional[str]) -> None:
        if self.available_types is None:
            return
        if type_ref not in self.available_types:
            raise UnknownTypeError(f"Type {type_ref} does not exist", {"type": str(type_ref)})

    def existing_levels(self) -> List[LevelEntry]:
        return [LevelEntry(r.elevation, r.handle, r.name) for r in self.document.levels]

    def create_level(self, elevation: float, name: Optional[str] = None) -> int:
        return self._add_level(float(elevation), name)

    def create_wall(
        self,
        centerline: Segment,
        level: Any,
        height: float,
        offset: float,
        type_ref: Optional[str],
    ) -> int:
        self._check_type(type_ref)
        record = WallRecord(
            handle=self._handle(),
            start=XYZ.of(centerline.start),
            end=XYZ.of(centerline.end),
            levelHandle=self._check_level(level),
            height=height,
            baseOffset=offset,
            typeRef=type_ref,
        )
        self._walls[record.handle] = record
        self.document.walls.append(record)
        return record.handle

    def create_room(self, level: Any, point_inside: Point3, name: Optional[str] = None) -> int:
        record = RoomRecord(
            handle=self._handle(),
            levelHandle=self._check_level(level),
            point=XYZ.of(point_inside),
            name=name,
        )
        self.document.rooms.append(record)
        return record.handle

    def create_loop_boundary(
        self,
        loop: Loop,
        level: Any,
        kind: str,
        offset: float = 0.0,
        type_ref: Optional[str] = None,
    ) -> int:
        if len(loop) == 0:
            raise MaterializationError(f"Empty {kind} boundary", {"kind": kind})
        closed = loop.is_closed(1e-9)
        points = loop.points if closed else loop.points + [loop[-1].end]
        self._check_type(type_ref)
        record = BoundaryRecord(
            handle=self._handle(),
            kind=kind,
            points=[XYZ.of(p) for p in points],
            closed=closed,
            levelHandle=self._check_level(level) if level is not None else None,
            offset=offset,
            typeRef=type_ref,
        )
        self.document.boundaries.append(record)
        return record.handle

    def create_door(
        self,
        position: Point3,
        type_ref: Optional[str],
        host: Any,
        level: Any,
        kind: str = "door",
    ) -> int:
        self._check_type(type_ref)
        record = DoorRecord(
            handle=self._handle(),
            kind=kind,
            position=XYZ.of(position),
            hostHandle=self._check_host(host),
            levelHandle=self._check_level(level) if level is not None else None,
            typeRef=type_ref,
        )
        self.document.doors.append(record)
        return record.handle

    def create_opening(self, host: Any, lower: Point3, upper: Point3) -> int:
        record = OpeningRecord(
            handle=self._handle(),
            hostHandle=self._check_host(host),
            lower=XYZ.of(lower),
            upper=XYZ.of(upper),
        )
        self.document.openings.append(record)
        return record.handle

    def to_json(self, indent: int = 2) -> str:
        return self.document.model_dump_json(indent=indent)
