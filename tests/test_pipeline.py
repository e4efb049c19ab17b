"""End-to-end runs against the recording materializer."""

import dataclasses
import math

import pytest

from scenebim.exceptions import EmptySceneError
from scenebim.export.materializer import RecordingMaterializer
from scenebim.geometry.primitives import Point3
from scenebim.pipeline import run
from scenebim.scene.schema import NodeData, NodePayload
from scenebim.settings import KernelSettings, Settings
from tests.scenes import core, levels_data, make_node, rectangle_walls, two_level_building, wall, with_ids


def _building(*children, elevations=(0.0,)):
    building = make_node("Building", *children, name="Block A", data=levels_data(*elevations))
    return with_ids(make_node("World", building, name="Project"))


def _perimeter(points):
    return sum(
        math.dist((a.x, a.y, a.z), (b.x, b.y, b.z))
        for a, b in zip(points, points[1:] + points[:1])
    )


class TestTwoLevelBuilding:
    @pytest.fixture
    def outcome(self):
        materializer = RecordingMaterializer()
        result = run(two_level_building(), materializer)
        return result, materializer.document

    def test_levels(self, outcome):
        result, document = outcome
        assert [(level.elevation, level.name) for level in document.levels] == [(0.0, "00"), (3.0, "01")]
        assert [entry.name for entry in result.levels] == ["00", "01"]

    def test_communal_walls_form_one_rectangle_per_level(self, outcome):
        _, document = outcome
        assert len(document.walls) == 8
        for level in document.levels:
            walls = [w for w in document.walls if w.levelHandle == level.handle]
            assert len(walls) == 4
            total = sum(math.dist((w.start.x, w.start.y), (w.end.x, w.end.y)) for w in walls)
            assert total == pytest.approx(32.0, abs=1e-3)
            assert all(w.baseOffset == pytest.approx(0.0) for w in walls)
            assert all(w.height == 3.0 for w in walls)

    def test_floors(self, outcome):
        _, document = outcome
        floors = [b for b in document.boundaries if b.kind == "floor"]
        assert len(floors) == 2
        for floor in floors:
            assert floor.closed
            assert floor.typeRef == "FLR|STD"
            assert floor.offset == pytest.approx(0.2)
            assert _perimeter(floor.points) == pytest.approx(32.0)

    def test_rooms_are_seeded_off_centre(self, outcome):
        _, document = outcome
        assert [room.name for room in document.rooms] == ["Core", "Core"]
        first = document.rooms[0].point
        assert (first.x, first.y) == pytest.approx((5.5, 3.5))

    def test_counts_and_messages(self, outcome):
        result, _ = outcome
        assert result.messages == []
        assert result.created == {"Level": 2, "Core": 2, "Floor": 2, "Wall": 8}
        assert result.total_created == 14
        assert result.metrics.wall_candidates == 10
        assert result.metrics.communal_spaces == 2
        assert result.angle_to_north == 0.0

    def test_log(self, outcome):
        result, _ = outcome
        log = result.format_log()
        assert log.startswith("Created Elements:")
        assert "  Wall: 8" in log
        assert "Total of created elements: 14" in log
        assert "Errors:" not in log

    def test_run_summary(self, outcome):
        result, _ = outcome
        summary = result.to_dict()
        assert summary["projectName"] == "Project"
        assert summary["buildingName"] == "Block A"
        assert summary["modelTypes"] == ["Building"]
        assert summary["totalCreated"] == 14
        assert summary["angleToNorthDeg"] == 0.0


def test_empty_scene():
    with pytest.raises(EmptySceneError):
        run(with_ids(make_node("World")), RecordingMaterializer())


def test_accepts_settings_object():
    result = run(two_level_building(), RecordingMaterializer(), Settings())
    assert result.created["Wall"] == 8


def test_pre_existing_level_is_reused():
    materializer = RecordingMaterializer(levels=[(0.0, "Existing")])
    result = run(two_level_building(), materializer)
    assert [level.name for level in materializer.document.levels] == ["Existing", "01"]
    assert result.created["Level"] == 1
    assert result.metrics.levels_pre_existing == 1
    ground = materializer.document.levels[0].handle
    assert sum(1 for w in materializer.document.walls if w.levelHandle == ground) == 4


def test_angle_to_north_squares_up_rotated_apartments():
    apartment = make_node("Apartment", wall((0.0, 0.0, 0.0), 0.0, 4.0, uuid="a-wall"), rotation=(0.0, 0.0, 30.0))
    materializer = RecordingMaterializer()

    result = run(_building(apartment), materializer)

    assert result.angle_to_north == pytest.approx(math.radians(30.0))
    (record,) = materializer.document.walls
    assert (record.start.x, record.start.y) == pytest.approx((0.0, 0.0), abs=1e-9)
    assert (record.end.x, record.end.y) == pytest.approx((4.0, 0.0), abs=1e-9)


def test_not_implemented_category_is_reported_once():
    result = run(_building(make_node("Beam", uuid="b1"), make_node("Beam", uuid="b2")), RecordingMaterializer())
    assert result.messages == ["Support for the 'Beam' category has not been implemented yet"]
    assert "Beam" not in result.created


def test_unknown_tag_is_a_container():
    staircase = make_node("Staircase", wall((0.0, 0.0, 0.0), 0.0, 4.0, uuid="inner"))
    result = run(_building(staircase), RecordingMaterializer())
    assert result.metrics.unknown_tags == 1
    assert result.created["Staircase"] == 1
    assert result.created["Wall"] == 1
    assert result.messages == []


def test_short_wall_is_skipped():
    result = run(_building(wall((0.0, 0.0, 0.0), 0.0, 0.05, uuid="stub")), RecordingMaterializer())
    assert "Wall" not in result.created
    assert result.metrics.degenerate_dropped == 1


def test_missing_type_is_reported_and_run_continues():
    materializer = RecordingMaterializer(available_types={"WAL|STD"})
    result = run(two_level_building(), materializer)
    assert "Type of Floor with Code: Category FLR and Code: Type STD does not exist. Element: floor-0" in result.messages
    assert len(result.messages) == 2
    assert result.created["Wall"] == 8
    assert "Floor" not in result.created


def test_unresolved_level_is_reported():
    building = make_node("Building", wall((0.0, 0.0, 0.0), 0.0, 4.0, uuid="lonely"))
    result = run(with_ids(make_node("World", building)), RecordingMaterializer())
    assert result.messages == ["No level available for elevation 0.000. Element: lonely"]
    assert result.metrics.elements_skipped == 1


def test_hosted_window_and_openings():
    window = make_node("Window", position=(4.0, 0.0, 1.0), size=(1.2, 0.2, 1.2), type_code="WIN|STD", uuid="win")
    facade_opening = make_node("Opening", position=(2.0, 0.0, 1.0), size=(1.0, 0.2, 1.5), uuid="fo")
    facade = wall((0.0, 0.0, 0.0), 0.0, 8.0, window, facade_opening, tag="Facade", uuid="facade")
    wall_opening = make_node("Opening", position=(2.0, 0.0, 1.0), size=(1.0, 0.2, 1.5), uuid="wo")
    inner = wall((0.0, 5.0, 0.0), 0.0, 8.0, wall_opening, uuid="inner")
    materializer = RecordingMaterializer()

    result = run(_building(facade, inner), materializer)

    assert result.messages == []
    facade_handle, inner_handle = (w.handle for w in materializer.document.walls)
    (door,) = materializer.document.doors
    assert door.kind == "window"
    assert door.hostHandle == facade_handle
    assert (door.position.x, door.position.y, door.position.z) == pytest.approx((4.0, 0.0, 1.0))
    assert door.levelHandle == materializer.document.levels[0].handle

    on_facade, on_wall = materializer.document.openings
    assert on_facade.hostHandle == facade_handle
    assert (on_facade.lower.z, on_facade.upper.z) == pytest.approx((1.0, 2.5))
    assert on_wall.hostHandle == inner_handle
    assert (on_wall.lower.z, on_wall.upper.z) == pytest.approx((0.0, 1.5))
    assert (on_wall.lower.x, on_wall.lower.y) == pytest.approx((2.0, 5.0))


def test_communal_door_goes_to_nearest_wall():
    door = make_node("Door", position=(3.0, 0.1, 0.0), size=(0.9, 0.2, 2.1), type_code="DOR|STD", uuid="d1")
    walls = rectangle_walls(10.0, 6.0)
    walls[2] = wall((10.0, 6.0, 0.0), 180.0, 10.0, door, uuid="w-north")
    materializer = RecordingMaterializer()

    result = run(_building(core("core-0", 0.0, 0, walls, 10.0, 6.0)), materializer)

    assert result.messages == []
    assert result.created["Door"] == 1
    (record,) = materializer.document.doors
    host = next(w for w in materializer.document.walls if w.handle == record.hostHandle)
    assert host.start.y == pytest.approx(6.0)
    assert host.end.y == pytest.approx(6.0)
    assert (record.position.x, record.position.y) == pytest.approx((7.0, 5.9))


def _two_rooms_in_one_core():
    """Two 4 m rooms authored under one core, far apart."""
    far = [
        wall((20.0, 20.0, 0.0), 0.0, 4.0, uuid="b-south"),
        wall((24.0, 20.0, 0.0), 90.0, 4.0, uuid="b-east"),
        wall((24.0, 24.0, 0.0), 180.0, 4.0, uuid="b-north"),
        wall((20.0, 24.0, 0.0), 270.0, 4.0, uuid="b-west"),
    ]
    return core("core-0", 0.0, 0, rectangle_walls(4.0, 4.0) + far, 24.0, 24.0)


def test_gap_between_communal_walls_is_reported():
    result = run(_building(_two_rooms_in_one_core()), RecordingMaterializer())
    assert result.created["Wall"] == 8
    assert result.metrics.gap_segments == 1
    assert any(m.startswith("Gap of") and m.endswith("was not built") for m in result.messages)
    assert "Errors:" in result.format_log()


def test_gap_walls_can_be_built():
    result = run(
        _building(_two_rooms_in_one_core()),
        RecordingMaterializer(),
        KernelSettings(build_gap_walls=True),
    )
    assert result.created["Wall"] == 9
    assert any(m.endswith("was built") for m in result.messages)


def test_site_boundary_is_an_open_polyline():
    site = make_node(
        "Site",
        polygon=(Point3(0.0, 0.0, 0.0), Point3(10.0, 0.0, 0.0), Point3(10.0, 10.0, 0.0)),
        data=NodeData(latitude=51.5, longitude=-0.1),
    )
    materializer = RecordingMaterializer()
    result = run(with_ids(make_node("World", site)), materializer)
    (boundary,) = materializer.document.boundaries
    assert boundary.kind == "site"
    assert not boundary.closed
    assert len(boundary.points) == 3
    assert result.created["Site"] == 1
    assert result.to_dict()["site"] == {"latitude": 51.5, "longitude": -0.1}


def test_missing_apartment_template_is_reported():
    payload = NodePayload(
        type="World",
        children=[NodePayload(type="Building", children=[NodePayload(type="Apartment", name="T9")])],
    )
    result = run(payload, RecordingMaterializer())
    assert "No template found for apartment 'T9'" in result.messages


def test_misplaced_subtree_is_skipped_and_siblings_are_built():
    scene = _building(wall((0.0, 0.0, 0.0), 0.0, 4.0, uuid="kept"))
    stray = with_ids(make_node("Apartment", wall((0.0, 5.0, 0.0), 0.0, 4.0, uuid="lost")), "9")
    building = scene.children[0]
    grafted = dataclasses.replace(building, children=(stray,) + building.children)
    scene = dataclasses.replace(scene, children=(grafted,))
    materializer = RecordingMaterializer()

    result = run(scene, materializer)

    assert result.messages == ["Node 9 is not a child of 0/0. Element: 9"]
    assert result.metrics.subtrees_skipped == 1
    assert result.created["Wall"] == 1
    assert "Apartment" not in result.created
    (record,) = materializer.document.walls
    assert (record.start.y, record.end.y) == pytest.approx((0.0, 0.0))
