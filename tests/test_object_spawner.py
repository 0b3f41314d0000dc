"""
Tests for region_builder.object_spawner.

Covers:
  - the density law and count clamps
  - SpatialHash distance queries
  - minimum spacing, target edge margin, biome and edge constraints
  - the road-band target scenario
  - the relaxed fallback pass
  - target-first ordering, determinism, unresolved prefabs
  - orientation bases and exported Euler angles
"""

import os
import sys
import math
import time
import traceback

import numpy as np

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from region_builder.biome_map import (BIOME_ROAD, compute_edge_distance,
                                      generate_corridor, generate_split)
from region_builder.noise import generate_heightmap
from region_builder.object_spawner import (TARGET_EDGE_MARGIN_METERS, ObjectSpawner,
                                           SpatialHash, spawn, target_count)
from region_builder.raster import nearest_cell
from region_builder.region_rules import SpawnEntry, SpawningRules


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PASSED = 0
_FAILED = 0
_ERRORS = []

PREFABS = {"tree": "res://tree.tscn", "rock": "res://rock.tscn",
           "target": "res://target.tscn"}


def _test(name, fn):
    """Run a test function, track pass/fail."""
    global _PASSED, _FAILED
    try:
        fn()
        _PASSED += 1
        print("  PASS  {}".format(name))
    except Exception as e:
        _FAILED += 1
        _ERRORS.append((name, e))
        print("  FAIL  {} -- {}".format(name, e))
        traceback.print_exc()


def _planar_distance(a, b):
    return math.hypot(a.position[0] - b.position[0], a.position[2] - b.position[2])


def _flat(size=128):
    return np.zeros((size, size))


# ---------------------------------------------------------------------------
# Counts and spatial hash
# ---------------------------------------------------------------------------

def test_density_law():
    entry = SpawnEntry("tree", density_per_km2=300000, min_count=0)
    assert target_count(entry, 1.0) == 300000
    assert target_count(entry, 0.5) == 150000

    clamped = SpawnEntry("tree", density_per_km2=300000, min_count=0, max_count=10)
    assert target_count(clamped, 1.0) == 10

    raised = SpawnEntry("tree", density_per_km2=0, min_count=5)
    assert target_count(raised, 1.0) == 5


def test_spatial_hash_queries():
    index = SpatialHash(1.0)
    assert index.is_clear(0.0, 0.0, 5.0)
    index.insert(0.0, 0.0)
    assert len(index) == 1
    assert not index.is_clear(1.0, 0.0, 1.5)
    assert index.is_clear(2.0, 0.0, 1.5)
    # exactly at the minimum distance is allowed
    assert index.is_clear(1.5, 0.0, 1.5)
    # distances far larger than the cell size still see the point
    assert not index.is_clear(7.0, 3.0, 10.0)
    assert index.is_clear(7.0, 3.0, 7.5)
    # zero distance never blocks
    assert index.is_clear(0.0, 0.0, 0.0)


def test_spatial_hash_negative_coordinates():
    index = SpatialHash(2.0)
    index.insert(-0.5, -0.5)
    assert not index.is_clear(0.5, 0.5, 2.0)
    assert index.is_clear(3.0, 3.0, 2.0)


def test_spatial_hash_cell_floor():
    assert SpatialHash(0.0).cell_size == 0.01


def test_spatial_hash_wide_query_on_fine_grid():
    index = SpatialHash(0.01)
    for i in range(50):
        index.insert(i * 7.0, 3.0)
    assert not index.is_clear(100.0, 20.0, 20.0)
    assert index.is_clear(500.0, 500.0, 20.0)
    # exactly at the minimum distance of (0, 3)
    assert index.is_clear(0.0, 13.0, 10.0)
    assert not index.is_clear(3.5, 12.0, 10.0)


def test_mixed_spacings_stay_fast():
    rules = SpawningRules([
        SpawnEntry("rock", density_per_km2=0, min_count=1, min_distance_meters=0.05),
        SpawnEntry("tree", density_per_km2=3000, min_count=0, min_distance_meters=20.0),
    ])
    start = time.time()
    placed = spawn(_flat(256), rules, PREFABS, seed=21)
    elapsed = time.time() - start
    assert elapsed < 10.0, "spawn took {:.1f}s".format(elapsed)

    trees = [p for p in placed if p.asset_id == "tree"]
    assert len(trees) >= 50
    for i, a in enumerate(trees):
        for b in trees[i + 1:]:
            assert _planar_distance(a, b) >= 20.0


# ---------------------------------------------------------------------------
# Placement filters
# ---------------------------------------------------------------------------

def test_minimum_distance_between_placements():
    rules = SpawningRules([
        SpawnEntry("tree", density_per_km2=2000, min_count=0, min_distance_meters=5.0),
        SpawnEntry("rock", density_per_km2=2000, min_count=0, min_distance_meters=3.0),
    ])
    placed = spawn(_flat(), rules, PREFABS, seed=11)
    assert len(placed) > 20
    assert not any(p.fallback for p in placed)

    trees = [p for p in placed if p.asset_id == "tree"]
    for i, a in enumerate(trees):
        for b in trees[i + 1:]:
            assert _planar_distance(a, b) >= 5.0
    for i, a in enumerate(placed):
        for b in placed[i + 1:]:
            assert _planar_distance(a, b) >= 3.0


def test_target_edge_margin():
    rules = SpawningRules([
        SpawnEntry("target", density_per_km2=0, min_count=25, is_target=True)])
    placed = spawn(_flat(), rules, PREFABS, seed=3)
    assert len(placed) == 25
    limit = 127 - TARGET_EDGE_MARGIN_METERS
    for p in placed:
        x, _, z = p.position
        assert TARGET_EDGE_MARGIN_METERS <= x <= limit
        assert TARGET_EDGE_MARGIN_METERS <= z <= limit
        assert p.is_target


def test_height_and_slope_filters():
    heights = np.zeros((128, 128))
    heights[64:, :] = 1.0
    rules = SpawningRules([
        SpawnEntry("tree", density_per_km2=3000, min_count=0,
                   min_height_meters=5.0, max_slope_deg=10.0)])
    placed = spawn(heights, rules, PREFABS, seed=5, scale=20.0)
    assert placed
    for p in placed:
        assert p.position[1] >= 5.0
        # the step between x=63 and x=64 is far steeper than 10 degrees
        assert p.position[0] >= 64.5


def test_allowed_biomes_and_edge_band():
    biome = generate_split(128, 128)
    edge = compute_edge_distance(biome, 1.0)
    rules = SpawningRules([
        SpawnEntry("tree", density_per_km2=3000, min_count=0, allowed_biomes=[1],
                   edge_min_meters=5.0, edge_max_meters=20.0)])
    placed = spawn(_flat(), rules, PREFABS, seed=8, biome=biome, edge_distance=edge)
    assert placed
    for p in placed:
        cell = nearest_cell(biome.shape, p.position[0], p.position[2])
        assert cell is not None
        assert biome[cell] == 1
        assert 5.0 <= edge[cell] <= 20.0


def test_biome_rules_without_maps_reject():
    rules = SpawningRules([
        SpawnEntry("tree", density_per_km2=3000, min_count=3, allowed_biomes=[1]),
        SpawnEntry("rock", density_per_km2=3000, min_count=3, edge_min_meters=1.0),
    ])
    assert spawn(_flat(), rules, PREFABS, seed=1) == []


def test_road_target_scenario():
    heights = generate_heightmap(256, 256, seed=4242, noise_scale=3.5, height_factor=1.5)
    biome = generate_corridor(256, 256, seed=17, road_width_meters=6.0,
                              wobble_meters=0.0)
    edge = compute_edge_distance(biome, 1.0)
    rules = SpawningRules([
        SpawnEntry("target", density_per_km2=1, min_count=1, is_target=True,
                   allowed_biomes=[BIOME_ROAD])])

    for seed in (1, 2, 3, 99):
        placed = spawn(heights, rules, PREFABS, seed=seed, scale=15.0, offset=-8.0,
                       biome=biome, edge_distance=edge)
        assert len(placed) == 1
        target = placed[0]
        assert target.is_target
        cell = nearest_cell(biome.shape, target.position[0], target.position[2])
        assert biome[cell] == BIOME_ROAD
        assert edge[cell] >= 0.0


def test_no_candidate_cells():
    biome = generate_split(128, 128)
    rules = SpawningRules([
        SpawnEntry("target", min_count=1, is_target=True, allowed_biomes=[BIOME_ROAD])])
    placed = spawn(_flat(), rules, PREFABS, seed=1, biome=biome,
                   edge_distance=compute_edge_distance(biome))
    assert placed == []


def test_small_allowed_area_fills_without_fallback():
    biome = np.zeros((128, 128), dtype=np.int32)
    biome[60:64, 60:64] = 1
    edge = compute_edge_distance(biome, 1.0)
    rules = SpawningRules([
        SpawnEntry("tree", density_per_km2=0, min_count=3, allowed_biomes=[1],
                   min_distance_meters=1.0)])
    placed = spawn(_flat(), rules, PREFABS, seed=12, biome=biome, edge_distance=edge)
    # candidates come from the patch only, so the main pass finds room
    assert len(placed) == 3
    assert not any(p.fallback for p in placed)
    for p in placed:
        assert biome[nearest_cell(biome.shape, p.position[0], p.position[2])] == 1


# ---------------------------------------------------------------------------
# Fallback, ordering, configuration absence
# ---------------------------------------------------------------------------

def test_fallback_fills_decoration_min_count():
    rules = SpawningRules([
        SpawnEntry("rock", density_per_km2=0, min_count=50, min_distance_meters=200.0)])
    placed = spawn(_flat(), rules, PREFABS, seed=21)
    assert len(placed) == 50
    assert sum(1 for p in placed if not p.fallback) == 1
    assert sum(1 for p in placed if p.fallback) == 49


def test_fallback_keeps_target_spacing():
    rules = SpawningRules([
        SpawnEntry("target", density_per_km2=0, min_count=50, is_target=True,
                   min_distance_meters=200.0)])
    placed = spawn(_flat(), rules, PREFABS, seed=21)
    assert len(placed) == 1


def test_targets_are_placed_first():
    rules = SpawningRules([
        SpawnEntry("tree", density_per_km2=5000, min_count=0, min_distance_meters=4.0),
        SpawnEntry("target", density_per_km2=0, min_count=3, is_target=True),
    ])
    placed = spawn(_flat(), rules, PREFABS, seed=2)
    assert [p.is_target for p in placed[:3]] == [True, True, True]
    assert all(p.entry_index == 1 for p in placed[:3])
    assert all(p.entry_index == 0 for p in placed[3:])
    assert [p.object_id for p in placed] == list(range(len(placed)))


def test_spawn_is_deterministic():
    heights = generate_heightmap(128, 128, seed=6, noise_scale=3.5, height_factor=1.5)
    rules = SpawningRules([
        SpawnEntry("tree", density_per_km2=3000, min_count=0),
        SpawnEntry("target", min_count=2, is_target=True),
    ])
    a = spawn(heights, rules, PREFABS, seed=77, scale=15.0, offset=-8.0)
    b = spawn(heights, rules, PREFABS, seed=77, scale=15.0, offset=-8.0)
    assert [p.position for p in a] == [p.position for p in b]
    assert [p.yaw_deg for p in a] == [p.yaw_deg for p in b]

    c = spawn(heights, rules, PREFABS, seed=78, scale=15.0, offset=-8.0)
    assert [p.position for p in a] != [p.position for p in c]


def test_unresolved_prefab_is_skipped():
    rules = SpawningRules([
        SpawnEntry("missing_asset", density_per_km2=3000, min_count=5),
        SpawnEntry("tree", density_per_km2=0, min_count=2),
    ])
    placed = spawn(_flat(), rules, PREFABS, seed=1)
    assert len(placed) == 2
    assert all(p.asset_id == "tree" for p in placed)
    assert all(p.prefab == PREFABS["tree"] for p in placed)


def test_prefab_resolver_callable():
    rules = SpawningRules([SpawnEntry("tree", density_per_km2=0, min_count=2)])
    placed = spawn(_flat(), rules, lambda asset_id: asset_id.upper(), seed=1)
    assert [p.prefab for p in placed] == ["TREE", "TREE"]


def test_empty_entries_are_skipped():
    rules = SpawningRules([SpawnEntry("tree", density_per_km2=0, min_count=0)])
    assert spawn(_flat(), rules, PREFABS, seed=1) == []


def test_spawner_shape_mismatch():
    try:
        ObjectSpawner(_flat(), biome=np.zeros((64, 64), dtype=np.int32))
    except ValueError:
        return
    raise AssertionError("expected ValueError")


# ---------------------------------------------------------------------------
# Orientation
# ---------------------------------------------------------------------------

def _assert_rotation(basis):
    basis = np.asarray(basis)
    assert np.allclose(basis.T.dot(basis), np.eye(3), atol=1e-9)
    assert abs(np.linalg.det(basis) - 1.0) < 1e-9


def test_aligned_objects_follow_the_surface():
    # constant slope along x: 0.1 m rise per meter
    heights = np.tile(np.arange(128, dtype=np.float64)[:, np.newaxis] * 0.01, (1, 128))
    rules = SpawningRules([SpawnEntry("target", min_count=6, is_target=True)])
    placed = spawn(heights, rules, PREFABS, seed=4, scale=10.0)
    assert len(placed) == 6

    expected_up = np.array([-0.1, 1.0, 0.0]) / math.sqrt(1.01)
    for p in placed:
        _assert_rotation(p.basis)
        assert np.allclose(p.basis[:, 1], expected_up, atol=1e-6)
        assert abs(p.tilt_deg - math.degrees(math.atan(0.1))) < 1e-6


def test_tilt_limit_falls_back_to_upright():
    heights = np.tile(np.arange(128, dtype=np.float64)[:, np.newaxis] * 0.01, (1, 128))
    rules = SpawningRules([SpawnEntry("target", min_count=4, is_target=True,
                                      max_tilt_deg=2.0)])
    placed = spawn(heights, rules, PREFABS, seed=4, scale=10.0)
    for p in placed:
        _assert_rotation(p.basis)
        assert np.allclose(p.basis[:, 1], [0.0, 1.0, 0.0])
        assert p.tilt_deg == 0.0


def test_unaligned_rotation_degrees_is_yaw():
    rules = SpawningRules([SpawnEntry("tree", min_count=5, align_to_slope=False)])
    placed = spawn(_flat(), rules, PREFABS, seed=9)
    assert len(placed) == 5
    for p in placed:
        _assert_rotation(p.basis)
        rx, ry, rz = p.rotation_degrees()
        assert abs(rx) < 1e-9 and abs(rz) < 1e-9
        yaw = math.radians(p.yaw_deg)
        assert abs(math.cos(math.radians(ry)) - math.cos(yaw)) < 1e-9
        assert abs(math.sin(math.radians(ry)) - math.sin(yaw)) < 1e-9


def test_placed_objects_are_immutable():
    rules = SpawningRules([SpawnEntry("tree", min_count=1)])
    placed = spawn(_flat(), rules, PREFABS, seed=1)
    obj = placed[0]
    try:
        obj.asset_id = "other"
    except AttributeError:
        pass
    else:
        raise AssertionError("PlacedObject should be read-only")
    assert not obj.basis.flags.writeable


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    print("=" * 70)
    print("object spawner tests")
    print("=" * 70)

    _test("density_law", test_density_law)
    _test("spatial_hash_queries", test_spatial_hash_queries)
    _test("spatial_hash_negative_coordinates", test_spatial_hash_negative_coordinates)
    _test("spatial_hash_cell_floor", test_spatial_hash_cell_floor)
    _test("spatial_hash_wide_query_on_fine_grid", test_spatial_hash_wide_query_on_fine_grid)
    _test("mixed_spacings_stay_fast", test_mixed_spacings_stay_fast)
    _test("minimum_distance_between_placements", test_minimum_distance_between_placements)
    _test("target_edge_margin", test_target_edge_margin)
    _test("height_and_slope_filters", test_height_and_slope_filters)
    _test("allowed_biomes_and_edge_band", test_allowed_biomes_and_edge_band)
    _test("biome_rules_without_maps_reject", test_biome_rules_without_maps_reject)
    _test("road_target_scenario", test_road_target_scenario)
    _test("no_candidate_cells", test_no_candidate_cells)
    _test("small_allowed_area_fills_without_fallback",
          test_small_allowed_area_fills_without_fallback)
    _test("fallback_fills_decoration_min_count", test_fallback_fills_decoration_min_count)
    _test("fallback_keeps_target_spacing", test_fallback_keeps_target_spacing)
    _test("targets_are_placed_first", test_targets_are_placed_first)
    _test("spawn_is_deterministic", test_spawn_is_deterministic)
    _test("unresolved_prefab_is_skipped", test_unresolved_prefab_is_skipped)
    _test("prefab_resolver_callable", test_prefab_resolver_callable)
    _test("empty_entries_are_skipped", test_empty_entries_are_skipped)
    _test("spawner_shape_mismatch", test_spawner_shape_mismatch)
    _test("aligned_objects_follow_the_surface", test_aligned_objects_follow_the_surface)
    _test("tilt_limit_falls_back_to_upright", test_tilt_limit_falls_back_to_upright)
    _test("unaligned_rotation_degrees_is_yaw", test_unaligned_rotation_degrees_is_yaw)
    _test("placed_objects_are_immutable", test_placed_objects_are_immutable)

    print("\n" + "=" * 70)
    print("Results: {} passed, {} failed".format(_PASSED, _FAILED))
    if _ERRORS:
        print("\nFailures:")
        for name, err in _ERRORS:
            print("  {} -- {}".format(name, err))
    print("=" * 70)
    return 0 if _FAILED == 0 else 1


if __name__ == '__main__':
    sys.exit(main())
