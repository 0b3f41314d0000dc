"""
Tests for region_builder.region_generator.

Covers:
  - RegionSettings defaults, validation and dict parsing
  - full pipeline output layout and determinism
  - rules overriding the height-field parameters
  - terrain height queries
"""

import os
import sys
import traceback

import numpy as np

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from region_builder.biome_map import BIOME_FIELD, BIOME_FOREST, BIOME_ROAD
from region_builder.region_generator import RegionGenerator, RegionSettings
from region_builder.region_rules import RegionRules
from region_builder.terrain_painter import unpack_control_array


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PASSED = 0
_FAILED = 0
_ERRORS = []

LAYER_TO_SLOT = {"grass": 0, "mud": 1, "snow": 2, "rock": 3, "road": 4, "moss": 5}
PREFABS = {"pine": "res://pine.tscn", "vehicle": "res://vehicle.tscn"}

RULES = {
    "regionId": "tundra",
    "terrain": {
        "defaultLayer": "grass",
        "heightBands": [{"minMeters": -100, "maxMeters": 0, "layerId": "mud"},
                        {"minMeters": 0, "maxMeters": 100, "layerId": "snow"}],
        "slopeOverrides": [{"overrideLayerId": "rock",
                            "blendStartDeg": 30, "blendEndDeg": 40}],
        "biomeOverrides": [{"biomeId": 2, "layerId": "road"},
                           {"biomeId": 1, "layerId": "moss"}],
    },
    "spawning": {
        "entries": [
            {"assetId": "pine", "densityPerKm2": 2000, "minCount": 0,
             "allowedBiomes": [1], "edgeMinMeters": 3},
            {"assetId": "vehicle", "densityPerKm2": 0, "minCount": 2,
             "isTarget": True, "allowedBiomes": [2]},
        ],
    },
    "localSky": {"preset": "overcast"},
}


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


def _corridor_settings(seed=1234):
    return RegionSettings(width=128, depth=128, seed=seed, biome_mode='corridor',
                          biome_params={'wobble_meters': 0.0})


def _generator(seed=1234, rules=None):
    return RegionGenerator(RegionRules.from_dict(rules or RULES),
                           _corridor_settings(seed), LAYER_TO_SLOT, PREFABS)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def test_settings_defaults():
    s = RegionSettings()
    assert (s.width, s.depth) == (256, 256)
    assert s.meters_per_pixel == 1.0
    assert s.scale == 15.0
    assert s.offset == -8.0
    assert s.noise_scale == 3.5
    assert s.height_factor == 1.5
    assert s.region_id == "tundra"
    assert s.seed == 0
    assert s.biome_mode == "height_slope"
    assert s.edge_radius_px == 32
    assert s.validate() == []


def test_settings_validation():
    assert RegionSettings(width=512, depth=128).validate() == []
    assert len(RegionSettings(width=100).validate()) == 1
    assert len(RegionSettings(width=64, depth=64).validate()) == 2
    assert RegionSettings(meters_per_pixel=0).validate()
    assert RegionSettings(scale=-1).validate()
    assert RegionSettings(biome_mode='swamp').validate()
    assert RegionSettings(edge_radius_px=0).validate()


def test_settings_from_dict():
    s = RegionSettings.from_dict({"Width": 512, "seed": 5, "biomeMode": "split",
                                  "meters_per_pixel": 2})
    assert s.width == 512
    assert s.depth == 256
    assert s.seed == 5
    assert s.biome_mode == "split"
    assert s.meters_per_pixel == 2.0
    assert RegionSettings.from_dict(s.to_dict()).to_dict() == s.to_dict()


def test_invalid_settings_raise():
    try:
        RegionGenerator(RegionRules(), RegionSettings(width=100))
    except ValueError as e:
        assert "width" in str(e)
        return
    raise AssertionError("expected ValueError")


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def test_generate_output_layout():
    result = _generator().generate()
    assert result['region_id'] == "tundra"
    assert result['seed'] == 1234
    assert set(result['sub_seeds']) == {"height", "biome", "objects"}

    for name in ('heights', 'biome', 'edge_distance', 'control'):
        assert result[name].shape == (128, 128), name
    assert result['control'].dtype == np.uint32
    assert set(np.unique(result['biome']).tolist()) == {BIOME_FIELD, BIOME_FOREST,
                                                        BIOME_ROAD}

    base, _, _, _ = unpack_control_array(result['control'])
    assert set(np.unique(base).tolist()) <= set(LAYER_TO_SLOT.values())

    targets = result['targets']
    assert len(targets) == 2
    assert all(t.is_target and t.asset_id == "vehicle" for t in targets)
    assert all(any(t is o for o in result['objects']) for t in targets)
    for t in targets:
        ix = int(np.floor(t.position[0] + 0.5))
        iz = int(np.floor(t.position[2] + 0.5))
        assert result['biome'][ix, iz] == BIOME_ROAD

    assert result['local_sky'].preset == "overcast"


def test_generate_is_deterministic():
    a = _generator(seed=99).generate()
    b = _generator(seed=99).generate()
    assert np.array_equal(a['heights'], b['heights'])
    assert np.array_equal(a['biome'], b['biome'])
    assert np.array_equal(a['control'], b['control'])
    assert [o.position for o in a['objects']] == [o.position for o in b['objects']]

    c = _generator(seed=100).generate()
    assert not np.array_equal(a['heights'], c['heights'])


def test_stage_methods_run_dependencies():
    gen = _generator()
    assert gen.heights is None
    control = gen.generate_control_map()
    assert gen.heights is not None
    assert gen.biome is not None
    assert gen.edge_distance is not None
    assert control is gen.control
    assert gen.objects is None
    objects = gen.spawn_objects()
    assert objects is gen.objects
    assert len(gen.targets) == 2


def test_rules_override_height_parameters():
    rules = dict(RULES)
    rules["terrain"] = dict(RULES["terrain"], noiseScale=2.0, heightFactor=1.0,
                            OffSet=-3.0)
    gen = _generator(rules=rules)
    assert gen.noise_scale == 2.0
    assert gen.height_factor == 1.0
    assert gen.offset == -3.0

    plain = _generator()
    assert plain.noise_scale == 3.5
    assert plain.height_factor == 1.5
    assert plain.offset == -8.0


def test_zero_seed_picks_fresh_seed():
    gen = RegionGenerator(RegionRules(), RegionSettings(width=128, depth=128, seed=0))
    assert gen.seed != 0


def test_height_slope_mode():
    gen = RegionGenerator(RegionRules.from_dict(RULES),
                          RegionSettings(width=128, depth=128, seed=7),
                          LAYER_TO_SLOT, PREFABS)
    biome, edge = gen.generate_biomes()
    assert set(np.unique(biome).tolist()) <= {BIOME_FIELD, BIOME_FOREST}
    assert edge.max() <= 32.0


def test_sample_height_meters():
    gen = _generator()
    assert gen.sample_height_meters(10.0, 10.0) == float('-inf')
    heights = gen.generate_heightmap()
    expected = float(heights[10, 20]) * 15.0 - 8.0
    assert gen.sample_height_meters(10.2, 19.8) == expected
    # outside the region: clamped to the border
    assert gen.sample_height_meters(-50.0, 500.0) == float(heights[0, 127]) * 15.0 - 8.0


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    print("=" * 70)
    print("region generator tests")
    print("=" * 70)

    _test("settings_defaults", test_settings_defaults)
    _test("settings_validation", test_settings_validation)
    _test("settings_from_dict", test_settings_from_dict)
    _test("invalid_settings_raise", test_invalid_settings_raise)
    _test("generate_output_layout", test_generate_output_layout)
    _test("generate_is_deterministic", test_generate_is_deterministic)
    _test("stage_methods_run_dependencies", test_stage_methods_run_dependencies)
    _test("rules_override_height_parameters", test_rules_override_height_parameters)
    _test("zero_seed_picks_fresh_seed", test_zero_seed_picks_fresh_seed)
    _test("height_slope_mode", test_height_slope_mode)
    _test("sample_height_meters", test_sample_height_meters)

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
