"""
Region Builder - procedural terrain regions from declarative rules.

Generates, for one region and one seed, a fractal height field, a biome
classification with its edge-distance field, a packed texture control map
for the renderer, and rule-driven placements of props and targets.  Target
placements can be exported to JSON for downstream labelling.

The generation core performs no file I/O; region_files loads rules and
asset sets and writes target records, preview renders PNG images.
"""

import os

from .seeding import resolve_seed, derive_seed, derive_sub_seeds
from .noise import SimplexNoise, generate_heightmap
from .biome_map import (BIOME_FIELD, BIOME_FOREST, BIOME_ROAD, generate_biome_map,
                        generate_split, generate_from_height_slope,
                        generate_corridor, majority_smooth, compute_edge_distance)
from .terrain_painter import (LayerBlend, pick_layer, build_control_map,
                              pack_control, unpack_control, control_to_float32)
from .object_spawner import ObjectSpawner, PlacedObject, SpatialHash, spawn
from .region_rules import (RegionRules, TerrainRules, SpawningRules, SpawnEntry,
                           HeightBand, SlopeOverride, BiomeOverride,
                           LocalSkySettings, validate_region_rules)
from .region_generator import RegionGenerator, RegionSettings
from .region_files import (load_region_rules, load_asset_set,
                           export_targets_to_json)


def build_region(rules, output_dir=None, settings=None, layer_to_slot=None,
                 prefab_map=None):
    """
    High-level API to generate a complete region.

    Args:
        rules: RegionRules, a rules dict, or a path to a rules JSON file.
        output_dir: If given, the target record is written to
                    <output_dir>/targets.json.
        settings: RegionSettings (or a settings dict). Default settings when
                  None.
        layer_to_slot: Dict layer id -> texture slot index (0-31).
        prefab_map: Dict asset id -> prefab reference.

    Returns:
        dict: RegionGenerator.generate() result, plus 'targets_path'
              (str or None).
    """
    if isinstance(rules, str):
        rules = load_region_rules(rules)
    if isinstance(settings, dict):
        settings = RegionSettings.from_dict(settings)

    generator = RegionGenerator(rules, settings, layer_to_slot, prefab_map)
    result = generator.generate()

    result['targets_path'] = None
    if output_dir is not None:
        path = os.path.join(output_dir, 'targets.json')
        export_targets_to_json(result['targets'], path, result['region_id'],
                               result['seed'])
        result['targets_path'] = path

    return result
