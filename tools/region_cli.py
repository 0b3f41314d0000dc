#!/usr/bin/env python
"""
Command line driver for region generation.

Generates one region from a rules document and an asset set and writes the
rasters (.npy), the target record (targets.json) and PNG previews.

Usage:
  python region_cli.py generate --rules tundra.rules.json --assets tundra_assets.json -o out/
  python region_cli.py generate --rules R --assets A --seed 1234 --size 512 --biome-mode corridor -o out/
  python region_cli.py validate tundra.rules.json
"""

import os
import sys
import logging
import argparse

import numpy as np

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from region_builder.biome_map import BIOME_MODES
from region_builder.preview import save_previews
from region_builder.region_files import (export_targets_to_json, load_asset_set,
                                         load_json, load_region_rules)
from region_builder.region_generator import RegionGenerator, RegionSettings
from region_builder.region_rules import validate_region_rules


# ===================================================================
# Commands
# ===================================================================

def generate(args):
    rules = load_region_rules(args.rules)
    layer_to_slot, prefab_map = load_asset_set(args.assets)

    settings = RegionSettings(
        width=args.size,
        depth=args.size,
        meters_per_pixel=args.meters_per_pixel,
        seed=args.seed,
        region_id=rules.region_id,
        biome_mode=args.biome_mode,
    )
    generator = RegionGenerator(rules, settings, layer_to_slot, prefab_map)
    result = generator.generate()

    output_dir = args.output
    if not os.path.exists(output_dir):
        os.makedirs(output_dir)

    for name in ('heights', 'biome', 'edge_distance', 'control'):
        np.save(os.path.join(output_dir, name + '.npy'), result[name])

    export_targets_to_json(result['targets'], os.path.join(output_dir, 'targets.json'),
                           result['region_id'], result['seed'])
    if not args.no_previews:
        save_previews(output_dir, result['heights'], result['biome'], result['control'])

    print("{} seed={} -> {} ({} objects, {} targets)".format(
        result['region_id'], result['seed'], output_dir,
        len(result['objects']), len(result['targets'])))
    return 0


def validate(args):
    errors = validate_region_rules(load_json(args.input))
    if errors:
        print("{}: {} error(s)".format(args.input, len(errors)))
        for error in errors:
            print("  " + error)
        return 1
    print("{}: OK".format(args.input))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description='Procedural region generator (heights, biomes, control map, objects)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Debug logging')
    subparsers = parser.add_subparsers(dest='command')

    # -- generate -------------------------------------------------------
    p_gen = subparsers.add_parser('generate', help='Generate one region')
    p_gen.add_argument('--rules', required=True, help='Region rules .json file')
    p_gen.add_argument('--assets', required=True, help='Asset set .json file')
    p_gen.add_argument('--seed', type=int, default=0,
                       help='World seed (0 = pick a fresh seed)')
    p_gen.add_argument('--size', type=int, default=256,
                       help='Region size in cells (power of two >= 128)')
    p_gen.add_argument('--meters-per-pixel', type=float, default=1.0,
                       help='Cell size in meters')
    p_gen.add_argument('--biome-mode', choices=BIOME_MODES, default='height_slope',
                       help='Biome map strategy')
    p_gen.add_argument('--no-previews', action='store_true',
                       help='Skip the PNG previews')
    p_gen.add_argument('-o', '--output', required=True, help='Output directory')

    # -- validate -------------------------------------------------------
    p_val = subparsers.add_parser('validate', help='Validate a rules document')
    p_val.add_argument('input', help='Region rules .json file')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s')

    if args.command == 'generate':
        return generate(args)
    if args.command == 'validate':
        return validate(args)

    parser.print_help()
    return 2


if __name__ == '__main__':
    sys.exit(main())
