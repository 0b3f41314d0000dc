"""
Region Generator - runs the full generation pipeline for one region.

Stages, each consuming the previous stage's output:

    1. seeds       world seed -> height / biome / object sub-seeds
    2. heights     fractal noise height field
    3. biomes      biome grid + edge-distance field
    4. control     packed texture control map
    5. objects     placed props and targets

Usage:
    from region_builder.region_generator import RegionGenerator, RegionSettings

    settings = RegionSettings(width=256, depth=256, seed=1234)
    gen = RegionGenerator(rules, settings, layer_to_slot, prefab_map)
    result = gen.generate()
    result['control']        # uint32 (256, 256)
    result['targets']        # list of PlacedObject
"""

import logging

from .biome_map import (BIOME_MODES, DEFAULT_EDGE_RADIUS_PX,
                        compute_edge_distance, generate_biome_map)
from .noise import generate_heightmap
from .object_spawner import ObjectSpawner
from .raster import clamped_cell, is_power_of_two
from .region_rules import RegionRules, lookup_key
from .seeding import (SALT_BIOME, SALT_HEIGHT, SALT_OBJECTS, derive_sub_seeds,
                      resolve_seed)
from .terrain_painter import DEFAULT_BLEND_WIDTH_METERS, build_control_map

log = logging.getLogger(__name__)

MIN_REGION_SIZE = 128


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class RegionSettings:
    """
    Generation settings for one region.

    noise_scale, height_factor and offset are fallbacks; a rules document
    that sets them wins.
    """

    def __init__(self, width=256, depth=256, meters_per_pixel=1.0, scale=15.0,
                 offset=-8.0, noise_scale=3.5, height_factor=1.5,
                 region_id="tundra", seed=0, biome_mode="height_slope",
                 biome_params=None, edge_radius_px=DEFAULT_EDGE_RADIUS_PX,
                 blend_width_meters=DEFAULT_BLEND_WIDTH_METERS):
        self.width = int(width)
        self.depth = int(depth)
        self.meters_per_pixel = float(meters_per_pixel)
        self.scale = float(scale)
        self.offset = float(offset)
        self.noise_scale = float(noise_scale)
        self.height_factor = float(height_factor)
        self.region_id = region_id
        self.seed = int(seed)
        self.biome_mode = biome_mode
        self.biome_params = dict(biome_params or {})
        self.edge_radius_px = int(edge_radius_px)
        self.blend_width_meters = float(blend_width_meters)

    def validate(self):
        """
        Check the settings.

        Returns a list of error strings.  An empty list means the settings
        are usable.
        """
        errors = []
        for name in ('width', 'depth'):
            value = getattr(self, name)
            if not is_power_of_two(value) or value < MIN_REGION_SIZE:
                errors.append("{} must be a power of two >= {}, got {}".format(
                    name, MIN_REGION_SIZE, value))
        for name in ('meters_per_pixel', 'scale', 'noise_scale'):
            if getattr(self, name) <= 0:
                errors.append("{} must be positive, got {}".format(
                    name, getattr(self, name)))
        if self.biome_mode not in BIOME_MODES:
            errors.append("biome_mode must be one of {}, got {!r}".format(
                ", ".join(BIOME_MODES), self.biome_mode))
        if self.edge_radius_px <= 0:
            errors.append("edge_radius_px must be positive, got {}".format(
                self.edge_radius_px))
        if self.blend_width_meters <= 0:
            errors.append("blend_width_meters must be positive, got {}".format(
                self.blend_width_meters))
        return errors

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        defaults = cls()
        kwargs = {}
        for name in ('width', 'depth', 'meters_per_pixel', 'scale', 'offset',
                     'noise_scale', 'height_factor', 'region_id', 'seed',
                     'biome_mode', 'biome_params', 'edge_radius_px',
                     'blend_width_meters'):
            kwargs[name] = lookup_key(data, name, getattr(defaults, name))
        return cls(**kwargs)

    def to_dict(self):
        return dict(vars(self))


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class RegionGenerator:
    """
    Pipeline facade.

    Stage methods can be called one by one; each runs the stages it depends
    on if they have not run yet.  Results are kept on the instance.
    """

    def __init__(self, rules, settings=None, layer_to_slot=None, prefab_map=None):
        """
        Args:
            rules:         RegionRules (or a rules dict).
            settings:      RegionSettings; defaults when None.
            layer_to_slot: Dict layer id -> texture slot.
            prefab_map:    Dict asset id -> prefab reference (or callable).

        Raises:
            ValueError: On invalid settings or rules.
        """
        if isinstance(rules, dict):
            rules = RegionRules.from_dict(rules)
        self.rules = rules if rules is not None else RegionRules()
        self.settings = settings if settings is not None else RegionSettings()

        errors = self.settings.validate()
        if errors:
            raise ValueError("Invalid region settings:\n  " + "\n  ".join(errors))

        self.layer_to_slot = dict(layer_to_slot or {})
        self.prefab_map = prefab_map if prefab_map is not None else {}

        self.region_id = self.rules.region_id or self.settings.region_id
        self.seed = resolve_seed(self.settings.seed)
        self.sub_seeds = derive_sub_seeds(self.seed, self.region_id)
        log.info("Region %r seed %d (height=%d biome=%d objects=%d)",
                 self.region_id, self.seed, self.sub_seeds[SALT_HEIGHT],
                 self.sub_seeds[SALT_BIOME], self.sub_seeds[SALT_OBJECTS])

        terrain = self.rules.terrain
        self.noise_scale = (terrain.noise_scale if terrain.noise_scale is not None
                            else self.settings.noise_scale)
        self.height_factor = (terrain.height_factor if terrain.height_factor is not None
                              else self.settings.height_factor)
        self.offset = (terrain.offset if terrain.offset is not None
                       else self.settings.offset)

        self.heights = None
        self.biome = None
        self.edge_distance = None
        self.control = None
        self.objects = None

    # -----------------------------------------------------------------
    # Stages
    # -----------------------------------------------------------------

    def generate_heightmap(self):
        s = self.settings
        self.heights = generate_heightmap(
            s.width, s.depth, self.sub_seeds[SALT_HEIGHT],
            noise_scale=self.noise_scale, height_factor=self.height_factor)
        log.info("Height field %dx%d (noise_scale=%.3f, height_factor=%.3f)",
                 s.width, s.depth, self.noise_scale, self.height_factor)
        return self.heights

    def generate_biomes(self):
        """Biome grid and edge-distance field; returns (biome, edge_distance)."""
        if self.heights is None:
            self.generate_heightmap()
        s = self.settings
        self.biome = generate_biome_map(
            s.biome_mode, s.width, s.depth, self.sub_seeds[SALT_BIOME],
            heights01=self.heights, meters_per_pixel=s.meters_per_pixel,
            scale=s.scale, offset=self.offset, **s.biome_params)
        self.edge_distance = compute_edge_distance(
            self.biome, s.meters_per_pixel, s.edge_radius_px)
        log.info("Biome map (%s) ready", s.biome_mode)
        return self.biome, self.edge_distance

    def generate_control_map(self):
        if self.biome is None:
            self.generate_biomes()
        s = self.settings
        self.control = build_control_map(
            self.heights, self.rules.terrain, self.layer_to_slot,
            meters_per_pixel=s.meters_per_pixel, scale=s.scale,
            offset=self.offset, biome=self.biome,
            edge_distance=self.edge_distance, seed=self.sub_seeds[SALT_BIOME],
            blend_width_meters=s.blend_width_meters)
        log.info("Control map ready")
        return self.control

    def spawn_objects(self):
        if self.biome is None:
            self.generate_biomes()
        s = self.settings
        spawner = ObjectSpawner(self.heights, s.meters_per_pixel, s.scale,
                                self.offset, biome=self.biome,
                                edge_distance=self.edge_distance)
        self.objects = spawner.spawn(self.rules.spawning, self.prefab_map,
                                     self.sub_seeds[SALT_OBJECTS])
        return self.objects

    @property
    def targets(self):
        return [o for o in self.objects or [] if o.is_target]

    def generate(self):
        """
        Run every stage.

        Returns:
            dict with region_id, seed, sub_seeds, heights, biome,
            edge_distance, control, objects, targets, local_sky.
        """
        self.generate_heightmap()
        self.generate_biomes()
        self.generate_control_map()
        self.spawn_objects()
        return {
            'region_id': self.region_id,
            'seed': self.seed,
            'sub_seeds': dict(self.sub_seeds),
            'heights': self.heights,
            'biome': self.biome,
            'edge_distance': self.edge_distance,
            'control': self.control,
            'objects': self.objects,
            'targets': self.targets,
            'local_sky': self.rules.local_sky,
        }

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def sample_height_meters(self, x, z):
        """
        Terrain height in meters at world position (*x*, *z*).

        Uses the nearest cell, clamped to the region.  Returns -inf before
        the height field exists.
        """
        if self.heights is None:
            return float('-inf')
        mpp = self.settings.meters_per_pixel
        ix, iz = clamped_cell(self.heights.shape, x / mpp, z / mpp)
        return float(self.heights[ix, iz]) * self.settings.scale + self.offset
