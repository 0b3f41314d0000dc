"""
Object/Target Spawner - rule-driven placement of props and targets.

Each spawn entry asks for a number of copies of one asset, derived from its
density and clamped by min/max counts.  Candidates are drawn from random
grid cells with a small jitter and run through the entry's filters:

    target edge margin -> height -> slope -> biome / edge distance
    -> minimum distance to every object placed so far

Target entries are processed before all other entries so decoration never
crowds targets out.  An entry that ends below its min_count gets a relaxed
fallback pass in which non-target entries ignore spacing.

All accepted positions of one spawn call share a single SpatialHash.
"""

import logging
import math
import random
from collections import namedtuple

import numpy as np

from .raster import (clamped_cell, ensure_same_shape, nearest_cell,
                     sample_bilinear, slope_degrees, surface_normal)

log = logging.getLogger(__name__)

DEFAULT_JITTER_STRENGTH = 1.0
DEFAULT_MIN_DISTANCE_METERS = 1.5
DEFAULT_MAX_TILT_DEG = 50.0
DEFAULT_ALIGN_TO_SLOPE = True
TARGET_EDGE_MARGIN_METERS = 10.0

ATTEMPTS_PER_OBJECT = 30
FALLBACK_ATTEMPTS_PER_OBJECT = 50

_MIN_HASH_CELL = 0.01
_DEGENERATE = 1e-6


def target_count(entry, area_km2):
    """
    Number of objects an entry asks for over *area_km2*.

    round(density * area), clamped to max_count (when set), raised to
    min_count.
    """
    count = int(round(entry.density_per_km2 * area_km2))
    if entry.max_count is not None:
        count = min(count, entry.max_count)
    return max(count, entry.min_count)


# ===================================================================
# Spatial hash
# ===================================================================

class SpatialHash:
    """
    Uniform grid of accepted positions for minimum-distance queries.

    Positions are planar (x, z) in meters.  A query for distance d scans
    ceil(d / cell_size) rings of cells around the query cell, so it is exact
    for any d.  When those rings hold more cells than are occupied, the
    query walks the occupied cells instead, so one entry with a tiny
    spacing does not make wide queries scan millions of empty cells.
    """

    def __init__(self, cell_size):
        self.cell_size = max(float(cell_size), _MIN_HASH_CELL)
        self._cells = {}
        self._count = 0

    def __len__(self):
        return self._count

    def _key(self, x, z):
        return (int(math.floor(x / self.cell_size)),
                int(math.floor(z / self.cell_size)))

    def insert(self, x, z):
        self._cells.setdefault(self._key(x, z), []).append((x, z))
        self._count += 1

    def is_clear(self, x, z, min_distance):
        """True if no stored position lies closer than *min_distance*."""
        if min_distance <= 0.0 or not self._count:
            return True

        cx, cz = self._key(x, z)
        rings = int(math.ceil(min_distance / self.cell_size))
        limit = min_distance * min_distance

        # Wide queries over a fine grid: walk the occupied cells instead
        span = 2 * rings + 1
        if span * span > len(self._cells):
            buckets = self._cells.values()
        else:
            buckets = (self._cells.get((gx, gz), ())
                       for gx in range(cx - rings, cx + rings + 1)
                       for gz in range(cz - rings, cz + rings + 1))

        for bucket in buckets:
            for px, pz in bucket:
                dx = px - x
                dz = pz - z
                if dx * dx + dz * dz < limit:
                    return False
        return True


# ===================================================================
# Placement records
# ===================================================================

class PlacedObject(namedtuple('PlacedObject', [
        'object_id', 'asset_id', 'prefab', 'entry_index', 'position', 'basis',
        'yaw_deg', 'tilt_deg', 'is_target', 'fallback'])):
    """
    One placed object.

    position is (x, y, z) in meters with y the terrain height.  basis is a
    3x3 rotation matrix whose columns are the object's right, up and forward
    axes.
    """

    __slots__ = ()

    def rotation_degrees(self):
        """
        Euler angles (x, y, z) in degrees, YXZ order.

        Matches the convention scene tools use for Y-up models: yaw about
        Y first, then pitch about X, then roll about Z.
        """
        m = self.basis
        m12 = float(m[1][2])
        if m12 < 1.0 - _DEGENERATE:
            if m12 > -(1.0 - _DEGENERATE):
                rx = math.asin(-m12)
                ry = math.atan2(float(m[0][2]), float(m[2][2]))
                rz = math.atan2(float(m[1][0]), float(m[1][1]))
            else:
                rx = math.pi * 0.5
                ry = math.atan2(float(m[0][1]), float(m[0][0]))
                rz = 0.0
        else:
            rx = -math.pi * 0.5
            ry = -math.atan2(float(m[0][1]), float(m[0][0]))
            rz = 0.0
        return (math.degrees(rx), math.degrees(ry), math.degrees(rz))


def _yaw_basis(yaw_rad):
    c = math.cos(yaw_rad)
    s = math.sin(yaw_rad)
    return np.array([[c, 0.0, s],
                     [0.0, 1.0, 0.0],
                     [-s, 0.0, c]], dtype=np.float64)


def _aligned_basis(normal, yaw_rad):
    """
    Basis with up = *normal* and forward = the yaw direction projected
    onto the surface plane.  None if the projection degenerates.
    """
    up = np.asarray(normal, dtype=np.float64)
    forward = np.array([math.sin(yaw_rad), 0.0, math.cos(yaw_rad)])
    forward = forward - up * float(np.dot(forward, up))
    length = float(np.linalg.norm(forward))
    if length < _DEGENERATE:
        return None
    forward /= length
    right = np.cross(up, forward)
    right /= float(np.linalg.norm(right))
    return np.column_stack((right, up, forward))


def _resolve_prefab(prefab_map, asset_id):
    if prefab_map is None or not asset_id:
        return None
    if callable(prefab_map):
        return prefab_map(asset_id)
    return prefab_map.get(asset_id)


# ===================================================================
# Spawner
# ===================================================================

class ObjectSpawner:
    """
    Places the objects of one region.

    The spawner owns read-only views of the region rasters.  Each call to
    ``spawn`` builds its own SpatialHash and random generator, so repeated
    calls with the same seed return the same placements.
    """

    def __init__(self, heights01, meters_per_pixel=1.0, scale=1.0, offset=0.0,
                 biome=None, edge_distance=None):
        """
        Args:
            heights01:        Normalised height field (width, depth).
            meters_per_pixel: Cell size in meters.
            scale, offset:    Height conversion to meters.
            biome:            Optional biome grid (same shape).
            edge_distance:    Optional edge-distance field in meters.

        Raises:
            ValueError: If the grids do not share one shape.
        """
        ensure_same_shape(heights=heights01, biome=biome,
                          edge_distance=edge_distance)
        self.heights = np.asarray(heights01, dtype=np.float64)
        self.width, self.depth = self.heights.shape
        self.meters_per_pixel = float(meters_per_pixel)
        self.scale = float(scale)
        self.offset = float(offset)
        self.biome = biome
        self.edge_distance = edge_distance
        self._slope = slope_degrees(self.heights, self.meters_per_pixel,
                                    self.scale, self.offset)

    @property
    def area_km2(self):
        mpp = self.meters_per_pixel
        return (self.width * mpp) * (self.depth * mpp) / 1e6

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def spawn(self, rules, prefab_map, seed):
        """
        Place every spawn entry of *rules*.

        Args:
            rules:      SpawningRules, or a list of SpawnEntry.
            prefab_map: Dict asset id -> prefab reference, or a callable
                        returning the prefab (None when unknown).
            seed:       Object seed.

        Returns:
            List of PlacedObject, targets first.
        """
        entries = list(getattr(rules, 'entries', rules) or [])
        rng = random.Random(seed)
        index = SpatialHash(self._hash_cell_size(entries))
        placed = []

        order = ([(i, e) for i, e in enumerate(entries) if e.is_target]
                 + [(i, e) for i, e in enumerate(entries) if not e.is_target])

        for entry_index, entry in order:
            self._spawn_entry(entry_index, entry, prefab_map, rng, index, placed)

        log.info("Spawned %d objects (%d targets) from %d entries",
                 len(placed), sum(1 for p in placed if p.is_target), len(entries))
        return placed

    # -----------------------------------------------------------------
    # Per-entry placement
    # -----------------------------------------------------------------

    @staticmethod
    def _hash_cell_size(entries):
        sizes = [DEFAULT_MIN_DISTANCE_METERS]
        for entry in entries:
            if entry.min_distance_meters is not None and entry.min_distance_meters > 0:
                sizes.append(entry.min_distance_meters)
        return max(min(sizes), _MIN_HASH_CELL)

    def _spawn_entry(self, entry_index, entry, prefab_map, rng, index, placed):
        if entry.density_per_km2 <= 0 and entry.min_count <= 0:
            return

        wanted = target_count(entry, self.area_km2)
        if wanted <= 0:
            return

        prefab = _resolve_prefab(prefab_map, entry.asset_id)
        if prefab is None:
            log.debug("Entry %d: no prefab for asset %r, skipped",
                      entry_index, entry.asset_id)
            return

        cells = self._candidate_cells(entry)
        if cells is not None and len(cells) == 0:
            log.info("Entry %d (%s): no cell in allowed biomes %s",
                     entry_index, entry.asset_id, entry.allowed_biomes)
            return

        min_distance = (entry.min_distance_meters
                        if entry.min_distance_meters is not None
                        else DEFAULT_MIN_DISTANCE_METERS)

        count = self._place(entry_index, entry, prefab, wanted, wanted * ATTEMPTS_PER_OBJECT,
                            cells, min_distance, rng, index, placed, fallback=False)

        if count < entry.min_count:
            missing = entry.min_count - count
            spacing = min_distance if entry.is_target else 0.0
            extra = self._place(entry_index, entry, prefab, missing,
                                missing * FALLBACK_ATTEMPTS_PER_OBJECT, cells,
                                spacing, rng, index, placed, fallback=True)
            log.debug("Entry %d (%s): fallback placed %d of %d missing",
                      entry_index, entry.asset_id, extra, missing)
            count += extra

        if count < entry.min_count:
            log.warning("Entry %d (%s): placed %d, below min_count %d",
                        entry_index, entry.asset_id, count, entry.min_count)
        else:
            log.info("Entry %d (%s): placed %d of %d",
                     entry_index, entry.asset_id, count, wanted)

    def _candidate_cells(self, entry):
        """Allowed-biome cells as an (n, 2) array, or None for "any cell"."""
        if not entry.allowed_biomes:
            return None
        if self.biome is None:
            return np.empty((0, 2), dtype=np.int64)
        return np.argwhere(np.isin(self.biome, entry.allowed_biomes))

    def _place(self, entry_index, entry, prefab, wanted, attempts, cells,
               min_distance, rng, index, placed, fallback):
        mpp = self.meters_per_pixel
        jitter = mpp * 0.5 * (entry.jitter_strength
                              if entry.jitter_strength is not None
                              else DEFAULT_JITTER_STRENGTH)
        count = 0

        for _ in range(attempts):
            if count >= wanted:
                break

            if cells is None:
                ix = rng.randrange(self.width)
                iz = rng.randrange(self.depth)
            else:
                ix, iz = cells[rng.randrange(len(cells))]

            x = ix * mpp + jitter * rng.uniform(-1.0, 1.0)
            z = iz * mpp + jitter * rng.uniform(-1.0, 1.0)

            height_m = self._accept(entry, x, z, min_distance, index)
            if height_m is None:
                continue

            index.insert(x, z)
            placed.append(self._make_object(len(placed), entry_index, entry,
                                            prefab, x, height_m, z, rng, fallback))
            count += 1

        return count

    def _accept(self, entry, x, z, min_distance, index):
        """Terrain height in meters if the position passes every filter, else None."""
        mpp = self.meters_per_pixel

        if entry.is_target:
            margin = TARGET_EDGE_MARGIN_METERS
            if (x < margin or x > (self.width - 1) * mpp - margin
                    or z < margin or z > (self.depth - 1) * mpp - margin):
                return None

        fx = x / mpp
        fz = z / mpp

        height_m = sample_bilinear(self.heights, fx, fz) * self.scale + self.offset
        if height_m < entry.min_height_meters or height_m > entry.max_height_meters:
            return None

        sx, sz = clamped_cell(self.heights.shape, fx, fz)
        if self._slope[sx, sz] > entry.max_slope_deg:
            return None

        if entry.wants_biome_rules and not self._biome_ok(entry, fx, fz):
            return None

        if not index.is_clear(x, z, min_distance):
            return None

        return height_m

    def _biome_ok(self, entry, fx, fz):
        cell = nearest_cell(self.heights.shape, fx, fz)
        if cell is None:
            return False

        if entry.allowed_biomes:
            if self.biome is None or int(self.biome[cell]) not in entry.allowed_biomes:
                return False

        if entry.edge_min_meters is not None or entry.edge_max_meters is not None:
            if self.edge_distance is None:
                return False
            dist = float(self.edge_distance[cell])
            if entry.edge_min_meters is not None and dist < entry.edge_min_meters:
                return False
            if entry.edge_max_meters is not None and dist > entry.edge_max_meters:
                return False

        return True

    # -----------------------------------------------------------------
    # Orientation
    # -----------------------------------------------------------------

    def _make_object(self, object_id, entry_index, entry, prefab, x, y, z, rng,
                     fallback):
        yaw = rng.uniform(0.0, 2.0 * math.pi)
        align = (entry.align_to_slope if entry.align_to_slope is not None
                 else DEFAULT_ALIGN_TO_SLOPE)
        max_tilt = (entry.max_tilt_deg if entry.max_tilt_deg is not None
                    else DEFAULT_MAX_TILT_DEG)

        basis = None
        tilt_deg = 0.0
        if align:
            mpp = self.meters_per_pixel
            normal = surface_normal(self.heights, x / mpp, z / mpp, mpp, self.scale)
            tilt = math.degrees(math.acos(min(max(normal[1], -1.0), 1.0)))
            if tilt <= max_tilt:
                basis = _aligned_basis(normal, yaw)
                if basis is not None:
                    tilt_deg = tilt

        if basis is None:
            basis = _yaw_basis(yaw)
        basis.flags.writeable = False

        return PlacedObject(
            object_id=object_id,
            asset_id=entry.asset_id,
            prefab=prefab,
            entry_index=entry_index,
            position=(x, y, z),
            basis=basis,
            yaw_deg=math.degrees(yaw),
            tilt_deg=tilt_deg,
            is_target=entry.is_target,
            fallback=fallback,
        )


def spawn(heights01, rules, prefab_map, seed, meters_per_pixel=1.0, scale=1.0,
          offset=0.0, biome=None, edge_distance=None):
    """Convenience wrapper: ``ObjectSpawner(...).spawn(rules, prefab_map, seed)``."""
    spawner = ObjectSpawner(heights01, meters_per_pixel, scale, offset,
                            biome=biome, edge_distance=edge_distance)
    return spawner.spawn(rules, prefab_map, seed)
