"""
Biome Map Generator - integer region classification grids.

Three interchangeable strategies, all deterministic for a given seed:

    split         left/right halves by grid column (minimal default)
    height_slope  forest suitability from height and slope, with a noisy
                  forest line and majority smoothing
    corridor      field/forest split with a road band along the boundary

plus the edge-distance field consumed by the terrain painter (soft biome
seams) and the spawner (edge constraints).

Biome ids:
    0 = field, 1 = forest, 2 = road
"""

import logging

import numpy as np
from scipy import ndimage

from .noise import SimplexNoise
from .raster import slope_degrees, to_meters

log = logging.getLogger(__name__)

BIOME_FIELD = 0
BIOME_FOREST = 1
BIOME_ROAD = 2

BIOME_NAMES = {
    BIOME_FIELD: 'field',
    BIOME_FOREST: 'forest',
    BIOME_ROAD: 'road',
}

DEFAULT_EDGE_RADIUS_PX = 32

_MAJORITY_KERNEL = np.ones((3, 3), dtype=np.int32)


# ===================================================================
# Strategies
# ===================================================================

def generate_split(width, depth, seed=0):
    """
    Left half forest, right half field.

    *seed* is accepted for interface parity with the other strategies.
    """
    biome = np.full((width, depth), BIOME_FIELD, dtype=np.int32)
    biome[:width // 2, :] = BIOME_FOREST
    return biome


def generate_from_height_slope(heights01, meters_per_pixel, scale, offset, seed,
                               forest_line_meters=40.0, max_forest_slope_deg=25.0,
                               noise_strength=0.25, noise_scale=0.02,
                               smoothing_iterations=2):
    """
    Classify field/forest from terrain height and slope.

    Forest favours low, gentle ground.  The forest line is shifted by
    low-frequency noise (up to +-20 m at full *noise_strength*) so the
    boundary does not follow a contour exactly.  Per cell:

        height_t = 1 - clamp((h - (line - 10)) / 20)
        slope_t  = 1 - clamp(slope / max_forest_slope_deg)
        forest   = 0.7 * height_t + 0.3 * slope_t > 0.5

    Cells steeper than *max_forest_slope_deg* are always field, also after
    smoothing.

    Args:
        heights01:            Normalised height field.
        meters_per_pixel:     Cell size in meters.
        scale, offset:        Height conversion to meters.
        seed:                 Biome seed.
        forest_line_meters:   Height above which forest thins out.
        max_forest_slope_deg: Hard slope limit for forest.
        noise_strength:       0-1, how wavy the forest line gets.
        noise_scale:          Noise frequency per cell.
        smoothing_iterations: Majority-vote passes.

    Returns:
        int32 array (width, depth) with BIOME_FIELD / BIOME_FOREST.
    """
    heights01 = np.asarray(heights01, dtype=np.float64)
    width, depth = heights01.shape

    height_m = to_meters(heights01, scale, offset)
    slope = slope_degrees(heights01, meters_per_pixel, scale, offset)

    noise = SimplexNoise(seed=seed)
    xs = np.arange(width, dtype=np.float64).reshape(-1, 1) * noise_scale
    zs = np.arange(depth, dtype=np.float64).reshape(1, -1) * noise_scale
    xs, zs = np.broadcast_arrays(xs, zs)
    n = noise.noise2d(xs, zs)

    forest_line = forest_line_meters + n * noise_strength * 20.0
    height_t = 1.0 - np.clip((height_m - (forest_line - 10.0)) / 20.0, 0.0, 1.0)
    slope_t = 1.0 - np.clip(slope / max_forest_slope_deg, 0.0, 1.0)
    score = 0.7 * height_t + 0.3 * slope_t

    too_steep = slope > max_forest_slope_deg
    biome = np.where((score > 0.5) & ~too_steep, BIOME_FOREST, BIOME_FIELD).astype(np.int32)

    biome = majority_smooth(biome, smoothing_iterations)
    biome[too_steep] = BIOME_FIELD

    log.debug("Height/slope biome map: %.1f%% forest",
              100.0 * float(np.mean(biome == BIOME_FOREST)))
    return biome


def generate_corridor(width, depth, seed, meters_per_pixel=1.0, split_ratio=0.5,
                      road_width_meters=6.0, wobble_meters=12.0,
                      wobble_scale=0.01, axis='x'):
    """
    Field and forest separated by a road band.

    The boundary sits at *split_ratio* of the primary *axis* and wanders
    along the secondary axis by up to *wobble_meters* of 1D noise.  Cells
    before the boundary are field, cells after it forest, and cells whose
    centres lie within half the road width of the boundary are road.

    Args:
        width, depth:      Grid dimensions.
        seed:              Biome seed.
        meters_per_pixel:  Cell size in meters.
        split_ratio:       Fraction of the primary axis that is field.
        road_width_meters: Width of the road band.
        wobble_meters:     Noise amplitude of the centre line (0 = straight).
        wobble_scale:      Noise frequency per cell along the secondary axis.
        axis:              'x' (boundary runs along z) or 'z'.

    Returns:
        int32 array (width, depth) with field, forest and road ids.
    """
    if axis not in ('x', 'z'):
        raise ValueError("axis must be 'x' or 'z', got {!r}".format(axis))
    if not 0.0 <= split_ratio <= 1.0:
        raise ValueError("split_ratio must be in [0, 1], got {}".format(split_ratio))

    primary = width if axis == 'x' else depth
    secondary = depth if axis == 'x' else width

    noise = SimplexNoise(seed=seed)
    along = np.arange(secondary, dtype=np.float64) * wobble_scale
    wobble = noise.noise2d(along, np.zeros(secondary)) * (wobble_meters / meters_per_pixel)
    center = primary * split_ratio + wobble                      # (secondary,)

    cell_centers = np.arange(primary, dtype=np.float64).reshape(-1, 1) + 0.5
    half = 0.5 * road_width_meters / meters_per_pixel

    layout = np.where(cell_centers < center, BIOME_FIELD, BIOME_FOREST).astype(np.int32)
    road = (cell_centers >= center - half) & (cell_centers < center + half)
    layout[road] = BIOME_ROAD

    biome = layout if axis == 'x' else layout.T
    return np.ascontiguousarray(biome, dtype=np.int32)


BIOME_MODES = ('split', 'height_slope', 'corridor')


def generate_biome_map(mode, width, depth, seed, heights01=None,
                       meters_per_pixel=1.0, scale=1.0, offset=0.0, **params):
    """
    Dispatch to a biome strategy by name.

    Extra keyword *params* are forwarded to the strategy.

    Raises:
        ValueError: Unknown mode, or 'height_slope' without a height field.
    """
    if mode not in BIOME_MODES:
        raise ValueError("Unknown biome mode {!r}, expected one of {}".format(
            mode, ", ".join(BIOME_MODES)))

    if mode == 'split':
        return generate_split(width, depth, seed)
    if mode == 'corridor':
        return generate_corridor(width, depth, seed,
                                 meters_per_pixel=meters_per_pixel, **params)
    if heights01 is None:
        raise ValueError("height_slope biome mode needs a height field")
    return generate_from_height_slope(heights01, meters_per_pixel, scale, offset,
                                      seed, **params)


# ===================================================================
# Smoothing
# ===================================================================

def majority_smooth(biome, iterations=1):
    """
    3x3 majority vote, repeated *iterations* times.

    Each cell takes the id that occurs most often in its 3x3 neighbourhood
    (itself included, border cells replicated).  On a tie the cell keeps
    its current id.  Removes single-cell speckle and closes small gaps.
    """
    biome = np.asarray(biome, dtype=np.int32)
    for _ in range(int(iterations)):
        ids = np.unique(biome)
        if ids.size < 2:
            break
        counts = np.stack([
            ndimage.convolve((biome == b).astype(np.int32), _MAJORITY_KERNEL,
                             mode='nearest')
            for b in ids
        ])
        best = ids[np.argmax(counts, axis=0)]
        current = np.searchsorted(ids, biome)
        current_count = np.take_along_axis(counts, current[np.newaxis], axis=0)[0]
        keep = current_count >= counts.max(axis=0)
        biome = np.where(keep, biome, best).astype(np.int32)
    return biome


# ===================================================================
# Edge distance
# ===================================================================

def compute_edge_distance(biome, meters_per_pixel=1.0,
                          max_radius_px=DEFAULT_EDGE_RADIUS_PX):
    """
    Distance in meters from each cell to the nearest cell of another biome.

    The search is bounded by *max_radius_px*: cells with no differing cell
    within that radius get the radius itself ("far from any edge").  Cells
    outside the grid never count as a different biome.

    Args:
        biome:            int biome grid.
        meters_per_pixel: Cell size in meters.
        max_radius_px:    Search radius in cells.

    Returns:
        float64 array (width, depth).
    """
    biome = np.asarray(biome)
    if biome.ndim != 2:
        raise ValueError("biome grid must be 2D, got shape {}".format(biome.shape))
    if max_radius_px <= 0:
        raise ValueError("max_radius_px must be positive, got {}".format(max_radius_px))

    radius = float(max_radius_px)
    dist = np.full(biome.shape, radius, dtype=np.float64)

    ids = np.unique(biome)
    if ids.size > 1:
        for b in ids:
            mask = biome == b
            # distance from every cell of biome b to the nearest non-b cell
            to_other = ndimage.distance_transform_edt(mask)
            dist[mask] = np.minimum(to_other[mask], radius)

    return dist * float(meters_per_pixel)
