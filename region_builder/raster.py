"""
Grid helpers shared by the generation stages.

All rasters are numpy arrays of shape (width, depth) indexed [x, z].
Heights are stored normalised; ``to_meters`` applies the terrain
scale and offset.  Neighbour lookups clamp at the grid border the same way
everywhere so slope, normals and sampling agree between the painter and the
spawner.
"""

import math

import numpy as np


def is_power_of_two(value):
    """True if *value* is a positive power of two."""
    value = int(value)
    return value > 0 and (value & (value - 1)) == 0


def ensure_same_shape(**rasters):
    """
    Raise ValueError unless every non-None raster has the same 2D shape.

    Example:
        ensure_same_shape(heights=h, biome=b, edge_distance=None)
    """
    shape = None
    first = None
    for name, raster in rasters.items():
        if raster is None:
            continue
        raster_shape = np.shape(raster)
        if len(raster_shape) != 2:
            raise ValueError(
                "{} must be a 2D grid, got shape {}".format(name, raster_shape))
        if shape is None:
            shape = raster_shape
            first = name
        elif raster_shape != shape:
            raise ValueError(
                "{} has shape {} but {} has shape {}".format(
                    name, raster_shape, first, shape))
    return shape


def to_meters(heights01, scale, offset):
    """Convert normalised heights (array or scalar) to world meters."""
    return heights01 * scale + offset


def slope_degrees(heights01, meters_per_pixel, scale, offset=0.0):
    """
    Per-cell slope in degrees from a central-difference gradient.

    Neighbours outside the grid are clamped to the border cell, so the
    difference at an edge spans one cell but is still divided by two cells.

    Args:
        heights01:        2D normalised height array.
        meters_per_pixel: Horizontal cell size in meters.
        scale, offset:    Height conversion to meters.

    Returns:
        2D float64 array of slopes in degrees.
    """
    h = to_meters(np.asarray(heights01, dtype=np.float64), scale, offset)
    padded = np.pad(h, 1, mode='edge')
    dhdx = (padded[2:, 1:-1] - padded[:-2, 1:-1]) / (2.0 * meters_per_pixel)
    dhdz = (padded[1:-1, 2:] - padded[1:-1, :-2]) / (2.0 * meters_per_pixel)
    return np.degrees(np.arctan(np.sqrt(dhdx ** 2 + dhdz ** 2)))


def sample_bilinear(grid, fx, fz):
    """
    Bilinearly sample *grid* at fractional cell coordinates (*fx*, *fz*).

    Coordinates are clamped to the grid extent.
    """
    width, depth = grid.shape
    fx = min(max(fx, 0.0), width - 1.0)
    fz = min(max(fz, 0.0), depth - 1.0)

    x0 = int(math.floor(fx))
    z0 = int(math.floor(fz))
    x1 = min(x0 + 1, width - 1)
    z1 = min(z0 + 1, depth - 1)
    tx = fx - x0
    tz = fz - z0

    a = float(grid[x0, z0]) + (float(grid[x1, z0]) - float(grid[x0, z0])) * tx
    b = float(grid[x0, z1]) + (float(grid[x1, z1]) - float(grid[x0, z1])) * tx
    return a + (b - a) * tz


def surface_normal(heights01, fx, fz, meters_per_pixel, scale):
    """
    Unit surface normal (x, y, z) at fractional cell coordinates.

    The surface is y = h(x, z), so the normal is (-dh/dx, 1, -dh/dz)
    normalised.  Always has a positive y component.
    """
    h_l = sample_bilinear(heights01, fx - 1.0, fz) * scale
    h_r = sample_bilinear(heights01, fx + 1.0, fz) * scale
    h_d = sample_bilinear(heights01, fx, fz - 1.0) * scale
    h_u = sample_bilinear(heights01, fx, fz + 1.0) * scale

    dhdx = (h_r - h_l) / (2.0 * meters_per_pixel)
    dhdz = (h_u - h_d) / (2.0 * meters_per_pixel)

    length = math.sqrt(dhdx * dhdx + 1.0 + dhdz * dhdz)
    return (-dhdx / length, 1.0 / length, -dhdz / length)


def nearest_cell(shape, fx, fz):
    """
    Nearest grid cell to fractional coordinates, or None outside the grid.

    Rounds half up (not to even) so a cell's jitter window always maps back
    to the cell itself.
    """
    ix = int(math.floor(fx + 0.5))
    iz = int(math.floor(fz + 0.5))
    if ix < 0 or iz < 0 or ix >= shape[0] or iz >= shape[1]:
        return None
    return ix, iz


def clamped_cell(shape, fx, fz):
    """Nearest grid cell to fractional coordinates, clamped into the grid."""
    ix = int(math.floor(fx + 0.5))
    iz = int(math.floor(fz + 0.5))
    return min(max(ix, 0), shape[0] - 1), min(max(iz, 0), shape[1] - 1)
