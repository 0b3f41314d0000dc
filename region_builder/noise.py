"""
Noise Generator - seeded fractal height fields.

Provides a 2D simplex noise with a seeded permutation table, evaluated on
whole numpy coordinate arrays at once, and the region height-field builder
on top of it.

The output for a given (seed, dimensions, scale, factor) tuple is
bit-reproducible: the permutation comes from ``random.Random`` and the
evaluation uses only IEEE additions and multiplications.

Usage:
    from region_builder.noise import generate_heightmap

    heights = generate_heightmap(256, 256, seed=1234, noise_scale=3.5,
                                 height_factor=1.5)
"""

import logging
import math
import random

import numpy as np

log = logging.getLogger(__name__)

# Base sampling frequency in noise units per cell
DEFAULT_FREQUENCY = 0.01
DEFAULT_OCTAVES = 4


class SimplexNoise:
    """
    2D simplex noise with a seeded permutation table.

    ``noise2d`` and ``octave_noise2d`` accept scalars or numpy arrays of
    matching shape and return values in approximately [-1, 1].
    """

    _F2 = 0.5 * (math.sqrt(3.0) - 1.0)
    _G2 = (3.0 - math.sqrt(3.0)) / 6.0

    _GRAD2 = np.array([
        (1, 1), (-1, 1), (1, -1), (-1, -1),
        (1, 0), (-1, 0), (0, 1), (0, -1),
    ], dtype=np.float64)

    def __init__(self, seed=0):
        """Initialise with a deterministic seed."""
        self.seed = seed
        self._perm = self._generate_permutation(seed)

    @staticmethod
    def _generate_permutation(seed):
        """Build a 512-entry permutation table from *seed*."""
        rng = random.Random(seed)
        p = list(range(256))
        rng.shuffle(p)
        return np.array(p + p, dtype=np.int64)

    def _corner(self, hash_idx, x, y):
        t = 0.5 - x * x - y * y
        grad = self._GRAD2[hash_idx & 7]
        dot = grad[..., 0] * x + grad[..., 1] * y
        t2 = t * t
        return np.where(t > 0.0, t2 * t2 * dot, 0.0)

    def noise2d(self, x, y):
        """
        Evaluate 2D simplex noise at (*x*, *y*).

        Returns a float for scalar input, otherwise an array.
        """
        scalar = np.ndim(x) == 0 and np.ndim(y) == 0
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        F2 = self._F2
        G2 = self._G2
        perm = self._perm

        s = (x + y) * F2
        i = np.floor(x + s)
        j = np.floor(y + s)

        t = (i + j) * G2
        x0 = x - (i - t)
        y0 = y - (j - t)

        i1 = (x0 > y0).astype(np.int64)
        j1 = 1 - i1

        x1 = x0 - i1 + G2
        y1 = y0 - j1 + G2
        x2 = x0 - 1.0 + 2.0 * G2
        y2 = y0 - 1.0 + 2.0 * G2

        ii = i.astype(np.int64) & 255
        jj = j.astype(np.int64) & 255

        n = (self._corner(perm[ii + perm[jj]], x0, y0)
             + self._corner(perm[ii + i1 + perm[jj + j1]], x1, y1)
             + self._corner(perm[ii + 1 + perm[jj + 1]], x2, y2))

        # Scale to approximate [-1, 1]
        n = 70.0 * n
        if scalar:
            return float(n)
        return n

    def octave_noise2d(self, x, y, octaves=DEFAULT_OCTAVES, persistence=0.5,
                       lacunarity=2.0):
        """
        Fractal Brownian motion: *octaves* layers of noise, each at
        *lacunarity* times the frequency and *persistence* times the
        amplitude of the previous one, normalised by the summed amplitude.
        """
        total = 0.0
        amplitude = 1.0
        frequency = 1.0
        max_amplitude = 0.0

        for _ in range(octaves):
            total = total + self.noise2d(np.multiply(x, frequency),
                                         np.multiply(y, frequency)) * amplitude
            max_amplitude += amplitude
            amplitude *= persistence
            frequency *= lacunarity

        if max_amplitude > 0.0:
            total = total / max_amplitude
        return total


def generate_heightmap(width, depth, seed, noise_scale=1.0, height_factor=1.0,
                       frequency=DEFAULT_FREQUENCY, octaves=DEFAULT_OCTAVES):
    """
    Build a normalised height field from fractal noise.

    Raw noise is clipped to [-1, 1], mapped to [0, 1] and multiplied by
    *height_factor*.

    Args:
        width, depth:  Grid dimensions in cells (must be positive).
        seed:          Height seed.
        noise_scale:   Coordinate multiplier; higher = rougher terrain.
        height_factor: Multiplier applied after normalisation.
        frequency:     Base noise frequency per scaled cell.
        octaves:       Number of fBm octaves.

    Returns:
        Read-only float64 array of shape (width, depth), indexed [x, z].
    """
    width = int(width)
    depth = int(depth)
    if width <= 0 or depth <= 0:
        raise ValueError(
            "Height field dimensions must be positive, got {}x{}".format(width, depth))

    noise = SimplexNoise(seed=seed)
    step = float(noise_scale) * float(frequency)
    xs = np.arange(width, dtype=np.float64).reshape(-1, 1) * step
    zs = np.arange(depth, dtype=np.float64).reshape(1, -1) * step
    xs, zs = np.broadcast_arrays(xs, zs)

    raw = noise.octave_noise2d(xs, zs, octaves=octaves)
    heights = (np.clip(raw, -1.0, 1.0) + 1.0) * 0.5 * float(height_factor)
    heights = np.ascontiguousarray(heights, dtype=np.float64)
    heights.flags.writeable = False

    log.debug("Height field %dx%d seed=%d scale=%.3f factor=%.3f range=[%.3f, %.3f]",
              width, depth, seed, noise_scale, height_factor,
              float(heights.min()), float(heights.max()))
    return heights
