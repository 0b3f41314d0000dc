"""
Preview images of the generated rasters.

Grids are indexed [x, z]; images put x along the horizontal axis and z
along the vertical axis.
"""

import os
import logging

import numpy as np
from PIL import Image

from .biome_map import BIOME_FIELD, BIOME_FOREST, BIOME_ROAD
from .terrain_painter import unpack_control_array

log = logging.getLogger(__name__)

BIOME_COLORS = {
    BIOME_FIELD: (196, 186, 96),
    BIOME_FOREST: (40, 110, 48),
    BIOME_ROAD: (120, 100, 80),
}
_UNKNOWN_COLOR = (255, 0, 255)


def _slot_palette():
    """32 distinct colors, one per texture slot."""
    palette = np.zeros((32, 3), dtype=np.float64)
    for slot in range(32):
        hue = (slot * 0.618033988749895) % 1.0
        r = abs(hue * 6.0 - 3.0) - 1.0
        g = 2.0 - abs(hue * 6.0 - 2.0)
        b = 2.0 - abs(hue * 6.0 - 4.0)
        palette[slot] = np.clip([r, g, b], 0.0, 1.0) * 200.0 + 40.0
    return palette


_SLOT_PALETTE = _slot_palette()


def _to_image(rows):
    # [x, z] -> [row=z, col=x]
    return Image.fromarray(np.ascontiguousarray(np.swapaxes(rows, 0, 1)))


def height_image(heights01):
    """8-bit grayscale image, darkest = lowest cell."""
    h = np.asarray(heights01, dtype=np.float64)
    lo = float(h.min())
    span = float(h.max()) - lo
    if span < 1e-9:
        span = 1.0
    gray = np.round((h - lo) / span * 255.0).astype(np.uint8)
    return _to_image(gray)


def biome_image(biome):
    """RGB image with one color per biome id."""
    biome = np.asarray(biome)
    rgb = np.empty(biome.shape + (3,), dtype=np.uint8)
    rgb[...] = _UNKNOWN_COLOR
    for biome_id, color in BIOME_COLORS.items():
        rgb[biome == biome_id] = color
    return _to_image(rgb)


def control_image(control):
    """
    RGB image of the control map.

    Each cell shows its base slot color mixed toward the overlay slot color
    by the blend byte.
    """
    base, overlay, blend, _ = unpack_control_array(control)
    blend = blend.astype(np.float64)[..., np.newaxis] / 255.0

    rgb = _SLOT_PALETTE[base] * (1.0 - blend) + _SLOT_PALETTE[overlay] * blend
    return _to_image(np.round(rgb).astype(np.uint8))


def save_previews(output_dir, heights01=None, biome=None, control=None):
    """
    Write PNG previews for the rasters that are given.

    Returns:
        List of written file paths.
    """
    if not os.path.exists(output_dir):
        os.makedirs(output_dir)

    written = []
    for name, raster, render in (('heights.png', heights01, height_image),
                                 ('biome.png', biome, biome_image),
                                 ('control.png', control, control_image)):
        if raster is None:
            continue
        path = os.path.join(output_dir, name)
        render(raster).save(path, 'PNG')
        written.append(path)

    log.debug("Wrote %d preview images to %s", len(written), output_dir)
    return written
