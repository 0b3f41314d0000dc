"""
Terrain Rule Engine - texture layer selection and the packed control map.

For every cell the painter resolves a base layer, an overlay layer and a
blend factor from the region's terrain rules:

    1. base layer: default layer, replaced by the first height band that
       contains the height, replaced by the biome override of the cell's
       biome (if any)
    2. slope overrides, in order; the first one that matches ends the scan
       (hard: replace inside [min, max); soft: fade base -> override across
       [blend_start, blend_end), replace beyond)
    3. near a biome boundary, when slope blending left no blend, mix the
       cell's biome base layer with the neighbouring biome's base layer

Layer names are mapped to renderer texture slots (0-31) and packed into one
uint32 per cell:

    bits 27-31  base slot
    bits 22-26  overlay slot
    bits 14-21  blend (0-255)
    bit  0      auto-shader flag
"""

import logging
from collections import namedtuple

import numpy as np

from .raster import ensure_same_shape, slope_degrees, to_meters
from .region_rules import DEFAULT_LAYER
from .seeding import cell_hash01

log = logging.getLogger(__name__)

DEFAULT_BLEND_WIDTH_METERS = 2.0

# Border "inlets": cells this close to the edge may swap base and overlay
_INLET_DISTANCE_METERS = 1.25
_INLET_PROBABILITY = 0.25
_SEAM_JITTER = 0.12
# Seams only replace cells that slope blending left unblended
_NO_BLEND = 0.001

_HASH_SALT_JITTER = 1
_HASH_SALT_INLET = 2

_SLOT_MASK = 0x1F
_BLEND_MASK = 0xFF
_BASE_SHIFT = 27
_OVERLAY_SHIFT = 22
_BLEND_SHIFT = 14
_AUTOSHADER_BIT = 0x1


LayerBlend = namedtuple('LayerBlend', ['base_layer', 'overlay_layer', 'blend'])


# ===================================================================
# Rule evaluation
# ===================================================================

def base_layer_for(height_m, biome_id, rules):
    """
    Base layer from the default layer, height bands and biome overrides.

    A negative *biome_id* means "no biome information".
    """
    layer = rules.default_layer if rules is not None else DEFAULT_LAYER
    if rules is None:
        return layer

    for band in rules.height_bands:
        if band.contains(height_m):
            layer = band.layer_id
            break

    if biome_id >= 0:
        for override in rules.biome_overrides:
            if override.biome_id == biome_id and override.layer_id:
                layer = override.layer_id
                break

    return layer


def _apply_slope_overrides(base_layer, slope_deg, rules):
    """LayerBlend after the first matching slope override, if any."""
    if rules is not None:
        for override in rules.slope_overrides:
            if not override.applies_to_layer(base_layer):
                continue

            if override.is_soft:
                start = override.blend_start_deg
                end = override.blend_end_deg
                if slope_deg < start:
                    continue
                if slope_deg >= end:
                    layer = override.override_layer_id
                    return LayerBlend(layer, layer, 0.0)
                t = (slope_deg - start) / (end - start)
                t = min(max(t, 0.0), 1.0)
                return LayerBlend(base_layer, override.override_layer_id, t)

            if override.min_deg <= slope_deg < override.max_deg:
                layer = override.override_layer_id
                return LayerBlend(layer, layer, 0.0)

    return LayerBlend(base_layer, base_layer, 0.0)


def pick_layer(height_m, slope_deg, biome_id, rules):
    """
    Resolve the layers for one cell.

    Args:
        height_m:  Terrain height in meters.
        slope_deg: Local slope in degrees.
        biome_id:  Biome id of the cell, or -1 when unknown.
        rules:     TerrainRules.

    Returns:
        LayerBlend(base_layer, overlay_layer, blend) with blend in [0, 1].
    """
    base = base_layer_for(height_m, biome_id, rules)
    return _apply_slope_overrides(base, slope_deg, rules)


# ===================================================================
# Slot resolution and packing
# ===================================================================

def resolve_slots(layer_blend, layer_to_slot, default_layer=DEFAULT_LAYER):
    """
    Map a LayerBlend to (base_slot, overlay_slot, blend_byte).

    An unknown base layer falls back to the default layer's slot, then to
    slot 0.  An unknown overlay layer falls back to the base slot.
    """
    base_slot = layer_to_slot.get(layer_blend.base_layer)
    if base_slot is None:
        base_slot = layer_to_slot.get(default_layer, 0)

    overlay_slot = layer_to_slot.get(layer_blend.overlay_layer)
    if overlay_slot is None:
        overlay_slot = base_slot

    blend = min(max(layer_blend.blend, 0.0), 1.0)
    blend_byte = int(round(blend * 255.0))
    return int(base_slot), int(overlay_slot), blend_byte


def pack_control(base_slot, overlay_slot, blend_byte=0, autoshader=False):
    """Pack one control value (see module docstring for the layout)."""
    value = (int(base_slot) & _SLOT_MASK) << _BASE_SHIFT
    value |= (int(overlay_slot) & _SLOT_MASK) << _OVERLAY_SHIFT
    value |= (int(blend_byte) & _BLEND_MASK) << _BLEND_SHIFT
    if autoshader:
        value |= _AUTOSHADER_BIT
    return value


def unpack_control(value):
    """Return (base_slot, overlay_slot, blend_byte, autoshader)."""
    value = int(value)
    return ((value >> _BASE_SHIFT) & _SLOT_MASK,
            (value >> _OVERLAY_SHIFT) & _SLOT_MASK,
            (value >> _BLEND_SHIFT) & _BLEND_MASK,
            bool(value & _AUTOSHADER_BIT))


def unpack_control_array(control):
    """Vectorised unpack_control over a whole raster; returns four arrays."""
    control = np.asarray(control, dtype=np.uint32)
    return ((control >> _BASE_SHIFT) & _SLOT_MASK,
            (control >> _OVERLAY_SHIFT) & _SLOT_MASK,
            (control >> _BLEND_SHIFT) & _BLEND_MASK,
            (control & _AUTOSHADER_BIT).astype(bool))


def control_to_float32(control):
    """
    Reinterpret a uint32 control raster as float32 bits.

    For renderers that import the control map as a 32-bit float image.
    """
    return np.ascontiguousarray(control, dtype=np.uint32).view(np.float32)


# ===================================================================
# Control map
# ===================================================================

def _neighbor_biome(biome, x, z, biome_id):
    """First 4-neighbour (x-1, x+1, z-1, z+1) with a different biome."""
    width, depth = biome.shape
    if x > 0 and biome[x - 1, z] != biome_id:
        return int(biome[x - 1, z])
    if x < width - 1 and biome[x + 1, z] != biome_id:
        return int(biome[x + 1, z])
    if z > 0 and biome[x, z - 1] != biome_id:
        return int(biome[x, z - 1])
    if z < depth - 1 and biome[x, z + 1] != biome_id:
        return int(biome[x, z + 1])
    return biome_id


def _seam_blend(x, z, height_m, dist, biome_id, neighbor_id, rules, seed,
                blend_width):
    base = base_layer_for(height_m, biome_id, rules)
    overlay = base_layer_for(height_m, neighbor_id, rules)

    t = min(max(dist / blend_width, 0.0), 1.0)
    jitter = (cell_hash01(x, z, seed, _HASH_SALT_JITTER) - 0.5) * _SEAM_JITTER
    blend = min(max(0.5 * (1.0 - t) + jitter, 0.0), 0.5)

    if (dist < _INLET_DISTANCE_METERS
            and cell_hash01(x, z, seed, _HASH_SALT_INLET) < _INLET_PROBABILITY):
        base, overlay = overlay, base

    return LayerBlend(base, overlay, blend)


def build_control_map(heights01, rules, layer_to_slot, meters_per_pixel=1.0,
                      scale=1.0, offset=0.0, biome=None, edge_distance=None,
                      seed=0, blend_width_meters=DEFAULT_BLEND_WIDTH_METERS,
                      autoshader=False):
    """
    Rasterize the packed control map for a region.

    Args:
        heights01:          Normalised height field (width, depth).
        rules:              TerrainRules.
        layer_to_slot:      Dict layer id -> texture slot (0-31).
        meters_per_pixel:   Cell size in meters.
        scale, offset:      Height conversion to meters.
        biome:              Optional biome grid (same shape).
        edge_distance:      Optional edge-distance field in meters; needed
                            together with *biome* for soft biome seams.
        seed:               Seed for the seam jitter hash.
        blend_width_meters: Width of the soft seam band.
        autoshader:         Set the auto-shader bit on every cell.

    Returns:
        uint32 array (width, depth).

    Raises:
        ValueError: If the rasters do not share one shape.
    """
    ensure_same_shape(heights=heights01, biome=biome, edge_distance=edge_distance)
    heights01 = np.asarray(heights01, dtype=np.float64)
    width, depth = heights01.shape
    default_layer = rules.default_layer if rules is not None else DEFAULT_LAYER

    height_m = to_meters(heights01, scale, offset)
    slope = slope_degrees(heights01, meters_per_pixel, scale, offset)
    blend_seams = biome is not None and edge_distance is not None

    control = np.zeros((width, depth), dtype=np.uint32)
    seam_cells = 0
    slot_cache = {}

    for x in range(width):
        for z in range(depth):
            h = float(height_m[x, z])
            biome_id = int(biome[x, z]) if biome is not None else -1

            base = base_layer_for(h, biome_id, rules)
            lb = _apply_slope_overrides(base, float(slope[x, z]), rules)

            if blend_seams and biome_id >= 0 and lb.blend <= _NO_BLEND:
                dist = float(edge_distance[x, z])
                if 0.0 <= dist < blend_width_meters:
                    neighbor_id = _neighbor_biome(biome, x, z, biome_id)
                    if neighbor_id != biome_id:
                        lb = _seam_blend(x, z, h, dist, biome_id, neighbor_id,
                                         rules, seed, blend_width_meters)
                        seam_cells += 1

            slots = slot_cache.get(lb)
            if slots is None:
                slots = resolve_slots(lb, layer_to_slot, default_layer)
                slot_cache[lb] = slots
            control[x, z] = pack_control(slots[0], slots[1], slots[2], autoshader)

    log.debug("Control map %dx%d: %d seam cells, %d distinct layer blends",
              width, depth, seam_cells, len(slot_cache))
    return control
