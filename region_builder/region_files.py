"""
Region file I/O: rules documents, asset sets and target export.

The generation core only sees parsed structures; this module is the
configuration-loading and export side around it.

Asset set layout (assets.json):
    region_id      - region the set belongs to
    terrain_slots  - list of {slot_index, layer_id}; slot_index 0-31
    prefabs        - list of {asset_id, scene}

Target export layout (targets.json):
    region_id, seed, count
    targets        - list of {index, id, name, asset_id,
                     position {x, y, z}, rotation_deg {x, y, z}}
"""

import os
import json
import logging

from .region_rules import RegionRules, lookup_key

log = logging.getLogger(__name__)

MAX_SLOT_INDEX = 31


# ---------------------------------------------------------------------------
# JSON I/O helpers
# ---------------------------------------------------------------------------

def load_json(filepath):
    """Parse a JSON document from *filepath*."""
    with open(filepath, 'r') as f:
        return json.load(f)


def save_json(filepath, data, indent=2):
    """
    Serialize *data* to *filepath*.

    Missing parent directories are created, so exports can target a fresh
    output tree.
    """
    parent = os.path.dirname(filepath)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(filepath, 'w') as f:
        json.dump(data, f, indent=indent)
        f.write('\n')


# ---------------------------------------------------------------------------
# Rules and asset sets
# ---------------------------------------------------------------------------

def load_region_rules(filepath):
    """
    Load a rules document.

    Raises:
        ValueError: If the document fails validation.
    """
    rules = RegionRules.from_dict(load_json(filepath))
    if rules.region_id is None:
        rules.region_id = os.path.splitext(os.path.basename(filepath))[0]
    log.info("Loaded region rules %r from %s", rules.region_id, filepath)
    return rules


def parse_asset_set(data):
    """
    Split an asset set dict into (layer_to_slot, prefab_map).

    Raises:
        ValueError: On a slot index outside 0-31 or a missing id.
    """
    layer_to_slot = {}
    for i, slot in enumerate(lookup_key(data, 'terrain_slots') or []):
        layer_id = lookup_key(slot, 'layer_id')
        index = lookup_key(slot, 'slot_index')
        if not layer_id:
            raise ValueError("terrain_slots[{}] missing layer_id".format(i))
        if index is None or not 0 <= int(index) <= MAX_SLOT_INDEX:
            raise ValueError("terrain_slots[{}] slot_index {!r} outside 0-{}".format(
                i, index, MAX_SLOT_INDEX))
        layer_to_slot[layer_id] = int(index)

    prefab_map = {}
    for i, prefab in enumerate(lookup_key(data, 'prefabs') or []):
        asset_id = lookup_key(prefab, 'asset_id')
        if not asset_id:
            raise ValueError("prefabs[{}] missing asset_id".format(i))
        prefab_map[asset_id] = lookup_key(prefab, 'scene')

    return layer_to_slot, prefab_map


def load_asset_set(filepath):
    """Load an asset set file; returns (layer_to_slot, prefab_map)."""
    layer_to_slot, prefab_map = parse_asset_set(load_json(filepath))
    log.debug("Asset set %s: %d terrain slots, %d prefabs",
              filepath, len(layer_to_slot), len(prefab_map))
    return layer_to_slot, prefab_map


# ---------------------------------------------------------------------------
# Target export
# ---------------------------------------------------------------------------

def _vec(values):
    x, y, z = values
    return {'x': float(x), 'y': float(y), 'z': float(z)}


def targets_to_dict(targets, region_id, seed):
    """Serialisable record of placed targets plus region metadata."""
    records = []
    for i, obj in enumerate(targets):
        records.append({
            'index': i,
            'id': obj.object_id,
            'name': "{}_{}".format(obj.asset_id, i),
            'asset_id': obj.asset_id,
            'position': _vec(obj.position),
            'rotation_deg': _vec(obj.rotation_degrees()),
        })
    return {
        'region_id': region_id,
        'seed': int(seed),
        'count': len(records),
        'targets': records,
    }


def export_targets_to_json(targets, filepath, region_id, seed):
    """Write the target record to *filepath*; returns the written dict."""
    data = targets_to_dict(targets, region_id, seed)
    save_json(filepath, data)
    log.info("Exported %d targets to %s", data['count'], filepath)
    return data
