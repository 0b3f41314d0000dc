"""
Seed handling for region generation.

A region is generated from a single 32-bit world seed.  Each subsystem
(height, biome, objects) draws from its own sub-seed derived from the world
seed, a purpose salt and the region id, so changing how one subsystem
consumes randomness never shifts the random sequence of another.

Also provides a small integer hash used for per-cell jitter in the terrain
painter.  It is pure integer arithmetic, so results are identical on every
platform.
"""

import hashlib
import logging
import random

log = logging.getLogger(__name__)

_MASK32 = 0xFFFFFFFF

SALT_HEIGHT = "height"
SALT_BIOME = "biome"
SALT_OBJECTS = "objects"


def resolve_seed(seed):
    """
    Return *seed* unchanged, or a fresh non-zero seed when *seed* is 0.

    0 conventionally means "pick a seed at runtime".  The chosen value is
    logged so the run can be reproduced.
    """
    seed = int(seed)
    if seed != 0:
        return seed & _MASK32

    fresh = random.SystemRandom().randrange(1, 2 ** 31)
    log.info("No fixed seed configured, using %d", fresh)
    return fresh


def derive_seed(seed, salt, region_id):
    """
    Derive a stable 32-bit sub-seed for one purpose of one region.

    Args:
        seed:      World seed (int).
        salt:      Purpose name, e.g. SALT_HEIGHT.
        region_id: Region identifier string.

    Returns:
        int in [0, 2**32).
    """
    key = "{}:{}:{}".format(int(seed) & _MASK32, salt, region_id or "")
    digest = hashlib.md5(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "little")


def derive_sub_seeds(seed, region_id):
    """Return a dict of the height, biome and object sub-seeds."""
    return {
        SALT_HEIGHT: derive_seed(seed, SALT_HEIGHT, region_id),
        SALT_BIOME: derive_seed(seed, SALT_BIOME, region_id),
        SALT_OBJECTS: derive_seed(seed, SALT_OBJECTS, region_id),
    }


def _fmix32(h):
    # murmur3 finalizer
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK32
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK32
    h ^= h >> 16
    return h


def cell_hash01(x, z, seed=0, salt=0):
    """
    Deterministic pseudo-random value in [0, 1) for grid cell (*x*, *z*).

    Different *salt* values give independent streams for the same cell.
    """
    h = (int(seed) * 0x9E3779B1) & _MASK32
    h ^= _fmix32((int(x) * 0x8DA6B343 + int(salt) * 0x27D4EB2F) & _MASK32)
    h = _fmix32(h)
    h ^= _fmix32((int(z) * 0xD8163841 + 0x165667B1) & _MASK32)
    h = _fmix32(h)
    return h / 4294967296.0
