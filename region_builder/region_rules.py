"""
Region Rules Model - the declarative document that parameterises a region.

A rules document has three sections:

    terrain   - noise/height parameters, height bands, slope overrides,
                biome overrides and the default layer
    spawning  - ordered spawn entries
    localSky  - ambient/weather settings, carried through untouched

The classes here are plain data holders.  ``from_dict`` accepts the JSON
spelling used by region files (camelCase, any letter case) as well as
snake_case keys.  Table order is significant everywhere: height bands and
slope overrides are evaluated first-match-wins, spawn entries in document
order.

Example document::

    {
        "regionId": "tundra",
        "terrain": {
            "defaultLayer": "grass",
            "heightBands": [{"minMeters": 0, "maxMeters": 10, "layerId": "grass"}],
            "slopeOverrides": [{"minDeg": 35, "maxDeg": 90,
                                "overrideLayerId": "rock",
                                "blendStartDeg": 30, "blendEndDeg": 40}],
            "biomeOverrides": [{"biomeId": 1, "layerId": "forest_floor"}]
        },
        "spawning": {"entries": [{"assetId": "pine", "densityPerKm2": 800}]},
        "localSky": {"preset": "cloudy"}
    }
"""

import logging

log = logging.getLogger(__name__)

DEFAULT_LAYER = "grass"


# ---------------------------------------------------------------------------
# Key lookup helpers
# ---------------------------------------------------------------------------

def _norm_key(key):
    return key.replace("_", "").lower()


def lookup_key(data, name, default=None):
    """
    Fetch *name* from *data* ignoring case and underscores.

    ``lookup_key(d, 'density_per_km2')`` matches 'densityPerKm2',
    'DensityPerKm2' and 'density_per_km2'.
    """
    if data is None:
        return default
    wanted = _norm_key(name)
    for key, value in data.items():
        if _norm_key(key) == wanted:
            return value
    return default


def _opt_float(value):
    return None if value is None else float(value)


def _opt_bool(value):
    return None if value is None else bool(value)


# ---------------------------------------------------------------------------
# Terrain rules
# ---------------------------------------------------------------------------

class HeightBand:
    """Height range [min_meters, max_meters) mapped to a texture layer."""

    def __init__(self, min_meters, max_meters, layer_id):
        self.min_meters = float(min_meters)
        self.max_meters = float(max_meters)
        self.layer_id = layer_id

    def contains(self, height_m):
        return self.min_meters <= height_m < self.max_meters

    @classmethod
    def from_dict(cls, data):
        return cls(
            min_meters=lookup_key(data, 'min_meters', 0.0),
            max_meters=lookup_key(data, 'max_meters', 0.0),
            layer_id=lookup_key(data, 'layer_id'),
        )

    def to_dict(self):
        return {
            'minMeters': self.min_meters,
            'maxMeters': self.max_meters,
            'layerId': self.layer_id,
        }

    def __repr__(self):
        return "HeightBand({}, {}, {!r})".format(
            self.min_meters, self.max_meters, self.layer_id)


class SlopeOverride:
    """
    Slope-driven layer replacement.

    Without a blend range the override is hard: it replaces the layer for
    slopes in [min_deg, max_deg).  With both blend_start_deg and
    blend_end_deg set it is soft: the base layer fades into the override
    layer across [blend_start_deg, blend_end_deg) and is fully replaced
    beyond.  ``applies_to`` optionally restricts which base layers the
    override may act on.
    """

    def __init__(self, override_layer_id, min_deg=0.0, max_deg=90.0,
                 applies_to=None, blend_start_deg=None, blend_end_deg=None):
        self.override_layer_id = override_layer_id
        self.min_deg = float(min_deg)
        self.max_deg = float(max_deg)
        self.applies_to = list(applies_to) if applies_to else []
        self.blend_start_deg = _opt_float(blend_start_deg)
        self.blend_end_deg = _opt_float(blend_end_deg)

    @property
    def is_soft(self):
        return self.blend_start_deg is not None and self.blend_end_deg is not None

    def applies_to_layer(self, layer_id):
        return not self.applies_to or layer_id in self.applies_to

    @classmethod
    def from_dict(cls, data):
        return cls(
            override_layer_id=lookup_key(data, 'override_layer_id'),
            min_deg=lookup_key(data, 'min_deg', 0.0),
            max_deg=lookup_key(data, 'max_deg', 90.0),
            applies_to=lookup_key(data, 'applies_to'),
            blend_start_deg=lookup_key(data, 'blend_start_deg'),
            blend_end_deg=lookup_key(data, 'blend_end_deg'),
        )

    def to_dict(self):
        result = {
            'minDeg': self.min_deg,
            'maxDeg': self.max_deg,
            'overrideLayerId': self.override_layer_id,
        }
        if self.applies_to:
            result['appliesTo'] = list(self.applies_to)
        if self.blend_start_deg is not None:
            result['blendStartDeg'] = self.blend_start_deg
        if self.blend_end_deg is not None:
            result['blendEndDeg'] = self.blend_end_deg
        return result

    def __repr__(self):
        return "SlopeOverride({!r}, min={}, max={}, blend={}..{})".format(
            self.override_layer_id, self.min_deg, self.max_deg,
            self.blend_start_deg, self.blend_end_deg)


class BiomeOverride:
    """Base layer to use for every cell of one biome id."""

    def __init__(self, biome_id, layer_id):
        self.biome_id = int(biome_id)
        self.layer_id = layer_id

    @classmethod
    def from_dict(cls, data):
        return cls(lookup_key(data, 'biome_id', -1), lookup_key(data, 'layer_id'))

    def to_dict(self):
        return {'biomeId': self.biome_id, 'layerId': self.layer_id}

    def __repr__(self):
        return "BiomeOverride({}, {!r})".format(self.biome_id, self.layer_id)


class TerrainRules:
    """
    Ordered terrain texturing tables plus optional height-field parameters.

    noise_scale, height_factor and offset are None when the document does
    not set them; the generator then falls back to its settings.
    """

    def __init__(self, height_bands=None, slope_overrides=None,
                 biome_overrides=None, default_layer=DEFAULT_LAYER,
                 noise_scale=None, height_factor=None, offset=None):
        self.height_bands = list(height_bands or [])
        self.slope_overrides = list(slope_overrides or [])
        self.biome_overrides = list(biome_overrides or [])
        self.default_layer = default_layer if default_layer else DEFAULT_LAYER
        self.noise_scale = _opt_float(noise_scale)
        self.height_factor = _opt_float(height_factor)
        self.offset = _opt_float(offset)

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            height_bands=[HeightBand.from_dict(b)
                          for b in lookup_key(data, 'height_bands') or []],
            slope_overrides=[SlopeOverride.from_dict(o)
                             for o in lookup_key(data, 'slope_overrides') or []],
            biome_overrides=[BiomeOverride.from_dict(o)
                             for o in lookup_key(data, 'biome_overrides') or []
                             if o is not None],
            default_layer=lookup_key(data, 'default_layer', DEFAULT_LAYER),
            noise_scale=lookup_key(data, 'noise_scale'),
            height_factor=lookup_key(data, 'height_factor'),
            # the region files spell it "OffSet"
            offset=lookup_key(data, 'offset'),
        )

    def to_dict(self):
        result = {
            'defaultLayer': self.default_layer,
            'heightBands': [b.to_dict() for b in self.height_bands],
            'slopeOverrides': [o.to_dict() for o in self.slope_overrides],
            'biomeOverrides': [o.to_dict() for o in self.biome_overrides],
        }
        if self.noise_scale is not None:
            result['noiseScale'] = self.noise_scale
        if self.height_factor is not None:
            result['heightFactor'] = self.height_factor
        if self.offset is not None:
            result['offSet'] = self.offset
        return result


# ---------------------------------------------------------------------------
# Spawning rules
# ---------------------------------------------------------------------------

class SpawnEntry:
    """
    One object placement rule.

    Optional fields left as None fall back to the spawner defaults
    (minimum distance, jitter, slope alignment, tilt).  Biome and edge
    constraints are only evaluated when set.  max_count None means no
    upper clamp on the density-derived count.
    """

    def __init__(self, asset_id, density_per_km2=0.0, min_count=1,
                 max_count=None, min_height_meters=-999999.0,
                 max_height_meters=999999.0, max_slope_deg=90.0,
                 is_target=False, allowed_biomes=None, edge_min_meters=None,
                 edge_max_meters=None, min_distance_meters=None,
                 jitter_strength=None, align_to_slope=None, max_tilt_deg=None,
                 weight=1.0):
        self.asset_id = asset_id
        self.weight = float(weight)
        self.density_per_km2 = float(density_per_km2)
        self.min_count = int(min_count)
        self.max_count = None if max_count is None else int(max_count)
        self.min_height_meters = float(min_height_meters)
        self.max_height_meters = float(max_height_meters)
        self.max_slope_deg = float(max_slope_deg)
        self.is_target = bool(is_target)
        self.allowed_biomes = [int(b) for b in allowed_biomes] if allowed_biomes else []
        self.edge_min_meters = _opt_float(edge_min_meters)
        self.edge_max_meters = _opt_float(edge_max_meters)
        self.min_distance_meters = _opt_float(min_distance_meters)
        self.jitter_strength = _opt_float(jitter_strength)
        self.align_to_slope = _opt_bool(align_to_slope)
        self.max_tilt_deg = _opt_float(max_tilt_deg)

    @property
    def wants_biome_rules(self):
        """True when the entry constrains biome or edge distance."""
        return (bool(self.allowed_biomes)
                or self.edge_min_meters is not None
                or self.edge_max_meters is not None)

    @classmethod
    def from_dict(cls, data):
        kwargs = {'asset_id': lookup_key(data, 'asset_id')}
        for name, default in (('weight', 1.0),
                              ('density_per_km2', 0.0),
                              ('min_count', 1),
                              ('max_count', None),
                              ('min_height_meters', -999999.0),
                              ('max_height_meters', 999999.0),
                              ('max_slope_deg', 90.0),
                              ('is_target', False),
                              ('allowed_biomes', None),
                              ('edge_min_meters', None),
                              ('edge_max_meters', None),
                              ('min_distance_meters', None),
                              ('jitter_strength', None),
                              ('align_to_slope', None),
                              ('max_tilt_deg', None)):
            kwargs[name] = lookup_key(data, name, default)
        return cls(**kwargs)

    def to_dict(self):
        result = {
            'assetId': self.asset_id,
            'weight': self.weight,
            'densityPerKm2': self.density_per_km2,
            'minCount': self.min_count,
            'minHeightMeters': self.min_height_meters,
            'maxHeightMeters': self.max_height_meters,
            'maxSlopeDeg': self.max_slope_deg,
            'isTarget': self.is_target,
        }
        optional = (('maxCount', self.max_count),
                    ('edgeMinMeters', self.edge_min_meters),
                    ('edgeMaxMeters', self.edge_max_meters),
                    ('minDistanceMeters', self.min_distance_meters),
                    ('jitterStrength', self.jitter_strength),
                    ('alignToSlope', self.align_to_slope),
                    ('maxTiltDeg', self.max_tilt_deg))
        for key, value in optional:
            if value is not None:
                result[key] = value
        if self.allowed_biomes:
            result['allowedBiomes'] = list(self.allowed_biomes)
        return result

    def __repr__(self):
        return "SpawnEntry({!r}, density={}, min={}, target={})".format(
            self.asset_id, self.density_per_km2, self.min_count, self.is_target)


class SpawningRules:
    """Ordered list of spawn entries."""

    def __init__(self, entries=None):
        self.entries = list(entries or [])

    @classmethod
    def from_dict(cls, data):
        return cls([SpawnEntry.from_dict(e)
                    for e in lookup_key(data, 'entries') or [] if e is not None])

    def to_dict(self):
        return {'entries': [e.to_dict() for e in self.entries]}


class LocalSkySettings:
    """
    Ambient/weather block (clouds, wind, fog, rain, snow).

    Not interpreted by the generator; kept so the document round-trips and
    the sky collaborator receives it unchanged.
    """

    def __init__(self, values=None):
        self.values = dict(values or {})

    @property
    def preset(self):
        return lookup_key(self.values, 'preset')

    def get(self, name, default=None):
        return lookup_key(self.values, name, default)

    @classmethod
    def from_dict(cls, data):
        return cls(data)

    def to_dict(self):
        return dict(self.values)


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

class RegionRules:
    """Complete rules document for one region."""

    def __init__(self, region_id=None, terrain=None, spawning=None,
                 local_sky=None):
        self.region_id = region_id
        self.terrain = terrain if terrain is not None else TerrainRules()
        self.spawning = spawning if spawning is not None else SpawningRules()
        self.local_sky = local_sky if local_sky is not None else LocalSkySettings()

    @classmethod
    def from_dict(cls, data):
        """
        Build rules from a parsed JSON document.

        Raises:
            ValueError: If validate_region_rules() reports any error.
        """
        errors = validate_region_rules(data)
        if errors:
            raise ValueError("Invalid region rules:\n  " + "\n  ".join(errors))

        rules = cls(
            region_id=lookup_key(data, 'region_id'),
            terrain=TerrainRules.from_dict(lookup_key(data, 'terrain')),
            spawning=SpawningRules.from_dict(lookup_key(data, 'spawning')),
            local_sky=LocalSkySettings.from_dict(lookup_key(data, 'local_sky')),
        )
        log.debug("Loaded rules for region %r: %d height bands, %d slope overrides, "
                  "%d biome overrides, %d spawn entries",
                  rules.region_id, len(rules.terrain.height_bands),
                  len(rules.terrain.slope_overrides),
                  len(rules.terrain.biome_overrides),
                  len(rules.spawning.entries))
        return rules

    def to_dict(self):
        result = {
            'terrain': self.terrain.to_dict(),
            'spawning': self.spawning.to_dict(),
            'localSky': self.local_sky.to_dict(),
        }
        if self.region_id is not None:
            result['regionId'] = self.region_id
        return result


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

# (key, document spelling, default, required) of the numeric spawn entry fields
_ENTRY_NUMBERS = (
    ('weight', 'weight', 1.0, True),
    ('density_per_km2', 'densityPerKm2', 0.0, True),
    ('min_count', 'minCount', 1, True),
    ('max_count', 'maxCount', None, False),
    ('min_height_meters', 'minHeightMeters', -999999.0, True),
    ('max_height_meters', 'maxHeightMeters', 999999.0, True),
    ('max_slope_deg', 'maxSlopeDeg', 90.0, True),
    ('edge_min_meters', 'edgeMinMeters', None, False),
    ('edge_max_meters', 'edgeMaxMeters', None, False),
    ('min_distance_meters', 'minDistanceMeters', None, False),
    ('jitter_strength', 'jitterStrength', None, False),
    ('max_tilt_deg', 'maxTiltDeg', None, False),
)


def _check_list(errors, value, label):
    if value is not None and not isinstance(value, list):
        errors.append("{} must be a list".format(label))
        return False
    return value is not None


def _check_number(errors, data, name, label, field, default=None, required=True):
    """
    Fetch a numeric field, reporting null or non-numeric values.

    Returns the value as float, or None when it is absent/invalid.
    """
    value = lookup_key(data, name, default)
    if value is None:
        if required:
            errors.append("{} {} must be a number, got null".format(label, field))
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append("{} {} must be a number, got {!r}".format(label, field, value))
        return None
    return float(value)


def validate_region_rules(data):
    """
    Validate a parsed rules document.

    Returns a list of error strings.  An empty list means the document is
    usable.

    Checks:
        - sections are dicts, tables are lists of dicts
        - numeric fields hold numbers; only optional ones may be null
        - height bands have min <= max and a layer id
        - slope overrides have an override layer and either both or neither
          blend bound, with start < end
        - biome overrides have integer biome ids
        - spawn entries have an asset id, non-negative density/counts,
          min_count <= max_count and min edge <= max edge
    """
    errors = []
    if not isinstance(data, dict):
        return ["rules document must be a dict"]

    terrain = lookup_key(data, 'terrain')
    if terrain is not None and not isinstance(terrain, dict):
        errors.append("terrain must be a dict")
        terrain = None

    if terrain is not None:
        for name, field in (('noise_scale', 'noiseScale'),
                            ('height_factor', 'heightFactor'),
                            ('offset', 'offSet')):
            _check_number(errors, terrain, name, "terrain", field, required=False)

        bands = lookup_key(terrain, 'height_bands')
        if _check_list(errors, bands, "terrain.heightBands"):
            for i, band in enumerate(bands):
                label = "terrain.heightBands[{}]".format(i)
                if not isinstance(band, dict):
                    errors.append("{} must be a dict".format(label))
                    continue
                if not lookup_key(band, 'layer_id'):
                    errors.append("{} missing layerId".format(label))
                lo = _check_number(errors, band, 'min_meters', label, 'minMeters', 0.0)
                hi = _check_number(errors, band, 'max_meters', label, 'maxMeters', 0.0)
                if lo is not None and hi is not None and lo > hi:
                    errors.append("{} minMeters {} > maxMeters {}".format(
                        label, lookup_key(band, 'min_meters'),
                        lookup_key(band, 'max_meters')))

        overrides = lookup_key(terrain, 'slope_overrides')
        if _check_list(errors, overrides, "terrain.slopeOverrides"):
            for i, override in enumerate(overrides):
                label = "terrain.slopeOverrides[{}]".format(i)
                if not isinstance(override, dict):
                    errors.append("{} must be a dict".format(label))
                    continue
                if not lookup_key(override, 'override_layer_id'):
                    errors.append("{} missing overrideLayerId".format(label))
                _check_number(errors, override, 'min_deg', label, 'minDeg', 0.0)
                _check_number(errors, override, 'max_deg', label, 'maxDeg', 90.0)
                start = lookup_key(override, 'blend_start_deg')
                end = lookup_key(override, 'blend_end_deg')
                if (start is None) != (end is None):
                    errors.append("{} needs both blendStartDeg and blendEndDeg".format(label))
                elif start is not None:
                    start = _check_number(errors, override, 'blend_start_deg', label,
                                          'blendStartDeg')
                    end = _check_number(errors, override, 'blend_end_deg', label,
                                        'blendEndDeg')
                    if start is not None and end is not None and start >= end:
                        errors.append("{} blendStartDeg {} >= blendEndDeg {}".format(
                            label, lookup_key(override, 'blend_start_deg'),
                            lookup_key(override, 'blend_end_deg')))
                applies = lookup_key(override, 'applies_to')
                if applies is not None and not isinstance(applies, list):
                    errors.append("{} appliesTo must be a list".format(label))

        biome_overrides = lookup_key(terrain, 'biome_overrides')
        if _check_list(errors, biome_overrides, "terrain.biomeOverrides"):
            for i, override in enumerate(biome_overrides):
                if override is None:
                    continue
                label = "terrain.biomeOverrides[{}]".format(i)
                if not isinstance(override, dict):
                    errors.append("{} must be a dict".format(label))
                    continue
                biome_id = lookup_key(override, 'biome_id')
                if isinstance(biome_id, bool) or not isinstance(biome_id, int):
                    errors.append("{} biomeId must be an integer".format(label))

    spawning = lookup_key(data, 'spawning')
    if spawning is not None and not isinstance(spawning, dict):
        errors.append("spawning must be a dict")
        spawning = None

    if spawning is not None:
        entries = lookup_key(spawning, 'entries')
        if _check_list(errors, entries, "spawning.entries"):
            for i, entry in enumerate(entries):
                if entry is None:
                    continue
                label = "spawning.entries[{}]".format(i)
                if not isinstance(entry, dict):
                    errors.append("{} must be a dict".format(label))
                    continue
                if not lookup_key(entry, 'asset_id'):
                    errors.append("{} missing assetId".format(label))

                numbers = {}
                for name, field, default, required in _ENTRY_NUMBERS:
                    numbers[name] = _check_number(errors, entry, name, label, field,
                                                  default, required)

                density = numbers['density_per_km2']
                if density is not None and density < 0:
                    errors.append("{} densityPerKm2 must be >= 0".format(label))
                min_count = numbers['min_count']
                max_count = numbers['max_count']
                if min_count is not None and min_count < 0:
                    errors.append("{} minCount must be >= 0".format(label))
                if (min_count is not None and max_count is not None
                        and max_count < min_count):
                    errors.append("{} maxCount {} < minCount {}".format(
                        label, lookup_key(entry, 'max_count'),
                        lookup_key(entry, 'min_count', 1)))
                edge_min = numbers['edge_min_meters']
                edge_max = numbers['edge_max_meters']
                if edge_min is not None and edge_max is not None and edge_min > edge_max:
                    errors.append("{} edgeMinMeters {} > edgeMaxMeters {}".format(
                        label, lookup_key(entry, 'edge_min_meters'),
                        lookup_key(entry, 'edge_max_meters')))
                allowed = lookup_key(entry, 'allowed_biomes')
                if allowed is not None and not isinstance(allowed, list):
                    errors.append("{} allowedBiomes must be a list".format(label))
                elif allowed and any(isinstance(b, bool) or not isinstance(b, int)
                                     for b in allowed):
                    errors.append("{} allowedBiomes must hold integers".format(label))

    local_sky = lookup_key(data, 'local_sky')
    if local_sky is not None and not isinstance(local_sky, dict):
        errors.append("localSky must be a dict")

    return errors
