"""
Geometry Join - attach boundary geometries to statistical features

Features are matched to a geometry source on a shared code value
(`feature.properties[sdmx_field]` strictly equal to
`source.properties[geo_field]`). Lookups are memoized per unique join value for the duration of one join call.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Sequence
from typing import Any, Optional

from ..types import JoinStats, ValidationError

logger = logging.getLogger(__name__)

MATCH_ALL = "1=1"


def same_value(left: Any, right: Any) -> bool:
    """Strict equality: a boolean only equals a boolean, so True never matches 1."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def _cache_key(value: Any) -> tuple[bool, Any]:
    # True and 1 hash alike
    return isinstance(value, bool), value


def validate_join_fields(sdmx_field: Optional[str], geo_field: Optional[str]) -> None:
    """Both join fields are required before any lookup or network activity."""
    if not sdmx_field or not str(sdmx_field).strip() or not geo_field or not str(geo_field).strip():
        raise ValidationError("both sdmxField and geoField must be specified when joining to geographies.")


def unique_join_values(collection: dict[str, Any], sdmx_field: str) -> list[Any]:
    """Distinct non-null values of `sdmx_field`, in first-seen order."""
    seen = {}
    for feature in collection.get("features", []):
        value = (feature.get("properties") or {}).get(sdmx_field)
        if value is not None:
            seen.setdefault(_cache_key(value), value)
    return list(seen.values())


def _sql_literal(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def build_where_clause(geo_field: str, values: Iterable[Any]) -> str:
    """Inclusion-list predicate `geo_field IN (...)`; no values means every row."""
    literals = [_sql_literal(v) for v in values]
    if not literals:
        return MATCH_ALL
    return f"{geo_field} IN ({', '.join(literals)})"


class GeometryJoiner:
    """
    Keyed join of a FeatureCollection against a GeoJSON geometry source.

    The first source feature whose `geo_field` equals the join value wins.
    Features without a match keep their placeholder geometry; this is a
    partial result, not an error, and is reported through JoinStats.
    """

    def join(
        self,
        collection: dict[str, Any],
        geometry_source: dict[str, Any],
        sdmx_field: str,
        geo_field: str,
    ) -> JoinStats:
        """
        Assign geometries to `collection` in place.

        Raises:
            ValidationError: `sdmx_field` or `geo_field` is empty
        """
        validate_join_fields(sdmx_field, geo_field)

        source_features = geometry_source.get("features") or []
        cache: dict[Any, Optional[dict[str, Any]]] = {}
        features = collection.get("features", [])
        matched = 0

        for feature in features:
            key = (feature.get("properties") or {}).get(sdmx_field)
            if key is None:
                continue
            cache_key = _cache_key(key)
            if cache_key not in cache:
                cache[cache_key] = self._find_geometry(source_features, geo_field, key)
            geometry = cache[cache_key]
            if geometry:
                feature["geometry"] = copy.deepcopy(geometry)
                matched += 1

        stats = JoinStats(
            total=len(features),
            matched=matched,
            unmatched=len(features) - matched,
            unique_keys=len(cache),
        )
        if stats.unmatched:
            logger.warning(f"Geometry join: {stats.summary()}")
        else:
            logger.info(f"Geometry join: all {stats.total:,} features matched")
        return stats

    @staticmethod
    def _find_geometry(source_features: Sequence[dict[str, Any]], geo_field: str, key: Any) -> Optional[dict[str, Any]]:
        for candidate in source_features:
            if same_value((candidate.get("properties") or {}).get(geo_field), key):
                return candidate.get("geometry")
        return None
