"""
Exporter - GeoJSON file output

Writes built FeatureCollections to disk and computes the geographic extent
of joined features for the uploaded item.
"""

import json
import logging
import math
from pathlib import Path
from typing import Any, Optional

from shapely.errors import ShapelyError
from shapely.geometry import shape

from ..utils import clean_filename
from .transform import is_placeholder_geometry

logger = logging.getLogger(__name__)

Extent = tuple[float, float, float, float]


def collection_extent(collection: dict[str, Any]) -> Optional[Extent]:
    """
    Bounding box (xmin, ymin, xmax, ymax) of all real geometries.

    Placeholder geometries are ignored; None when nothing was joined.
    """
    xmin = ymin = float("inf")
    xmax = ymax = float("-inf")
    found = False

    for feature in collection.get("features", []):
        geometry = feature.get("geometry")
        if is_placeholder_geometry(geometry):
            continue
        try:
            bounds = shape(geometry).bounds
        except (ShapelyError, ValueError, TypeError, AttributeError, KeyError) as e:
            logger.debug(f"Skipping geometry in extent calculation: {e}")
            continue
        if not bounds or any(math.isnan(b) for b in bounds):
            continue
        found = True
        xmin, ymin = min(xmin, bounds[0]), min(ymin, bounds[1])
        xmax, ymax = max(xmax, bounds[2]), max(ymax, bounds[3])

    return (xmin, ymin, xmax, ymax) if found else None


def validate_geojson_file(path: Path) -> bool:
    """Validate that a written GeoJSON file is a FeatureCollection."""
    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"GeoJSON validation failed: {e}")
        return False

    if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
        logger.error("Invalid GeoJSON: type must be 'FeatureCollection'")
        return False

    if not isinstance(data.get("features"), list):
        logger.error("Invalid GeoJSON: features must be an array")
        return False

    return True


def write_geojson(collection: dict[str, Any], output_path: Path, indent: Optional[int] = None) -> Path:
    """
    Write a FeatureCollection (including its `metadata`) to disk.

    Returns:
        The path written
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(collection, f, ensure_ascii=False, indent=indent)

    if not validate_geojson_file(output_path):
        raise ValueError(f"Generated GeoJSON file is invalid: {output_path}")

    logger.info(f"GeoJSON export completed: {len(collection.get('features', [])):,} features written to {output_path}")
    return output_path


def generate_export_filename(title: str) -> str:
    """Default output filename for a layer title."""
    return f"{clean_filename(title) or 'layer'}.geojson"
