"""
SDMX Pipeline Components

This module provides the pipeline architecture following the Parse → Build → Join → Publish/Export pattern.

Components:
- parse: SDMX-JSON, SDMX-ML and CSV decoding into ParsedDataset variants
- schema: layer field inference
- transform: FeatureBuilder for GeoJSON FeatureCollections
- join: GeometryJoiner for keyed boundary geometry joins
- source: SdmxSource and GeometrySource for remote reads
- publish: ItemPublisher for ArcGIS Online add/publish/update
- export: GeoJSON file output and extents
- orchestrator: SdmxPipeline running one request end to end
"""

from .export import collection_extent, write_geojson
from .join import GeometryJoiner
from .orchestrator import SdmxPipeline
from .parse import detect_format, load_input_file, parse
from .publish import ItemPublisher
from .schema import infer_fields
from .source import GeometrySource, SdmxSource, load_geometry_file
from .transform import FeatureBuilder

__all__ = [
    "SdmxPipeline",
    "FeatureBuilder",
    "GeometryJoiner",
    "GeometrySource",
    "ItemPublisher",
    "SdmxSource",
    "collection_extent",
    "detect_format",
    "infer_fields",
    "load_geometry_file",
    "load_input_file",
    "parse",
    "write_geojson",
]
