"""
Domain Models and Types

This module contains the core domain models and enumerations used throughout the pipeline.

Models:
- Component / ComponentValue: SDMX dimension and attribute metadata
- LayerField: Output field definition (name, alias, type)
- SeriesMetadata: Goal/target/indicator/series enrichment for published items
- PublishRequest: One conversion/publish request
- SdmxJsonDataset / SdmxXmlDataset / TabularDataset: ParsedDataset variants

Enums:
- SourceFormat: Input wire formats (sdmx-json, sdmx-xml, csv)
- FieldType: Layer field types (String, Double, Integer)
- PipelineStage: Orchestrator stages
"""

from .enums import FieldType, PipelineStage, SourceFormat
from .models import (
    Component,
    ComponentValue,
    LayerField,
    ParsedDataset,
    PublishRequest,
    SdmxJsonDataset,
    SdmxXmlDataset,
    SeriesMetadata,
    TabularDataset,
    XmlObservation,
)

__all__ = [
    "Component", "ComponentValue", "LayerField", "ParsedDataset", "PublishRequest",
    "SdmxJsonDataset", "SdmxXmlDataset", "SeriesMetadata", "TabularDataset", "XmlObservation",
    "FieldType", "PipelineStage", "SourceFormat",
]
