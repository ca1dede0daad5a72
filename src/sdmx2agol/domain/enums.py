"""
Pipeline Enumerations

Core enums for type safety and clear interface definitions across the pipeline.
"""

from enum import Enum


class SourceFormat(str, Enum):
    """Wire formats accepted by the parser."""
    SDMX_JSON = "sdmx-json"  # SDMX-JSON data message
    SDMX_XML = "sdmx-xml"    # SDMX-ML generic data message
    CSV = "csv"              # User-uploaded table with a header row


class FieldType(str, Enum):
    """Hosted feature layer field types."""
    STRING = "String"
    DOUBLE = "Double"
    INTEGER = "Integer"


class PipelineStage(str, Enum):
    """Orchestrator stages, in execution order."""
    VALIDATE = "validate"
    FETCH = "fetch"
    PARSE = "parse"
    BUILD = "build"
    JOIN = "join"
    UPLOAD = "upload"
    PUBLISH = "publish"
    ENRICH = "enrich"
    CLEANUP = "cleanup"
