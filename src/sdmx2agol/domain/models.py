"""
Pipeline Domain Models

Pydantic models for the request, schema and metadata objects that cross module
boundaries, plus the format-tagged ParsedDataset variants produced by the parser.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from .enums import FieldType, SourceFormat


class ComponentValue(BaseModel):
    """One enumerated value of a dimension or attribute (ordinal-indexed)."""
    id: str = Field(..., description="Machine code")
    name: str = Field(..., description="Human-readable label")

    class Config:
        """Pydantic configuration."""
        frozen = True


class Component(BaseModel):
    """SDMX dimension or attribute metadata."""
    id: str = Field(..., description="Component id, e.g. REF_AREA")
    name: str = Field(..., description="Display name (falls back to the id)")
    key_position: Optional[int] = Field(None, description="Position in the observation key (dimensions only)")
    values: list[ComponentValue] = Field(default_factory=list, description="Value domain indexed by ordinal")

    class Config:
        """Pydantic configuration."""
        frozen = True


class LayerField(BaseModel):
    """Field definition written to the FeatureCollection metadata."""
    name: str = Field(..., description="Normalized field name")
    alias: str = Field(..., description="Human label")
    type: FieldType = Field(default=FieldType.STRING, description="Layer field type")

    class Config:
        """Pydantic configuration."""
        frozen = True

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "alias": self.alias, "type": self.type.value}


class SeriesMetadata(BaseModel):
    """Descriptive goal/target/indicator/series information for the published item."""
    goal_code: Optional[str] = Field(None, description="Goal code, e.g. '1'")
    goal_description: Optional[str] = Field(None, description="Goal label")
    target_code: Optional[str] = Field(None, description="Target code, e.g. '1.1'")
    target_description: Optional[str] = Field(None, description="Target label")
    indicator_code: Optional[str] = Field(None, description="Indicator code, e.g. '1.1.1'")
    indicator_description: Optional[str] = Field(None, description="Indicator label")
    series_code: Optional[str] = Field(None, description="Series code, e.g. 'SI_POV_DAY1'")
    series_description: Optional[str] = Field(None, description="Series label")
    snippet: Optional[str] = Field(None, description="Short item summary")
    tags: list[str] = Field(default_factory=list, description="Additional tags")

    class Config:
        """Pydantic configuration."""
        frozen = True

    def render_tags(self) -> list[str]:
        """Tag list: one tag per populated code, then the extra tags, de-duplicated."""
        rendered = []
        if self.goal_code:
            rendered.append(f"Goal {self.goal_code}")
        if self.target_code:
            rendered.append(f"Target {self.target_code}")
        if self.indicator_code:
            rendered.append(f"Indicator {self.indicator_code}")
        if self.series_code:
            rendered.append(self.series_code)
        rendered.extend(t.strip() for t in self.tags if t and t.strip())

        seen = set()
        return [t for t in rendered if not (t in seen or seen.add(t))]

    def render_description(self) -> str:
        """Multi-line description, one line per populated level."""
        levels = [
            ("Goal", self.goal_code, self.goal_description),
            ("Target", self.target_code, self.target_description),
            ("Indicator", self.indicator_code, self.indicator_description),
            ("Series", self.series_code, self.series_description),
        ]
        lines = []
        for label, code, description in levels:
            if code and description:
                lines.append(f"{label} {code}: {description}")
            elif code or description:
                lines.append(f"{label}: {code or description}")
        return "\n".join(lines)

    def is_empty(self) -> bool:
        return not (self.render_tags() or self.render_description() or self.snippet)


def _default_title() -> str:
    return f"fromSDMX_{int(time.time() * 1000)}"


class PublishRequest(BaseModel):
    """One conversion/publish request."""
    title: str = Field(default_factory=_default_title, description="Item and service title")
    source_format: SourceFormat = Field(default=SourceFormat.SDMX_JSON, description="Declared input format")

    # Exactly one input
    input_path: Optional[Path] = Field(None, description="Local SDMX/CSV file")
    sdmx_api: Optional[str] = Field(None, description="SDMX REST data query URL")
    raw_input: Optional[Any] = Field(None, description="Already-loaded input (dict, XML or CSV text)")

    # Geography join
    join_to_geographies: bool = Field(default=False, description="Join features to boundary geometries")
    sdmx_field: Optional[str] = Field(None, description="Feature property holding the join key")
    geo_field: Optional[str] = Field(None, description="Geometry source attribute holding the join key")
    geographies_url: Optional[str] = Field(None, description="Feature service layer URL")
    geographies_path: Optional[Path] = Field(None, description="Local GeoJSON boundary file")

    metadata: Optional[SeriesMetadata] = Field(None, description="Post-publish item enrichment")
    fields_only: bool = Field(default=False, description="Stop after schema inference")
    dry_run: bool = Field(default=False, description="Build and join without uploading")
    cleanup_paths: list[Path] = Field(default_factory=list, description="Uploaded temp files removed after success")

    class Config:
        """Pydantic configuration."""
        arbitrary_types_allowed = True


@dataclass(frozen=True)
class SdmxJsonDataset:
    """SDMX-JSON message: shared positional metadata plus ordinal-keyed observations."""
    name: str
    dimensions: list[Component]
    attributes: list[Component]
    observations: dict[str, list[Any]]
    source_format: SourceFormat = field(default=SourceFormat.SDMX_JSON, init=False)


@dataclass(frozen=True)
class XmlObservation:
    """One SDMX-ML `Obs`: already-resolved id/value pairs."""
    key: list[tuple[str, Optional[str]]]
    attributes: list[tuple[str, Optional[str]]]
    value: Optional[float]


@dataclass(frozen=True)
class SdmxXmlDataset:
    """SDMX-ML generic data message."""
    name: str
    observations: list[XmlObservation]
    source_format: SourceFormat = field(default=SourceFormat.SDMX_XML, init=False)


@dataclass(frozen=True)
class TabularDataset:
    """CSV upload: header row plus flat string rows."""
    name: str
    columns: list[str]
    rows: list[dict[str, str]]
    source_format: SourceFormat = field(default=SourceFormat.CSV, init=False)


ParsedDataset = Union[SdmxJsonDataset, SdmxXmlDataset, TabularDataset]
