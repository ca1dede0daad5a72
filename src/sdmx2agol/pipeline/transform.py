"""
Feature Builder - ParsedDataset to GeoJSON FeatureCollection

Expands observations (or CSV rows) into GeoJSON features with coded and
human-readable properties. Geometry is a placeholder Point until the optional
geometry join assigns a real one.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from ..domain.models import (
    Component,
    ComponentValue,
    ParsedDataset,
    SdmxJsonDataset,
    SdmxXmlDataset,
    TabularDataset,
)
from ..types import ParseError
from .parse import TIME_DIMENSION
from .schema import (
    ID_FIELD,
    OBS_VALUE_FIELD,
    code_field_name,
    infer_fields,
    label_field_name,
)

logger = logging.getLogger(__name__)

KEY_DELIMITER = ":"

_YEAR_MONTH = re.compile(r"^\s*(\d{4})(?:-(\d{1,2}))?")


def placeholder_geometry() -> dict[str, Any]:
    """Geometry of a feature that has not been joined (yet)."""
    return {"type": "Point", "coordinates": []}


def is_placeholder_geometry(geometry: Optional[dict[str, Any]]) -> bool:
    return not geometry or not geometry.get("coordinates")


def format_time_period(label: str) -> str:
    """
    Reformat a TIME_PERIOD label as YYYY-MM.

    A bare year becomes January of that year; labels not starting with a
    four-digit year are returned unchanged.
    """
    match = _YEAR_MONTH.match(label or "")
    if not match:
        return label
    month = int(match.group(2) or 1)
    if not 1 <= month <= 12:
        return label
    return f"{match.group(1)}-{month:02d}"


def _numeric(value: Any, location: str) -> Optional[float]:
    if value is None or (isinstance(value, (int, float)) and not isinstance(value, bool)):
        return value
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return float(value)
        except ValueError:
            pass
    raise ParseError(f"Observation value {value!r} is not numeric", path=location)


def _resolve(component: Component, ordinal: Any, location: str) -> ComponentValue:
    try:
        index = int(ordinal)
    except (TypeError, ValueError):
        raise ParseError(f"Ordinal {ordinal!r} for {component.id} is not an integer", path=location)
    if not 0 <= index < len(component.values):
        raise ParseError(
            f"Ordinal {index} is out of range for {component.id} ({len(component.values)} values)",
            path=location,
        )
    return component.values[index]


class FeatureBuilder:
    """
    Build a GeoJSON FeatureCollection from a ParsedDataset.

    Every feature gets `counterField` = its 1-based position in input order
    and one property per schema field; fields without a value are null, never
    missing.
    """

    def build(self, dataset: ParsedDataset, title: Optional[str] = None) -> dict[str, Any]:
        """
        Args:
            dataset: Parsed input
            title: Layer name override (defaults to the dataset's own name)

        Returns:
            FeatureCollection dict with `metadata.fields` and `metadata.idField`
        """
        fields = infer_fields(dataset)
        field_names = [f.name for f in fields]

        if isinstance(dataset, SdmxJsonDataset):
            features = self._sdmx_json_features(dataset, field_names)
        elif isinstance(dataset, SdmxXmlDataset):
            features = self._sdmx_xml_features(dataset, field_names)
        elif isinstance(dataset, TabularDataset):
            features = self._tabular_features(dataset)
        else:
            raise TypeError(f"Unsupported dataset type: {type(dataset).__name__}")

        collection = {
            "type": "FeatureCollection",
            "features": features,
            "metadata": {
                "name": title or dataset.name,
                "idField": ID_FIELD,
                "fields": [f.to_dict() for f in fields],
            },
        }
        logger.info(f"Built {len(features):,} features with {len(fields)} fields")
        return collection

    @staticmethod
    def _feature(properties: dict[str, Any]) -> dict[str, Any]:
        return {"type": "Feature", "properties": properties, "geometry": placeholder_geometry()}

    def _sdmx_json_features(self, dataset: SdmxJsonDataset, field_names: list[str]) -> list[dict[str, Any]]:
        by_position: dict[int, Component] = {}
        for dimension in dataset.dimensions:
            by_position.setdefault(dimension.key_position, dimension)

        features = []
        for counter, (key, values) in enumerate(dataset.observations.items(), start=1):
            location = f"observations['{key}']"
            properties = dict.fromkeys(field_names)
            properties[ID_FIELD] = counter

            for position, ordinal in enumerate(key.split(KEY_DELIMITER)):
                dimension = by_position.get(position)
                if dimension is None:
                    continue
                value = _resolve(dimension, ordinal, location)
                code_name = code_field_name(dimension.id)
                label_name = label_field_name(dimension.id, dimension.name)
                if dimension.id == TIME_DIMENSION:
                    period = format_time_period(value.name)
                    properties[code_name] = period
                    properties[label_name] = period
                else:
                    properties[code_name] = value.id
                    properties[label_name] = value.name

            properties[OBS_VALUE_FIELD] = _numeric(values[0], location)

            for attribute, ordinal in zip(dataset.attributes, values[1:]):
                code_name = code_field_name(attribute.id)
                label_name = label_field_name(attribute.id, attribute.name)
                if ordinal is None:
                    properties[code_name] = None
                    properties[label_name] = None
                else:
                    value = _resolve(attribute, ordinal, location)
                    properties[code_name] = value.id
                    properties[label_name] = value.name

            features.append(self._feature(properties))
        return features

    def _sdmx_xml_features(self, dataset: SdmxXmlDataset, field_names: list[str]) -> list[dict[str, Any]]:
        features = []
        for counter, obs in enumerate(dataset.observations, start=1):
            properties = dict.fromkeys(field_names)
            properties[ID_FIELD] = counter
            for component_id, value in [*obs.key, *obs.attributes]:
                properties[code_field_name(component_id)] = value
                properties[label_field_name(component_id)] = value
            properties[OBS_VALUE_FIELD] = obs.value
            features.append(self._feature(properties))
        return features

    def _tabular_features(self, dataset: TabularDataset) -> list[dict[str, Any]]:
        features = []
        for counter, row in enumerate(dataset.rows, start=1):
            properties = {ID_FIELD: counter}
            properties.update((k, v) for k, v in row.items() if k != ID_FIELD)
            features.append(self._feature(properties))
        return features
