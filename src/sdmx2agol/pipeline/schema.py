"""
Schema inference for the published layer.

Every dimension and attribute contributes a `{id}_CODE` field and a label field;
`counterField` (the layer's id field) is first and `OBS_VALUE` last.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from ..domain.enums import FieldType
from ..domain.models import (
    Component,
    LayerField,
    ParsedDataset,
    SdmxJsonDataset,
    SdmxXmlDataset,
    TabularDataset,
)

ID_FIELD = "counterField"
OBS_VALUE_FIELD = "OBS_VALUE"
OBS_VALUE_ALIAS = "Observation Value"

COUNTER_FIELD = LayerField(name=ID_FIELD, alias=ID_FIELD, type=FieldType.INTEGER)
OBS_VALUE = LayerField(name=OBS_VALUE_FIELD, alias=OBS_VALUE_ALIAS, type=FieldType.DOUBLE)


def normalize_field_name(label: str) -> str:
    """
    Uppercase a display name and replace its first space with '_'.

    Only the first space is replaced ("Reference area code" -> "REFERENCE_AREA CODE").
    Published layers already use these names, so they must not change.
    """
    return label.upper().replace(" ", "_", 1)


def code_field_name(component_id: str) -> str:
    return f"{component_id}_CODE"


def label_field_name(component_id: str, display_name: Optional[str] = None) -> str:
    return normalize_field_name(display_name or component_id)


def _pair(component_id: str, display_name: Optional[str]) -> list[LayerField]:
    code = code_field_name(component_id)
    return [
        LayerField(name=code, alias=code, type=FieldType.STRING),
        LayerField(
            name=label_field_name(component_id, display_name),
            alias=display_name or component_id,
            type=FieldType.STRING,
        ),
    ]


def component_fields(components: Iterable[Component]) -> list[LayerField]:
    """Code and label fields for dimensions/attributes, in metadata order."""
    fields = []
    for component in components:
        fields.extend(_pair(component.id, component.name))
    return fields


def xml_component_ids(dataset: SdmxXmlDataset) -> list[str]:
    """
    Key ids then attribute ids of the first observation.

    All observations are assumed to share these ids; later observations
    carrying other ids are not reflected in the schema.
    """
    first = dataset.observations[0]
    ids = [component_id for component_id, _ in first.key]
    ids.extend(component_id for component_id, _ in first.attributes if component_id not in ids)
    return ids


def infer_fields(dataset: ParsedDataset) -> list[LayerField]:
    """Complete, ordered field list for `metadata.fields`."""
    if isinstance(dataset, SdmxJsonDataset):
        body = component_fields([*dataset.dimensions, *dataset.attributes])
        return [COUNTER_FIELD, *body, OBS_VALUE]

    if isinstance(dataset, SdmxXmlDataset):
        body = []
        for component_id in xml_component_ids(dataset):
            body.extend(_pair(component_id, None))
        return [COUNTER_FIELD, *body, OBS_VALUE]

    if isinstance(dataset, TabularDataset):
        body = [LayerField(name=column, alias=column, type=FieldType.STRING) for column in dataset.columns if column != ID_FIELD]
        return [COUNTER_FIELD, *body]

    raise TypeError(f"Unsupported dataset type: {type(dataset).__name__}")
