"""
Parser - SDMX and CSV input decoding

Turns raw SDMX-JSON messages, SDMX-ML generic data messages and CSV uploads into
one of the ParsedDataset variants. Each format owns its decode logic; the
feature builder never looks at wire-level structure.

SDMX-JSON carries shared positional metadata (dimensions/attributes with
ordinal-indexed values) and observations keyed by colon-delimited ordinals, so
every observation is decoded against that metadata later. SDMX-ML generic data
carries already-resolved id/value pairs on each `Obs`, so there is no separate
metadata; the schema is taken from the first observation.
"""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd
from lxml import etree
from pydantic import ValidationError as ModelValidationError

from ..domain.enums import SourceFormat
from ..domain.models import (
    Component,
    ComponentValue,
    ParsedDataset,
    SdmxJsonDataset,
    SdmxXmlDataset,
    TabularDataset,
    XmlObservation,
)
from ..types import ParseError

logger = logging.getLogger(__name__)

DEFAULT_LAYER_NAME = "from sdmx"
PREFERRED_LANGUAGE = "en"
TIME_DIMENSION = "TIME_PERIOD"

RawInput = Union[dict, str, bytes]

SUFFIX_FORMATS = {
    ".json": SourceFormat.SDMX_JSON,
    ".xml": SourceFormat.SDMX_XML,
    ".csv": SourceFormat.CSV,
}


def localized(value: Any, default: Optional[str] = None) -> Optional[str]:
    """Text of an SDMX name: plain string, or a {language: text} mapping (English preferred)."""
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        if value.get(PREFERRED_LANGUAGE):
            return str(value[PREFERRED_LANGUAGE])
        for text in value.values():
            if text:
                return str(text)
        return default
    return str(value)


def detect_format(path: Path) -> SourceFormat:
    """Infer the source format from a file extension."""
    suffix = Path(path).suffix.lower()
    if suffix not in SUFFIX_FORMATS:
        raise ParseError(
            f"Cannot infer input format from extension '{suffix}'. "
            f"Expected one of: {', '.join(SUFFIX_FORMATS)}",
            path=str(path),
        )
    return SUFFIX_FORMATS[suffix]


def load_input_file(path: Path, source_format: SourceFormat) -> RawInput:
    """
    Read an uploaded input file into the raw value expected by parse().

    JSON is decoded to a dict, XML is returned as bytes, CSV as text.
    """
    path = Path(path)
    if not path.is_file():
        raise ParseError("Input file not found", path=str(path))

    fmt = SourceFormat(source_format)
    try:
        if fmt == SourceFormat.SDMX_XML:
            return path.read_bytes()
        text = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(f"Input file is not valid UTF-8: {e}", path=str(path)) from e
    except OSError as e:
        raise ParseError(f"Cannot read input file: {e}", path=str(path)) from e

    if fmt == SourceFormat.CSV:
        return text

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in {path.name}: {e}", path=str(path)) from e


def parse(raw: RawInput, source_format: Union[SourceFormat, str]) -> ParsedDataset:
    """
    Decode raw input according to its declared format.

    Raises:
        ParseError: the input does not match the format's expected shape
    """
    try:
        fmt = SourceFormat(source_format)
    except ValueError:
        raise ParseError(
            f"Unsupported source format '{source_format}'. "
            f"Expected one of: {', '.join(f.value for f in SourceFormat)}"
        )

    dataset = PARSERS[fmt](raw)
    logger.debug(f"Parsed {fmt.value} input: {type(dataset).__name__}")
    return dataset


# ----------------------------
# SDMX-JSON
# ----------------------------
def _format_path(parts: list[Union[str, int]]) -> str:
    text = ""
    for part in parts:
        if isinstance(part, int):
            text += f"[{part}]"
        else:
            text += f".{part}" if text else part
    return text


def _lookup(document: Any, *path: Union[str, int]) -> Any:
    node = document
    walked: list[Union[str, int]] = []
    for key in path:
        walked.append(key)
        try:
            node = node[key]
        except (KeyError, IndexError, TypeError):
            raise ParseError("Missing required SDMX-JSON element", path=_format_path(walked))
        if node is None:
            raise ParseError("Missing required SDMX-JSON element", path=_format_path(walked))
    return node


def _component(raw: Any, index: int, location: str) -> Component:
    try:
        component_id = str(raw["id"])
        values = [
            ComponentValue(id=str(v["id"]), name=localized(v.get("name"), default=str(v["id"])))
            for v in raw.get("values") or []
        ]
        key_position = raw.get("keyPosition")
        return Component(
            id=component_id,
            name=localized(raw.get("name"), default=component_id),
            key_position=index if key_position is None else int(key_position),
            values=values,
        )
    except (KeyError, TypeError, ValueError, AttributeError, ModelValidationError) as e:
        raise ParseError(f"Malformed component definition: {e}", path=f"{location}[{index}]") from e


def _components(document: Any, kind: str) -> list[Component]:
    raw_components = _lookup(document, "data", "structure", kind, "observation")
    location = f"data.structure.{kind}.observation"
    if not isinstance(raw_components, list):
        raise ParseError("Expected a list of components", path=location)
    return [_component(raw, i, location) for i, raw in enumerate(raw_components)]


def parse_sdmx_json(raw: RawInput) -> SdmxJsonDataset:
    """Decode an SDMX-JSON data message."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid SDMX-JSON: {e}") from e
        except UnicodeDecodeError as e:
            raise ParseError(f"SDMX-JSON input is not valid UTF-8: {e}", path="data") from e

    if not isinstance(raw, dict):
        raise ParseError("SDMX-JSON input must be an object", path="data")

    # Some endpoints return the data object without the `data` envelope
    document = raw if "data" in raw else {"data": raw}

    structure = _lookup(document, "data", "structure")
    dimensions = _components(document, "dimensions")
    attributes = _components(document, "attributes")

    raw_observations = _lookup(document, "data", "dataSets", 0, "observations")
    if not isinstance(raw_observations, dict):
        raise ParseError("Observations must be an object keyed by ordinal key", path="data.dataSets[0].observations")

    width = 1 + len(attributes)
    observations: dict[str, list[Any]] = {}
    for key, values in raw_observations.items():
        if not isinstance(values, list):
            raise ParseError("Observation must be a list of values", path=f"data.dataSets[0].observations['{key}']")
        if len(values) > width:
            raise ParseError(
                f"Observation has {len(values)} values but only {len(attributes)} attributes are defined",
                path=f"data.dataSets[0].observations['{key}']",
            )
        observations[key] = list(values) + [None] * (width - len(values))

    name = localized(structure.get("name"), default=DEFAULT_LAYER_NAME)

    logger.info(
        f"SDMX-JSON: {len(dimensions)} dimensions, {len(attributes)} attributes, "
        f"{len(observations):,} observations"
    )
    return SdmxJsonDataset(
        name=name,
        dimensions=dimensions,
        attributes=attributes,
        observations=observations,
    )


# ----------------------------
# SDMX-ML (generic data)
# ----------------------------
def _local_name(element: Any) -> str:
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname


def _children(element: Any, name: str) -> list[Any]:
    return [child for child in element if _local_name(child) == name]


def _first_child(element: Any, name: str) -> Optional[Any]:
    for child in element:
        if _local_name(child) == name:
            return child
    return None


def _id_value_pairs(container: Optional[Any]) -> list[tuple[str, Optional[str]]]:
    if container is None:
        return []
    pairs = []
    for value in _children(container, "Value"):
        component_id = value.get("id") or value.get("concept")
        if component_id:
            pairs.append((component_id, value.get("value")))
    return pairs


def _obs_value(obs: Any, location: str) -> Optional[float]:
    element = _first_child(obs, "ObsValue")
    if element is None:
        return None
    text = element.get("value")
    if text is None or text.strip() == "":
        return None
    try:
        return float(text)
    except ValueError:
        raise ParseError(f"Observation value '{text}' is not numeric", path=f"{location}.ObsValue")


def _layer_name(root: Any) -> str:
    for element in root.iter():
        if _local_name(element) == "Header":
            name = _first_child(element, "Name")
            if name is not None and name.text and name.text.strip():
                return name.text.strip()
            break
    return DEFAULT_LAYER_NAME


def parse_sdmx_xml(raw: RawInput) -> SdmxXmlDataset:
    """
    Decode an SDMX-ML generic data message.

    Flat observations (`Obs/ObsKey/Value`) and series-grouped observations
    (`Series/SeriesKey/Value` + `Obs/ObsDimension`) are both read; series key
    values and series attributes are copied onto every observation.
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    if not isinstance(raw, bytes):
        raise ParseError("SDMX-ML input must be XML text")

    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True, remove_comments=True)
    try:
        root = etree.fromstring(raw, parser=parser)
    except etree.XMLSyntaxError as e:
        raise ParseError(f"Invalid SDMX-ML: {e}") from e

    observations = []
    for element in root.iter():
        if _local_name(element) != "Obs":
            continue
        location = f"Obs[{len(observations)}]"

        key: list[tuple[str, Optional[str]]] = []
        attributes: list[tuple[str, Optional[str]]] = []

        parent = element.getparent()
        if parent is not None and _local_name(parent) == "Series":
            key.extend(_id_value_pairs(_first_child(parent, "SeriesKey")))
            attributes.extend(_id_value_pairs(_first_child(parent, "Attributes")))
            obs_dimension = _first_child(element, "ObsDimension")
            if obs_dimension is not None:
                key.append((obs_dimension.get("id") or TIME_DIMENSION, obs_dimension.get("value")))

        key.extend(_id_value_pairs(_first_child(element, "ObsKey")))
        attributes.extend(_id_value_pairs(_first_child(element, "Attributes")))

        if not key:
            raise ParseError("Observation has no key values", path=f"{location}.ObsKey")

        observations.append(XmlObservation(
            key=key,
            attributes=attributes,
            value=_obs_value(element, location),
        ))

    if not observations:
        raise ParseError("No observations found in SDMX-ML message", path="DataSet.Obs")

    logger.info(f"SDMX-ML: {len(observations):,} observations")
    return SdmxXmlDataset(name=_layer_name(root), observations=observations)


# ----------------------------
# CSV
# ----------------------------
def parse_csv(raw: RawInput) -> TabularDataset:
    """Read a CSV upload; every column is kept as text, empty cells as ''."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ParseError(f"CSV input is not valid UTF-8: {e}", path="header") from e
    if not isinstance(raw, str):
        raise ParseError("CSV input must be text")

    try:
        frame = pd.read_csv(io.StringIO(raw.lstrip("\ufeff")), dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError as e:
        raise ParseError("CSV input is empty", path="header") from e
    except pd.errors.ParserError as e:
        raise ParseError(f"Malformed CSV: {e}") from e

    columns = [str(c) for c in frame.columns]
    rows = [{str(k): v for k, v in row.items()} for row in frame.to_dict(orient="records")]

    logger.info(f"CSV: {len(columns)} columns, {len(rows):,} rows")
    return TabularDataset(name=DEFAULT_LAYER_NAME, columns=columns, rows=rows)


PARSERS = {
    SourceFormat.SDMX_JSON: parse_sdmx_json,
    SourceFormat.SDMX_XML: parse_sdmx_xml,
    SourceFormat.CSV: parse_csv,
}
