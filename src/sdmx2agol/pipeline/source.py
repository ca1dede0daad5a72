"""
Sources - SDMX REST endpoint and geometry feature service access

SdmxSource downloads an SDMX data message in the requested format.
GeometrySource queries an ArcGIS feature service layer for the boundary
geometries whose join attribute is in a given inclusion list. Both are
read-only, so transient failures are retried with exponential backoff.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Callable, Optional, Union

import requests

from ..config.settings import RemoteConfig
from ..domain.enums import SourceFormat
from ..types import ParseError, RemoteServiceError, ValidationError
from ..utils import read_arcgis_json, retry_with_backoff, send_request
from .join import MATCH_ALL, build_where_clause
from .parse import RawInput

logger = logging.getLogger(__name__)

ACCEPT_HEADERS = {
    SourceFormat.SDMX_JSON: "application/vnd.sdmx.data+json;version=1.0.0-wd",
    SourceFormat.SDMX_XML: "application/vnd.sdmx.genericdata+xml;version=2.1",
}

WGS84 = 4326


def _is_retryable(error: Exception) -> bool:
    return getattr(error, "retryable", False)


def empty_collection() -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": []}


def load_geometry_file(path: Union[str, Path]) -> dict[str, Any]:
    """Read a local GeoJSON FeatureCollection used as the geometry source."""
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"Geographies file not found: {path}")
    try:
        with open(path, encoding="utf-8-sig") as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid GeoJSON: {e}", path=str(path)) from e
    except UnicodeDecodeError as e:
        raise ParseError(f"Geographies file is not valid UTF-8: {e}", path=str(path)) from e
    except OSError as e:
        raise ParseError(f"Cannot read geographies file: {e}", path=str(path)) from e

    if not isinstance(document, dict) or not isinstance(document.get("features"), list):
        raise ParseError("Geographies file is not a FeatureCollection", path=f"{path}:features")

    logger.info(f"Loaded {len(document['features']):,} geometries from {path.name}")
    return document


class SdmxSource:
    """
    Fetch SDMX data messages from an SDMX REST data query URL.

    Usage:
        source = SdmxSource(remote=config.remote)
        raw = source.fetch("https://.../data/DF_SDG_GLH/..", SourceFormat.SDMX_JSON)
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        remote: Optional[RemoteConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or requests.Session()
        self.remote = remote or RemoteConfig()
        self._sleep = sleep

    def fetch(self, url: str, source_format: Union[SourceFormat, str]) -> RawInput:
        """
        Download one data message.

        Returns:
            dict for SDMX-JSON (wrapped in a `data` envelope when the endpoint
            omits it), bytes for SDMX-ML

        Raises:
            ValidationError: CSV cannot be fetched from an SDMX endpoint
            RemoteServiceError: transport failure after retries, or HTTP error
            ParseError: the endpoint returned something that is not JSON
        """
        fmt = SourceFormat(source_format)
        if fmt not in ACCEPT_HEADERS:
            raise ValidationError(f"Format '{fmt.value}' cannot be fetched from an SDMX API; upload the file instead")

        logger.info(f"Fetching SDMX data ({fmt.value}) from {url}")
        get = retry_with_backoff(
            max_retries=self.remote.max_retries,
            base_delay=self.remote.backoff_s,
            exceptions=(RemoteServiceError,),
            should_retry=_is_retryable,
            sleep=self._sleep,
        )(self._get)
        response = get(url, ACCEPT_HEADERS[fmt])

        if fmt == SourceFormat.SDMX_XML:
            logger.debug(f"Received {len(response.content):,} bytes of SDMX-ML")
            return response.content

        try:
            payload = response.json()
        except ValueError as e:
            raise ParseError(f"SDMX API did not return JSON: {e}", path=url) from e
        if isinstance(payload, dict) and "data" not in payload:
            payload = {"data": payload}
        return payload

    def _get(self, url: str, accept: str) -> requests.Response:
        return send_request(self.session, "GET", url, self.remote.timeout_s, headers={"Accept": accept})


class GeometrySource:
    """
    Query boundary geometries from an ArcGIS feature service layer.

    Only features whose `geo_field` is in the inclusion list are requested.
    Lists longer than `query_batch_size` are split over several queries, and
    each query follows `resultOffset` pages while the service reports
    `exceededTransferLimit`.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        remote: Optional[RemoteConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or requests.Session()
        self.remote = remote or RemoteConfig()
        self._sleep = sleep

    def query(
        self,
        layer_url: str,
        geo_field: str,
        values: Optional[Sequence[Any]] = None,
        out_fields: str = "*",
    ) -> dict[str, Any]:
        """
        Fetch the geometries for `values` as one GeoJSON FeatureCollection.

        Args:
            layer_url: Feature service layer URL (…/FeatureServer/0)
            geo_field: Attribute compared with the join values
            values: Inclusion list; None queries the whole layer, an empty list
                returns an empty collection without calling the service
            out_fields: Attributes to return

        Raises:
            RemoteServiceError: the service failed (after retries for transient errors)
        """
        if values is not None and len(values) == 0:
            logger.info("No join values to look up; skipping geometry query")
            return empty_collection()

        if values is None:
            wheres = [MATCH_ALL]
        else:
            size = self.remote.query_batch_size
            wheres = [
                build_where_clause(geo_field, values[i:i + size])
                for i in range(0, len(values), size)
            ]

        features: list[dict[str, Any]] = []
        for batch, where in enumerate(wheres, start=1):
            page = self._query_all_pages(layer_url, where, out_fields)
            logger.debug(f"Geometry batch {batch}/{len(wheres)}: {len(page):,} features")
            features.extend(page)

        logger.info(f"Retrieved {len(features):,} geometries from {layer_url}")
        collection = empty_collection()
        collection["features"] = features
        return collection

    def _query_all_pages(self, layer_url: str, where: str, out_fields: str) -> list[dict[str, Any]]:
        query_page = retry_with_backoff(
            max_retries=self.remote.max_retries,
            base_delay=self.remote.backoff_s,
            exceptions=(RemoteServiceError,),
            should_retry=_is_retryable,
            sleep=self._sleep,
        )(self._query_page)

        features: list[dict[str, Any]] = []
        offset = 0
        while True:
            payload = query_page(layer_url, where, out_fields, offset)
            page = payload.get("features") or []
            features.extend(page)

            # GeoJSON responses report the flag under `properties`
            exceeded = payload.get("exceededTransferLimit") or (payload.get("properties") or {}).get("exceededTransferLimit")
            if not exceeded or not page:
                return features
            offset += len(page)

    def _query_page(self, layer_url: str, where: str, out_fields: str, offset: int) -> dict[str, Any]:
        params = {
            "where": where,
            "outFields": out_fields,
            "outSR": WGS84,
            "returnGeometry": "true",
            "f": "geojson",
        }
        if offset:
            params["resultOffset"] = offset

        response = send_request(
            self.session, "POST", f"{layer_url.rstrip('/')}/query", self.remote.timeout_s, data=params
        )
        return read_arcgis_json(response, "Geometry query")
