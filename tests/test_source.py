"""
Tests for the SDMX endpoint and geometry service sources.

All HTTP traffic goes through a scripted MagicMock session.
"""

import json

import pytest
import requests

from sdmx2agol.domain.enums import SourceFormat
from sdmx2agol.pipeline.source import (
    ACCEPT_HEADERS,
    GeometrySource,
    SdmxSource,
    load_geometry_file,
)
from sdmx2agol.types import ParseError, RemoteServiceError, ValidationError

LAYER_URL = "https://services.example.com/arcgis/rest/services/Countries/FeatureServer/0"
SDMX_URL = "https://data.example.org/rest/data/IAEG-SDGs,DF_SDG_GLH,1.0/..SI_POV_DAY1"


def _feature(code):
    return {"type": "Feature", "properties": {"ISO3CD": code}, "geometry": {"type": "Point", "coordinates": [1.0, 2.0]}}


class TestSdmxSource:

    def test_fetch_json(self, session, respond, remote_config, sdmx_json):
        session.request.return_value = respond(payload=sdmx_json)
        source = SdmxSource(session=session, remote=remote_config)

        raw = source.fetch(SDMX_URL, SourceFormat.SDMX_JSON)

        assert raw == sdmx_json
        args, kwargs = session.request.call_args
        assert args == ("GET", SDMX_URL)
        assert kwargs["headers"] == {"Accept": ACCEPT_HEADERS[SourceFormat.SDMX_JSON]}
        assert kwargs["timeout"] == remote_config.timeout_s

    def test_fetch_json_adds_data_envelope(self, session, respond, remote_config, sdmx_json):
        session.request.return_value = respond(payload=sdmx_json["data"])
        raw = SdmxSource(session=session, remote=remote_config).fetch(SDMX_URL, "sdmx-json")
        assert set(raw) == {"data"}

    def test_fetch_xml_returns_bytes(self, session, respond, remote_config, sdmx_xml):
        session.request.return_value = respond(content=sdmx_xml)
        raw = SdmxSource(session=session, remote=remote_config).fetch(SDMX_URL, SourceFormat.SDMX_XML)

        assert raw == sdmx_xml
        assert session.request.call_args.kwargs["headers"]["Accept"].startswith("application/vnd.sdmx.genericdata+xml")

    def test_csv_cannot_be_fetched(self, session, remote_config):
        with pytest.raises(ValidationError):
            SdmxSource(session=session, remote=remote_config).fetch(SDMX_URL, SourceFormat.CSV)
        session.request.assert_not_called()

    def test_non_json_body(self, session, respond, remote_config):
        session.request.return_value = respond(payload=None)
        with pytest.raises(ParseError, match="did not return JSON"):
            SdmxSource(session=session, remote=remote_config).fetch(SDMX_URL, SourceFormat.SDMX_JSON)

    def test_transient_failure_is_retried(self, session, respond, remote_config, no_sleep, sdmx_json):
        session.request.side_effect = [respond(status_code=503), respond(payload=sdmx_json)]
        source = SdmxSource(session=session, remote=remote_config, sleep=no_sleep)

        assert source.fetch(SDMX_URL, SourceFormat.SDMX_JSON) == sdmx_json
        assert session.request.call_count == 2
        no_sleep.assert_called_once_with(remote_config.backoff_s)

    def test_timeout_is_retryable(self, session, respond, remote_config, no_sleep, sdmx_json):
        session.request.side_effect = [requests.Timeout("read timed out"), respond(payload=sdmx_json)]
        source = SdmxSource(session=session, remote=remote_config, sleep=no_sleep)
        assert source.fetch(SDMX_URL, SourceFormat.SDMX_JSON) == sdmx_json

    def test_retries_exhausted(self, session, remote_config, no_sleep):
        session.request.side_effect = requests.ConnectionError("refused")
        source = SdmxSource(session=session, remote=remote_config, sleep=no_sleep)

        with pytest.raises(RemoteServiceError) as exc_info:
            source.fetch(SDMX_URL, SourceFormat.SDMX_JSON)
        assert exc_info.value.retryable
        assert session.request.call_count == remote_config.max_retries + 1

    def test_client_error_not_retried(self, session, respond, remote_config, no_sleep):
        session.request.return_value = respond(status_code=404)
        source = SdmxSource(session=session, remote=remote_config, sleep=no_sleep)

        with pytest.raises(RemoteServiceError) as exc_info:
            source.fetch(SDMX_URL, SourceFormat.SDMX_JSON)
        assert exc_info.value.status_code == 404
        assert session.request.call_count == 1
        no_sleep.assert_not_called()


class TestGeometrySource:

    def test_query_parameters(self, session, respond, remote_config):
        session.request.return_value = respond(payload={"type": "FeatureCollection", "features": [_feature("AFG")]})
        source = GeometrySource(session=session, remote=remote_config)

        collection = source.query(LAYER_URL, "ISO3CD", ["AFG"])

        assert collection["features"] == [_feature("AFG")]
        args, kwargs = session.request.call_args
        assert args == ("POST", f"{LAYER_URL}/query")
        assert kwargs["data"] == {
            "where": "ISO3CD IN ('AFG')",
            "outFields": "*",
            "outSR": 4326,
            "returnGeometry": "true",
            "f": "geojson",
        }
        assert kwargs["timeout"] == remote_config.timeout_s

    def test_values_are_batched(self, session, respond, remote_config):
        session.request.side_effect = [
            respond(payload={"features": [_feature("AFG"), _feature("ALB")]}),
            respond(payload={"features": [_feature("DZA")]}),
        ]
        source = GeometrySource(session=session, remote=remote_config)

        collection = source.query(LAYER_URL, "ISO3CD", ["AFG", "ALB", "DZA"])

        assert [f["properties"]["ISO3CD"] for f in collection["features"]] == ["AFG", "ALB", "DZA"]
        wheres = [c.kwargs["data"]["where"] for c in session.request.call_args_list]
        assert wheres == ["ISO3CD IN ('AFG', 'ALB')", "ISO3CD IN ('DZA')"]

    def test_pages_followed_while_transfer_limit_exceeded(self, session, respond, remote_config):
        session.request.side_effect = [
            respond(payload={"features": [_feature("AFG")], "properties": {"exceededTransferLimit": True}}),
            respond(payload={"features": [_feature("ALB")]}),
        ]
        source = GeometrySource(session=session, remote=remote_config)

        collection = source.query(LAYER_URL, "ISO3CD", ["AFG", "ALB"])

        assert len(collection["features"]) == 2
        second = session.request.call_args_list[1].kwargs["data"]
        assert second["resultOffset"] == 1

    def test_empty_values_skip_query(self, session, remote_config):
        collection = GeometrySource(session=session, remote=remote_config).query(LAYER_URL, "ISO3CD", [])
        assert collection == {"type": "FeatureCollection", "features": []}
        session.request.assert_not_called()

    def test_no_values_queries_whole_layer(self, session, respond, remote_config):
        session.request.return_value = respond(payload={"features": []})
        GeometrySource(session=session, remote=remote_config).query(LAYER_URL, "ISO3CD")
        assert session.request.call_args.kwargs["data"]["where"] == "1=1"

    def test_error_body(self, session, respond, remote_config, no_sleep):
        session.request.return_value = respond(payload={"error": {"code": 400, "message": "Invalid query", "details": []}})
        source = GeometrySource(session=session, remote=remote_config, sleep=no_sleep)

        with pytest.raises(RemoteServiceError, match="Invalid query") as exc_info:
            source.query(LAYER_URL, "ISO3CD", ["AFG"])
        assert exc_info.value.status_code == 400
        assert not exc_info.value.retryable
        assert session.request.call_count == 1

    def test_server_error_retried(self, session, respond, remote_config, no_sleep):
        session.request.side_effect = [
            respond(status_code=502),
            respond(payload={"features": [_feature("AFG")]}),
        ]
        source = GeometrySource(session=session, remote=remote_config, sleep=no_sleep)
        assert len(source.query(LAYER_URL, "ISO3CD", ["AFG"])["features"]) == 1
        assert no_sleep.call_count == 1


class TestLoadGeometryFile:

    def test_load(self, geographies_path):
        assert len(load_geometry_file(geographies_path)["features"]) == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="not found"):
            load_geometry_file(tmp_path / "missing.geojson")

    def test_not_a_feature_collection(self, tmp_path):
        path = tmp_path / "bad.geojson"
        path.write_text(json.dumps({"type": "Feature"}), encoding="utf-8")
        with pytest.raises(ParseError, match="not a FeatureCollection"):
            load_geometry_file(path)

    def test_not_utf8(self, tmp_path):
        path = tmp_path / "latin1.geojson"
        path.write_bytes('{"type": "FeatureCollection", "features": [], "name": "Côte"}'.encode("latin-1"))
        with pytest.raises(ParseError, match="not valid UTF-8") as exc_info:
            load_geometry_file(path)
        assert exc_info.value.path == str(path)
