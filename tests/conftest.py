"""
Shared fixtures for pipeline tests.

Provides the SDMX/CSV/GeoJSON fixture files, the small worked example message
and MagicMock-based HTTP sessions so no test touches the network.
"""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from sdmx2agol.config.settings import PublishConfig, RemoteConfig

FIXTURES = Path(__file__).parent / "fixtures"

AGOL_ENV_VARS = [
    "AGOL_PORTAL_URL", "AGOL_USERNAME", "AGOL_PASSWORD", "AGOL_TOKEN", "AGOL_USER_CONTENT_URL",
    "ARCGIS_PORTAL_URL", "ARCGIS_USERNAME", "ARCGIS_PASSWORD",
    "REMOTE_TIMEOUT_S", "REMOTE_MAX_RETRIES", "REMOTE_BACKOFF_S", "GEOMETRY_QUERY_BATCH_SIZE",
    "PUBLISH_MAX_RECORD_COUNT", "PUBLISH_CAPABILITIES",
]


def make_response(status_code=200, payload=None, content=b""):
    """Helper: a requests.Response stand-in with a JSON body or raw content."""
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.content = content
    if payload is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def fixtures_dir():
    return FIXTURES


@pytest.fixture
def sdmx_json_path():
    return FIXTURES / "sdmx_poverty.json"


@pytest.fixture
def sdmx_json(sdmx_json_path):
    """The SDMX-JSON fixture: 2 dimensions, 2 attributes, 3 observations."""
    with open(sdmx_json_path, encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def sdmx_xml_path():
    return FIXTURES / "sdmx_generic.xml"


@pytest.fixture
def sdmx_xml(sdmx_xml_path):
    return sdmx_xml_path.read_bytes()


@pytest.fixture
def sdmx_xml_series(fixtures_dir):
    return (fixtures_dir / "sdmx_generic_series.xml").read_bytes()


@pytest.fixture
def csv_path():
    return FIXTURES / "poverty.csv"


@pytest.fixture
def geographies_path():
    return FIXTURES / "geographies.geojson"


@pytest.fixture
def geographies(geographies_path):
    """Boundary collection: AFG, ALB and a second AFG entry that must never win."""
    with open(geographies_path, encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def worked_example():
    """One dimension (REF_AREA, 2 values) x one attribute (OBS_STATUS, values A/B)."""
    return {
        "data": {
            "structure": {
                "name": "Worked example",
                "dimensions": {
                    "observation": [
                        {
                            "id": "REF_AREA",
                            "name": "Reference area",
                            "keyPosition": 0,
                            "values": [
                                {"id": "AFG", "name": "Afghanistan"},
                                {"id": "ALB", "name": "Albania"},
                            ],
                        }
                    ]
                },
                "attributes": {
                    "observation": [
                        {
                            "id": "OBS_STATUS",
                            "name": "Observation status",
                            "values": [
                                {"id": "A", "name": "Normal value"},
                                {"id": "B", "name": "Break in series"},
                            ],
                        }
                    ]
                },
            },
            "dataSets": [{"observations": {"0:0": [12.5, 0], "1:1": [7.3, None]}}],
        }
    }


@pytest.fixture
def remote_config():
    """Fast remote settings: small batches, no real backoff."""
    return RemoteConfig(timeout_s=5, max_retries=2, backoff_s=0.01, query_batch_size=2)


@pytest.fixture
def publish_config():
    return PublishConfig()


@pytest.fixture
def session():
    """HTTP session whose `request` calls are scripted per test."""
    return MagicMock(spec=requests.Session)


@pytest.fixture
def no_sleep():
    return MagicMock()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove credential and tuning variables so Config sees only what a test sets.

    setenv before delenv makes teardown also drop values load_dotenv wrote
    during the test.
    """
    for name in AGOL_ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


@pytest.fixture
def respond():
    """Factory for scripted HTTP responses."""
    return make_response
