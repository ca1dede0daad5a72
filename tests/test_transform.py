"""
Tests for the FeatureBuilder.

Verifies that:
1. counterField is 1..N in input order
2. Null attribute values pass through to both attribute properties
3. TIME_PERIOD is stored as YYYY-MM in both its code and label property
4. The worked example produces the expected features
"""

import pytest

from sdmx2agol.pipeline.parse import parse_csv, parse_sdmx_json, parse_sdmx_xml
from sdmx2agol.pipeline.schema import ID_FIELD
from sdmx2agol.pipeline.transform import (
    FeatureBuilder,
    format_time_period,
    is_placeholder_geometry,
    placeholder_geometry,
)
from sdmx2agol.types import ParseError


@pytest.fixture
def builder():
    return FeatureBuilder()


class TestFormatTimePeriod:

    @pytest.mark.parametrize("label,expected", [
        ("2015", "2015-01"),
        ("2016-3", "2016-03"),
        ("2016-03", "2016-03"),
        ("2016-12-31", "2016-12"),
        (" 2019", "2019-01"),
    ])
    def test_year_month(self, label, expected):
        assert format_time_period(label) == expected

    @pytest.mark.parametrize("label", ["2016-13", "FY2016", "Q1", ""])
    def test_unparseable_labels_unchanged(self, label):
        assert format_time_period(label) == label


class TestPlaceholderGeometry:

    def test_placeholder_shape(self):
        assert placeholder_geometry() == {"type": "Point", "coordinates": []}

    def test_fresh_instance_each_call(self):
        assert placeholder_geometry() is not placeholder_geometry()

    def test_detection(self):
        assert is_placeholder_geometry(placeholder_geometry())
        assert is_placeholder_geometry(None)
        assert not is_placeholder_geometry({"type": "Point", "coordinates": [1.0, 2.0]})


class TestSdmxJsonBuild:

    def test_counter_is_monotonic(self, builder, sdmx_json):
        collection = builder.build(parse_sdmx_json(sdmx_json))
        counters = [f["properties"][ID_FIELD] for f in collection["features"]]
        assert counters == list(range(1, len(collection["features"]) + 1))

    def test_every_field_present_on_every_feature(self, builder, sdmx_json):
        collection = builder.build(parse_sdmx_json(sdmx_json))
        names = [f["name"] for f in collection["metadata"]["fields"]]
        for feature in collection["features"]:
            assert list(feature["properties"]) == names

    def test_dimension_code_and_label(self, builder, sdmx_json):
        first = builder.build(parse_sdmx_json(sdmx_json))["features"][0]["properties"]
        assert first["REF_AREA_CODE"] == "AFG"
        assert first["REFERENCE_AREA"] == "Afghanistan"
        assert first["OBS_STATUS_CODE"] == "A"
        assert first["OBSERVATION_STATUS"] == "Normal value"
        assert first["UNIT_OF MEASURE"] == "Percent"
        assert first["OBS_VALUE"] == 12.5

    def test_time_period_reformatted_in_both_fields(self, builder, sdmx_json):
        features = builder.build(parse_sdmx_json(sdmx_json))["features"]
        assert features[0]["properties"]["TIME_PERIOD_CODE"] == "2015-01"
        assert features[0]["properties"]["TIME_PERIOD"] == "2015-01"
        assert features[1]["properties"]["TIME_PERIOD_CODE"] == "2016-03"
        assert features[1]["properties"]["TIME_PERIOD"] == "2016-03"

    def test_null_attribute_passthrough(self, builder, sdmx_json):
        features = builder.build(parse_sdmx_json(sdmx_json))["features"]
        # "1:1" has a null OBS_STATUS
        assert features[1]["properties"]["OBS_STATUS_CODE"] is None
        assert features[1]["properties"]["OBSERVATION_STATUS"] is None
        # "0:1" omits UNIT_MEASURE entirely
        assert features[2]["properties"]["UNIT_MEASURE_CODE"] is None
        assert features[2]["properties"]["UNIT_OF MEASURE"] is None

    def test_placeholder_geometry_on_every_feature(self, builder, sdmx_json):
        features = builder.build(parse_sdmx_json(sdmx_json))["features"]
        assert all(f["geometry"] == {"type": "Point", "coordinates": []} for f in features)
        assert features[0]["geometry"] is not features[1]["geometry"]

    def test_metadata(self, builder, sdmx_json):
        collection = builder.build(parse_sdmx_json(sdmx_json))
        assert collection["type"] == "FeatureCollection"
        assert collection["metadata"]["idField"] == ID_FIELD
        assert collection["metadata"]["name"] == "Proportion of population below international poverty line"

    def test_title_overrides_layer_name(self, builder, sdmx_json):
        collection = builder.build(parse_sdmx_json(sdmx_json), title="Poverty")
        assert collection["metadata"]["name"] == "Poverty"

    def test_worked_example(self, builder, worked_example):
        collection = builder.build(parse_sdmx_json(worked_example))
        features = collection["features"]

        assert len(features) == 2
        assert [f["properties"]["OBS_VALUE"] for f in features] == [12.5, 7.3]
        assert [f["properties"]["OBS_STATUS_CODE"] for f in features] == ["A", None]
        assert [f["properties"]["REF_AREA_CODE"] for f in features] == ["AFG", "ALB"]
        assert len(collection["metadata"]["fields"]) == 1 + 2 * 2 + 1

    def test_key_position_decides_dimension(self, builder, worked_example):
        """Dimensions are resolved by keyPosition, not by list order."""
        structure = worked_example["data"]["structure"]
        structure["dimensions"]["observation"].insert(0, {
            "id": "SEX",
            "name": "Sex",
            "keyPosition": 1,
            "values": [{"id": "F", "name": "Female"}],
        })
        worked_example["data"]["dataSets"][0]["observations"] = {"1:0": [3.0, 0]}

        props = builder.build(parse_sdmx_json(worked_example))["features"][0]["properties"]
        assert props["REF_AREA_CODE"] == "ALB"
        assert props["SEX_CODE"] == "F"

    def test_numeric_string_value(self, builder, worked_example):
        worked_example["data"]["dataSets"][0]["observations"] = {"0:0": ["3.5", 0]}
        props = builder.build(parse_sdmx_json(worked_example))["features"][0]["properties"]
        assert props["OBS_VALUE"] == 3.5

    def test_non_numeric_value(self, builder, worked_example):
        worked_example["data"]["dataSets"][0]["observations"] = {"0:0": ["n/a", 0]}
        with pytest.raises(ParseError, match="not numeric"):
            builder.build(parse_sdmx_json(worked_example))

    def test_ordinal_out_of_range(self, builder, worked_example):
        worked_example["data"]["dataSets"][0]["observations"] = {"5:0": [1.0, 0]}
        with pytest.raises(ParseError, match="out of range") as exc_info:
            builder.build(parse_sdmx_json(worked_example))
        assert exc_info.value.path == "observations['5:0']"


class TestSdmxXmlBuild:

    def test_code_and_label_hold_the_value(self, builder, sdmx_xml):
        collection = builder.build(parse_sdmx_xml(sdmx_xml))
        props = collection["features"][1]["properties"]

        assert props[ID_FIELD] == 2
        assert props["REF_AREA_CODE"] == "ALB"
        assert props["REF_AREA"] == "ALB"
        assert props["OBS_STATUS_CODE"] == "E"
        assert props["OBS_VALUE"] == 7.3
        assert collection["metadata"]["name"] == "Poverty headcount"

    def test_schema_follows_first_observation(self, builder):
        xml = b"""<GenericData><DataSet>
          <Obs><ObsKey><Value id="REF_AREA" value="AFG"/></ObsKey><ObsValue value="1"/>
            <Attributes><Value id="OBS_STATUS" value="A"/></Attributes></Obs>
          <Obs><ObsKey><Value id="REF_AREA" value="ALB"/></ObsKey><ObsValue value="2"/></Obs>
          <Obs><ObsKey><Value id="REF_AREA" value="DZA"/></ObsKey><ObsValue value="3"/>
            <Attributes><Value id="OBS_STATUS" value="E"/><Value id="COMMENT" value="revised"/></Attributes></Obs>
        </DataSet></GenericData>"""

        collection = builder.build(parse_sdmx_xml(xml))
        field_names = [f["name"] for f in collection["metadata"]["fields"]]
        missing, extra = (f["properties"] for f in collection["features"][1:])

        # counterField + one code/label pair per component of the first Obs + OBS_VALUE
        assert field_names == [ID_FIELD, "REF_AREA_CODE", "REF_AREA", "OBS_STATUS_CODE", "OBS_STATUS", "OBS_VALUE"]
        assert "OBS_STATUS_CODE" in missing and missing["OBS_STATUS_CODE"] is None
        assert "OBS_STATUS" in missing and missing["OBS_STATUS"] is None
        assert extra["COMMENT_CODE"] == "revised"
        assert "COMMENT_CODE" not in field_names

    def test_series_values_on_each_observation(self, builder, sdmx_xml_series):
        features = builder.build(parse_sdmx_xml(sdmx_xml_series))["features"]
        assert [f["properties"]["TIME_PERIOD"] for f in features] == ["2015", "2016"]
        assert all(f["properties"]["UNIT_MEASURE_CODE"] == "PT" for f in features)


class TestCsvBuild:

    def test_rows_become_features(self, builder, csv_path):
        features = builder.build(parse_csv(csv_path.read_text(encoding="utf-8")))["features"]

        assert len(features) == 2
        assert features[0]["properties"] == {
            ID_FIELD: 1, "REF_AREA": "AFG", "TIME_PERIOD": "2015", "OBS_VALUE": "12.5",
        }
        assert features[1]["properties"][ID_FIELD] == 2
