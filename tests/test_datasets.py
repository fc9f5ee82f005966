"""Tests for the content-addressed dataset store."""

import re

import numpy as np
import pandas as pd

from dashcore.config import normalize_options
from dashcore.datasets import DatasetStore, content_hash, infer_schema, to_json_value


class TestInterning:
    def test_identical_data_interns_once(self, survey_frame, store):
        first = store.intern(survey_frame)
        second = store.intern(survey_frame.copy())
        assert first == second
        assert len(store) == 1
        assert store.dedup_hits == 1

    def test_column_order_does_not_matter(self, survey_frame, store):
        reordered = survey_frame[list(reversed(survey_frame.columns))]
        assert store.intern(survey_frame) == store.intern(reordered)

    def test_different_rows_get_different_ids(self, survey_frame, store):
        assert store.intern(survey_frame) != store.intern(survey_frame.head(4))
        assert len(store) == 2

    def test_records_and_frames_intern_alike(self, region_year_frame, store):
        records = [{"region": "A", "year": 2020}, {"region": "B", "year": 2021}]
        columns = {"region": ["A", "B"], "year": [2020, 2021]}
        ids = {store.intern(region_year_frame), store.intern(records), store.intern(columns)}
        assert len(ids) == 1

    def test_asset_id_format(self, region_year_frame):
        store = DatasetStore(normalize_options({"asset_id_length": 16}))
        asset_id = store.intern(region_year_frame)
        assert re.fullmatch(r"ds_[0-9a-f]{16}", asset_id)
        assert asset_id in store

    def test_asset_keeps_sorted_columns_and_schema(self, survey_frame, store):
        asset = store.get(store.intern(survey_frame))
        assert asset.columns == sorted(survey_frame.columns)
        assert asset.schema["score"] == "numeric"
        assert asset.schema["region"] == "string"
        assert len(asset) == len(survey_frame)

    def test_payload_is_json_ready(self, store):
        frame = pd.DataFrame({"n": np.array([1, 2], dtype=np.int64), "x": [1.5, np.nan]})
        store.intern(frame)
        payload = store.payload()
        assert payload[0]["rows"] == [{"n": 1, "x": 1.5}, {"n": 2, "x": None}]
        assert payload[0]["schema"] == {"n": "numeric", "x": "numeric"}


class TestSchema:
    def test_infer_schema(self):
        frame = pd.DataFrame(
            {
                "flag": [True, False],
                "n": [1, 2],
                "when": pd.to_datetime(["2024-01-01", "2024-02-01"]),
                "label": ["a", "b"],
            }
        )
        assert infer_schema(frame) == {"flag": "boolean", "n": "numeric", "when": "datetime", "label": "string"}

    def test_hash_ignores_column_order(self, survey_frame):
        assert content_hash(survey_frame) == content_hash(survey_frame[sorted(survey_frame.columns)])


def test_to_json_value():
    assert to_json_value(np.int64(3)) == 3
    assert to_json_value(np.float64(2.0)) == 2
    assert to_json_value(2.5) == 2.5
    assert to_json_value(float("nan")) is None
    assert to_json_value(np.bool_(True)) is True
    assert to_json_value(pd.Timestamp("2024-01-01")) == "2024-01-01T00:00:00"
    assert to_json_value(pd.NA) is None
