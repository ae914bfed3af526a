"""
Tests for trial-table loading, validation and simulation.
"""

import numpy as np
import pandas as pd
import pytest

from bayeslmm.data import (
    DatasetSchema,
    load_dataset,
    simulate_factorial_dataset,
    truncate_responses,
    validate_dataset,
)
from bayeslmm.exceptions import SchemaError


def _make_small_table() -> pd.DataFrame:
    return pd.DataFrame({
        "subj": [1, 1, 2, 2],
        "item": [1, 2, 1, 2],
        "a": [1, -1, -1, 1],
        "b": [1, 1, -1, -1],
        "c": [-1, 1, 1, -1],
        "rt": [412.0, 530.0, 388.0, 1021.0],
    })


class TestValidation:
    """Dataset contract checks."""

    def test_valid_table_passes(self):
        df = validate_dataset(_make_small_table())
        assert list(df.columns) == ["subj", "item", "a", "b", "c", "rt"]
        assert df["a"].dtype.kind == "i"

    def test_extra_columns_dropped(self):
        df = _make_small_table()
        df["condition"] = "x"
        assert "condition" not in validate_dataset(df).columns

    def test_missing_column(self):
        df = _make_small_table().drop(columns=["b"])
        with pytest.raises(SchemaError, match="Missing required columns"):
            validate_dataset(df)

    def test_missing_value(self):
        df = _make_small_table()
        df.loc[2, "item"] = np.nan
        with pytest.raises(SchemaError, match="Missing values"):
            validate_dataset(df)

    def test_unrecognized_factor_level(self):
        df = _make_small_table()
        df.loc[0, "c"] = 0
        with pytest.raises(SchemaError, match="-1/\\+1"):
            validate_dataset(df)

    def test_non_positive_response(self):
        df = _make_small_table()
        df.loc[1, "rt"] = 0.0
        with pytest.raises(SchemaError, match="positive"):
            validate_dataset(df)

    def test_truncation_bounds_enforced(self):
        schema = DatasetSchema(rt_min=400, rt_max=1000)
        with pytest.raises(SchemaError, match="below truncation"):
            validate_dataset(_make_small_table(), schema)

    def test_custom_column_names(self):
        df = _make_small_table().rename(columns={"subj": "participant", "rt": "RT"})
        schema = DatasetSchema(subject="participant", response="RT")
        assert len(validate_dataset(df, schema)) == 4


class TestTruncation:

    def test_drops_out_of_range_trials(self):
        out = truncate_responses(_make_small_table(), lower=400, upper=1000)
        assert out["rt"].tolist() == [412.0, 530.0]

    def test_uses_schema_bounds(self):
        schema = DatasetSchema(rt_min=None, rt_max=600)
        out = truncate_responses(_make_small_table(), schema)
        assert len(out) == 3


class TestSimulation:
    """Balanced crossed design generator."""

    def test_full_crossing(self):
        df = simulate_factorial_dataset(n_subjects=56, n_items=32)
        assert len(df) == 56 * 32
        assert df["subj"].nunique() == 56
        assert df["item"].nunique() == 32

    def test_balanced_cells(self):
        df = simulate_factorial_dataset(n_subjects=16, n_items=16)
        counts = df.groupby(["a", "b", "c"]).size()
        assert len(counts) == 8
        assert counts.nunique() == 1

    def test_each_subject_sees_every_cell(self):
        df = simulate_factorial_dataset(n_subjects=8, n_items=16)
        for _, trials in df.groupby("subj"):
            assert len(trials[["a", "b", "c"]].drop_duplicates()) == 8

    def test_responses_within_truncation(self):
        df = simulate_factorial_dataset(rt_min=336, rt_max=5144)
        assert df["rt"].between(336, 5144).all()
        validate_dataset(df, DatasetSchema(rt_min=336, rt_max=5144))

    def test_missing_cells(self):
        df = simulate_factorial_dataset(missing_fraction=0.1, seed=3)
        assert 0 < len(df) < 56 * 32

    def test_reproducibility(self):
        d1 = simulate_factorial_dataset(seed=7)
        d2 = simulate_factorial_dataset(seed=7)
        pd.testing.assert_frame_equal(d1, d2)


class TestLoading:

    def test_load_tab_separated(self, tmp_path):
        path = tmp_path / "rt.txt"
        simulate_factorial_dataset(n_subjects=8, n_items=8).to_csv(path, sep="\t", index=False)
        df = load_dataset(path)
        assert len(df) == 64

    def test_load_rejects_bad_schema(self, tmp_path):
        path = tmp_path / "rt.csv"
        _make_small_table().drop(columns=["rt"]).to_csv(path, index=False)
        with pytest.raises(SchemaError):
            load_dataset(path, sep=",")
