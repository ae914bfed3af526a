"""
Tests for design-matrix construction.
"""

import numpy as np
import pandas as pd
import pytest

from bayeslmm.data import simulate_factorial_dataset
from bayeslmm.design import (
    INTERCEPT,
    FactorialFormula,
    build_design_matrix,
    column_correlations,
)
from bayeslmm.exceptions import SchemaError


def _make_cells() -> pd.DataFrame:
    """One row per cell of the 2x2x2 design."""
    rows = []
    for a in (-1, 1):
        for b in (-1, 1):
            for c in (-1, 1):
                rows.append({"a": a, "b": b, "c": c})
    return pd.DataFrame(rows)


class TestFormula:

    def test_full_factorial_terms(self):
        formula = FactorialFormula(("a", "b", "c"))
        assert formula.column_names == [
            INTERCEPT, "a", "b", "c", "a:b", "a:c", "b:c", "a:b:c",
        ]

    def test_max_order(self):
        formula = FactorialFormula(("a", "b", "c"), max_order=1)
        assert formula.column_names == [INTERCEPT, "a", "b", "c"]

    def test_duplicate_factors_rejected(self):
        with pytest.raises(ValueError):
            FactorialFormula(("a", "a"))


class TestDesignMatrix:

    def test_shape_and_names(self):
        design = build_design_matrix(_make_cells())
        assert design.shape == (8, 8)
        assert design.columns[0] == INTERCEPT

    def test_intercept_all_ones(self):
        design = build_design_matrix(_make_cells())
        assert np.all(design.values[:, 0] == 1.0)

    def test_entries_are_sign_coded(self):
        design = build_design_matrix(_make_cells())
        assert set(np.unique(design.values)) == {-1.0, 1.0}

    def test_interaction_is_product(self):
        cells = _make_cells()
        design = build_design_matrix(cells).to_frame()
        expected = cells["a"] * cells["b"] * cells["c"]
        np.testing.assert_array_equal(design["a:b:c"].to_numpy(), expected.to_numpy())
        np.testing.assert_array_equal(design["b:c"].to_numpy(), (cells["b"] * cells["c"]).to_numpy())

    def test_columns_orthogonal_on_balanced_design(self):
        df = simulate_factorial_dataset(n_subjects=56, n_items=32)
        design = build_design_matrix(df)
        corr = column_correlations(design).to_numpy()
        off_diag = corr[~np.eye(corr.shape[0], dtype=bool)]
        assert np.allclose(off_diag, 0.0, atol=1e-12)
        gram = design.values.T @ design.values
        assert np.allclose(gram, len(df) * np.eye(8))

    def test_select_is_one_based(self):
        design = build_design_matrix(_make_cells())
        sub = design.select([1, 2])
        assert sub.columns == [INTERCEPT, "a"]
        np.testing.assert_array_equal(sub.values, design.values[:, :2])

    def test_select_out_of_range(self):
        design = build_design_matrix(_make_cells())
        with pytest.raises(IndexError):
            design.select([0])

    def test_missing_factor_column(self):
        with pytest.raises(SchemaError, match="Missing factor columns"):
            build_design_matrix(_make_cells().drop(columns=["c"]))

    def test_missing_factor_level(self):
        cells = _make_cells().astype(float)
        cells.loc[3, "b"] = np.nan
        with pytest.raises(SchemaError, match="missing levels"):
            build_design_matrix(cells)

    def test_unknown_factor_level(self):
        cells = _make_cells()
        cells.loc[0, "a"] = 2
        with pytest.raises(SchemaError):
            build_design_matrix(cells)

    def test_deterministic(self):
        cells = _make_cells()
        np.testing.assert_array_equal(
            build_design_matrix(cells).values, build_design_matrix(cells).values
        )
