"""
Design-matrix construction for sum-coded factorial experiments.

Replaces formula-driven model-matrix expansion with an explicit function
from factor columns to a numeric matrix. Terms follow the ordering of
``model.matrix(~ a * b * c)``: intercept, main effects, then two-way and
three-way interactions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .data import FACTOR_LEVELS
from .exceptions import SchemaError

INTERCEPT = "(Intercept)"


@dataclass
class FactorialFormula:
    """
    Full (or truncated) factorial formula over sum-coded factors.

    Parameters
    ----------
    factors : sequence of str
        Factor column names in the order they enter the formula.
    max_order : int, optional
        Highest interaction order to include. ``None`` means all of them.
    """
    factors: tuple = ("a", "b", "c")
    max_order: Optional[int] = None

    def __post_init__(self):
        self.factors = tuple(self.factors)
        if not self.factors:
            raise ValueError("A formula needs at least one factor")
        if len(set(self.factors)) != len(self.factors):
            raise ValueError(f"Duplicate factors in formula: {self.factors}")

    @property
    def terms(self) -> list[tuple]:
        """Factor tuples for every non-intercept term, in column order."""
        top = len(self.factors) if self.max_order is None else self.max_order
        terms = []
        for order in range(1, top + 1):
            terms.extend(combinations(self.factors, order))
        return terms

    @property
    def column_names(self) -> list[str]:
        return [INTERCEPT] + [":".join(term) for term in self.terms]


@dataclass
class DesignMatrix:
    """Numeric N x K fixed-effects matrix with its term names."""
    values: np.ndarray
    columns: list = field(default_factory=list)

    @property
    def shape(self) -> tuple:
        return self.values.shape

    def select(self, indices: Sequence[int]) -> "DesignMatrix":
        """Return the columns at the given 1-based positions."""
        k = self.values.shape[1]
        bad = [i for i in indices if not 1 <= i <= k]
        if bad:
            raise IndexError(f"Design columns {bad} outside [1, {k}]")
        zero_based = [i - 1 for i in indices]
        return DesignMatrix(
            values=self.values[:, zero_based].copy(),
            columns=[self.columns[i] for i in zero_based],
        )

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.values, columns=self.columns)


def build_design_matrix(df: pd.DataFrame,
                        formula: Optional[FactorialFormula] = None) -> DesignMatrix:
    """
    Expand sum-coded factors into the fixed-effects design matrix.

    Parameters
    ----------
    df : pd.DataFrame
        Table holding every factor named by ``formula``
    formula : FactorialFormula, optional
        Defaults to the full three-way factorial over ``a``, ``b``, ``c``

    Returns
    -------
    DesignMatrix
        Intercept column of ones followed by one column per term; each
        term column is the elementwise product of its factors.

    Raises
    ------
    SchemaError
        If a factor column is absent, holds missing values, or holds a
        level other than -1/+1.
    """
    formula = formula or FactorialFormula()

    missing_cols = [f for f in formula.factors if f not in df.columns]
    if missing_cols:
        raise SchemaError(f"Missing factor columns: {missing_cols}")

    coded = {}
    for factor in formula.factors:
        col = df[factor]
        if col.isna().any():
            raise SchemaError(f"Factor '{factor}' has missing levels")
        if not col.isin(FACTOR_LEVELS).all():
            levels = sorted(col[~col.isin(FACTOR_LEVELS)].unique().tolist())
            raise SchemaError(
                f"Factor '{factor}' must be coded as -1/+1, found levels {levels}"
            )
        coded[factor] = col.to_numpy(dtype=float)

    n = len(df)
    columns = [np.ones(n)]
    for term in formula.terms:
        product = np.ones(n)
        for factor in term:
            product = product * coded[factor]
        columns.append(product)

    return DesignMatrix(values=np.column_stack(columns), columns=formula.column_names)


def column_correlations(design: DesignMatrix) -> pd.DataFrame:
    """Pairwise correlations between the non-intercept design columns."""
    keep = [i for i, name in enumerate(design.columns) if name != INTERCEPT]
    names = [design.columns[i] for i in keep]
    corr = np.corrcoef(design.values[:, keep], rowvar=False)
    return pd.DataFrame(np.atleast_2d(corr), index=names, columns=names)
