"""
Trial-level reaction-time datasets.

Loads and validates the factorial table that feeds the design-matrix
builder: one row per trial with a subject id, an item id, three sum-coded
(+1/-1) factors and a truncated reaction time in milliseconds. A seeded
simulator for balanced crossed designs is included for examples and tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .exceptions import SchemaError

logger = logging.getLogger(__name__)

FACTOR_LEVELS = (-1, 1)


@dataclass
class DatasetSchema:
    """Column layout and response bounds of a trial table."""
    subject: str = "subj"
    item: str = "item"
    response: str = "rt"
    factors: tuple = ("a", "b", "c")
    rt_min: Optional[float] = None
    rt_max: Optional[float] = None

    @property
    def required_columns(self) -> list[str]:
        return [self.subject, self.item, *self.factors, self.response]


def validate_dataset(df: pd.DataFrame, schema: Optional[DatasetSchema] = None) -> pd.DataFrame:
    """
    Check a trial table against the dataset contract.

    Parameters
    ----------
    df : pd.DataFrame
        Raw trial table
    schema : DatasetSchema, optional
        Column layout; defaults to ``DatasetSchema()``

    Returns
    -------
    pd.DataFrame
        Copy holding only the schema columns, factors cast to int

    Raises
    ------
    SchemaError
        If a column is missing, a value is missing, a factor is not coded
        as -1/+1, or a response is non-positive or outside the truncation
        range.
    """
    schema = schema or DatasetSchema()

    missing_cols = [col for col in schema.required_columns if col not in df.columns]
    if missing_cols:
        raise SchemaError(f"Missing required columns: {missing_cols}")

    out = df[schema.required_columns].copy()

    null_counts = out.isna().sum()
    null_counts = null_counts[null_counts > 0]
    if len(null_counts):
        raise SchemaError(f"Missing values in columns: {null_counts.to_dict()}")

    for factor in schema.factors:
        bad = ~out[factor].isin(FACTOR_LEVELS)
        if bad.any():
            levels = sorted(out.loc[bad, factor].unique().tolist())
            raise SchemaError(
                f"Factor '{factor}' must be coded as -1/+1, found levels {levels}"
            )
        out[factor] = out[factor].astype(int)

    rt = pd.to_numeric(out[schema.response], errors="coerce")
    if rt.isna().any():
        raise SchemaError(f"Response column '{schema.response}' is not numeric")
    if (rt <= 0).any():
        raise SchemaError(f"Response column '{schema.response}' must be positive")
    if schema.rt_min is not None and (rt < schema.rt_min).any():
        raise SchemaError(
            f"Responses below truncation bound {schema.rt_min}: min={rt.min()}"
        )
    if schema.rt_max is not None and (rt > schema.rt_max).any():
        raise SchemaError(
            f"Responses above truncation bound {schema.rt_max}: max={rt.max()}"
        )
    out[schema.response] = rt.astype(float)

    return out.reset_index(drop=True)


def load_dataset(path: str | Path, schema: Optional[DatasetSchema] = None,
                 sep: Optional[str] = None) -> pd.DataFrame:
    """
    Read a delimited trial table and validate it.

    ``sep=None`` lets pandas sniff the delimiter, which covers comma, tab
    and whitespace separated exports.
    """
    path = Path(path)
    if sep is None:
        df = pd.read_csv(path, sep=None, engine="python")
    else:
        df = pd.read_csv(path, sep=sep)

    logger.info(f"Loaded {len(df)} rows from {path}")
    return validate_dataset(df, schema)


def truncate_responses(df: pd.DataFrame, schema: Optional[DatasetSchema] = None,
                       lower: Optional[float] = None,
                       upper: Optional[float] = None) -> pd.DataFrame:
    """Drop trials whose response lies outside ``[lower, upper]``."""
    schema = schema or DatasetSchema()
    lower = schema.rt_min if lower is None else lower
    upper = schema.rt_max if upper is None else upper

    keep = pd.Series(True, index=df.index)
    if lower is not None:
        keep &= df[schema.response] >= lower
    if upper is not None:
        keep &= df[schema.response] <= upper

    n_dropped = int((~keep).sum())
    if n_dropped:
        logger.info(f"Truncation removed {n_dropped} of {len(df)} trials")
    return df[keep].reset_index(drop=True)


def _condition_codes(condition: int, n_factors: int) -> list[int]:
    # Bit k of the condition number gives the level of factor k
    return [1 if (condition >> (n_factors - 1 - k)) & 1 else -1 for k in range(n_factors)]


def simulate_factorial_dataset(
    n_subjects: int = 56,
    n_items: int = 32,
    factors: Sequence[str] = ("a", "b", "c"),
    intercept: float = 6.0,
    effects: Optional[Sequence[float]] = None,
    subject_sd: float = 0.25,
    item_sd: float = 0.15,
    residual_sd: float = 0.4,
    rt_min: float = 336.0,
    rt_max: float = 5144.0,
    missing_fraction: float = 0.0,
    seed: Optional[int] = 42,
    schema: Optional[DatasetSchema] = None,
) -> pd.DataFrame:
    """
    Simulate a balanced crossed factorial reaction-time experiment.

    Every subject sees every item once. Conditions rotate across subjects
    in a Latin square, so each subject contributes equally to every cell
    of the ``2**len(factors)`` design. Log reaction times follow a linear
    model with per-subject and per-item intercept and first-factor slope
    adjustments; responses are clipped into ``[rt_min, rt_max]``.

    Parameters
    ----------
    n_subjects, n_items : int
        Group sizes. ``n_items`` should be a multiple of the cell count for
        the design to be balanced.
    effects : sequence of float, optional
        Log-scale main effects of each factor. Defaults to small effects.
    missing_fraction : float, default=0.0
        Proportion of trials dropped at random to mimic missing cells.
    seed : int, optional
        Seed for ``numpy.random.default_rng``.

    Returns
    -------
    pd.DataFrame
        Columns named after ``schema`` (subject, item, factors, response).
    """
    schema = schema or DatasetSchema(factors=tuple(factors))
    factors = tuple(schema.factors)
    n_factors = len(factors)
    n_cells = 2 ** n_factors
    if effects is None:
        effects = [0.05, -0.03, 0.02][:n_factors] + [0.0] * max(0, n_factors - 3)
    effects = np.asarray(effects, dtype=float)
    if effects.shape != (n_factors,):
        raise ValueError(f"Expected {n_factors} effects, got {effects.shape[0]}")

    rng = np.random.default_rng(seed)
    subj_int = rng.normal(0.0, subject_sd, size=n_subjects)
    subj_slope = rng.normal(0.0, subject_sd / 4, size=n_subjects)
    item_int = rng.normal(0.0, item_sd, size=n_items)
    item_slope = rng.normal(0.0, item_sd / 4, size=n_items)

    rows = []
    for s in range(n_subjects):
        for i in range(n_items):
            codes = _condition_codes((i + s) % n_cells, n_factors)
            mu = (intercept + subj_int[s] + item_int[i]
                  + float(np.dot(effects, codes))
                  + (subj_slope[s] + item_slope[i]) * codes[0])
            rt = float(np.exp(rng.normal(mu, residual_sd)))
            row = {schema.subject: s + 1, schema.item: i + 1}
            row.update(dict(zip(factors, codes)))
            row[schema.response] = float(np.clip(rt, rt_min, rt_max))
            rows.append(row)

    df = pd.DataFrame(rows, columns=schema.required_columns)

    if missing_fraction > 0:
        if not 0 <= missing_fraction < 1:
            raise ValueError("missing_fraction must be in [0, 1)")
        keep = rng.random(len(df)) >= missing_fraction
        df = df[keep].reset_index(drop=True)

    return df
