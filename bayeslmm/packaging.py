"""
Model-data packaging.

Turns a design matrix, a response vector and subject/item labels into the
arrays the mixed-model likelihood consumes: observation and group counts,
1-based group indices and the fixed- and random-effect matrices. Which
design columns are reused as random-effect regressors is a configuration
(:class:`RandomEffectsStructure`), not a separate code path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from .data import DatasetSchema, validate_dataset
from .design import DesignMatrix, FactorialFormula, build_design_matrix
from .exceptions import PackagingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RandomEffectsStructure:
    """
    Design columns reused as by-subject and by-item random effects.

    Column positions are 1-based; ``None`` selects every design column.
    """
    name: str
    subject_columns: Optional[tuple] = None
    item_columns: Optional[tuple] = None

    def resolve(self, n_columns: int) -> tuple:
        subj = tuple(range(1, n_columns + 1)) if self.subject_columns is None else tuple(self.subject_columns)
        item = tuple(range(1, n_columns + 1)) if self.item_columns is None else tuple(self.item_columns)
        return subj, item


MAXIMAL = RandomEffectsStructure("maximal")
FINAL = RandomEffectsStructure("final", subject_columns=(1,), item_columns=(1, 2))

STRUCTURES = {s.name: s for s in (MAXIMAL, FINAL)}


def get_structure(name) -> RandomEffectsStructure:
    """Look up a preset by name, passing structures through unchanged."""
    if isinstance(name, RandomEffectsStructure):
        return name
    try:
        return STRUCTURES[name]
    except KeyError:
        raise ValueError(
            f"Unknown random-effects structure '{name}'. "
            f"Choose from {sorted(STRUCTURES)}"
        ) from None


@dataclass(frozen=True)
class ModelData:
    """
    Packaged inputs for the crossed random-effects likelihood.

    Attributes
    ----------
    N, K : int
        Observation count and fixed-effect column count
    M, J : int
        Subject count and by-subject random-effect column count
    L, I : int
        Item count and by-item random-effect column count
    subj, item : np.ndarray
        Per-observation group indices, 1-based
    X, Zs, Zi : np.ndarray
        Row-oriented fixed, by-subject and by-item matrices
    y : np.ndarray
        Response vector
    """
    N: int
    K: int
    M: int
    J: int
    L: int
    I: int
    subj: np.ndarray
    item: np.ndarray
    X: np.ndarray
    Zs: np.ndarray
    Zi: np.ndarray
    y: np.ndarray
    fixed_names: tuple = ()
    subject_names: tuple = ()
    item_names: tuple = ()
    subject_levels: tuple = ()
    item_levels: tuple = ()
    structure: str = field(default="custom")

    def to_stan_dict(self) -> Dict:
        """Data block mapping for Stan; arrays are copies."""
        return {
            "N": self.N,
            "K": self.K,
            "M": self.M,
            "J": self.J,
            "L": self.L,
            "I": self.I,
            "rt": self.y.copy(),
            "subj": self.subj.astype(int).copy(),
            "item": self.item.astype(int).copy(),
            "X": self.X.copy(),
            "Zs": self.Zs.copy(),
            "Zi": self.Zi.copy(),
        }

    def copy(self) -> "ModelData":
        return ModelData(
            N=self.N, K=self.K, M=self.M, J=self.J, L=self.L, I=self.I,
            subj=self.subj.copy(), item=self.item.copy(),
            X=self.X.copy(), Zs=self.Zs.copy(), Zi=self.Zi.copy(),
            y=self.y.copy(),
            fixed_names=self.fixed_names, subject_names=self.subject_names,
            item_names=self.item_names, subject_levels=self.subject_levels,
            item_levels=self.item_levels, structure=self.structure,
        )


def index_groups(labels, levels: Optional[Sequence] = None) -> tuple:
    """
    Map group labels to 1-based integer indices.

    Parameters
    ----------
    labels : array-like
        One label per observation
    levels : sequence, optional
        Pre-declared group levels. Defaults to the sorted unique labels.

    Returns
    -------
    tuple of (np.ndarray, tuple)
        Indices in ``[1, len(levels)]`` and the levels in index order

    Raises
    ------
    PackagingError
        If a label is missing or not among the declared levels.
    """
    labels = pd.Series(labels).reset_index(drop=True)
    if labels.isna().any():
        raise PackagingError(f"{int(labels.isna().sum())} observations have no group label")

    if levels is None:
        levels = sorted(labels.unique().tolist())
    levels = tuple(levels)
    if len(set(levels)) != len(levels):
        raise PackagingError("Declared group levels contain duplicates")

    level_map = {level: i + 1 for i, level in enumerate(levels)}
    indices = labels.map(level_map)
    if indices.isna().any():
        unknown = sorted(labels[indices.isna()].unique().tolist(), key=str)
        raise PackagingError(f"Group labels not among declared levels: {unknown}")

    return indices.to_numpy(dtype=int), levels


def _check_bounds(indices: np.ndarray, n_groups: int, what: str) -> None:
    if n_groups < 1:
        raise PackagingError(f"No {what} groups declared")
    out = (indices < 1) | (indices > n_groups)
    if out.any():
        bad = sorted(set(indices[out].tolist()))
        raise PackagingError(f"{what} indices {bad} outside [1, {n_groups}]")


def package_model_data(
    design: DesignMatrix,
    y,
    subjects,
    items,
    structure=MAXIMAL,
    subject_levels: Optional[Sequence] = None,
    item_levels: Optional[Sequence] = None,
) -> ModelData:
    """
    Assemble :class:`ModelData` from a design matrix and group labels.

    Parameters
    ----------
    design : DesignMatrix
        Fixed-effects matrix
    y : array-like
        Response per observation
    subjects, items : array-like
        Group label per observation
    structure : RandomEffectsStructure or str, default=MAXIMAL
        Which design columns become by-subject and by-item regressors
    subject_levels, item_levels : sequence, optional
        Pre-declared group levels; indices must fall within them

    Returns
    -------
    ModelData

    Raises
    ------
    PackagingError
        On length mismatches, undeclared labels, or indices outside
        ``[1, group count]``.
    """
    structure = get_structure(structure)
    X = np.asarray(design.values, dtype=float)
    y = np.asarray(y, dtype=float)
    n, k = X.shape

    for what, arr in (("response", y), ("subject", subjects), ("item", items)):
        if len(arr) != n:
            raise PackagingError(f"{what} vector has length {len(arr)}, expected {n}")

    subj_idx, subject_levels = index_groups(subjects, subject_levels)
    item_idx, item_levels = index_groups(items, item_levels)
    _check_bounds(subj_idx, len(subject_levels), "subject")
    _check_bounds(item_idx, len(item_levels), "item")

    subj_cols, item_cols = structure.resolve(k)
    try:
        zs = design.select(subj_cols)
        zi = design.select(item_cols)
    except IndexError as e:
        raise PackagingError(str(e)) from e

    data = ModelData(
        N=n, K=k,
        M=len(subject_levels), J=len(subj_cols),
        L=len(item_levels), I=len(item_cols),
        subj=subj_idx, item=item_idx,
        X=X.copy(), Zs=zs.values, Zi=zi.values, y=y.copy(),
        fixed_names=tuple(design.columns),
        subject_names=tuple(zs.columns),
        item_names=tuple(zi.columns),
        subject_levels=subject_levels,
        item_levels=item_levels,
        structure=structure.name,
    )
    logger.info(
        f"Packaged {structure.name} model data: N={data.N}, K={data.K}, "
        f"M={data.M}, J={data.J}, L={data.L}, I={data.I}"
    )
    return data


def prepare_model_data(df: pd.DataFrame,
                       schema: Optional[DatasetSchema] = None,
                       formula: Optional[FactorialFormula] = None,
                       structure=MAXIMAL) -> ModelData:
    """
    Validate a trial table, build its design matrix and package it.

    The response stays in milliseconds; a log-scale model transforms it
    itself (see
    :attr:`~bayeslmm.specification.ModelSpecification.log_response`).
    """
    schema = schema or DatasetSchema()
    formula = formula or FactorialFormula(schema.factors)
    clean = validate_dataset(df, schema)
    design = build_design_matrix(clean, formula)
    y = clean[schema.response].to_numpy(dtype=float)
    return package_model_data(
        design, y, clean[schema.subject], clean[schema.item], structure,
    )
