"""
Posterior summaries and report tables.

Summaries keep the engine's parameter enumeration as is: correlation
matrices appear with both mirror entries and their fixed unit diagonal.
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, List, Optional

import arviz as az
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .sampling import PosteriorSamples, split_name

DEFAULT_PATTERNS = ("beta", "sigma_e", "sigma_u", "sigma_w", "Omega_u", "Omega_w")


def _escape_brackets(pattern: str) -> str:
    # Index brackets are literal in parameter names, not character classes
    return "".join({"[": "[[]", "]": "[]]"}.get(c, c) for c in pattern)


def _matches(name: str, pattern: str) -> bool:
    base, _ = split_name(name)
    return (name == pattern or base == pattern
            or fnmatchcase(name, _escape_brackets(pattern)))


def select_parameters(samples: PosteriorSamples,
                      patterns: Optional[Iterable[str]] = None) -> List[str]:
    """
    Parameter names matching ``patterns``, in pattern order.

    A pattern matches a scalar name exactly, every element of a base name
    (``'beta'`` matches ``'beta[1]'``...), or as an ``fnmatch`` glob.

    Raises
    ------
    KeyError
        If a pattern matches nothing.
    """
    if patterns is None:
        return samples.parameters
    if isinstance(patterns, str):
        patterns = [patterns]

    selected, seen = [], set()
    for pattern in patterns:
        hits = [name for name in samples.parameters if _matches(name, pattern)]
        if not hits:
            raise KeyError(f"No parameters match '{pattern}'")
        for name in hits:
            if name not in seen:
                seen.add(name)
                selected.append(name)
    return selected


def summarize(samples: PosteriorSamples, patterns: Optional[Iterable[str]] = None,
              prob: float = 0.95) -> pd.DataFrame:
    """
    Posterior mean and central credible interval per parameter.

    Parameters
    ----------
    samples : PosteriorSamples
        Merged post-warm-up draws
    patterns : iterable of str, optional
        Parameters to report. If None, reports all.
    prob : float, default=0.95
        Interval mass; 0.95 gives ``2.5%`` and ``97.5%`` columns

    Returns
    -------
    pd.DataFrame
        Indexed by parameter name with columns ``mean``, lower, upper
    """
    if not 0 < prob < 1:
        raise ValueError("prob must be in (0, 1)")
    lower_q = (1 - prob) / 2
    upper_q = 1 - lower_q
    lower_col = f"{100 * lower_q:g}%"
    upper_col = f"{100 * upper_q:g}%"

    rows = []
    names = select_parameters(samples, patterns)
    for name in names:
        values = samples.flat(name)
        lo, hi = np.quantile(values, [lower_q, upper_q])
        rows.append({"mean": values.mean(), lower_col: lo, upper_col: hi})

    return pd.DataFrame(rows, index=pd.Index(names, name="parameter"),
                        columns=["mean", lower_col, upper_col])


def posterior_probability(samples: PosteriorSamples, name: str,
                          threshold: float = 0.0, direction: str = ">") -> float:
    """Share of draws of ``name`` above (``'>'``) or below (``'<'``) ``threshold``."""
    values = samples.flat(name)
    if direction == ">":
        return float(np.mean(values > threshold))
    if direction == "<":
        return float(np.mean(values < threshold))
    raise ValueError(f"direction must be '>' or '<', got '{direction}'")


def format_table(df: pd.DataFrame, fmt: str = "text", digits: int = 2) -> str:
    """Render a summary for inclusion in a document (text, html or csv)."""
    rounded = df.round(digits)
    if fmt == "text":
        return rounded.to_string()
    if fmt == "html":
        return rounded.to_html()
    if fmt == "csv":
        return rounded.to_csv()
    raise ValueError(f"Unknown table format '{fmt}'")


def correlation_from_cholesky(chol) -> np.ndarray:
    """
    Correlation matrix ``L @ L.T`` from a lower-triangular Cholesky factor.

    Raises
    ------
    ValueError
        If ``chol`` is not square or has entries above the diagonal.
    """
    chol = np.asarray(chol, dtype=float)
    if chol.ndim != 2 or chol.shape[0] != chol.shape[1]:
        raise ValueError(f"Cholesky factor must be square, got shape {chol.shape}")
    if not np.allclose(np.triu(chol, k=1), 0.0):
        raise ValueError("Cholesky factor must be lower triangular")
    return chol @ chol.T


def plot_traces(samples: PosteriorSamples, var_names: Optional[list] = None,
                show: bool = True, **kwargs):
    """
    Plot MCMC traces.

    Parameters
    ----------
    var_names : list, optional
        Base parameter names. Defaults to the fixed effects and scales.
    **kwargs
        Additional arguments for az.plot_trace()
    """
    if var_names is None:
        idata_vars = samples.grouped()
        var_names = [v for v in ("beta", "sigma_e", "sigma_u", "sigma_w") if v in idata_vars]
    axes = az.plot_trace(samples.to_inference_data(), var_names=var_names, **kwargs)
    plt.tight_layout()
    if show:
        plt.show()
    return axes


def plot_posterior(samples: PosteriorSamples, var_names: Optional[list] = None,
                   show: bool = True, **kwargs):
    """Plot posterior densities with 95% HDIs via az.plot_posterior()."""
    kwargs.setdefault("hdi_prob", 0.95)
    axes = az.plot_posterior(samples.to_inference_data(), var_names=var_names, **kwargs)
    plt.tight_layout()
    if show:
        plt.show()
    return axes
