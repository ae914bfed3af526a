"""
PyMC rendition of :class:`~bayeslmm.specification.ModelSpecification`.

Builds the same crossed random-effects model the Stan program describes,
with matching parameter names so draws from either engine summarize the
same way.
"""

import numpy as np
import pymc as pm
import pytensor.tensor as pt

from .packaging import ModelData
from .specification import (
    FlatPrior,
    GroupTerm,
    ModelSpecification,
    NormalPrior,
    UniformPrior,
)


def _fixed_effects(prior, k: int):
    if isinstance(prior, FlatPrior):
        return pm.Flat("beta", shape=k)
    if isinstance(prior, NormalPrior):
        return pm.Normal("beta", mu=prior.mu, sigma=prior.sigma, shape=k)
    raise ValueError(f"Unsupported fixed-effect prior: {prior!r}")


def _residual_sd(prior: UniformPrior):
    if prior.upper is None:
        if prior.lower != 0:
            raise ValueError("Open-ended uniform residual prior must start at 0")
        return pm.HalfFlat("sigma_e")
    return pm.Uniform("sigma_e", lower=prior.lower, upper=prior.upper)


def _group_effects(term: GroupTerm, n_groups: int, n_effects: int):
    """Correlated group effects with shape (n_effects, n_groups)."""
    z = pm.Normal(term.spherical, mu=0.0, sigma=1.0, shape=(n_effects, n_groups))

    if n_effects == 1:
        # A 1x1 correlation matrix is fixed at 1
        sd = pm.HalfCauchy(term.sd, beta=term.sd_prior.scale, shape=1)
        pm.Deterministic(term.chol, pt.ones((1, 1)))
        pm.Deterministic(term.corr, pt.ones((1, 1)))
        return pm.Deterministic(term.effects, sd[:, None] * z)

    chol, corr, stds = pm.LKJCholeskyCov(
        f"chol_cov_{term.suffix}",
        n=n_effects,
        eta=term.corr_prior.eta,
        sd_dist=pm.HalfCauchy.dist(beta=term.sd_prior.scale, size=n_effects),
        compute_corr=True,
    )
    pm.Deterministic(term.sd, stds)
    pm.Deterministic(term.corr, corr)
    pm.Deterministic(term.chol, chol / stds[:, None])
    return pm.Deterministic(term.effects, pt.dot(chol, z))


def build_pymc_model(spec: ModelSpecification, data: ModelData) -> pm.Model:
    """
    Build the PyMC model for packaged data.

    Parameters
    ----------
    spec : ModelSpecification
        Priors and group terms
    data : ModelData
        Packaged arrays; ``y`` is in milliseconds and is log-transformed
        here when ``spec.log_response`` is set

    Returns
    -------
    pm.Model
    """
    groups = {
        "subject": (data.M, data.J, data.Zs, data.subj),
        "item": (data.L, data.I, data.Zi, data.item),
    }

    with pm.Model() as model:
        beta = _fixed_effects(spec.fixed_prior, data.K)
        sigma_e = _residual_sd(spec.residual_prior)

        mu = pt.dot(np.asarray(data.X), beta)
        for term in spec.groups:
            n_groups, n_effects, design, index = groups[term.group]
            effects = _group_effects(term, n_groups, n_effects)
            per_obs = effects[:, np.asarray(index) - 1].T
            mu = mu + (np.asarray(design) * per_obs).sum(axis=1)

        y = np.asarray(data.y, dtype=float)
        if spec.log_response:
            y = np.log(y)
        pm.Normal(spec.outcome, mu=mu, sigma=sigma_e, observed=y)

    return model
