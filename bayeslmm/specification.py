"""
Declarative specification of the crossed random-effects model.

The model is held as a structured object (priors, group terms, response
family) rather than as a hand-written program string. Engines consume it
in their own way: :meth:`ModelSpecification.to_stan` renders a Stan
program, :func:`bayeslmm.pymc_model.build_pymc_model` builds the PyMC
equivalent.

Model
-----
    mu[n]   = X[n] * beta + Zs[n] * u[, subj[n]] + Zi[n] * w[, item[n]]
    rt[n]   ~ Normal(mu[n], sigma_e)
    u       = diag(sigma_u) * L_u * z_u,      z_u ~ Normal(0, 1)
    w       = diag(sigma_w) * L_w * z_w,      z_w ~ Normal(0, 1)
    sigma_u, sigma_w ~ HalfCauchy(0, 2.5)
    L_u, L_w         ~ LKJCholesky(2)
    sigma_e          ~ Uniform(0, inf)
    beta             ~ flat
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class FlatPrior:
    """Improper uniform prior over the real line."""

    def stan_bounds(self) -> str:
        return ""

    def stan_statement(self, target: str) -> Optional[str]:
        return None


@dataclass(frozen=True)
class NormalPrior:
    mu: float = 0.0
    sigma: float = 10.0

    def stan_bounds(self) -> str:
        return ""

    def stan_statement(self, target: str) -> Optional[str]:
        return f"{target} ~ normal({self.mu:g}, {self.sigma:g});"


@dataclass(frozen=True)
class HalfCauchyPrior:
    """Cauchy(0, scale) truncated to the positive half line."""
    scale: float = 2.5

    def stan_bounds(self) -> str:
        return "<lower=0>"

    def stan_statement(self, target: str) -> Optional[str]:
        return f"{target} ~ cauchy(0, {self.scale:g});"


@dataclass(frozen=True)
class UniformPrior:
    """Uniform prior; ``upper=None`` gives the improper ``(lower, inf)`` form."""
    lower: float = 0.0
    upper: Optional[float] = None

    def stan_bounds(self) -> str:
        if self.upper is None:
            return f"<lower={self.lower:g}>"
        return f"<lower={self.lower:g}, upper={self.upper:g}>"

    def stan_statement(self, target: str) -> Optional[str]:
        # The declared bounds already give the uniform density
        return None


@dataclass(frozen=True)
class LKJPrior:
    """LKJ prior on a Cholesky-factored correlation matrix."""
    eta: float = 2.0

    def stan_statement(self, target: str) -> Optional[str]:
        return f"{target} ~ lkj_corr_cholesky({self.eta:.1f});"


@dataclass(frozen=True)
class GroupTerm:
    """
    Random effects of one grouping factor.

    ``size`` and ``n_effects`` name the data-block counts, ``index`` the
    per-observation group index and ``design`` the random-effect matrix.
    ``suffix`` distinguishes the parameter names (``sigma_u``, ``L_u``...).
    """
    group: str
    size: str
    n_effects: str
    index: str
    design: str
    suffix: str
    sd_prior: HalfCauchyPrior = field(default_factory=HalfCauchyPrior)
    corr_prior: LKJPrior = field(default_factory=LKJPrior)

    @property
    def sd(self) -> str:
        return f"sigma_{self.suffix}"

    @property
    def chol(self) -> str:
        return f"L_{self.suffix}"

    @property
    def spherical(self) -> str:
        return f"z_{self.suffix}"

    @property
    def effects(self) -> str:
        return self.suffix

    @property
    def corr(self) -> str:
        return f"Omega_{self.suffix}"


SUBJECT_TERM = GroupTerm(group="subject", size="M", n_effects="J", index="subj",
                         design="Zs", suffix="u")
ITEM_TERM = GroupTerm(group="item", size="L", n_effects="I", index="item",
                      design="Zi", suffix="w")


@dataclass(frozen=True)
class ModelSpecification:
    """
    Linear mixed model with crossed subject and item random effects.

    Parameters
    ----------
    fixed_prior : FlatPrior or NormalPrior
        Prior on the fixed-effect coefficients ``beta``
    residual_prior : UniformPrior
        Prior on the residual standard deviation ``sigma_e``
    groups : tuple of GroupTerm
        Grouping factors, subjects first
    log_response : bool
        Model log reaction time instead of raw milliseconds. The data keep
        raw milliseconds; the model takes the log of the response itself.
    """
    fixed_prior: object = field(default_factory=FlatPrior)
    residual_prior: UniformPrior = field(default_factory=UniformPrior)
    groups: tuple = (SUBJECT_TERM, ITEM_TERM)
    response: str = "rt"
    log_response: bool = False

    @property
    def outcome(self) -> str:
        """Name of the modelled response variable."""
        return f"log_{self.response}" if self.log_response else self.response

    @property
    def parameter_names(self) -> list[str]:
        names = ["beta", "sigma_e"]
        for g in self.groups:
            names.extend([g.sd, g.chol, g.spherical, g.effects, g.corr])
        return names

    def to_stan(self) -> str:
        """Render the model as a Stan program."""
        data = [
            "  int<lower=1> N;",
            "  int<lower=1> K;",
        ]
        for g in self.groups:
            data.append(f"  int<lower=1> {g.size};")
            data.append(f"  int<lower=1> {g.n_effects};")
        data.append(f"  vector[N] {self.response};")
        for g in self.groups:
            data.append(f"  array[N] int<lower=1, upper={g.size}> {g.index};")
        data.append("  matrix[N, K] X;")
        for g in self.groups:
            data.append(f"  matrix[N, {g.n_effects}] {g.design};")

        transformed_data = []
        if self.log_response:
            transformed_data.append(f"  vector[N] {self.outcome} = log({self.response});")

        params = [
            f"  vector{self.fixed_prior.stan_bounds()}[K] beta;",
            f"  real{self.residual_prior.stan_bounds()} sigma_e;",
        ]
        for g in self.groups:
            params.append(f"  vector{g.sd_prior.stan_bounds()}[{g.n_effects}] {g.sd};")
            params.append(f"  cholesky_factor_corr[{g.n_effects}] {g.chol};")
            params.append(f"  matrix[{g.n_effects}, {g.size}] {g.spherical};")

        transformed = [
            f"  matrix[{g.n_effects}, {g.size}] {g.effects} = "
            f"diag_pre_multiply({g.sd}, {g.chol}) * {g.spherical};"
            for g in self.groups
        ]

        model = []
        for statement in (self.fixed_prior.stan_statement("beta"),
                          self.residual_prior.stan_statement("sigma_e")):
            if statement:
                model.append(f"  {statement}")
        for g in self.groups:
            model.append(f"  {g.sd_prior.stan_statement(g.sd)}")
            model.append(f"  {g.corr_prior.stan_statement(g.chol)}")
            model.append(f"  to_vector({g.spherical}) ~ std_normal();")
        predictor = " + ".join(
            ["X * beta"] + [
                f"rows_dot_product({g.design}, {g.effects}[, {g.index}]')"
                for g in self.groups
            ]
        )
        model.append("  {")
        model.append(f"    vector[N] mu = {predictor};")
        model.append(f"    {self.outcome} ~ normal(mu, sigma_e);")
        model.append("  }")

        generated = [
            f"  corr_matrix[{g.n_effects}] {g.corr} = "
            f"multiply_lower_tri_self_transpose({g.chol});"
            for g in self.groups
        ]

        blocks = [
            ("data", data),
            ("transformed data", transformed_data),
            ("parameters", params),
            ("transformed parameters", transformed),
            ("model", model),
            ("generated quantities", generated),
        ]
        return "\n".join(
            f"{name} {{\n" + "\n".join(lines) + "\n}" for name, lines in blocks
            if lines
        ) + "\n"


def default_specification(log_response: bool = False) -> ModelSpecification:
    """Flat fixed effects, half-Cauchy(2.5) sds, LKJ(2) correlations."""
    return ModelSpecification(log_response=log_response)
