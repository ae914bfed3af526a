"""
Bayesian linear mixed model with crossed subject and item random effects.

Ties the pipeline together: validate the trial table, build the design
matrix, package it for the chosen random-effects structure, compile the
specification with a sampling backend, run the chains and summarize.
The "maximal" and "final" models differ only in their
:class:`~bayeslmm.packaging.RandomEffectsStructure`.
"""

import logging
from dataclasses import replace
from typing import Optional

import arviz as az
import pandas as pd

from .backends import CompiledModel, SamplingBackend, get_backend
from .data import DatasetSchema
from .design import FactorialFormula
from .packaging import MAXIMAL, ModelData, get_structure, prepare_model_data
from .reporting import DEFAULT_PATTERNS, plot_posterior, plot_traces, summarize
from .sampling import PosteriorSamples, SamplerConfig, SamplingResult, run_chains
from .specification import ModelSpecification, default_specification

logger = logging.getLogger(__name__)


class MixedModel:
    """
    Crossed random-effects linear mixed model for factorial RT data.

    Parameters
    ----------
    structure : RandomEffectsStructure or str, default=MAXIMAL
        Design columns reused as by-subject and by-item random effects
        (``'maximal'`` or ``'final'`` presets, or a custom structure)
    specification : ModelSpecification, optional
        Priors and likelihood. Defaults to :func:`default_specification`.
    backend : SamplingBackend or str, optional
        Engine to use. If None, the best available one is detected.
    schema : DatasetSchema, optional
        Column layout of the trial table
    formula : FactorialFormula, optional
        Fixed-effects formula. Defaults to the full factorial of the
        schema's factors.

    Examples
    --------
    >>> import pandas as pd
    >>> from bayeslmm import MixedModel
    >>>
    >>> data = pd.read_csv('rt_data.csv')
    >>> model = MixedModel(structure='final', backend='cmdstanpy')
    >>> samples = model.fit(data, chains=4, iter=2000, warmup=1000)
    >>> model.summary(['beta', 'sigma_e', 'sigma_u', 'sigma_w'])
    """

    def __init__(self, structure=MAXIMAL, specification: Optional[ModelSpecification] = None,
                 backend=None, schema: Optional[DatasetSchema] = None,
                 formula: Optional[FactorialFormula] = None):
        self.structure = get_structure(structure)
        self.specification = specification or default_specification()
        self.schema = schema or DatasetSchema()
        self.formula = formula or FactorialFormula(self.schema.factors)
        self._backend = backend
        self.compiled: Optional[CompiledModel] = None
        self.data: Optional[ModelData] = None
        self.result: Optional[SamplingResult] = None
        self.samples: Optional[PosteriorSamples] = None

    @property
    def backend(self) -> SamplingBackend:
        if not isinstance(self._backend, SamplingBackend):
            self._backend = get_backend(self._backend)
        return self._backend

    def prepare_data(self, data_df: pd.DataFrame) -> ModelData:
        """
        Validate and package a trial table.

        Parameters
        ----------
        data_df : pd.DataFrame
            One row per trial with the schema's columns

        Returns
        -------
        ModelData
        """
        self.data = prepare_model_data(
            data_df,
            schema=self.schema,
            formula=self.formula,
            structure=self.structure,
        )
        return self.data

    def compile(self) -> CompiledModel:
        """Compile the model specification with the backend."""
        if self.data is None:
            raise ValueError("Must prepare data first with prepare_data()")
        logger.info(f"Compiling {self.structure.name} model with {self.backend.name}")
        self.compiled = self.backend.compile(self.specification, self.data)
        return self.compiled

    def fit(self, data_df: Optional[pd.DataFrame] = None,
            config: Optional[SamplerConfig] = None, **overrides) -> PosteriorSamples:
        """
        Fit the model.

        Parameters
        ----------
        data_df : pd.DataFrame, optional
            Trial table. May be omitted if prepare_data() was called.
        config : SamplerConfig, optional
            Chains, iterations, warm-up, seed and workers
        **overrides
            Field overrides for ``config`` (``chains=2``, ``iter=500`` ...)

        Returns
        -------
        PosteriorSamples
            Merged post-warm-up draws
        """
        if data_df is not None:
            self.prepare_data(data_df)
        if self.data is None:
            raise ValueError("No data: pass data_df or call prepare_data() first")

        config = config or SamplerConfig()
        if overrides:
            config = replace(config, **overrides)

        if self.compiled is None or self.compiled.backend != self.backend.name:
            self.compile()

        self.result = run_chains(self.backend, self.compiled, self.data, config)
        self.samples = self.result.samples
        return self.samples

    def _require_samples(self) -> PosteriorSamples:
        if self.samples is None:
            raise ValueError("Model has not been fitted yet.")
        return self.samples

    def summary(self, patterns=DEFAULT_PATTERNS, prob: float = 0.95) -> pd.DataFrame:
        """Posterior means and credible intervals of the selected parameters."""
        return summarize(self._require_samples(), patterns, prob=prob)

    def plot_traces(self, var_names: Optional[list] = None, **kwargs):
        """MCMC trace plots; see :func:`bayeslmm.reporting.plot_traces`."""
        return plot_traces(self._require_samples(), var_names, **kwargs)

    def plot_posterior(self, var_names: Optional[list] = None, **kwargs):
        """Posterior density plots; see :func:`bayeslmm.reporting.plot_posterior`."""
        return plot_posterior(self._require_samples(), var_names, **kwargs)

    def save_results(self, filepath: str):
        """
        Save posterior draws to NetCDF format.

        Parameters
        ----------
        filepath : str
            Output file path (.nc)
        """
        samples = self._require_samples()
        samples.to_inference_data().to_netcdf(filepath)
        logger.info(f"Results saved to: {filepath}")

    def load_results(self, filepath: str) -> PosteriorSamples:
        """
        Load posterior draws from NetCDF format.

        Parameters
        ----------
        filepath : str
            Input file path (.nc)

        Returns
        -------
        PosteriorSamples
        """
        self.samples = PosteriorSamples.from_inference_data(az.from_netcdf(filepath))
        logger.info(f"Results loaded from: {filepath}")
        return self.samples
