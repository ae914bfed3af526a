"""
bayeslmm: Bayesian linear mixed models for factorial reaction-time data.

This package prepares psycholinguistic reaction-time experiments for
Bayesian linear mixed-effects models with crossed subject and item random
effects, fits them with an external Hamiltonian Monte Carlo engine
(CmdStanPy, PyStan or PyMC), and reports posterior summaries.

Main Classes
------------
MixedModel : End-to-end model (prepare data, compile, sample, summarize)
ModelSpecification : Declarative priors and likelihood, rendered to Stan
RandomEffectsStructure : Which design columns vary by subject and by item

The Model
---------
- Sum-coded (+1/-1) 2x2x2 factorial fixed effects with all interactions
- By-subject and by-item random effects with LKJ(2) correlation priors
  and half-Cauchy(0, 2.5) standard deviations
- "maximal" structure: all 8 design columns vary by subject and by item
- "final" structure: subject intercepts; item intercepts and first slope

Examples
--------
>>> from bayeslmm import MixedModel, simulate_factorial_dataset
>>>
>>> data = simulate_factorial_dataset(n_subjects=56, n_items=32)
>>>
>>> model = MixedModel(structure='maximal')
>>> samples = model.fit(data, chains=4, iter=2000, warmup=1000)
>>>
>>> model.summary(['beta', 'sigma_e', 'Omega_u'])
>>> model.plot_traces()
"""

from .data import DatasetSchema, load_dataset, simulate_factorial_dataset, validate_dataset
from .design import DesignMatrix, FactorialFormula, build_design_matrix
from .exceptions import BackendError, PackagingError, SamplingError, SchemaError
from .models import MixedModel
from .packaging import FINAL, MAXIMAL, ModelData, RandomEffectsStructure, package_model_data
from .reporting import format_table, summarize
from .sampling import PosteriorSamples, SamplerConfig
from .specification import ModelSpecification, default_specification

__version__ = "0.1.0"

__all__ = [
    "MixedModel",
    "ModelSpecification",
    "default_specification",
    "RandomEffectsStructure",
    "MAXIMAL",
    "FINAL",
    "DatasetSchema",
    "load_dataset",
    "validate_dataset",
    "simulate_factorial_dataset",
    "FactorialFormula",
    "DesignMatrix",
    "build_design_matrix",
    "ModelData",
    "package_model_data",
    "SamplerConfig",
    "PosteriorSamples",
    "summarize",
    "format_table",
    "SchemaError",
    "PackagingError",
    "BackendError",
    "SamplingError",
]
