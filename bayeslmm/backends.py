"""
Sampling engine handling for bayeslmm.

This module provides a unified interface for the engines that can fit a
:class:`~bayeslmm.specification.ModelSpecification`: CmdStanPy and PyStan
run the rendered Stan program, PyMC builds the equivalent PyMC model.
Every backend compiles once and then samples one chain per call, so the
orchestrator in :mod:`bayeslmm.sampling` owns chain parallelism.
"""

import hashlib
import logging
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import numpy as np

from .exceptions import BackendError
from .packaging import ModelData
from .sampling import ChainDraws, ChainTask, flatten_draws
from .specification import ModelSpecification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledModel:
    """
    Picklable handle to a compiled model.

    Attributes
    ----------
    backend : str
        Name of the backend that produced it
    spec : ModelSpecification
        Specification the model was built from
    program : str
        Stan program text, empty for PyMC
    handle : Any
        Backend-specific reference (executable path for CmdStanPy)
    """
    backend: str
    spec: ModelSpecification
    program: str = ""
    handle: Any = None


class SamplingBackend(ABC):
    """Base class for engine adapters."""

    name = ""

    @abstractmethod
    def compile(self, spec: ModelSpecification, data: Optional[ModelData] = None) -> CompiledModel:
        """Compile ``spec``; raise :class:`BackendError` on failure."""

    @abstractmethod
    def sample_chain(self, compiled: CompiledModel, data: ModelData, task: ChainTask) -> ChainDraws:
        """Run one chain and return its post-warm-up draws."""


class CmdStanBackend(SamplingBackend):
    """
    CmdStanPy backend (recommended).

    Parameters
    ----------
    cache_dir : str, optional
        Where Stan programs and executables are written. Defaults to a
        ``bayeslmm`` directory under the system temp dir.
    show_progress : bool, default=False
        Show CmdStan progress bars
    **sample_kwargs
        Extra arguments for ``CmdStanModel.sample`` (``adapt_delta`` ...)
    """

    name = "cmdstanpy"

    def __init__(self, cache_dir: Optional[str] = None, show_progress: bool = False,
                 **sample_kwargs):
        import cmdstanpy  # noqa: F401

        self.cache_dir = cache_dir
        self.show_progress = show_progress
        self.sample_kwargs = sample_kwargs

    def _stan_file(self, program: str) -> Path:
        base = Path(self.cache_dir) if self.cache_dir else Path(tempfile.gettempdir()) / "bayeslmm"
        base.mkdir(parents=True, exist_ok=True)
        digest = hashlib.sha1(program.encode("utf-8")).hexdigest()[:12]
        stan_file = base / f"lmm_{digest}.stan"
        if not stan_file.exists():
            stan_file.write_text(program)
        return stan_file

    def compile(self, spec, data=None):
        import cmdstanpy

        program = spec.to_stan()
        stan_file = self._stan_file(program)
        try:
            model = cmdstanpy.CmdStanModel(stan_file=str(stan_file))
        except Exception as e:
            raise BackendError(f"Stan compilation failed: {e}") from e
        logger.info(f"Compiled Stan program {stan_file.name}")
        return CompiledModel(backend=self.name, spec=spec, program=program,
                             handle=str(model.exe_file))

    def sample_chain(self, compiled, data, task):
        import cmdstanpy

        model = cmdstanpy.CmdStanModel(exe_file=compiled.handle)
        fit = model.sample(
            data=data.to_stan_dict(),
            chains=1,
            chain_ids=[task.chain_id],
            seed=task.seed,
            iter_warmup=task.warmup,
            iter_sampling=task.sampling,
            show_progress=self.show_progress,
            **self.sample_kwargs,
        )
        df = fit.draws_pd()
        columns = [c for c in df.columns if not c.endswith("__")]
        return ChainDraws(
            chain_id=task.chain_id,
            draws={c: df[c].to_numpy(dtype=float) for c in columns},
        )


class PyStanBackend(SamplingBackend):
    """
    PyStan 3 backend.

    PyStan builds a program together with its data, so :meth:`compile`
    needs ``data`` to surface compilation errors early; each chain rebuilds
    from httpstan's cache with its own seed.
    """

    name = "pystan"

    def __init__(self, **sample_kwargs):
        import stan  # noqa: F401

        self.sample_kwargs = sample_kwargs

    def compile(self, spec, data=None):
        import stan

        program = spec.to_stan()
        if data is not None:
            try:
                stan.build(program, data=data.to_stan_dict())
            except Exception as e:
                raise BackendError(f"Stan compilation failed: {e}") from e
        return CompiledModel(backend=self.name, spec=spec, program=program)

    def sample_chain(self, compiled, data, task):
        import stan

        posterior = stan.build(compiled.program, data=data.to_stan_dict(),
                               random_seed=task.seed)
        fit = posterior.sample(
            num_chains=1,
            num_samples=task.sampling,
            num_warmup=task.warmup,
            **self.sample_kwargs,
        )
        draws = {}
        for name in fit.param_names:
            # PyStan puts the draw axis last
            draws.update(flatten_draws(name, np.moveaxis(fit[name], -1, 0)))
        return ChainDraws(chain_id=task.chain_id, draws=draws)


class PyMCBackend(SamplingBackend):
    """
    PyMC backend.

    The model is rebuilt inside each worker from the model specification and the
    worker's copy of the data, so nothing unpicklable crosses processes.
    """

    name = "pymc"

    def __init__(self, **sample_kwargs):
        import pymc  # noqa: F401

        self.sample_kwargs = sample_kwargs

    def compile(self, spec, data=None):
        if data is not None:
            from .pymc_model import build_pymc_model

            try:
                build_pymc_model(spec, data)
            except Exception as e:
                raise BackendError(f"PyMC model construction failed: {e}") from e
        return CompiledModel(backend=self.name, spec=spec)

    def sample_chain(self, compiled, data, task):
        import pymc as pm

        from .pymc_model import build_pymc_model

        model = build_pymc_model(compiled.spec, data)
        trace = pm.sample(
            draws=task.sampling,
            tune=task.warmup,
            chains=1,
            cores=1,
            random_seed=task.seed,
            model=model,
            progressbar=False,
            compute_convergence_checks=False,
            **self.sample_kwargs,
        )
        posterior = trace.posterior
        draws = {}
        for name in compiled.spec.parameter_names:
            if name in posterior:
                draws.update(flatten_draws(name, posterior[name].values[0]))
        return ChainDraws(chain_id=task.chain_id, draws=draws)


BACKENDS = {
    "cmdstanpy": CmdStanBackend,
    "pystan": PyStanBackend,
    "pymc": PyMCBackend,
}


def get_backend(name: Optional[str] = None, **kwargs) -> SamplingBackend:
    """
    Return a backend by name, or the best available one.

    Auto-detection prefers CmdStanPy, then PyStan, then PyMC.

    Raises
    ------
    ValueError
        If ``name`` is not a known backend
    ImportError
        If no engine is available
    """
    if name is not None:
        try:
            backend_cls = BACKENDS[name]
        except KeyError:
            raise ValueError(f"Unknown backend '{name}'. Choose from {sorted(BACKENDS)}") from None
        return backend_cls(**kwargs)

    for backend_cls in (CmdStanBackend, PyStanBackend, PyMCBackend):
        try:
            backend = backend_cls(**kwargs)
        except ImportError:
            continue
        logger.info(f"Using {backend.name} backend")
        return backend

    raise ImportError(
        "No sampling backend available. Please install one of:\n"
        "  pip install cmdstanpy  # Recommended\n"
        "  pip install pystan     # Alternative\n"
        "  pip install pymc       # Alternative"
    )
