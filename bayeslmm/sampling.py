"""
Chain orchestration and posterior draw collections.

Each Markov chain is an independent task: a cold start with its own chain
id and seed, run by a backend against a private copy of the packaged data.
Tasks fan out over a ``concurrent.futures`` pool, failures are recorded per
chain, and the surviving post-warm-up draws are merged into one
:class:`PosteriorSamples` collection.
"""

from __future__ import annotations

import logging
import os
import re
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .exceptions import SamplingError

logger = logging.getLogger(__name__)

_INDEXED_NAME = re.compile(r"^(?P<base>[^\[]+)\[(?P<index>[0-9,\s]+)\]$")


@dataclass
class SamplerConfig:
    """
    Run configuration for the sampling engine.

    Parameters
    ----------
    chains : int, default=4
        Number of independent chains
    iter : int, default=2000
        Total iterations per chain, warm-up included
    warmup : int, default=1000
        Warm-up iterations discarded from every chain
    seed : int, default=1234
        Base seed; chain ``k`` uses ``seed + k - 1``
    workers : int, optional
        Parallel workers. Defaults to one per chain, capped at the CPU count.
    executor : str, default='process'
        ``'process'`` or ``'thread'`` pool for ``workers > 1``
    allow_partial : bool, default=False
        Merge surviving chains instead of raising when some chains fail
    """
    chains: int = 4
    iter: int = 2000
    warmup: int = 1000
    seed: int = 1234
    workers: Optional[int] = None
    executor: str = "process"
    allow_partial: bool = False

    def __post_init__(self):
        if self.chains < 1:
            raise ValueError("chains must be at least 1")
        if self.warmup < 0:
            raise ValueError("warmup must be non-negative")
        if self.iter <= self.warmup:
            raise ValueError(
                f"iter ({self.iter}) must exceed warmup ({self.warmup}) "
                "to leave sampling draws"
            )
        if self.executor not in ("process", "thread"):
            raise ValueError(f"Unknown executor '{self.executor}'")
        if self.workers is not None and self.workers < 1:
            raise ValueError("workers must be at least 1")

    @property
    def iter_sampling(self) -> int:
        return self.iter - self.warmup

    def resolved_workers(self) -> int:
        cpus = os.cpu_count() or 1
        requested = self.workers if self.workers is not None else self.chains
        workers = min(requested, self.chains)
        if workers > cpus:
            logger.warning(f"Requested {workers} workers on {cpus} CPUs; using {cpus}")
            workers = cpus
        return workers

    def tasks(self) -> List["ChainTask"]:
        return [
            ChainTask(
                chain_id=k,
                seed=self.seed + k - 1,
                warmup=self.warmup,
                sampling=self.iter_sampling,
            )
            for k in range(1, self.chains + 1)
        ]


@dataclass(frozen=True)
class ChainTask:
    """One chain to run: 1-based id, seed and iteration counts."""
    chain_id: int
    seed: int
    warmup: int
    sampling: int


@dataclass
class ChainDraws:
    """Post-warm-up draws of a single chain, keyed by scalar parameter name."""
    chain_id: int
    draws: Dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def n_draws(self) -> int:
        if not self.draws:
            return 0
        return len(next(iter(self.draws.values())))


@dataclass(frozen=True)
class ChainFailure:
    chain_id: int
    error: str


def flatten_draws(name: str, values) -> Dict[str, np.ndarray]:
    """
    Split a ``(draws, *shape)`` array into scalar parameter columns.

    Names follow Stan's CSV convention: 1-based indices in column-major
    order, e.g. ``Omega_u[1,1]``, ``Omega_u[2,1]``, ``Omega_u[1,2]``.
    """
    values = np.asarray(values)
    shape = values.shape[1:]
    if not shape:
        return {name: values.copy()}

    out = {}
    for flat in range(int(np.prod(shape))):
        idx = np.unravel_index(flat, shape, order="F")
        label = ",".join(str(i + 1) for i in idx)
        out[f"{name}[{label}]"] = values[(slice(None),) + tuple(idx)].copy()
    return out


def split_name(name: str) -> tuple:
    """``'Omega_u[1,2]'`` -> ``('Omega_u', (1, 2))``; scalars get ``()``."""
    match = _INDEXED_NAME.match(name)
    if match is None:
        return name, ()
    return match.group("base"), tuple(int(i) for i in match.group("index").split(","))


class PosteriorSamples:
    """
    Merged posterior draws indexed by parameter name.

    Parameters
    ----------
    draws : dict
        Scalar parameter name -> array of shape ``(chains, draws_per_chain)``
    chain_ids : list of int
        Chain id of each row
    """

    def __init__(self, draws: Dict[str, np.ndarray], chain_ids: List[int]):
        self._draws = {name: np.asarray(v, dtype=float) for name, v in draws.items()}
        self.chain_ids = list(chain_ids)
        for name, arr in self._draws.items():
            if arr.ndim != 2 or arr.shape[0] != len(self.chain_ids):
                raise ValueError(
                    f"Parameter '{name}' has shape {arr.shape}; expected "
                    f"({len(self.chain_ids)}, draws)"
                )

    @classmethod
    def from_chains(cls, chains: List[ChainDraws]) -> "PosteriorSamples":
        """Concatenate chains; all must share parameters and draw counts."""
        if not chains:
            raise ValueError("No chains to merge")
        chains = sorted(chains, key=lambda c: c.chain_id)
        names = list(chains[0].draws)
        n_draws = chains[0].n_draws
        for chain in chains[1:]:
            if list(chain.draws) != names:
                raise ValueError(f"Chain {chain.chain_id} has a different parameter set")
            if chain.n_draws != n_draws:
                raise ValueError(
                    f"Chain {chain.chain_id} has {chain.n_draws} draws, expected {n_draws}"
                )
        draws = {name: np.vstack([c.draws[name] for c in chains]) for name in names}
        return cls(draws, [c.chain_id for c in chains])

    @classmethod
    def from_inference_data(cls, idata) -> "PosteriorSamples":
        """Rebuild from an ``arviz.InferenceData`` posterior group."""
        posterior = idata.posterior
        draws = {}
        for name in posterior.data_vars:
            values = posterior[name].values
            n_chains = values.shape[0]
            per_chain = [flatten_draws(name, values[c]) for c in range(n_chains)]
            for scalar in per_chain[0]:
                draws[scalar] = np.vstack([pc[scalar] for pc in per_chain])
        chain_ids = [int(c) for c in posterior.coords["chain"].values]
        return cls(draws, chain_ids)

    @property
    def parameters(self) -> List[str]:
        return list(self._draws)

    @property
    def n_chains(self) -> int:
        return len(self.chain_ids)

    @property
    def draws_per_chain(self) -> int:
        if not self._draws:
            return 0
        return next(iter(self._draws.values())).shape[1]

    @property
    def n_draws(self) -> int:
        return self.n_chains * self.draws_per_chain

    def __contains__(self, name: str) -> bool:
        return name in self._draws

    def __len__(self) -> int:
        return len(self._draws)

    def draws(self, name: str) -> np.ndarray:
        """Draws of one scalar parameter, shape ``(chains, draws_per_chain)``."""
        try:
            return self._draws[name]
        except KeyError:
            raise KeyError(f"Unknown parameter '{name}'") from None

    def flat(self, name: str) -> np.ndarray:
        return self.draws(name).reshape(-1)

    def to_frame(self) -> pd.DataFrame:
        """Long-by-draw table with ``chain`` and ``draw`` columns."""
        chain = np.repeat(self.chain_ids, self.draws_per_chain)
        draw = np.tile(np.arange(self.draws_per_chain), self.n_chains)
        data = {"chain": chain, "draw": draw}
        data.update({name: arr.reshape(-1) for name, arr in self._draws.items()})
        return pd.DataFrame(data)

    def grouped(self) -> Dict[str, np.ndarray]:
        """Reassemble scalar columns into ``(chains, draws, *shape)`` arrays."""
        bases: Dict[str, list] = {}
        for name in self._draws:
            base, idx = split_name(name)
            bases.setdefault(base, []).append((idx, name))

        out = {}
        for base, entries in bases.items():
            if entries[0][0] == ():
                out[base] = self._draws[entries[0][1]]
                continue
            shape = tuple(max(idx[d] for idx, _ in entries) for d in range(len(entries[0][0])))
            arr = np.full((self.n_chains, self.draws_per_chain) + shape, np.nan)
            for idx, name in entries:
                arr[(slice(None), slice(None)) + tuple(i - 1 for i in idx)] = self._draws[name]
            out[base] = arr
        return out

    def to_inference_data(self):
        """Convert to ``arviz.InferenceData`` for diagnostics and plotting."""
        import arviz as az

        return az.from_dict(
            posterior=self.grouped(),
            coords={"chain": self.chain_ids},
        )


@dataclass
class SamplingResult:
    samples: PosteriorSamples
    failures: List[ChainFailure] = field(default_factory=list)


def _run_chain(backend, compiled, data, task: ChainTask) -> ChainDraws:
    logger.info(f"Chain {task.chain_id}: {task.warmup} warm-up + {task.sampling} draws (seed {task.seed})")
    return backend.sample_chain(compiled, data, task)


def run_chains(backend, compiled, data, config: Optional[SamplerConfig] = None) -> SamplingResult:
    """
    Run every chain of ``config`` and merge the survivors.

    Parameters
    ----------
    backend : SamplingBackend
        Engine adapter providing ``sample_chain``
    compiled : CompiledModel
        Handle returned by ``backend.compile``
    data : ModelData
        Packaged data; every task receives its own copy
    config : SamplerConfig, optional

    Returns
    -------
    SamplingResult

    Raises
    ------
    SamplingError
        If every chain fails, or any chain fails while
        ``config.allow_partial`` is false. The error of the lowest
        failed chain id is chained as the cause.
    """
    config = config or SamplerConfig()
    tasks = config.tasks()
    workers = config.resolved_workers()

    completed: List[ChainDraws] = []
    failures: List[ChainFailure] = []
    errors: Dict[int, BaseException] = {}

    def record_failure(task, exc):
        logger.error(f"Chain {task.chain_id} failed: {exc!r}")
        failures.append(ChainFailure(task.chain_id, repr(exc)))
        errors[task.chain_id] = exc

    logger.info(f"Running {len(tasks)} chains on {workers} worker(s)")

    if workers == 1:
        for task in tasks:
            try:
                completed.append(_run_chain(backend, compiled, data.copy(), task))
            except Exception as e:
                record_failure(task, e)
    else:
        pool_cls = ProcessPoolExecutor if config.executor == "process" else ThreadPoolExecutor
        with pool_cls(max_workers=workers) as pool:
            futures = {
                pool.submit(_run_chain, backend, compiled, data.copy(), task): task
                for task in tasks
            }
            for future in as_completed(futures):
                task = futures[future]
                try:
                    completed.append(future.result())
                except Exception as e:
                    record_failure(task, e)

    failures.sort(key=lambda f: f.chain_id)
    cause = errors[failures[0].chain_id] if failures else None

    if not completed:
        raise SamplingError("All chains failed", failures) from cause
    if failures and not config.allow_partial:
        ids = [f.chain_id for f in failures]
        raise SamplingError(f"Chains {ids} failed", failures) from cause
    if failures:
        logger.warning(f"Merging {len(completed)} of {len(tasks)} chains")

    samples = PosteriorSamples.from_chains(completed)
    logger.info(f"Merged {samples.n_chains} chains, {samples.n_draws} draws in total")
    return SamplingResult(samples=samples, failures=failures)
