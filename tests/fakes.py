"""
In-process stand-in for a sampling engine.

Produces draws with the same parameter naming as the Stan backends so the
orchestrator and reporter can be tested without compiling anything.
"""

import time

import numpy as np

from bayeslmm.backends import CompiledModel, SamplingBackend
from bayeslmm.sampling import ChainDraws, flatten_draws


def random_cholesky_corr(rng, n):
    """Lower-triangular factor with unit-norm rows."""
    chol = np.tril(rng.normal(size=(n, n)))
    chol[np.diag_indices(n)] = np.abs(chol[np.diag_indices(n)]) + 0.5
    return chol / np.linalg.norm(chol, axis=1, keepdims=True)


class FakeBackend(SamplingBackend):

    name = "fake"

    def __init__(self, fail_chains=(), delays=None):
        self.fail_chains = set(fail_chains)
        self.delays = dict(delays or {})
        self.compiled_count = 0

    def compile(self, spec, data=None):
        self.compiled_count += 1
        return CompiledModel(backend=self.name, spec=spec, program=spec.to_stan())

    def sample_chain(self, compiled, data, task):
        time.sleep(self.delays.get(task.chain_id, 0.0))
        if task.chain_id in self.fail_chains:
            raise RuntimeError(f"chain {task.chain_id} did not converge")

        rng = np.random.default_rng(task.seed)
        n = task.sampling
        draws = {}
        draws.update(flatten_draws("beta", rng.normal(size=(n, data.K)) + np.arange(data.K)))
        draws["sigma_e"] = np.abs(rng.normal(size=n)) + 1.0
        draws.update(flatten_draws("sigma_u", np.abs(rng.normal(size=(n, data.J)))))
        draws.update(flatten_draws("sigma_w", np.abs(rng.normal(size=(n, data.I)))))
        for name, dim in (("Omega_u", data.J), ("Omega_w", data.I)):
            omega = np.empty((n, dim, dim))
            for d in range(n):
                chol = random_cholesky_corr(rng, dim)
                omega[d] = chol @ chol.T
            draws.update(flatten_draws(name, omega))
        return ChainDraws(chain_id=task.chain_id, draws=draws)
