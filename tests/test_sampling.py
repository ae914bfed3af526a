"""
Tests for chain orchestration and posterior draw collections.
"""

import numpy as np
import pytest

from bayeslmm.data import simulate_factorial_dataset
from bayeslmm.exceptions import SamplingError
from bayeslmm.packaging import FINAL, MAXIMAL, prepare_model_data
from bayeslmm.sampling import (
    ChainDraws,
    PosteriorSamples,
    SamplerConfig,
    flatten_draws,
    run_chains,
    split_name,
)
from bayeslmm.specification import default_specification

from fakes import FakeBackend


def _make_data(structure=FINAL):
    df = simulate_factorial_dataset(n_subjects=8, n_items=16, seed=5)
    return prepare_model_data(df, structure=structure)


def _run(backend=None, structure=FINAL, **config):
    backend = backend or FakeBackend()
    data = _make_data(structure)
    compiled = backend.compile(default_specification(), data)
    return run_chains(backend, compiled, data, SamplerConfig(**config))


class TestSamplerConfig:

    def test_sampling_iterations(self):
        config = SamplerConfig(chains=4, iter=2000, warmup=1000)
        assert config.iter_sampling == 1000

    def test_iter_must_exceed_warmup(self):
        with pytest.raises(ValueError):
            SamplerConfig(iter=500, warmup=500)

    def test_invalid_chains(self):
        with pytest.raises(ValueError):
            SamplerConfig(chains=0)

    def test_unknown_executor(self):
        with pytest.raises(ValueError):
            SamplerConfig(executor="mpi")

    def test_tasks_have_distinct_ids_and_seeds(self):
        tasks = SamplerConfig(chains=4, seed=10).tasks()
        assert [t.chain_id for t in tasks] == [1, 2, 3, 4]
        assert len({t.seed for t in tasks}) == 4

    def test_workers_never_exceed_chains(self):
        assert SamplerConfig(chains=2, workers=16).resolved_workers() <= 2


class TestFlatten:

    def test_scalar(self):
        out = flatten_draws("sigma_e", np.arange(5.0))
        assert list(out) == ["sigma_e"]

    def test_matrix_column_major(self):
        values = np.arange(12.0).reshape(3, 2, 2)
        out = flatten_draws("Omega_u", values)
        assert list(out) == ["Omega_u[1,1]", "Omega_u[2,1]", "Omega_u[1,2]", "Omega_u[2,2]"]
        np.testing.assert_array_equal(out["Omega_u[2,1]"], values[:, 1, 0])

    def test_split_name(self):
        assert split_name("Omega_w[2,1]") == ("Omega_w", (2, 1))
        assert split_name("beta[3]") == ("beta", (3,))
        assert split_name("sigma_e") == ("sigma_e", ())


class TestRunChains:

    def test_merged_draw_count_inline(self):
        result = _run(chains=4, iter=60, warmup=20, workers=1)
        samples = result.samples
        assert samples.n_chains == 4
        assert samples.draws_per_chain == 40
        assert samples.n_draws == 4 * 40
        assert result.failures == []

    def test_merged_draw_count_pool(self):
        result = _run(chains=4, iter=30, warmup=10, workers=4, executor="thread")
        assert result.samples.n_draws == 4 * 20
        assert result.samples.chain_ids == [1, 2, 3, 4]
        assert result.samples.draws("beta[1]").shape == (4, 20)

    def test_chains_differ(self):
        samples = _run(chains=2, iter=30, warmup=10, workers=1).samples
        draws = samples.draws("sigma_e")
        assert not np.allclose(draws[0], draws[1])

    def test_failure_propagates(self):
        backend = FakeBackend(fail_chains=[3])
        with pytest.raises(SamplingError) as excinfo:
            _run(backend, chains=4, iter=30, warmup=10, workers=1)
        assert [f.chain_id for f in excinfo.value.failures] == [3]
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_failure_propagates_from_pool(self):
        backend = FakeBackend(fail_chains=[2])
        with pytest.raises(SamplingError):
            _run(backend, chains=4, iter=30, warmup=10, workers=4, executor="thread")

    def test_cause_is_lowest_failed_chain(self):
        # chain 3 fails first, chain 1 last
        backend = FakeBackend(fail_chains=[1, 3], delays={1: 0.3})
        with pytest.raises(SamplingError, match=r"Chains \[1, 3\] failed") as excinfo:
            _run(backend, chains=3, iter=30, warmup=10, workers=3, executor="thread")
        assert "chain 1 did not converge" in str(excinfo.value.__cause__)

    def test_merged_draw_count_process_pool(self):
        result = _run(chains=4, iter=30, warmup=10, workers=2)
        assert result.samples.chain_ids == [1, 2, 3, 4]
        assert result.samples.n_draws == 4 * 20

    def test_partial_merge_excludes_failed_chain(self):
        backend = FakeBackend(fail_chains=[2])
        result = _run(backend, chains=4, iter=30, warmup=10, workers=1, allow_partial=True)
        assert result.samples.chain_ids == [1, 3, 4]
        assert result.samples.n_draws == 3 * 20
        assert [f.chain_id for f in result.failures] == [2]

    def test_all_chains_failed(self):
        backend = FakeBackend(fail_chains=[1, 2])
        with pytest.raises(SamplingError, match="All chains failed"):
            _run(backend, chains=2, iter=30, warmup=10, workers=1, allow_partial=True)

    def test_maximal_parameter_enumeration(self):
        samples = _run(structure=MAXIMAL, chains=1, iter=12, warmup=2, workers=1).samples
        assert sum(name.startswith("Omega_u[") for name in samples.parameters) == 64
        assert sum(name.startswith("beta[") for name in samples.parameters) == 8


class TestPosteriorSamples:

    def _chains(self):
        return [
            ChainDraws(2, {"a": np.full(3, 2.0), "b[1]": np.zeros(3), "b[2]": np.ones(3)}),
            ChainDraws(1, {"a": np.full(3, 1.0), "b[1]": np.zeros(3), "b[2]": np.ones(3)}),
        ]

    def test_from_chains_orders_by_id(self):
        samples = PosteriorSamples.from_chains(self._chains())
        assert samples.chain_ids == [1, 2]
        np.testing.assert_array_equal(samples.draws("a")[:, 0], [1.0, 2.0])

    def test_mismatched_parameters_rejected(self):
        chains = self._chains()
        chains[1].draws.pop("a")
        with pytest.raises(ValueError):
            PosteriorSamples.from_chains(chains)

    def test_mismatched_draw_counts_rejected(self):
        chains = self._chains()
        chains[0].draws = {k: np.append(v, 0.0) for k, v in chains[0].draws.items()}
        with pytest.raises(ValueError):
            PosteriorSamples.from_chains(chains)

    def test_grouped(self):
        grouped = PosteriorSamples.from_chains(self._chains()).grouped()
        assert grouped["b"].shape == (2, 3, 2)
        assert grouped["a"].shape == (2, 3)

    def test_to_frame(self):
        frame = PosteriorSamples.from_chains(self._chains()).to_frame()
        assert len(frame) == 6
        assert list(frame.columns) == ["chain", "draw", "a", "b[1]", "b[2]"]

    def test_unknown_parameter(self):
        with pytest.raises(KeyError):
            PosteriorSamples.from_chains(self._chains()).draws("c")

    def test_inference_data_round_trip(self):
        samples = _run(chains=2, iter=30, warmup=10, workers=1).samples
        restored = PosteriorSamples.from_inference_data(samples.to_inference_data())
        assert sorted(restored.parameters) == sorted(samples.parameters)
        np.testing.assert_allclose(restored.draws("Omega_w[2,1]"), samples.draws("Omega_w[2,1]"))
        assert restored.chain_ids == samples.chain_ids
