"""
End-to-end tests of MixedModel with an in-process backend.
"""

import numpy as np
import pytest

from bayeslmm import FINAL, MAXIMAL, MixedModel, SamplerConfig, simulate_factorial_dataset
from bayeslmm.backends import get_backend

from fakes import FakeBackend


def _make_dataset():
    return simulate_factorial_dataset(n_subjects=56, n_items=32, seed=21)


class TestMixedModel:

    def test_prepare_maximal(self):
        data = MixedModel(MAXIMAL, backend=FakeBackend()).prepare_data(_make_dataset())
        assert (data.N, data.K, data.M, data.J, data.L, data.I) == (1792, 8, 56, 8, 32, 8)

    def test_prepare_final(self):
        data = MixedModel("final", backend=FakeBackend()).prepare_data(_make_dataset())
        assert (data.J, data.I) == (1, 2)

    def test_fit_and_summary(self):
        model = MixedModel(FINAL, backend=FakeBackend())
        samples = model.fit(_make_dataset(), chains=4, iter=30, warmup=10, workers=1)
        assert samples.n_draws == 4 * 20

        summary = model.summary()
        assert "beta[8]" in summary.index
        assert "Omega_u[1,1]" in summary.index
        assert summary.loc["Omega_u[1,1]", "mean"] == pytest.approx(1.0)
        # both mirror entries of the 2x2 item correlation are reported
        assert {"Omega_w[1,2]", "Omega_w[2,1]"} <= set(summary.index)

    def test_fit_with_config_object(self):
        model = MixedModel(FINAL, backend=FakeBackend())
        config = SamplerConfig(chains=2, iter=20, warmup=5, workers=2, executor="thread")
        samples = model.fit(_make_dataset(), config=config)
        assert samples.n_draws == 2 * 15

    def test_compiles_once(self):
        backend = FakeBackend()
        model = MixedModel(FINAL, backend=backend)
        df = _make_dataset()
        model.fit(df, chains=1, iter=12, warmup=2, workers=1)
        model.fit(df, chains=1, iter=12, warmup=2, workers=1)
        assert backend.compiled_count == 1

    def test_summary_before_fit(self):
        with pytest.raises(ValueError, match="not been fitted"):
            MixedModel(FINAL, backend=FakeBackend()).summary()

    def test_compile_requires_data(self):
        with pytest.raises(ValueError):
            MixedModel(FINAL, backend=FakeBackend()).compile()

    def test_maximal_and_final_share_fixed_effects(self):
        df = _make_dataset()
        maximal = MixedModel(MAXIMAL, backend=FakeBackend()).prepare_data(df)
        final = MixedModel(FINAL, backend=FakeBackend()).prepare_data(df)
        np.testing.assert_array_equal(maximal.X, final.X)


class TestBackendSelection:

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown backend"):
            get_backend("jags")
