"""
Example usage of bayeslmm on a 2x2x2 reaction-time experiment.

This script demonstrates how to:
1. Load (here: simulate) a crossed subjects x items factorial dataset
2. Fit the maximal random-effects model
3. Fit the final (reduced) random-effects model
4. Examine posterior summaries and effect probabilities
5. Save results
"""

import logging

from bayeslmm import FINAL, MAXIMAL, MixedModel, SamplerConfig, simulate_factorial_dataset
from bayeslmm.reporting import format_table, posterior_probability


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")

    # ==========================================================================
    # 1. LOAD DATA
    # ==========================================================================

    print("=" * 70)
    print("Bayesian LMM Example")
    print("=" * 70)
    print()

    # In practice, replace this with:
    # from bayeslmm import load_dataset, DatasetSchema
    # data = load_dataset('rt_data.txt', DatasetSchema(rt_min=336, rt_max=5144))
    data = simulate_factorial_dataset(n_subjects=56, n_items=32, seed=42)

    print(f"Loaded {len(data)} trials from {data['subj'].nunique()} subjects "
          f"and {data['item'].nunique()} items")
    print(data.head(10))
    print()

    # Short runs for demonstration; use iter=2000, warmup=1000 for real analyses
    sampler = SamplerConfig(chains=4, iter=400, warmup=200, seed=1234)

    # ==========================================================================
    # 2. MAXIMAL MODEL
    # ==========================================================================

    print("=" * 70)
    print("Fitting maximal model (8 random-effect columns per grouping factor)")
    print("=" * 70)

    maximal = MixedModel(structure=MAXIMAL)
    maximal.fit(data, config=sampler)
    print(format_table(maximal.summary(["beta", "sigma_e", "sigma_u", "sigma_w"])))
    print()

    # ==========================================================================
    # 3. FINAL MODEL
    # ==========================================================================

    print("=" * 70)
    print("Fitting final model (subject intercepts; item intercepts and slopes)")
    print("=" * 70)

    final = MixedModel(structure=FINAL)
    samples = final.fit(data, config=sampler)
    print(format_table(final.summary()))
    print()

    # ==========================================================================
    # 4. EFFECT PROBABILITIES
    # ==========================================================================

    for k, name in enumerate(final.data.fixed_names[1:], start=2):
        p = posterior_probability(samples, f"beta[{k}]", 0.0, ">")
        print(f"P({name} > 0 | data) = {p:.3f}")
    print()

    # ==========================================================================
    # 5. SAVE RESULTS
    # ==========================================================================

    final.save_results("final_model.nc")
    final.summary().to_csv("final_model_summary.csv")
    print("Results saved to final_model.nc and final_model_summary.csv")


# Chains run in worker processes, which re-import this module
if __name__ == "__main__":
    main()
