"""
Command-line interface.

    bayeslmm fit --data rt.csv --variant final --chains 4
    bayeslmm simulate --output simulated.csv
    bayeslmm stan
    bayeslmm env
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from .config import AnalysisConfig
from .data import load_dataset, simulate_factorial_dataset
from .models import MixedModel
from .reporting import format_table
from .specification import default_specification
from .utils import print_environment_info, setup_hpc_environment

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="bayeslmm", description=__doc__.strip().splitlines()[0])
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    fit = sub.add_parser("fit", help="Fit a model and print the summary table")
    fit.add_argument("--config", type=Path, help="YAML analysis config")
    fit.add_argument("--data", type=Path, help="Trial table (overrides config)")
    fit.add_argument("--variant", choices=["maximal", "final"])
    fit.add_argument("--backend", choices=["cmdstanpy", "pystan", "pymc"])
    fit.add_argument("--chains", type=int)
    fit.add_argument("--iter", type=int, help="Total iterations per chain")
    fit.add_argument("--warmup", type=int)
    fit.add_argument("--seed", type=int)
    fit.add_argument("--workers", type=int)
    fit.add_argument("--format", choices=["text", "html", "csv"])
    fit.add_argument("--output", type=Path, help="Write the table here instead of stdout")
    fit.add_argument("--save", type=Path, help="Save posterior draws (.nc)")
    fit.add_argument("--temp-dir", type=Path,
                     help="Writable scratch directory for Stan builds (HPC nodes)")

    sim = sub.add_parser("simulate", help="Write a simulated factorial dataset")
    sim.add_argument("--subjects", type=int, default=56)
    sim.add_argument("--items", type=int, default=32)
    sim.add_argument("--missing", type=float, default=0.0)
    sim.add_argument("--seed", type=int, default=42)
    sim.add_argument("--output", type=Path, required=True)

    stan = sub.add_parser("stan", help="Print the Stan program")
    stan.add_argument("--log-response", action="store_true")

    sub.add_parser("env", help="Print environment information")
    return ap


def _apply_overrides(config: AnalysisConfig, args) -> AnalysisConfig:
    if args.data is not None:
        config.data.path = str(args.data)
    if args.variant is not None:
        config.variant = args.variant
    if args.backend is not None:
        config.backend = args.backend
    if args.format is not None:
        config.report.format = args.format
    if args.output is not None:
        config.report.output = str(args.output)

    sampler = {k: getattr(args, k) for k in ("chains", "iter", "warmup", "seed", "workers")
               if getattr(args, k) is not None}
    if sampler:
        config.sampler = replace(config.sampler, **sampler)
    return config


def run_fit(config: AnalysisConfig, save: Optional[Path] = None) -> str:
    """Fit the configured model and return the rendered summary table."""
    if config.data.path is None:
        raise ValueError("No dataset given: set data.path or pass --data")

    schema = config.data.schema()
    df = load_dataset(config.data.path, schema, sep=config.data.sep)
    model = MixedModel(
        structure=config.variant,
        specification=default_specification(log_response=config.data.log_response),
        backend=config.backend,
        schema=schema,
    )
    model.fit(df, config=config.sampler)
    if save is not None:
        model.save_results(str(save))

    table = format_table(model.summary(config.report.patterns, prob=config.report.prob),
                         fmt=config.report.format, digits=config.report.digits)
    if config.report.output:
        Path(config.report.output).write_text(table)
        logger.info(f"Summary written to {config.report.output}")
    return table


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if args.command == "fit":
        if args.temp_dir is not None:
            setup_hpc_environment(str(args.temp_dir))
        config = AnalysisConfig.from_yaml(args.config) if args.config else AnalysisConfig()
        config = _apply_overrides(config, args)
        table = run_fit(config, save=args.save)
        if not config.report.output:
            print(table)
    elif args.command == "simulate":
        df = simulate_factorial_dataset(
            n_subjects=args.subjects, n_items=args.items,
            missing_fraction=args.missing, seed=args.seed,
        )
        args.output.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(args.output, index=False)
        logger.info(f"Wrote {len(df)} trials to {args.output}")
    elif args.command == "stan":
        print(default_specification(log_response=args.log_response).to_stan(), end="")
    elif args.command == "env":
        print_environment_info()
    return 0


if __name__ == "__main__":
    sys.exit(main())
