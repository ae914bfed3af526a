"""
Configuration
=============

Central configuration for a mixed-model analysis run.
Loads from YAML config files with sensible defaults.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .data import DatasetSchema
from .sampling import SamplerConfig


@dataclass
class DataConfig:
    """Dataset location and column layout."""
    path: Optional[str] = None
    sep: Optional[str] = None
    subject: str = "subj"
    item: str = "item"
    response: str = "rt"
    factors: list[str] = field(default_factory=lambda: ["a", "b", "c"])
    rt_min: Optional[float] = None
    rt_max: Optional[float] = None
    log_response: bool = False

    def schema(self) -> DatasetSchema:
        return DatasetSchema(
            subject=self.subject,
            item=self.item,
            response=self.response,
            factors=tuple(self.factors),
            rt_min=self.rt_min,
            rt_max=self.rt_max,
        )


@dataclass
class ReportConfig:
    """Summary table configuration."""
    patterns: list[str] = field(default_factory=lambda: [
        "beta", "sigma_e", "sigma_u", "sigma_w", "Omega_u", "Omega_w",
    ])
    prob: float = 0.95
    format: str = "text"  # "text", "html", "csv"
    digits: int = 2
    output: Optional[str] = None


@dataclass
class AnalysisConfig:
    """Master configuration for one model fit."""
    variant: str = "maximal"  # "maximal" or "final"
    backend: Optional[str] = None  # None auto-detects
    data: DataConfig = field(default_factory=DataConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> AnalysisConfig:
        """Load configuration from a YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        config = cls()

        if "variant" in data:
            config.variant = data["variant"]
        if "backend" in data:
            config.backend = data["backend"]
        if "data" in data:
            config.data = DataConfig(**data["data"])
        if "sampler" in data:
            config.sampler = SamplerConfig(**data["sampler"])
        if "report" in data:
            config.report = ReportConfig(**data["report"])

        return config

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = dataclasses.asdict(self)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
