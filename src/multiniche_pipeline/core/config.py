"""
Pipeline configuration management.

Provides dataclass-based configuration with validation and serialization.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Any
import json
import os

import pandas as pd


class ConfigurationError(ValueError):
    """Structural misconfiguration detected before any modeling starts."""


CRITERIA = (
    "de_ligand",
    "de_receptor",
    "activity_up",
    "activity_down",
    "exprs_ligand",
    "exprs_receptor",
    "frac_exprs_ligand_receptor",
    "abund_sender",
    "abund_receiver",
)
"""Prioritization criteria recognized in the weight map."""


DEFAULT_WEIGHTS = {
    "de_ligand": 1.0,
    "de_receptor": 1.0,
    "activity_up": 0.5,
    "activity_down": 0.5,
    "exprs_ligand": 1.0,
    "exprs_receptor": 1.0,
    "frac_exprs_ligand_receptor": 1.0,
    "abund_sender": 0.0,
    "abund_receiver": 0.0,
}


@dataclass
class ColumnSchema:
    """Metadata column names, resolved once at pipeline entry."""

    sample_col: str = "sample_id"
    """Column holding sample identifiers."""

    group_col: str = "group_id"
    """Column holding experimental group labels."""

    celltype_col: str = "celltype_id"
    """Column holding cell type annotations."""

    batches: list[str] = field(default_factory=list)
    """Optional categorical batch columns added to the DE design."""

    covariates: list[str] = field(default_factory=list)
    """Optional numeric covariate columns added to the DE design."""

    @property
    def required(self) -> list[str]:
        return [self.sample_col, self.group_col, self.celltype_col]

    def validate(self, obs: pd.DataFrame) -> None:
        """Check every configured column exists in the cell metadata."""
        wanted = self.required + list(self.batches) + list(self.covariates)
        missing = [c for c in wanted if c not in obs.columns]
        if missing:
            raise ConfigurationError(
                f"Metadata columns not found: {missing}. "
                f"Available: {list(obs.columns)}"
            )

        # a sample must map to exactly one group
        per_sample = obs.groupby(self.sample_col, observed=True)[self.group_col].nunique()
        ambiguous = per_sample.index[per_sample > 1].tolist()
        if ambiguous:
            raise ConfigurationError(
                f"Samples assigned to more than one group: {ambiguous}"
            )


@dataclass
class AbundanceConfig:
    """Pseudobulk aggregation and expression-call configuration."""

    min_cells: int = 10
    """Minimum cells for a cell type / sample pair to be kept."""

    fraction_cutoff: float = 0.05
    """Fraction of cells expressing a gene for it to count as expressed in a sample."""

    min_sample_prop: float = 0.5
    """Fraction of a group's samples that must express a gene."""

    abundance_floor: float = 0.001
    """Relative abundance assigned to cell types absent from a group."""

    senders_oi: Optional[list[str]] = None
    """Sender cell types of interest (None = all)."""

    receivers_oi: Optional[list[str]] = None
    """Receiver cell types of interest (None = all)."""


@dataclass
class DEConfig:
    """Differential expression configuration."""

    contrasts: str = ""
    """Contrast list, e.g. "'A-(B+C)/2','B-(A+C)/2'"."""

    contrast_groups: dict[str, str] = field(default_factory=dict)
    """Contrast expression -> main group."""

    min_samples_per_group: int = 2
    """Samples a group needs for the cell type to be modeled."""

    empirical_pval: bool = False
    """Recalibrate p-values against an empirical null."""

    fdr_method: str = "fdr_bh"
    """Multiple testing correction method (statsmodels name)."""

    min_gene_count: int = 10
    """Minimum summed pseudobulk count for a gene to be modeled."""

    n_workers: int = 1
    """Worker threads (one task per cell type)."""

    def contrast_table(self) -> pd.DataFrame:
        return pd.DataFrame(
            {"contrast": list(self.contrast_groups.keys()),
             "group": list(self.contrast_groups.values())}
        )


@dataclass
class ActivityConfig:
    """Ligand activity configuration."""

    logfc_threshold: float = 0.50
    """Absolute logFC a gene needs to enter the DE gene set."""

    p_val_threshold: float = 0.05
    """P-value cutoff for the DE gene set."""

    p_val_adj: bool = False
    """Use adjusted instead of raw p-values for the DE gene set."""

    fraction_cutoff: float = 0.05
    """Minimum fraction expressing in the receiver."""

    top_n_target: int = 250
    """Prior targets retained per ligand."""

    n_workers: int = 1
    """Worker threads (one task per receiver)."""


@dataclass
class PrioritizationConfig:
    """Prioritization scoring configuration."""

    weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    """Criterion -> weight. Unlisted criteria get weight 0."""

    fraction_cutoff: float = 0.05
    """Cell fraction a ligand / receptor needs in a sample to count as co-expressed."""

    min_sample_prop: float = 0.5
    """Fraction of co-expressing samples below which a record is flagged."""

    use_adjusted_pval: bool = False
    """Score DE criteria with adjusted p-values."""

    top_n_output: Optional[int] = None
    """Keep only the top N rows per group in the group table."""

    def resolved_weights(self) -> dict[str, float]:
        unknown = sorted(set(self.weights) - set(CRITERIA))
        if unknown:
            raise ConfigurationError(
                f"Unknown prioritization criteria: {unknown}. Known: {list(CRITERIA)}"
            )
        negative = [k for k, v in self.weights.items() if v < 0]
        if negative:
            raise ConfigurationError(f"Negative weights for criteria: {negative}")
        return {c: float(self.weights.get(c, 0.0)) for c in CRITERIA}


@dataclass
class Config:
    """
    Main pipeline configuration.

    Example:
        >>> config = Config(
        ...     columns=ColumnSchema(sample_col="donor", group_col="condition"),
        ...     de=DEConfig(
        ...         contrasts="'Treated-Control','Control-Treated'",
        ...         contrast_groups={"Treated-Control": "Treated",
        ...                          "Control-Treated": "Control"},
        ...     ),
        ...     n_workers=4,
        ... )
        >>> pipeline = MultiNichePipeline(config)
    """

    # Convenience shortcut (overrides sub-config values)
    n_workers: int = 1
    """Worker pool size shared by the DE and activity stages."""

    # Sub-configurations
    columns: ColumnSchema = field(default_factory=ColumnSchema)
    abundance: AbundanceConfig = field(default_factory=AbundanceConfig)
    de: DEConfig = field(default_factory=DEConfig)
    activity: ActivityConfig = field(default_factory=ActivityConfig)
    prioritization: PrioritizationConfig = field(default_factory=PrioritizationConfig)

    organism: str = "human"
    """Organism of the prior networks."""

    # Output settings
    output_dir: Optional[Path] = None
    """Base output directory."""

    # Logging
    verbose: bool = False
    """Enable verbose logging."""

    log_file: Optional[Path] = None
    """Log file path."""

    def __post_init__(self):
        """Synchronize shortcut values with sub-configs and validate ranges."""
        self.de.n_workers = self.n_workers
        self.activity.n_workers = self.n_workers

        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)

        if self.n_workers < 1:
            raise ConfigurationError(f"n_workers must be >= 1, got {self.n_workers}")
        if self.abundance.min_cells < 0:
            raise ConfigurationError("min_cells must be >= 0")
        if self.activity.top_n_target < 1:
            raise ConfigurationError("top_n_target must be >= 1")
        if self.activity.logfc_threshold < 0:
            raise ConfigurationError("logfc_threshold must be >= 0")
        if not 0 < self.activity.p_val_threshold <= 1:
            raise ConfigurationError("p_val_threshold must be in (0, 1]")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        d = asdict(self)
        # Convert Path objects to strings
        for key, value in d.items():
            if isinstance(value, Path):
                d[key] = str(value)
        return d

    def to_json(self, path: Path | str) -> None:
        """Save configuration to JSON file."""
        path = Path(path)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Config":
        """Create from dictionary."""
        d = dict(d)
        # Handle nested configs
        if "columns" in d and isinstance(d["columns"], dict):
            d["columns"] = ColumnSchema(**d["columns"])
        if "abundance" in d and isinstance(d["abundance"], dict):
            d["abundance"] = AbundanceConfig(**d["abundance"])
        if "de" in d and isinstance(d["de"], dict):
            d["de"] = DEConfig(**d["de"])
        if "activity" in d and isinstance(d["activity"], dict):
            d["activity"] = ActivityConfig(**d["activity"])
        if "prioritization" in d and isinstance(d["prioritization"], dict):
            d["prioritization"] = PrioritizationConfig(**d["prioritization"])
        return cls(**d)

    @classmethod
    def from_json(cls, path: Path | str) -> "Config":
        """Load configuration from JSON file."""
        path = Path(path)
        with open(path) as f:
            d = json.load(f)
        return cls.from_dict(d)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls(
            n_workers=int(os.getenv("MULTINICHE_N_WORKERS", "1")),
            abundance=AbundanceConfig(
                min_cells=int(os.getenv("MULTINICHE_MIN_CELLS", "10")),
            ),
            organism=os.getenv("MULTINICHE_ORGANISM", "human"),
            verbose=os.getenv("MULTINICHE_VERBOSE", "").lower() in ("1", "true", "yes"),
        )
