"""
Multiniche Pipeline - Multi-Sample, Multi-Group Cell-Cell Communication Analysis.

This package provides pipelines for:
- Pseudobulk aggregation and relative cell type abundance
- Sender-receiver ligand-receptor expression linking
- Pseudobulk differential expression across group contrasts
- Ligand activity inference from prior ligand-target networks
- Multi-criterion prioritization of interactions
- Ligand-receptor to target correlation across samples
- CSV export

Example:
    >>> from multiniche_pipeline import MultiNichePipeline, Config
    >>> from multiniche_pipeline.ingest import LocalH5ADSource, PriorNetworks
    >>>
    >>> priors = PriorNetworks.from_files("lr_network.csv", "ligand_target.csv")
    >>> pipeline = MultiNichePipeline(Config(n_workers=4), priors)
    >>> result = pipeline.run(LocalH5ADSource("/path/to/data.h5ad").load())
"""

__version__ = "0.1.0"

# Core infrastructure
from multiniche_pipeline.core.config import Config, ConfigurationError

# Subpackages are imported as needed:
#   from multiniche_pipeline.aggregation import AbundanceAggregator
#   from multiniche_pipeline.differential import DifferentialExpressionRunner
#   from multiniche_pipeline.activity import LigandActivityScorer
#   from multiniche_pipeline.prioritization import PrioritizationEngine
#   from multiniche_pipeline.correlation import CorrelationInference

# Main Pipeline class
from multiniche_pipeline.pipeline import MultiNichePipeline, PipelineResult, create_pipeline

__all__ = [
    # Version
    "__version__",
    # Pipeline
    "MultiNichePipeline",
    "PipelineResult",
    "create_pipeline",
    # Config
    "Config",
    "ConfigurationError",
]
