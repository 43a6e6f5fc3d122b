"""
Main pipeline class that runs the analysis stages in order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
import logging

import pandas as pd

from multiniche_pipeline.activity import ActivityResult, LigandActivityScorer
from multiniche_pipeline.aggregation import AbundanceAggregator, AbundanceExpressionInfo
from multiniche_pipeline.core.config import Config
from multiniche_pipeline.correlation import CorrelationInference, CorrelationResult
from multiniche_pipeline.differential import DEEngine, DEResult, DifferentialExpressionRunner
from multiniche_pipeline.ingest import CellData, PriorNetworks
from multiniche_pipeline.interaction import SenderReceiverInfo, SenderReceiverLinker
from multiniche_pipeline.prioritization import PrioritizationEngine, PrioritizationResult

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Result of pipeline execution."""

    abundance: AbundanceExpressionInfo
    sender_receiver: SenderReceiverInfo
    de: DEResult
    lr_de: pd.DataFrame
    activity: ActivityResult
    prioritization: PrioritizationResult
    correlation: Optional[CorrelationResult] = None
    output_paths: dict[str, Path] = field(default_factory=dict)
    diagnostics: dict[str, Any] = field(default_factory=dict)


class MultiNichePipeline:
    """Runs aggregation, linking, DE, activity, prioritization and correlation.

    Example:
        >>> from multiniche_pipeline import MultiNichePipeline, Config
        >>> from multiniche_pipeline.ingest import LocalH5ADSource, PriorNetworks
        >>>
        >>> priors = PriorNetworks.from_files("lr_network.csv", "ligand_target.csv")
        >>> pipeline = MultiNichePipeline(config, priors)
        >>> result = pipeline.run(LocalH5ADSource("/path/to/data.h5ad").load())
        >>> result.prioritization.group_table.head()
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        priors: Optional[PriorNetworks] = None,
        engine: Optional[DEEngine] = None,
    ):
        """Initialize pipeline.

        Parameters
        ----------
        config : Config, optional
            Pipeline configuration
        priors : PriorNetworks
            Ligand-receptor and ligand-target networks
        engine : callable, optional
            DE engine (defaults to the negative binomial GLM)
        """
        if priors is None:
            raise ValueError("Prior networks are required")
        self.config = config or Config()
        self.priors = priors

        cfg = self.config
        self.aggregator = AbundanceAggregator(cfg.columns, cfg.abundance)
        self.linker = SenderReceiverLinker(
            priors,
            senders_oi=cfg.abundance.senders_oi,
            receivers_oi=cfg.abundance.receivers_oi,
        )
        self.de_runner = DifferentialExpressionRunner(cfg.columns, cfg.de, engine=engine)
        self.correlation = CorrelationInference(
            priors, top_n_target=cfg.activity.top_n_target
        )

    def validate(self, cells: CellData) -> None:
        """Check metadata columns and contrasts before any computation.

        Raises
        ------
        ConfigurationError
            On missing columns, malformed contrasts or unknown groups
        """
        self.config.columns.validate(cells.obs)
        groups = sorted(cells.obs[self.config.columns.group_col].astype(str).unique())
        self.de_runner.prepare(groups)

    def run(
        self,
        cells: CellData,
        correlation: bool = True,
        correlation_top_n: Optional[int] = None,
    ) -> PipelineResult:
        """Run all stages.

        Parameters
        ----------
        cells : CellData
            Raw counts with sample, group and cell type annotations
        correlation : bool
            Run the LR-target correlation stage
        correlation_top_n : int, optional
            Correlate only the best interactions per contrast

        Returns
        -------
        PipelineResult
            Tables of every stage plus diagnostics
        """
        cfg = self.config
        self.validate(cells)
        logger.info(
            "Running pipeline on %d cells x %d genes (organism: %s)",
            cells.n_cells, cells.n_genes, self.priors.organism,
        )

        # Step 1: Pseudobulk aggregation and abundance
        info = self.aggregator.aggregate(cells)

        # Step 2: Sender-receiver expression
        sr = self.linker.link(info)

        # Step 3: Differential expression
        de = self.de_runner.run(info)
        lr_de = self.linker.combine_de(
            de.table, sr.senders, sr.receivers, de.contrasts, genes=info.gene_names
        )

        # Step 4: Ligand activity
        ligands = list(dict.fromkeys(sr.group_level["ligand"]))
        scorer = LigandActivityScorer(self.priors, cfg.activity, ligands=ligands)
        receivers = [r for r in sr.receivers if r in de.celltypes]
        activity = scorer.score(de.table, info, receivers=receivers, contrasts=de.contrasts)

        # Step 5: Prioritization
        engine = PrioritizationEngine(cfg.prioritization, de.contrast_table)
        prioritization = engine.prioritize(lr_de, sr, info, activity)

        # Step 6: LR-target correlation
        corr = None
        if correlation:
            corr = self.correlation.correlate(
                prioritization.group_table, sr, info, activity.de_genes,
                top_n=correlation_top_n,
            )

        result = PipelineResult(
            abundance=info,
            sender_receiver=sr,
            de=de,
            lr_de=lr_de,
            activity=activity,
            prioritization=prioritization,
            correlation=corr,
            diagnostics={
                "abundance": info.stats,
                "sender_receiver": sr.stats,
                "de": de.diagnostics,
                "activity": activity.diagnostics,
                "prioritization": prioritization.diagnostics,
                "correlation": corr.diagnostics if corr is not None else {},
            },
        )

        if cfg.output_dir is not None:
            from multiniche_pipeline.export import CSVWriter
            result.output_paths = CSVWriter(cfg.output_dir).write_result(result)

        return result


def create_pipeline(
    priors: PriorNetworks,
    config: Optional[Config] = None,
    engine: Optional[DEEngine] = None,
    **kwargs,
) -> MultiNichePipeline:
    """Create a pipeline, building the Config from keyword arguments if not given."""
    if config is None:
        config = Config.from_dict(kwargs) if kwargs else Config()
    return MultiNichePipeline(config=config, priors=priors, engine=engine)
