"""
Per-cell-type differential expression across contrasts.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd

from multiniche_pipeline.aggregation.base import AbundanceExpressionInfo
from multiniche_pipeline.core.config import ColumnSchema, DEConfig
from multiniche_pipeline.differential.contrasts import (
    contrast_coefficients,
    contrast_matrix,
    parse_contrasts,
    validate_contrast_table,
)
from multiniche_pipeline.differential.empirical import apply_empirical_null
from multiniche_pipeline.differential.fdr import FDRCorrector
from multiniche_pipeline.differential.deseq import DE_COLUMNS, DEEngine, DESeq2Engine

logger = logging.getLogger(__name__)

TABLE_COLUMNS = [
    "gene", "celltype", "contrast", "logFC", "logCPM", "p_val", "p_adj_loc", "p_adj",
]


@dataclass
class DEResult:
    """Result of differential expression across cell types."""

    table: pd.DataFrame
    """Long table: gene, celltype, contrast, logFC, logCPM, p_val, p_adj_loc, p_adj."""

    contrasts: list[str]
    """Parsed contrast expressions in input order."""

    contrast_table: pd.DataFrame
    """Contrast -> main group."""

    celltypes: list[str]
    """Cell types that were modeled."""

    empirical_pval: bool = False
    """Whether p-values come from the empirical null."""

    diagnostics: dict[str, Any] = field(default_factory=dict)

    def for_celltype(self, celltype: str, contrast: Optional[str] = None) -> pd.DataFrame:
        mask = self.table["celltype"] == celltype
        if contrast is not None:
            mask &= self.table["contrast"] == contrast
        return self.table.loc[mask].reset_index(drop=True)


def build_design(
    sample_info: pd.DataFrame,
    groups: list[str],
    batches: Optional[list[str]] = None,
    covariates: Optional[list[str]] = None,
) -> pd.DataFrame:
    """
    Design matrix without intercept: one indicator per group, treatment
    coded batch indicators and numeric covariates.

    Args:
        sample_info: One row per sample with sample, group and extra columns.
        groups: Group columns, in order.
        batches: Categorical batch columns.
        covariates: Numeric covariate columns.

    Returns:
        DataFrame indexed by sample.
    """
    info = sample_info.set_index("sample")
    design = pd.DataFrame(
        {g: (info["group"] == g).astype(float) for g in groups},
        index=info.index,
    )
    for col in batches or []:
        levels = info[col].astype(str)
        if levels.nunique() < 2:
            logger.debug("Batch %s has a single level here, not modeled", col)
            continue
        dummies = pd.get_dummies(levels, prefix=col, drop_first=True, dtype=float)
        design = design.join(dummies)
    for col in covariates or []:
        design[col] = pd.to_numeric(info[col], errors="coerce").astype(float)
    return design


class DifferentialExpressionRunner:
    """
    Runs the DE engine once per cell type.

    Contrasts are parsed and validated against the data before any model is
    fitted. Cell types without enough samples are excluded with a warning;
    fits that fail are logged and recorded without stopping the others.

    Example:
        >>> runner = DifferentialExpressionRunner(schema, DEConfig(
        ...     contrasts="'A-B','B-A'", contrast_groups={"A-B": "A", "B-A": "B"}))
        >>> result = runner.run(info)
        >>> result.table.head()
    """

    def __init__(
        self,
        schema: ColumnSchema,
        config: DEConfig,
        engine: Optional[DEEngine] = None,
    ):
        """
        Initialize the runner.

        Args:
            schema: Metadata column names (batches and covariates are used).
            config: DE configuration.
            engine: Count model; defaults to DESeq2Engine.
        """
        self.schema = schema
        self.config = config
        self.engine = engine or DESeq2Engine(min_gene_count=config.min_gene_count)
        self.fdr = FDRCorrector(method=config.fdr_method)

    def prepare(self, groups: list[str]) -> tuple[list[str], pd.DataFrame]:
        """
        Parse and validate contrasts against the groups in the data.

        Raises:
            ConfigurationError: On grammar errors or unknown groups.
        """
        contrasts = parse_contrasts(self.config.contrasts)
        contrast_matrix(contrasts, groups)
        table = validate_contrast_table(contrasts, self.config.contrast_groups, groups)
        return contrasts, table

    def run(self, info: AbundanceExpressionInfo) -> DEResult:
        """
        Fit all cell types and assemble the DE table.

        Args:
            info: Output of AbundanceAggregator.

        Returns:
            DEResult.
        """
        contrasts, contrast_table = self.prepare(info.groups)

        excluded: dict[str, str] = {}
        dropped_contrasts: dict[str, list[str]] = {}
        n_samples: dict[str, dict[str, int]] = {}
        tasks = {}
        for celltype in info.celltypes:
            samples = list(info.counts_for(celltype).columns)
            sub = info.sample_info.loc[info.sample_info["sample"].isin(samples)]
            per_group = sub["group"].value_counts()
            n_samples[celltype] = {g: int(per_group.get(g, 0)) for g in info.groups}

            enough = per_group.index[per_group >= self.config.min_samples_per_group]
            if len(enough) < 2:
                excluded[celltype] = (
                    f"fewer than 2 groups with >= {self.config.min_samples_per_group} samples"
                )
                continue

            present = sorted(per_group.index[per_group > 0])
            usable = [
                c for c in contrasts if set(contrast_coefficients(c)) <= set(present)
            ]
            if len(usable) < len(contrasts):
                dropped_contrasts[celltype] = [c for c in contrasts if c not in usable]
            if not usable:
                excluded[celltype] = "no contrast estimable from the groups present"
                continue
            tasks[celltype] = (sub, present, usable)

        for celltype, reason in excluded.items():
            logger.warning("Cell type %s excluded from DE: %s", celltype, reason)
        for celltype, dropped in dropped_contrasts.items():
            logger.warning("Cell type %s: contrasts not estimable %s", celltype, dropped)

        results: dict[str, pd.DataFrame] = {}
        failed: dict[str, str] = {}
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, self.config.n_workers)
        ) as executor:
            futures = {
                executor.submit(self._fit_celltype, info, celltype, *args): celltype
                for celltype, args in tasks.items()
            }
            for future in concurrent.futures.as_completed(futures):
                celltype = futures[future]
                try:
                    results[celltype] = future.result()
                except Exception as e:
                    failed[celltype] = str(e)
                    logger.warning("DE fit failed for cell type %s: %s", celltype, e)

        celltypes = [c for c in info.celltypes if c in results]
        frames = [results[c] for c in celltypes]
        if frames:
            table = pd.concat(frames, ignore_index=True)
        else:
            table = pd.DataFrame(columns=["celltype"] + DE_COLUMNS)

        if self.config.empirical_pval and not table.empty:
            table = apply_empirical_null(table)

        table = self._adjust(table)
        logger.info(
            "DE table: %d rows, %d cell types modeled, %d excluded, %d failed",
            len(table), len(celltypes), len(excluded), len(failed),
        )

        return DEResult(
            table=table,
            contrasts=contrasts,
            contrast_table=contrast_table,
            celltypes=celltypes,
            empirical_pval=self.config.empirical_pval,
            diagnostics={
                "excluded_celltypes": excluded,
                "failed_celltypes": failed,
                "dropped_contrasts": dropped_contrasts,
                "n_samples": n_samples,
            },
        )

    def _fit_celltype(
        self,
        info: AbundanceExpressionInfo,
        celltype: str,
        sample_info: pd.DataFrame,
        groups: list[str],
        contrasts: list[str],
    ) -> pd.DataFrame:
        design = build_design(
            sample_info, groups, self.schema.batches, self.schema.covariates
        )
        incomplete = design.isna().any(axis=1)
        if incomplete.any():
            logger.warning(
                "Cell type %s: %d samples with missing covariates left out",
                celltype, int(incomplete.sum()),
            )
            design = design.loc[~incomplete]

        counts = info.counts_for(celltype)[list(design.index)]
        cmat = contrast_matrix(contrasts, groups)

        logger.debug(
            "Fitting %s: %d genes, %d samples, %d coefficients",
            celltype, counts.shape[0], counts.shape[1], design.shape[1],
        )
        out = self.engine(counts, design, cmat)
        out = out.copy()
        out.insert(1, "celltype", celltype)
        return out

    def _adjust(self, table: pd.DataFrame) -> pd.DataFrame:
        """Cell-type-local and global multiple testing correction."""
        table = table.reset_index(drop=True)
        if table.empty:
            return table.reindex(columns=TABLE_COLUMNS)
        if "logCPM" not in table.columns:
            table["logCPM"] = np.nan
        table["p_adj_loc"] = self.fdr.correct_grouped(table, "p_val", ["celltype", "contrast"])
        table["p_adj"] = self.fdr.correct(table["p_val"])
        return table[TABLE_COLUMNS]


def run_differential(
    info: AbundanceExpressionInfo,
    contrasts: str,
    contrast_groups: dict[str, str],
    schema: Optional[ColumnSchema] = None,
    engine: Optional[DEEngine] = None,
    **kwargs,
) -> DEResult:
    """
    Convenience function for DifferentialExpressionRunner.

    Args:
        info: Output of AbundanceAggregator.
        contrasts: Contrast list string.
        contrast_groups: Contrast -> main group.
        schema: Metadata column names.
        engine: Count model.
        **kwargs: Additional DEConfig fields.

    Returns:
        DEResult.
    """
    config = DEConfig(contrasts=contrasts, contrast_groups=contrast_groups, **kwargs)
    runner = DifferentialExpressionRunner(schema or ColumnSchema(), config, engine=engine)
    return runner.run(info)
