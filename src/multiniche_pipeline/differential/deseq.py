"""
DESeq2 on pseudobulk counts.

Default differential expression engine, backed by PyDESeq2. Any callable
with the signature ``engine(counts, design, contrasts) -> DataFrame`` can
replace it.
"""

from __future__ import annotations

import logging
import warnings
from typing import Optional, Protocol

import numpy as np
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.default_inference import DefaultInference
from pydeseq2.ds import DeseqStats

logger = logging.getLogger(__name__)

DE_COLUMNS = ["gene", "contrast", "logFC", "logCPM", "p_val"]


class DEEngine(Protocol):
    """Count model fitted per cell type."""

    def __call__(
        self,
        counts: pd.DataFrame,
        design: pd.DataFrame,
        contrasts: pd.DataFrame,
    ) -> pd.DataFrame:
        """
        Args:
            counts: Summed counts, genes x samples.
            design: Design matrix, samples x coefficients.
            contrasts: Coefficients x contrasts.

        Returns:
            Long DataFrame with columns gene, contrast, logFC, logCPM, p_val.
        """
        ...


def log_cpm(counts: pd.DataFrame) -> pd.Series:
    """Average log2 CPM per gene."""
    lib = counts.sum(axis=0).replace(0, 1)
    cpm = counts.div(lib, axis=1) * 1e6
    return np.log2(cpm.mean(axis=1) + 0.5)


class DESeq2Engine:
    """
    PyDESeq2 fit per cell type with a precomputed design matrix.

    Size factors, dispersions (shrunk toward the fitted trend) and
    coefficients come from ``DeseqDataSet.deseq2``. Each contrast column is
    passed to ``DeseqStats`` as a numeric contrast vector over the design
    columns; the Wald ``log2FoldChange`` and ``pvalue`` become logFC and
    p_val.

    Example:
        >>> engine = DESeq2Engine(min_gene_count=10)
        >>> table = engine(counts, design, contrasts)
    """

    def __init__(
        self,
        min_gene_count: int = 10,
        refit_cooks: bool = True,
        cooks_filter: bool = True,
        n_cpus: Optional[int] = 1,
    ):
        """
        Initialize the engine.

        Args:
            min_gene_count: Minimum summed count across samples for a gene to be tested.
            refit_cooks: Refit genes with outlier counts after replacement.
            cooks_filter: Set p-values of genes with outlier counts to missing.
            n_cpus: Processes used by PyDESeq2 within one fit.
        """
        self.min_gene_count = min_gene_count
        self.refit_cooks = refit_cooks
        self.cooks_filter = cooks_filter
        self.n_cpus = n_cpus

    def __call__(
        self,
        counts: pd.DataFrame,
        design: pd.DataFrame,
        contrasts: pd.DataFrame,
    ) -> pd.DataFrame:
        counts = counts[design.index]
        X = design.to_numpy(dtype=float)
        if np.linalg.matrix_rank(X) < X.shape[1]:
            raise ValueError(
                f"Design matrix is not of full rank ({X.shape[1]} coefficients, "
                f"{X.shape[0]} samples)"
            )
        C = contrasts.reindex(index=design.columns, fill_value=0.0)

        tested = counts.loc[counts.sum(axis=1) >= self.min_gene_count]
        if tested.empty:
            return pd.DataFrame(columns=DE_COLUMNS)

        dds = self.fit(tested, design)

        frames = []
        for name in C.columns:
            res = self.test(dds, C[name].to_numpy(dtype=float))
            frames.append(pd.DataFrame({
                "gene": tested.index.to_numpy(),
                "contrast": name,
                "logFC": res["log2FoldChange"].reindex(tested.index).to_numpy(dtype=float),
                "logCPM": log_cpm(tested).to_numpy(),
                "p_val": res["pvalue"].reindex(tested.index).to_numpy(dtype=float),
            }))

        out = pd.concat(frames, ignore_index=True)
        n_missing = int(out["p_val"].isna().sum())
        if n_missing:
            logger.debug("%d of %d tests without p-value (outliers)", n_missing, len(out))
        return out[DE_COLUMNS]

    def fit(self, counts: pd.DataFrame, design: pd.DataFrame) -> DeseqDataSet:
        """
        Run the DESeq2 fit on genes x samples counts.

        Returns:
            Fitted DeseqDataSet.
        """
        samples = [str(s) for s in design.index]
        design = design.astype(float).set_axis(samples, axis=0)
        counts_i = counts.T.round().astype(np.int64).set_axis(samples, axis=0)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            dds = DeseqDataSet(
                counts=counts_i,
                metadata=design.copy(),
                design=design,
                refit_cooks=self.refit_cooks,
                inference=DefaultInference(n_cpus=self.n_cpus),
                quiet=True,
            )
            dds.deseq2()
        for w in caught:
            logger.debug("PyDESeq2: %s", w.message)
        return dds

    def test(self, dds: DeseqDataSet, contrast: np.ndarray) -> pd.DataFrame:
        """Wald test of one numeric contrast vector over the design columns."""
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            stat = DeseqStats(
                dds,
                contrast=contrast,
                cooks_filter=self.cooks_filter,
                inference=DefaultInference(n_cpus=self.n_cpus),
                quiet=True,
            )
            stat.summary()
        for w in caught:
            logger.debug("PyDESeq2: %s", w.message)
        return stat.results_df
