"""
FDR correction for multiple testing.
"""

from __future__ import annotations

from typing import Union

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests


class FDRCorrector:
    """
    FDR correction for differential analysis.

    Supports multiple correction methods from statsmodels. Missing p-values
    are left out of the correction and stay missing.

    Example:
        >>> corrector = FDRCorrector(method="fdr_bh")
        >>> qvalues = corrector.correct(pvalues)
    """

    METHODS = [
        "bonferroni",
        "sidak",
        "holm-sidak",
        "holm",
        "simes-hochberg",
        "hommel",
        "fdr_bh",  # Benjamini-Hochberg
        "fdr_by",  # Benjamini-Yekutieli
        "fdr_tsbh",  # Two-stage BH
        "fdr_tsbky",  # Two-stage BY
    ]

    def __init__(
        self,
        method: str = "fdr_bh",
        alpha: float = 0.05,
    ):
        """
        Initialize FDR corrector.

        Args:
            method: Correction method.
            alpha: Significance threshold.
        """
        if method not in self.METHODS:
            raise ValueError(
                f"Unknown method: {method}. Available: {self.METHODS}"
            )
        self.method = method
        self.alpha = alpha

    def _correct_flat(self, flat_pvals: np.ndarray) -> np.ndarray:
        flat_pvals = np.asarray(flat_pvals, dtype=float)
        qvals = np.full(flat_pvals.shape, np.nan)
        finite = np.isfinite(flat_pvals)
        if finite.any():
            _, qvals[finite], _, _ = multipletests(
                np.clip(flat_pvals[finite], 0.0, 1.0),
                alpha=self.alpha,
                method=self.method,
            )
        return qvals

    def correct(
        self,
        pvalues: Union[np.ndarray, pd.DataFrame, pd.Series],
    ) -> Union[np.ndarray, pd.DataFrame, pd.Series]:
        """
        Apply FDR correction.

        Args:
            pvalues: P-values (any shape).

        Returns:
            Corrected q-values (same shape as input).
        """
        if isinstance(pvalues, pd.DataFrame):
            flat_qvals = self._correct_flat(pvalues.values.ravel())
            return pd.DataFrame(
                flat_qvals.reshape(pvalues.shape),
                index=pvalues.index,
                columns=pvalues.columns,
            )

        elif isinstance(pvalues, pd.Series):
            return pd.Series(self._correct_flat(pvalues.values), index=pvalues.index)

        else:
            pvalues = np.asarray(pvalues, dtype=float)
            return self._correct_flat(pvalues.ravel()).reshape(pvalues.shape)

    def correct_grouped(
        self,
        table: pd.DataFrame,
        pvalue_col: str,
        by: list[str],
    ) -> pd.Series:
        """Correct p-values separately within each group of rows."""
        out = pd.Series(np.nan, index=table.index)
        for _, idx in table.groupby(by, sort=False, observed=True).groups.items():
            out.loc[idx] = self._correct_flat(table.loc[idx, pvalue_col].to_numpy())
        return out


def apply_fdr(
    pvalues: Union[np.ndarray, pd.DataFrame, pd.Series],
    method: str = "fdr_bh",
    alpha: float = 0.05,
) -> Union[np.ndarray, pd.DataFrame, pd.Series]:
    """
    Apply FDR correction to p-values.

    Convenience function for FDRCorrector.

    Args:
        pvalues: P-values.
        method: Correction method.
        alpha: Significance threshold.

    Returns:
        Corrected q-values.
    """
    corrector = FDRCorrector(method=method, alpha=alpha)
    return corrector.correct(pvalues)
