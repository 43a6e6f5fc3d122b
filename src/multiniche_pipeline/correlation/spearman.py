"""
Pairwise Spearman rank correlation with missing values.
"""

from __future__ import annotations

from typing import Union

import numpy as np
import pandas as pd

from multiniche_pipeline.correlation.pearson import MIN_SAMPLES, _masked_pearson, _paired


class SpearmanCorrelator:
    """
    Row-paired Spearman rank correlation.

    Converts each row to ranks over the jointly observed samples and computes
    Pearson correlation on ranks.

    Example:
        >>> correlator = SpearmanCorrelator()
        >>> rho, pval, n = correlator.correlate(lr_products, target_expression)
    """

    def __init__(self, min_samples: int = MIN_SAMPLES):
        """
        Initialize Spearman correlator.

        Args:
            min_samples: Minimum paired samples for a defined correlation.
        """
        self.min_samples = min_samples

    def correlate(
        self,
        X: Union[np.ndarray, pd.DataFrame],
        Y: Union[np.ndarray, pd.DataFrame],
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Compute Spearman correlation between paired rows of X and Y.

        Args:
            X: First matrix (pairs x samples).
            Y: Second matrix (pairs x samples).

        Returns:
            Tuple of (correlation, pvalue, n_samples) arrays.
        """
        X, Y, mask = _paired(X, Y)

        # Rank only the jointly observed entries; ties get average ranks
        X_rank = pd.DataFrame(np.where(mask, X, np.nan)).rank(axis=1).to_numpy()
        Y_rank = pd.DataFrame(np.where(mask, Y, np.nan)).rank(axis=1).to_numpy()

        return _masked_pearson(
            np.where(mask, X_rank, 0.0), np.where(mask, Y_rank, 0.0), mask, self.min_samples
        )


def spearman_correlation(
    X: Union[np.ndarray, pd.DataFrame],
    Y: Union[np.ndarray, pd.DataFrame],
    min_samples: int = MIN_SAMPLES,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Compute Spearman correlation between paired rows of X and Y.

    Convenience function for SpearmanCorrelator.

    Args:
        X: First matrix (pairs x samples).
        Y: Second matrix (pairs x samples).
        min_samples: Minimum paired samples for a defined correlation.

    Returns:
        Tuple of (correlation, pvalue, n_samples) arrays.
    """
    correlator = SpearmanCorrelator(min_samples=min_samples)
    return correlator.correlate(X, Y)
