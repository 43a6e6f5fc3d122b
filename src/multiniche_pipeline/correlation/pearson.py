"""
Pairwise Pearson correlation with missing values.
"""

from __future__ import annotations

from typing import Union

import numpy as np
import pandas as pd
from scipy import stats

MIN_SAMPLES = 3


class PearsonCorrelator:
    """
    Row-paired Pearson correlation.

    Row i of X is correlated with row i of Y over the samples where both are
    finite. Rows with fewer than ``min_samples`` such samples, or with a
    constant side, get NaN.

    Example:
        >>> correlator = PearsonCorrelator()
        >>> rho, pval, n = correlator.correlate(lr_products, target_expression)
    """

    def __init__(self, min_samples: int = MIN_SAMPLES):
        """
        Initialize Pearson correlator.

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
        Compute Pearson correlation between paired rows of X and Y.

        Args:
            X: First matrix (pairs x samples).
            Y: Second matrix (pairs x samples).

        Returns:
            Tuple of (correlation, pvalue, n_samples) arrays.
        """
        X, Y, mask = _paired(X, Y)
        return _masked_pearson(X, Y, mask, self.min_samples)


def _paired(X, Y) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    # Convert to numpy
    if isinstance(X, pd.DataFrame):
        X = X.values
    if isinstance(Y, pd.DataFrame):
        Y = Y.values
    X = np.asarray(X, dtype=float)
    Y = np.asarray(Y, dtype=float)

    # Ensure 2D
    if X.ndim == 1:
        X = X.reshape(1, -1)
    if Y.ndim == 1:
        Y = Y.reshape(1, -1)
    if X.shape != Y.shape:
        raise ValueError(f"Shape mismatch: {X.shape} vs {Y.shape}")

    mask = np.isfinite(X) & np.isfinite(Y)
    return np.where(mask, X, 0.0), np.where(mask, Y, 0.0), mask


def _masked_pearson(
    X: np.ndarray,
    Y: np.ndarray,
    mask: np.ndarray,
    min_samples: int,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    n = mask.sum(axis=1)
    safe_n = np.where(n == 0, 1, n)

    # Center data over the paired samples
    X_centered = np.where(mask, X - (X.sum(axis=1) / safe_n)[:, None], 0.0)
    Y_centered = np.where(mask, Y - (Y.sum(axis=1) / safe_n)[:, None], 0.0)

    sxy = (X_centered * Y_centered).sum(axis=1)
    sxx = (X_centered ** 2).sum(axis=1)
    syy = (Y_centered ** 2).sum(axis=1)

    # constant rows within rounding error count as zero variance
    tol_x = 1e-12 * (1.0 + (X ** 2).sum(axis=1))
    tol_y = 1e-12 * (1.0 + (Y ** 2).sum(axis=1))
    defined = (n >= min_samples) & (sxx > tol_x) & (syy > tol_y)
    with np.errstate(invalid="ignore", divide="ignore"):
        rho = np.where(defined, sxy / np.sqrt(sxx * syy), np.nan)
    rho = np.clip(rho, -1.0, 1.0)

    # P-values using t-distribution
    df = np.maximum(n - 2, 1)
    with np.errstate(invalid="ignore", divide="ignore"):
        t_stat = rho * np.sqrt(df / (1 - rho**2 + 1e-10))
    pval = np.where(defined, 2 * stats.t.sf(np.abs(t_stat), df=df), np.nan)

    return rho, pval, n


def pearson_correlation(
    X: Union[np.ndarray, pd.DataFrame],
    Y: Union[np.ndarray, pd.DataFrame],
    min_samples: int = MIN_SAMPLES,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Compute Pearson correlation between paired rows of X and Y.

    Convenience function for PearsonCorrelator.

    Args:
        X: First matrix (pairs x samples).
        Y: Second matrix (pairs x samples).
        min_samples: Minimum paired samples for a defined correlation.

    Returns:
        Tuple of (correlation, pvalue, n_samples) arrays.
    """
    correlator = PearsonCorrelator(min_samples=min_samples)
    return correlator.correlate(X, Y)
