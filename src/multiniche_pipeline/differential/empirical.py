"""
Empirical null p-value recalibration.

The model's two-sided p-values are turned back into signed z statistics,
the null distribution's location and scale are estimated robustly (median
and MAD) from all genes of one cell type / contrast, and p-values are
recomputed against that fitted normal null. Fold changes are untouched.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from scipy import stats

logger = logging.getLogger(__name__)

MAD_TO_SD = 1.4826
MIN_GENES = 10


def signed_z(logfc: np.ndarray, p_val: np.ndarray) -> np.ndarray:
    """Signed z statistic implied by a two-sided p-value."""
    p = np.clip(np.asarray(p_val, dtype=float), 1e-300, 1.0)
    return np.sign(np.asarray(logfc, dtype=float)) * stats.norm.isf(p / 2)


def empirical_null(z: np.ndarray) -> tuple[float, float]:
    """Robust (location, scale) of the null z distribution."""
    z = z[np.isfinite(z)]
    if len(z) < MIN_GENES:
        return np.nan, np.nan
    loc = float(np.median(z))
    scale = float(MAD_TO_SD * np.median(np.abs(z - loc)))
    return loc, scale


def empirical_pvalues(logfc: np.ndarray, p_val: np.ndarray) -> np.ndarray:
    """
    Recalibrate p-values of one cell type / contrast.

    Falls back to the model p-values when fewer than MIN_GENES finite
    statistics are available or the null scale is degenerate.
    """
    p_val = np.asarray(p_val, dtype=float)
    z = signed_z(logfc, p_val)
    loc, scale = empirical_null(z)
    if not np.isfinite(scale) or scale <= 0:
        logger.debug("Empirical null not estimable (n=%d), keeping model p-values", len(z))
        return p_val
    out = 2 * stats.norm.sf(np.abs(z - loc) / scale)
    return np.where(np.isfinite(p_val), np.clip(out, 0.0, 1.0), np.nan)


def apply_empirical_null(
    table: pd.DataFrame,
    by: tuple[str, ...] = ("celltype", "contrast"),
) -> pd.DataFrame:
    """Return a copy of a DE table with p_val recalibrated per cell type / contrast."""
    out = table.copy()
    for _, idx in out.groupby(list(by), sort=False).groups.items():
        out.loc[idx, "p_val"] = empirical_pvalues(
            out.loc[idx, "logFC"].to_numpy(), out.loc[idx, "p_val"].to_numpy()
        )
    return out
