"""
Rescaling functions shared by the prioritization criteria.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd


def ecdf_scale(values: pd.Series) -> pd.Series:
    """
    Empirical CDF of each value among the non-missing values.

    Output lies in (0, 1], the maximum maps to 1 and ties share the
    highest position. Missing values stay missing.

    Example:
        >>> ecdf_scale(pd.Series([3.0, 1.0, np.nan, 3.0])).tolist()
        [1.0, 0.3333333333333333, nan, 1.0]
    """
    n = values.notna().sum()
    if n == 0:
        return pd.Series(np.nan, index=values.index)
    return values.rank(method="max", na_option="keep") / n


def grouped_ecdf(df: pd.DataFrame, column: str, by: Sequence[str]) -> pd.Series:
    """ecdf_scale applied within each group of rows."""
    if df.empty:
        return pd.Series(dtype=float)
    return df.groupby(list(by), sort=False)[column].transform(ecdf_scale)


def signed_log_pval(p_val: pd.Series, logfc: pd.Series) -> pd.Series:
    """-log10(p) carrying the sign of the fold change."""
    p = p_val.astype(float).clip(lower=1e-300)
    return -np.log10(p) * np.sign(logfc.astype(float))


def row_zscore(table: pd.DataFrame) -> pd.DataFrame:
    """
    Z-score each row across columns, ignoring missing cells.

    Rows with zero or undefined spread map to 0 where they have values.
    """
    mean = table.mean(axis=1)
    sd = table.std(axis=1, ddof=1)
    z = table.sub(mean, axis=0).div(sd.where(sd > 0), axis=0)
    z.loc[sd.isna() | (sd == 0)] = 0.0
    return z.where(table.notna())


def weighted_mean(scores: pd.DataFrame, weights: dict[str, float]) -> pd.Series:
    """
    Weighted mean over the columns named in weights, skipping missing values.

    Weights are renormalized over the criteria present in each row;
    zero-weight columns never contribute. A row with nothing to average is NA.
    """
    active = {k: w for k, w in weights.items() if w > 0}
    if not active:
        return pd.Series(np.nan, index=scores.index)

    values = scores[list(active)].to_numpy(dtype=float)
    w = np.array(list(active.values()), dtype=float)
    present = ~np.isnan(values)
    num = np.where(present, values, 0.0) @ w
    den = present.astype(float) @ w
    with np.errstate(invalid="ignore", divide="ignore"):
        out = np.where(den > 0, num / np.where(den > 0, den, 1.0), np.nan)
    return pd.Series(out, index=scores.index)
