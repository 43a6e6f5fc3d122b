"""
Base containers for input data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

import numpy as np
import pandas as pd
from scipy import sparse as sp


@dataclass
class CellData:
    """
    Cell-level expression data with cell annotations.

    Raw counts are never modified; every stage reads and aggregates them.
    """

    X: Union[np.ndarray, sp.spmatrix]
    """Count matrix (cells x genes)."""

    obs: pd.DataFrame
    """Cell metadata (one row per cell, same order as X)."""

    var_names: list[str]
    """Gene names (columns of X)."""

    source_info: dict[str, Any] = field(default_factory=dict)
    """Additional source-specific information."""

    def __post_init__(self):
        if self.X.shape[0] != len(self.obs):
            raise ValueError(
                f"X has {self.X.shape[0]} cells but obs has {len(self.obs)} rows"
            )
        if self.X.shape[1] != len(self.var_names):
            raise ValueError(
                f"X has {self.X.shape[1]} genes but {len(self.var_names)} names were given"
            )
        self.var_names = [str(g) for g in self.var_names]

    @property
    def n_cells(self) -> int:
        return self.X.shape[0]

    @property
    def n_genes(self) -> int:
        return self.X.shape[1]

    def subset_cells(self, mask: np.ndarray) -> "CellData":
        """Return a new CellData restricted to cells in mask."""
        mask = np.asarray(mask, dtype=bool)
        return CellData(
            X=self.X[mask],
            obs=self.obs.loc[mask].copy(),
            var_names=list(self.var_names),
            source_info=dict(self.source_info),
        )

    @classmethod
    def from_dataframe(
        cls,
        counts: pd.DataFrame,
        obs: pd.DataFrame,
    ) -> "CellData":
        """Build from a cells x genes DataFrame aligned with obs."""
        return cls(
            X=counts.to_numpy(),
            obs=obs.loc[counts.index].copy(),
            var_names=list(counts.columns),
        )

    def to_csr(self) -> sp.csr_matrix:
        if sp.issparse(self.X):
            return sp.csr_matrix(self.X)
        return sp.csr_matrix(np.asarray(self.X))
