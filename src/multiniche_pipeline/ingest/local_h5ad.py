"""
Local H5AD file data source.

Reads raw counts and cell annotations from an AnnData file into a CellData
container.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import anndata as ad
import numpy as np
from scipy import sparse as sp

from multiniche_pipeline.ingest.base import CellData

logger = logging.getLogger(__name__)


class LocalH5ADSource:
    """
    Data source for local H5AD files.

    Example:
        >>> source = LocalH5ADSource("/path/to/data.h5ad", layer="counts")
        >>> print(f"Dataset: {source.n_cells} cells, {source.n_genes} genes")
        >>> cells = source.load()
    """

    def __init__(
        self,
        path: Union[str, Path],
        layer: Optional[str] = None,
    ):
        """
        Initialize H5AD data source.

        Args:
            path: Path to H5AD file.
            layer: Layer holding raw counts (None for .X).
        """
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"H5AD file not found: {self.path}")

        self.layer = layer
        self._adata = ad.read_h5ad(self.path)

        if layer is not None and layer not in self._adata.layers:
            raise ValueError(
                f"Layer '{layer}' not found. Available: {list(self._adata.layers.keys())}"
            )

    @property
    def n_cells(self) -> int:
        """Total number of cells."""
        return self._adata.n_obs

    @property
    def n_genes(self) -> int:
        """Total number of genes."""
        return self._adata.n_vars

    @property
    def obs_columns(self) -> list[str]:
        """Available cell metadata columns."""
        return list(self._adata.obs.columns)

    def load(self) -> CellData:
        """Load counts and cell metadata."""
        if self.layer is not None:
            X = self._adata.layers[self.layer]
        else:
            X = self._adata.X

        if not sp.issparse(X):
            X = np.asarray(X)

        logger.info(
            "Loaded %s: %d cells x %d genes (layer=%s)",
            self.path, self.n_cells, self.n_genes, self.layer or "X",
        )

        return CellData(
            X=X,
            obs=self._adata.obs.copy(),
            var_names=list(self._adata.var_names),
            source_info={"path": str(self.path), "layer": self.layer},
        )
