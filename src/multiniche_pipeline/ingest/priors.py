"""
Prior knowledge networks.

Ligand-receptor pairs and the ligand-target regulatory potential matrix are
carried by an explicit PriorNetworks object handed to every stage that needs
them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class PriorNetworks:
    """
    Externally supplied prior knowledge.

    Example:
        >>> priors = PriorNetworks.from_files(
        ...     "lr_network_human.csv", "ligand_target_matrix_human.csv",
        ...     organism="human",
        ... )
        >>> priors.top_targets("TNF", n=250)
    """

    lr_network: pd.DataFrame
    """Two columns: ligand, receptor."""

    ligand_target_matrix: pd.DataFrame
    """Target genes (rows) x ligands (columns), nonnegative weights."""

    organism: str = "human"
    """Organism the networks were built for."""

    def __post_init__(self):
        missing = {"ligand", "receptor"} - set(self.lr_network.columns)
        if missing:
            raise ValueError(f"lr_network is missing columns: {sorted(missing)}")

        lr = self.lr_network[["ligand", "receptor"]].astype(str)
        n_before = len(lr)
        self.lr_network = lr.drop_duplicates().reset_index(drop=True)
        if len(self.lr_network) < n_before:
            logger.debug("Dropped %d duplicated ligand-receptor pairs",
                         n_before - len(self.lr_network))

        ltm = self.ligand_target_matrix.astype(float)
        if (ltm.to_numpy() < 0).any():
            raise ValueError("ligand_target_matrix weights must be nonnegative")
        ltm.index = ltm.index.astype(str)
        ltm.columns = ltm.columns.astype(str)
        self.ligand_target_matrix = ltm.fillna(0.0)

    @property
    def ligands(self) -> list[str]:
        return list(self.lr_network["ligand"].unique())

    @property
    def receptors(self) -> list[str]:
        return list(self.lr_network["receptor"].unique())

    @property
    def target_ligands(self) -> list[str]:
        """Ligands with at least one nonzero prior target edge."""
        ltm = self.ligand_target_matrix
        return list(ltm.columns[(ltm > 0).any(axis=0)])

    def top_targets(self, ligand: str, n: int = 250) -> pd.Series:
        """
        Top-n prior targets of a ligand.

        Args:
            ligand: Ligand symbol.
            n: Number of targets to retain.

        Returns:
            Series target -> weight sorted by decreasing weight (zero weights
            excluded). Empty if the ligand has no prior edges.
        """
        if ligand not in self.ligand_target_matrix.columns:
            return pd.Series(dtype=float)
        weights = self.ligand_target_matrix[ligand]
        weights = weights[weights > 0]
        # stable sort keeps matrix order for equal weights
        return weights.sort_values(ascending=False, kind="mergesort").head(n)

    def top_target_table(self, ligands: list[str], n: int = 250) -> pd.DataFrame:
        """Long table of ligand, target, ligand_target_weight, target_rank."""
        frames = []
        for ligand in ligands:
            top = self.top_targets(ligand, n)
            if top.empty:
                continue
            frames.append(pd.DataFrame({
                "ligand": ligand,
                "target": top.index,
                "ligand_target_weight": top.values,
                "target_rank": np.arange(1, len(top) + 1),
            }))
        if not frames:
            return pd.DataFrame(
                columns=["ligand", "target", "ligand_target_weight", "target_rank"]
            )
        return pd.concat(frames, ignore_index=True)

    @classmethod
    def from_files(
        cls,
        lr_network_path: Union[str, Path],
        ligand_target_path: Union[str, Path],
        organism: str = "human",
    ) -> "PriorNetworks":
        """Load both networks from CSV/TSV files."""
        lr = _read_table(lr_network_path, index_col=None)
        ltm = _read_table(ligand_target_path, index_col=0)
        logger.info(
            "Loaded priors (%s): %d ligand-receptor pairs, %d targets x %d ligands",
            organism, len(lr), ltm.shape[0], ltm.shape[1],
        )
        return cls(lr_network=lr, ligand_target_matrix=ltm, organism=organism)


def _read_table(path: Union[str, Path], index_col=None) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Prior network file not found: {path}")
    sep = "\t" if path.suffix in (".tsv", ".txt") else ","
    return pd.read_csv(path, sep=sep, index_col=index_col)
