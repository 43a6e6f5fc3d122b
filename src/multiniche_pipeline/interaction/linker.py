"""
Sender-receiver linking.

Joins ligand expression in sender cell types with receptor expression in
receiver cell types over the prior ligand-receptor pairs, per sample and per
group, and joins ligand / receptor DE statistics per contrast.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd

from multiniche_pipeline.aggregation.base import AbundanceExpressionInfo
from multiniche_pipeline.ingest.priors import PriorNetworks

logger = logging.getLogger(__name__)


@dataclass
class SenderReceiverInfo:
    """Sender-ligand / receiver-receptor expression records."""

    sample_level: pd.DataFrame
    """One row per (sample, sender, receiver, ligand, receptor)."""

    group_level: pd.DataFrame
    """One row per (group, sender, receiver, ligand, receptor)."""

    senders: list[str]
    receivers: list[str]

    stats: dict[str, Any] = field(default_factory=dict)


class SenderReceiverLinker:
    """
    Links sender ligand expression with receiver receptor expression.

    The join is the full cross product senders x receivers; autocrine
    (sender == receiver) pairs are kept unless ``exclude_autocrine`` is set.

    Example:
        >>> linker = SenderReceiverLinker(priors)
        >>> sr = linker.link(info)
        >>> sr.sample_level[["ligand", "receptor", "ligand_receptor_pb_prod"]]
    """

    def __init__(
        self,
        priors: PriorNetworks,
        senders_oi: Optional[list[str]] = None,
        receivers_oi: Optional[list[str]] = None,
        exclude_autocrine: bool = False,
    ):
        self.priors = priors
        self.senders_oi = senders_oi
        self.receivers_oi = receivers_oi
        self.exclude_autocrine = exclude_autocrine

    def resolve_celltypes(self, celltypes: list[str]) -> tuple[list[str], list[str]]:
        senders = sorted(c for c in celltypes if self.senders_oi is None or c in self.senders_oi)
        receivers = sorted(c for c in celltypes if self.receivers_oi is None or c in self.receivers_oi)
        return senders, receivers

    def measured_pairs(self, genes) -> pd.DataFrame:
        """Prior pairs whose ligand and receptor are both measured."""
        genes = set(genes)
        lr = self.priors.lr_network
        mask = lr["ligand"].isin(genes) & lr["receptor"].isin(genes)
        n_missing = int((~mask).sum())
        if n_missing:
            logger.debug("%d ligand-receptor pairs have an unmeasured gene", n_missing)
        return lr.loc[mask].reset_index(drop=True)

    def link(self, info: AbundanceExpressionInfo) -> SenderReceiverInfo:
        """
        Build sample-level and group-level sender-receiver tables.

        Args:
            info: Output of AbundanceAggregator.

        Returns:
            SenderReceiverInfo.
        """
        senders, receivers = self.resolve_celltypes(info.celltypes)
        lr = self.measured_pairs(info.gene_names)

        sample_level = self._link_level(info, lr, senders, receivers, "sample")
        group_level = self._link_level(info, lr, senders, receivers, "group")

        keep = info.abundance.set_index(["celltype", "sample"])["keep"]
        sample_level["keep_sender"] = keep.reindex(
            pd.MultiIndex.from_arrays([sample_level["sender"], sample_level["sample"]])
        ).fillna(0).astype(int).to_numpy()
        sample_level["keep_receiver"] = keep.reindex(
            pd.MultiIndex.from_arrays([sample_level["receiver"], sample_level["sample"]])
        ).fillna(0).astype(int).to_numpy()
        group_of = info.sample_info.set_index("sample")["group"]
        sample_level.insert(1, "group", sample_level["sample"].map(group_of))

        logger.info(
            "Linked %d ligand-receptor pairs over %d senders x %d receivers "
            "(%d sample rows, %d group rows)",
            len(lr), len(senders), len(receivers), len(sample_level), len(group_level),
        )

        return SenderReceiverInfo(
            sample_level=sample_level,
            group_level=group_level,
            senders=senders,
            receivers=receivers,
            stats={"n_lr_pairs": len(lr),
                   "n_lr_pairs_unmeasured": len(self.priors.lr_network) - len(lr)},
        )

    def _link_level(
        self,
        info: AbundanceExpressionInfo,
        lr: pd.DataFrame,
        senders: list[str],
        receivers: list[str],
        level: str,
    ) -> pd.DataFrame:
        suffix = "" if level == "sample" else "_group"
        long = info.to_long(level, genes=sorted(set(lr["ligand"]) | set(lr["receptor"])))
        value_cols = [c for c in long.columns if c not in ("celltype", level, "gene")]
        names = {value_cols[0]: "avg", value_cols[1]: "fraction", value_cols[2]: "pb"}
        long = long.rename(columns=names)

        ligand = long.loc[long["celltype"].isin(senders)].rename(columns={
            "celltype": "sender", "gene": "ligand",
            "avg": f"avg_ligand{suffix}", "fraction": f"fraction_ligand{suffix}",
            "pb": f"pb_ligand{suffix}",
        })
        receptor = long.loc[long["celltype"].isin(receivers)].rename(columns={
            "celltype": "receiver", "gene": "receptor",
            "avg": f"avg_receptor{suffix}", "fraction": f"fraction_receptor{suffix}",
            "pb": f"pb_receptor{suffix}",
        })

        joined = lr.merge(ligand, on="ligand").merge(receptor, on=["receptor", level])
        if self.exclude_autocrine:
            joined = joined.loc[joined["sender"] != joined["receiver"]]

        joined[f"ligand_receptor_prod{suffix}"] = (
            joined[f"avg_ligand{suffix}"] * joined[f"avg_receptor{suffix}"]
        )
        joined[f"ligand_receptor_fraction_prod{suffix}"] = (
            joined[f"fraction_ligand{suffix}"] * joined[f"fraction_receptor{suffix}"]
        )
        joined[f"ligand_receptor_pb_prod{suffix}"] = (
            joined[f"pb_ligand{suffix}"] * joined[f"pb_receptor{suffix}"]
        )

        lead = [level, "sender", "receiver", "ligand", "receptor"]
        rest = [c for c in joined.columns if c not in lead]
        return (
            joined[lead + rest]
            .sort_values(lead, kind="mergesort")
            .reset_index(drop=True)
        )

    def combine_de(
        self,
        de_table: pd.DataFrame,
        senders: list[str],
        receivers: list[str],
        contrasts: list[str],
        genes=None,
    ) -> pd.DataFrame:
        """
        Join ligand DE (in the sender) and receptor DE (in the receiver).

        Every (contrast, sender, receiver, ligand, receptor) combination is
        emitted; DE fields are NA where the cell type was not modeled.

        Args:
            de_table: Long DE table (gene, celltype, contrast, logFC, p_val, p_adj, ...).
            senders: Sender cell types.
            receivers: Receiver cell types.
            contrasts: Contrast names.
            genes: Measured genes (None = no filter).

        Returns:
            DataFrame with lfc/p_val/p_adj for ligand and receptor plus
            ligand_receptor_lfc_avg.
        """
        lr = self.priors.lr_network if genes is None else self.measured_pairs(genes)

        skeleton = (
            lr.merge(pd.DataFrame({"sender": senders}), how="cross")
            .merge(pd.DataFrame({"receiver": receivers}), how="cross")
            .merge(pd.DataFrame({"contrast": contrasts}), how="cross")
        )
        if self.exclude_autocrine:
            skeleton = skeleton.loc[skeleton["sender"] != skeleton["receiver"]]

        de = de_table[["gene", "celltype", "contrast", "logFC", "p_val", "p_adj"]]
        ligand_de = de.rename(columns={
            "gene": "ligand", "celltype": "sender",
            "logFC": "lfc_ligand", "p_val": "p_val_ligand", "p_adj": "p_adj_ligand",
        })
        receptor_de = de.rename(columns={
            "gene": "receptor", "celltype": "receiver",
            "logFC": "lfc_receptor", "p_val": "p_val_receptor", "p_adj": "p_adj_receptor",
        })

        out = (
            skeleton
            .merge(ligand_de, on=["ligand", "sender", "contrast"], how="left")
            .merge(receptor_de, on=["receptor", "receiver", "contrast"], how="left")
        )
        # mean of the two fold changes; NA if either side is missing
        out["ligand_receptor_lfc_avg"] = (out["lfc_ligand"] + out["lfc_receptor"]) / 2

        lead = ["contrast", "sender", "receiver", "ligand", "receptor"]
        rest = [c for c in out.columns if c not in lead]
        return out[lead + rest].reset_index(drop=True)


def lr_pb_prod_matrix(sample_level: pd.DataFrame) -> pd.DataFrame:
    """Wide (ligand, receptor, sender, receiver) x sample matrix of LR pseudobulk products."""
    if sample_level.empty:
        return pd.DataFrame()
    valid = sample_level.loc[
        (sample_level["keep_sender"] == 1) & (sample_level["keep_receiver"] == 1)
    ]
    wide = valid.pivot_table(
        index=["ligand", "receptor", "sender", "receiver"],
        columns="sample",
        values="ligand_receptor_pb_prod",
        aggfunc="first",
    )
    return wide.astype(np.float64)
