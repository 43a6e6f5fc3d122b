"""
Multi-criterion prioritization of sender-receiver interactions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd

from multiniche_pipeline.activity.scorer import ActivityResult
from multiniche_pipeline.aggregation.base import AbundanceExpressionInfo
from multiniche_pipeline.core.config import CRITERIA, PrioritizationConfig
from multiniche_pipeline.interaction.keys import KEY_COLUMNS, add_interaction_id
from multiniche_pipeline.interaction.linker import SenderReceiverInfo
from multiniche_pipeline.prioritization.criteria import (
    add_scaled_criteria,
    coexpression_fraction,
    expression_specificity,
)
from multiniche_pipeline.prioritization.scaling import weighted_mean

logger = logging.getLogger(__name__)

GROUP_LEVEL_FIELDS = [
    "avg_ligand_group", "fraction_ligand_group", "pb_ligand_group",
    "avg_receptor_group", "fraction_receptor_group", "pb_receptor_group",
    "ligand_receptor_prod_group", "ligand_receptor_fraction_prod_group",
    "ligand_receptor_pb_prod_group",
]


@dataclass
class PrioritizationResult:
    """Group-level and sample-level prioritization tables."""

    group_table: pd.DataFrame
    """One row per (contrast, group, sender, receiver, ligand, receptor)."""

    sample_table: pd.DataFrame
    """Per-sample expression overlay with inherited group-level scores."""

    weights: dict[str, float] = field(default_factory=dict)
    """Criterion weights used."""

    diagnostics: dict[str, Any] = field(default_factory=dict)


class PrioritizationEngine:
    """
    Combines DE, expression, co-expression, abundance and activity signals
    into one score per interaction and contrast.

    Every criterion is rescaled to (0, 1] with an empirical CDF, then the
    prioritization_score is the weighted mean of the criteria that are
    present in a record. Records are ranked within their contrast.

    Example:
        >>> engine = PrioritizationEngine(PrioritizationConfig(), de_result.contrast_table)
        >>> result = engine.prioritize(lr_de, sr_info, info, activity)
        >>> engine.top_n(result.group_table, n=50)
    """

    def __init__(
        self,
        config: Optional[PrioritizationConfig] = None,
        contrast_table: Optional[pd.DataFrame] = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Weights and co-expression thresholds.
            contrast_table: contrast -> main group (columns contrast, group).
        """
        self.config = config or PrioritizationConfig()
        self.weights = self.config.resolved_weights()
        self.contrast_table = (
            contrast_table if contrast_table is not None
            else pd.DataFrame(columns=["contrast", "group"])
        )

    def build_records(
        self,
        lr_de: pd.DataFrame,
        sr: SenderReceiverInfo,
        info: AbundanceExpressionInfo,
        activity: Optional[ActivityResult] = None,
    ) -> pd.DataFrame:
        """
        Assemble raw per-record signals.

        Args:
            lr_de: Output of SenderReceiverLinker.combine_de.
            sr: Sender-receiver expression records.
            info: Aggregated expression and abundance.
            activity: Ligand activities (None = no activity criteria).

        Returns:
            One row per (contrast, group, sender, receiver, ligand, receptor).
        """
        records = lr_de.merge(self.contrast_table[["contrast", "group"]], on="contrast")
        lead = ["contrast", "group", "sender", "receiver", "ligand", "receptor"]
        records = records[lead + [c for c in records.columns if c not in lead]]

        group_level = sr.group_level[["group"] + KEY_COLUMNS + GROUP_LEVEL_FIELDS]
        records = records.merge(group_level, on=["group"] + KEY_COLUMNS, how="left")

        spec = expression_specificity(info)
        records = records.merge(
            spec.rename(columns={"celltype": "sender", "gene": "ligand",
                                 "pb_group_z": "pb_ligand_group_z"}),
            on=["sender", "group", "ligand"], how="left",
        ).merge(
            spec.rename(columns={"celltype": "receiver", "gene": "receptor",
                                 "pb_group_z": "pb_receptor_group_z"}),
            on=["receiver", "group", "receptor"], how="left",
        )

        coexpr = coexpression_fraction(
            sr.sample_level, info.sample_info, self.config.fraction_cutoff
        )
        records = records.merge(coexpr, on=["group"] + KEY_COLUMNS, how="left")
        records["fraction_expressing_ligand_receptor"] = (
            records["fraction_expressing_ligand_receptor"].fillna(0.0)
        )

        abund = info.rel_abundance[["group", "celltype", "rel_abundance_scaled"]]
        records = records.merge(
            abund.rename(columns={"celltype": "sender",
                                  "rel_abundance_scaled": "rel_abundance_sender"}),
            on=["group", "sender"], how="left",
        ).merge(
            abund.rename(columns={"celltype": "receiver",
                                  "rel_abundance_scaled": "rel_abundance_receiver"}),
            on=["group", "receiver"], how="left",
        )

        for direction in ("up", "down"):
            column = f"activity_{direction}"
            if activity is None or activity.activities.empty:
                records[column] = np.nan
                continue
            scaled = activity.scaled(direction).rename(columns={"activity_scaled": column})
            records = records.merge(scaled, on=["ligand", "receiver", "contrast"], how="left")

        return records

    def score(self, records: pd.DataFrame) -> pd.DataFrame:
        """
        Rescale criteria, score, flag and rank raw records.

        Args:
            records: Output of build_records.

        Returns:
            Group-level prioritization table sorted by contrast then rank.
        """
        table = add_scaled_criteria(records, self.config.use_adjusted_pval)
        scaled = table[[f"scaled_{c}" for c in CRITERIA]].set_axis(list(CRITERIA), axis=1)
        table["prioritization_score"] = weighted_mean(scaled, self.weights).to_numpy()

        table["fraction_flag"] = (
            table["fraction_expressing_ligand_receptor"] < self.config.min_sample_prop
        )

        # ties keep input order: rank "first" within each contrast
        table["prioritization_rank"] = (
            table.groupby("contrast", sort=False)["prioritization_score"]
            .rank(method="first", ascending=False, na_option="bottom")
        )
        table["prioritization_rank"] = table["prioritization_rank"].astype("Int64")

        table = add_interaction_id(table)
        table["top_group"] = self._top_group(table)

        contrast_order = {c: i for i, c in enumerate(dict.fromkeys(table["contrast"]))}
        table = (
            table.assign(_order=table["contrast"].map(contrast_order))
            .sort_values(["_order", "prioritization_rank"], kind="mergesort")
            .drop(columns="_order")
            .reset_index(drop=True)
        )
        lead = ["id", "contrast", "group", "sender", "receiver", "ligand", "receptor",
                "prioritization_score", "prioritization_rank", "top_group", "fraction_flag"]
        return table[lead + [c for c in table.columns if c not in lead]]

    @staticmethod
    def _top_group(table: pd.DataFrame) -> pd.Series:
        """Group with the highest score of each interaction."""
        scored = table.loc[table["prioritization_score"].notna()]
        best = (
            scored.sort_values("prioritization_score", ascending=False, kind="mergesort")
            .drop_duplicates(KEY_COLUMNS)
            .set_index(KEY_COLUMNS)["group"]
        )
        keys = pd.MultiIndex.from_frame(table[KEY_COLUMNS])
        return pd.Series(best.reindex(keys).to_numpy(), index=table.index)

    def group_table(
        self,
        lr_de: pd.DataFrame,
        sr: SenderReceiverInfo,
        info: AbundanceExpressionInfo,
        activity: Optional[ActivityResult] = None,
    ) -> pd.DataFrame:
        """build_records followed by score."""
        return self.score(self.build_records(lr_de, sr, info, activity))

    def sample_table(self, group_table: pd.DataFrame, sr: SenderReceiverInfo) -> pd.DataFrame:
        """
        Per-sample ligand-receptor pseudobulk products with inherited scores.

        The product is z-scored across the kept samples of each interaction;
        scores, ranks and activities come from the group-level record of
        the sample's group.

        Args:
            group_table: Output of score / group_table.
            sr: Sender-receiver expression records.

        Returns:
            One row per (sample, contrast, interaction); samples of groups
            without a contrast carry NA scores.
        """
        sample = sr.sample_level[
            ["sample", "group"] + KEY_COLUMNS
            + ["ligand_receptor_pb_prod", "keep_sender", "keep_receiver"]
        ].copy()
        kept = (sample["keep_sender"] == 1) & (sample["keep_receiver"] == 1)
        values = sample["ligand_receptor_pb_prod"].where(kept)
        grouped = values.groupby([sample[c] for c in KEY_COLUMNS], sort=False)
        mean = grouped.transform("mean")
        sd = grouped.transform("std")
        sample["scaled_ligand_receptor_pb_prod"] = np.where(
            sd > 0, (values - mean) / sd.where(sd > 0), np.where(values.notna(), 0.0, np.nan)
        )
        sample = add_interaction_id(sample)

        inherited = group_table[
            ["contrast", "group"] + KEY_COLUMNS
            + ["prioritization_score", "prioritization_rank", "top_group", "fraction_flag",
               "activity_up", "activity_down"]
        ]
        out = sample.merge(inherited, on=["group"] + KEY_COLUMNS, how="left")
        return (
            out.sort_values(["id", "sample"], kind="mergesort")
            .reset_index(drop=True)
        )

    def prioritize(
        self,
        lr_de: pd.DataFrame,
        sr: SenderReceiverInfo,
        info: AbundanceExpressionInfo,
        activity: Optional[ActivityResult] = None,
    ) -> PrioritizationResult:
        """
        Build the group-level and sample-level tables.

        Returns:
            PrioritizationResult.
        """
        group = self.group_table(lr_de, sr, info, activity)
        sample = self.sample_table(group, sr)

        n_na = int(group["prioritization_score"].isna().sum())
        n_flagged = int(group["fraction_flag"].sum())
        if n_na:
            logger.warning("%d records have no scorable criterion", n_na)
        logger.info(
            "Prioritized %d records over %d contrasts (%d flagged for low co-expression)",
            len(group), group["contrast"].nunique(), n_flagged,
        )

        if self.config.top_n_output is not None:
            group = self.top_n(group, self.config.top_n_output)

        return PrioritizationResult(
            group_table=group,
            sample_table=sample,
            weights=dict(self.weights),
            diagnostics={"n_records": len(group), "n_unscored": n_na, "n_flagged": n_flagged},
        )

    @staticmethod
    def top_n(
        table: pd.DataFrame,
        n: int = 50,
        groups: Optional[list[str]] = None,
        senders: Optional[list[str]] = None,
        receivers: Optional[list[str]] = None,
        exclude_flagged: bool = False,
    ) -> pd.DataFrame:
        """
        Top n records per group, optionally restricted to cell types.

        Args:
            table: Group-level table.
            n: Records kept per group.
            groups: Groups to keep (None = all).
            senders: Sender cell types to keep.
            receivers: Receiver cell types to keep.
            exclude_flagged: Drop records flagged for low co-expression first.

        Returns:
            Filtered table in rank order.
        """
        mask = pd.Series(True, index=table.index)
        if groups is not None:
            mask &= table["group"].isin(groups)
        if senders is not None:
            mask &= table["sender"].isin(senders)
        if receivers is not None:
            mask &= table["receiver"].isin(receivers)
        if exclude_flagged:
            mask &= ~table["fraction_flag"].astype(bool)
        sub = table.loc[mask & table["prioritization_score"].notna()]
        return (
            sub.sort_values(["group", "prioritization_score"], ascending=[True, False],
                            kind="mergesort")
            .groupby("group", sort=False)
            .head(n)
            .reset_index(drop=True)
        )


def group_comparison(table: pd.DataFrame) -> pd.DataFrame:
    """
    One row per interaction with one prioritization_score column per group.

    Args:
        table: Group-level table.

    Returns:
        DataFrame indexed by id plus KEY_COLUMNS, columns are groups.
    """
    if table.empty:
        return pd.DataFrame()
    wide = (
        table.groupby(["id"] + KEY_COLUMNS + ["group"], sort=True)["prioritization_score"]
        .max()
        .unstack("group")
    )
    wide.columns.name = None
    return wide.reset_index()
