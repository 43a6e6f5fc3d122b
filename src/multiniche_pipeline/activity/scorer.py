"""
Ligand activity scoring.

For each receiver, contrast and regulation direction, scores every candidate
ligand by how well its top prior targets recover the receiver's DE genes.
Receivers are processed in parallel worker threads.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import pandas as pd

from multiniche_pipeline.activity.enrichment import ligand_activities, zscore
from multiniche_pipeline.activity.geneset import background_genes, select_de_genes
from multiniche_pipeline.aggregation.base import AbundanceExpressionInfo
from multiniche_pipeline.core.config import ActivityConfig
from multiniche_pipeline.ingest.priors import PriorNetworks

logger = logging.getLogger(__name__)

DIRECTIONS = ("up", "down")

ACTIVITY_COLUMNS = [
    "ligand", "contrast", "receiver", "direction_regulation",
    "activity", "activity_scaled", "aupr", "aupr_corrected", "pearson",
]

LINK_COLUMNS = [
    "ligand", "contrast", "receiver", "direction_regulation", "target",
    "ligand_target_weight", "target_rank", "activity", "activity_scaled",
]


@dataclass
class ActivityResult:
    """Ligand activities and their supporting DE targets."""

    activities: pd.DataFrame
    """One row per (ligand, contrast, receiver, direction_regulation)."""

    ligand_activities: pd.DataFrame
    """One row per DE target of each scored ligand (target NA if none)."""

    de_genes: pd.DataFrame
    """DE gene sets used for scoring."""

    diagnostics: dict[str, Any] = field(default_factory=dict)

    def scaled(self, direction: str) -> pd.DataFrame:
        """activity_scaled of one direction keyed by (ligand, receiver, contrast)."""
        sub = self.activities.loc[self.activities["direction_regulation"] == direction]
        return sub[["ligand", "receiver", "contrast", "activity_scaled"]].reset_index(drop=True)


class LigandActivityScorer:
    """
    Target-enrichment ligand activity.

    Each candidate ligand keeps only its top ``top_n_target`` prior targets;
    activity is the AUROC of those weights against DE-set membership over
    the receiver's expressed genes. Activities are z-scaled across ligands
    within each receiver / contrast / direction.

    Example:
        >>> scorer = LigandActivityScorer(priors, ActivityConfig(top_n_target=250))
        >>> result = scorer.score(de_result.table, info)
        >>> result.activities.sort_values("activity_scaled", ascending=False)
    """

    def __init__(
        self,
        priors: PriorNetworks,
        config: Optional[ActivityConfig] = None,
        ligands: Optional[list[str]] = None,
    ):
        """
        Initialize the scorer.

        Args:
            priors: Prior networks.
            config: Activity thresholds.
            ligands: Candidate ligands (None = every ligand of the LR network).
        """
        self.priors = priors
        self.config = config or ActivityConfig()
        self.ligands = ligands

    def candidate_ligands(self) -> tuple[list[str], list[str]]:
        """Split candidate ligands into (with prior targets, without)."""
        wanted = self.ligands if self.ligands is not None else self.priors.ligands
        with_targets = set(self.priors.target_ligands)
        scored = [lig for lig in dict.fromkeys(wanted) if lig in with_targets]
        missing = [lig for lig in dict.fromkeys(wanted) if lig not in with_targets]
        return scored, missing

    def truncated_prior(self, ligands: list[str]) -> pd.DataFrame:
        """Ligand-target matrix with weights outside each ligand's top-N set to 0."""
        ltm = self.priors.ligand_target_matrix
        out = pd.DataFrame(0.0, index=ltm.index, columns=ligands)
        for ligand in ligands:
            top = self.priors.top_targets(ligand, self.config.top_n_target)
            out.loc[top.index, ligand] = top.to_numpy()
        return out

    def de_genes(
        self,
        de_table: pd.DataFrame,
        info: AbundanceExpressionInfo,
        receivers: Optional[list[str]] = None,
    ) -> pd.DataFrame:
        """DE gene sets per receiver and contrast."""
        return select_de_genes(de_table, info, self.config, receivers)

    def score(
        self,
        de_table: pd.DataFrame,
        info: AbundanceExpressionInfo,
        receivers: Optional[list[str]] = None,
        contrasts: Optional[list[str]] = None,
    ) -> ActivityResult:
        """
        Score ligand activities.

        Args:
            de_table: Long DE table (gene, celltype, contrast, logFC, p_val, p_adj).
            info: Aggregated expression.
            receivers: Receiver cell types (None = all modeled cell types).
            contrasts: Contrasts (None = all in the DE table).

        Returns:
            ActivityResult.
        """
        if receivers is None:
            receivers = sorted(de_table["celltype"].unique())
        if contrasts is None:
            contrasts = list(dict.fromkeys(de_table["contrast"]))

        de_genes = self.de_genes(de_table, info, receivers)
        ligands, without_targets = self.candidate_ligands()
        if without_targets:
            logger.warning(
                "%d ligands have no prior targets and are not scored", len(without_targets)
            )
        prior = self.truncated_prior(ligands)
        top_table = self.priors.top_target_table(ligands, self.config.top_n_target)

        diagnostics: dict[str, Any] = {
            "ligands_without_targets": without_targets,
            "empty_genesets": [],
            "constant_ligands": {},
            "failed_receivers": {},
        }

        results: dict[str, tuple[pd.DataFrame, list, dict]] = {}
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, self.config.n_workers)
        ) as executor:
            futures = {
                executor.submit(
                    self._score_receiver, receiver, contrasts, info, de_genes, prior
                ): receiver
                for receiver in receivers
            }
            for future in concurrent.futures.as_completed(futures):
                receiver = futures[future]
                try:
                    results[receiver] = future.result()
                except Exception as e:
                    diagnostics["failed_receivers"][receiver] = str(e)
                    logger.warning("Activity scoring failed for %s: %s", receiver, e)

        frames = []
        for receiver in receivers:
            if receiver not in results:
                continue
            table, empty, constant = results[receiver]
            frames.append(table)
            diagnostics["empty_genesets"].extend(empty)
            if constant:
                diagnostics["constant_ligands"][receiver] = constant

        activities = (
            pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
        ).reindex(columns=ACTIVITY_COLUMNS)
        for receiver_contrast in diagnostics["empty_genesets"]:
            logger.warning("No DE genes for receiver %s, contrast %s, direction %s",
                           *receiver_contrast)

        links = self.ligand_target_links(activities, de_genes, top_table)
        logger.info(
            "Scored %d ligands: %d activity rows, %d target links",
            len(ligands), len(activities), len(links),
        )
        return ActivityResult(
            activities=activities,
            ligand_activities=links,
            de_genes=de_genes,
            diagnostics=diagnostics,
        )

    def _score_receiver(
        self,
        receiver: str,
        contrasts: list[str],
        info: AbundanceExpressionInfo,
        de_genes: pd.DataFrame,
        prior: pd.DataFrame,
    ) -> tuple[pd.DataFrame, list, dict]:
        background = background_genes(info, receiver, de_genes)
        prior_bg = prior.reindex(index=background, fill_value=0.0)
        receiver_de = de_genes.loc[de_genes["receiver"] == receiver]

        frames = []
        empty = []
        constant: dict[str, int] = {}
        for contrast in contrasts:
            for direction in DIRECTIONS:
                geneset = set(receiver_de.loc[
                    (receiver_de["contrast"] == contrast)
                    & (receiver_de["direction_regulation"] == direction),
                    "gene",
                ])
                if not geneset:
                    empty.append((receiver, contrast, direction))
                    continue
                scored = ligand_activities(prior_bg, geneset)
                n_constant = prior_bg.shape[1] - len(scored)
                if n_constant:
                    constant[f"{contrast}|{direction}"] = n_constant
                if scored.empty:
                    continue
                scored["activity_scaled"] = zscore(scored["activity"]).to_numpy()
                scored.insert(1, "contrast", contrast)
                scored.insert(2, "receiver", receiver)
                scored.insert(3, "direction_regulation", direction)
                frames.append(scored)

        table = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
        return table.reindex(columns=ACTIVITY_COLUMNS), empty, constant

    @staticmethod
    def ligand_target_links(
        activities: pd.DataFrame,
        de_genes: pd.DataFrame,
        top_table: pd.DataFrame,
    ) -> pd.DataFrame:
        """
        DE targets among each scored ligand's top prior targets.

        Ligands without any DE target keep one row with target NA.
        """
        if activities.empty:
            return pd.DataFrame(columns=LINK_COLUMNS)

        de = de_genes[["gene", "receiver", "contrast", "direction_regulation"]].rename(
            columns={"gene": "target"}
        )
        targets = (
            activities[["ligand", "contrast", "receiver", "direction_regulation"]]
            .merge(top_table, on="ligand")
            .merge(de, on=["target", "receiver", "contrast", "direction_regulation"])
        )
        links = activities[
            ["ligand", "contrast", "receiver", "direction_regulation", "activity", "activity_scaled"]
        ].merge(
            targets,
            on=["ligand", "contrast", "receiver", "direction_regulation"],
            how="left",
        )
        return (
            links[LINK_COLUMNS]
            .sort_values(
                ["receiver", "contrast", "direction_regulation", "ligand", "target_rank"],
                kind="mergesort",
                na_position="last",
            )
            .reset_index(drop=True)
        )


def score_ligand_activity(
    de_table: pd.DataFrame,
    info: AbundanceExpressionInfo,
    priors: PriorNetworks,
    **kwargs,
) -> ActivityResult:
    """
    Convenience function for LigandActivityScorer.

    Args:
        de_table: Long DE table.
        info: Aggregated expression.
        priors: Prior networks.
        **kwargs: ActivityConfig fields.

    Returns:
        ActivityResult.
    """
    return LigandActivityScorer(priors, ActivityConfig(**kwargs)).score(de_table, info)
