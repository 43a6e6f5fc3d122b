"""Tests for ligand activity inference."""

import pytest
import numpy as np
import pandas as pd


class TestEnrichmentMetrics:
    """Test target enrichment statistics."""

    def test_perfect_separation(self):
        from multiniche_pipeline.activity import enrichment_metrics

        metrics = enrichment_metrics(
            np.array([0.9, 0.8, 0.0, 0.0]), np.array([True, True, False, False])
        )
        assert metrics["activity"] == pytest.approx(1.0)
        assert metrics["aupr"] == pytest.approx(1.0)
        assert metrics["aupr_corrected"] == pytest.approx(0.5)
        assert metrics["pearson"] > 0.9

    def test_inverse_separation(self):
        from multiniche_pipeline.activity import enrichment_metrics

        metrics = enrichment_metrics(
            np.array([0.0, 0.0, 0.9, 0.8]), np.array([True, True, False, False])
        )
        assert metrics["activity"] == pytest.approx(0.0)
        assert metrics["pearson"] < 0

    def test_constant_inputs(self):
        from multiniche_pipeline.activity import enrichment_metrics

        constant_weights = enrichment_metrics(np.zeros(4), np.array([True, False, True, False]))
        assert all(np.isnan(v) for v in constant_weights.values())

        all_de = enrichment_metrics(np.array([1.0, 0.0]), np.array([True, True]))
        assert np.isnan(all_de["activity"])

    def test_ligand_activities_skip_constant(self):
        from multiniche_pipeline.activity import ligand_activities

        prior = pd.DataFrame(
            {"A": [0.9, 0.1, 0.0, 0.0], "B": [0.0, 0.0, 0.0, 0.0]},
            index=["g1", "g2", "g3", "g4"],
        )
        table = ligand_activities(prior, {"g1", "g2"})
        assert table["ligand"].tolist() == ["A"]
        assert table.loc[0, "activity"] == pytest.approx(1.0)


class TestZScore:
    """Test activity scaling."""

    def test_zscore(self):
        from multiniche_pipeline.activity import zscore

        assert zscore(pd.Series([1.0, 2.0, 3.0])).tolist() == pytest.approx([-1.0, 0.0, 1.0])

    def test_single_and_constant(self):
        from multiniche_pipeline.activity import zscore

        assert zscore(pd.Series([0.7])).tolist() == [0.0]
        assert zscore(pd.Series([0.5, 0.5])).tolist() == [0.0, 0.0]


class TestDEGeneSets:
    """Test receiver DE gene set selection."""

    def test_up_and_down(self, de_result, aggregated):
        from multiniche_pipeline.activity import select_de_genes
        from multiniche_pipeline.core.config import ActivityConfig

        genes = select_de_genes(de_result.table, aggregated, ActivityConfig(), ["Receiver"])
        sub = genes.loc[genes["contrast"] == "Treated-Control"]
        assert set(sub.loc[sub["direction_regulation"] == "up", "gene"]) == {"L1", "R1", "TG1", "TG2"}
        assert set(sub.loc[sub["direction_regulation"] == "down", "gene"]) == {"TG5"}

        flipped = genes.loc[genes["contrast"] == "Control-Treated"]
        assert set(flipped.loc[flipped["direction_regulation"] == "down", "gene"]) == {
            "L1", "R1", "TG1", "TG2",
        }

    def test_thresholds(self, de_result, aggregated):
        from multiniche_pipeline.activity import select_de_genes
        from multiniche_pipeline.core.config import ActivityConfig

        strict = ActivityConfig(logfc_threshold=1.6, p_val_threshold=0.001)
        genes = select_de_genes(de_result.table, aggregated, strict, ["Receiver"])
        up = genes.loc[
            (genes["contrast"] == "Treated-Control") & (genes["direction_regulation"] == "up")
        ]
        assert set(up["gene"]) == {"L1", "TG1"}

    def test_unexpressed_genes_excluded(self, de_result, aggregated):
        from multiniche_pipeline.activity import select_de_genes
        from multiniche_pipeline.core.config import ActivityConfig

        genes = select_de_genes(
            de_result.table, aggregated, ActivityConfig(fraction_cutoff=1.01), ["Receiver"]
        )
        assert genes.empty

    def test_zero_threshold_leaves_flat_genes_out(self, aggregated):
        from multiniche_pipeline.activity import select_de_genes
        from multiniche_pipeline.core.config import ActivityConfig

        de_table = pd.DataFrame({
            "gene": ["L1", "R1", "TG5"],
            "celltype": "Receiver",
            "contrast": "Treated-Control",
            "logFC": [0.0, 0.2, -0.2],
            "logCPM": 5.0,
            "p_val": 0.001,
            "p_adj": 0.001,
        })
        genes = select_de_genes(de_table, aggregated, ActivityConfig(logfc_threshold=0.0))
        assert genes.set_index("gene")["direction_regulation"].to_dict() == {
            "TG5": "down", "R1": "up",
        }


class TestLigandActivityScorer:
    """Test LigandActivityScorer."""

    def test_activity_ranks_true_ligand_first(self, de_result, aggregated, priors):
        from multiniche_pipeline.activity import LigandActivityScorer

        result = LigandActivityScorer(priors).score(de_result.table, aggregated)
        up = result.activities.loc[
            (result.activities["receiver"] == "Receiver")
            & (result.activities["contrast"] == "Treated-Control")
            & (result.activities["direction_regulation"] == "up")
        ].set_index("ligand")
        assert up.loc["L1", "activity"] > up.loc["L2", "activity"]
        assert up.loc["L1", "activity_scaled"] > 0
        assert up["activity_scaled"].sum() == pytest.approx(0.0, abs=1e-9)

    def test_ligand_target_links(self, de_result, aggregated, priors):
        from multiniche_pipeline.activity import LigandActivityScorer

        result = LigandActivityScorer(priors).score(de_result.table, aggregated)
        links = result.ligand_activities
        l1 = links.loc[
            (links["ligand"] == "L1") & (links["receiver"] == "Receiver")
            & (links["contrast"] == "Treated-Control") & (links["direction_regulation"] == "up")
        ]
        assert l1["target"].tolist() == ["TG1", "TG2"]
        assert l1["target_rank"].tolist() == [1, 2]

        # no DE target among L2's prior targets: one row without target
        l2 = links.loc[
            (links["ligand"] == "L2") & (links["receiver"] == "Receiver")
            & (links["contrast"] == "Treated-Control") & (links["direction_regulation"] == "up")
        ]
        assert len(l2) == 1
        assert pd.isna(l2["target"].iloc[0])

    def test_ligands_without_targets_not_scored(self, de_result, aggregated, prior_factory):
        from multiniche_pipeline.activity import LigandActivityScorer

        result = LigandActivityScorer(prior_factory(with_targets=False)).score(
            de_result.table, aggregated
        )
        assert result.activities.empty
        assert result.ligand_activities.empty
        assert result.diagnostics["ligands_without_targets"] == ["L1", "L2"]

    def test_empty_geneset(self, aggregated, priors, engine_factory, config):
        from multiniche_pipeline.activity import LigandActivityScorer
        from multiniche_pipeline.differential import DifferentialExpressionRunner

        flat = DifferentialExpressionRunner(
            config.columns, config.de, engine=engine_factory(stats={})
        ).run(aggregated)
        result = LigandActivityScorer(priors).score(flat.table, aggregated)

        assert result.activities.empty
        assert result.de_genes.empty
        # 2 receivers x 2 contrasts x 2 directions
        assert len(result.diagnostics["empty_genesets"]) == 8

    def test_top_n_truncation(self, de_result, aggregated, priors):
        from multiniche_pipeline.activity import LigandActivityScorer
        from multiniche_pipeline.core.config import ActivityConfig

        scorer = LigandActivityScorer(priors, ActivityConfig(top_n_target=1))
        prior = scorer.truncated_prior(["L1"])
        assert (prior["L1"] > 0).sum() == 1
        assert prior.loc["TG1", "L1"] == pytest.approx(0.9)

        result = scorer.score(de_result.table, aggregated)
        links = result.ligand_activities
        assert set(links["target"].dropna()) <= {"TG1", "TG5"}

    def test_convenience_function(self, de_result, aggregated, priors):
        from multiniche_pipeline.activity import score_ligand_activity

        result = score_ligand_activity(de_result.table, aggregated, priors, top_n_target=3)
        assert set(result.activities["receiver"]) == {"Receiver", "Sender"}
