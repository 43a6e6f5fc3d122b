"""Tests for multi-criterion prioritization."""

import pytest
import numpy as np
import pandas as pd


def _run(cells, priors, config, engine):
    from multiniche_pipeline import MultiNichePipeline

    return MultiNichePipeline(config, priors, engine=engine).run(cells, correlation=False)


class TestScaling:
    """Test rescaling helpers."""

    def test_ecdf_scale(self):
        from multiniche_pipeline.prioritization import ecdf_scale

        scaled = ecdf_scale(pd.Series([3.0, 1.0, np.nan, 3.0]))
        assert scaled.iloc[0] == 1.0
        assert scaled.iloc[1] == pytest.approx(1 / 3)
        assert np.isnan(scaled.iloc[2])
        assert scaled.iloc[3] == 1.0

    def test_ecdf_bounds(self):
        from multiniche_pipeline.prioritization import ecdf_scale

        np.random.seed(42)
        scaled = ecdf_scale(pd.Series(np.random.randn(100)))
        assert scaled.max() == 1.0
        assert (scaled > 0).all()
        assert (scaled <= 1).all()

    def test_ecdf_all_missing(self):
        from multiniche_pipeline.prioritization import ecdf_scale

        assert ecdf_scale(pd.Series([np.nan, np.nan])).isna().all()

    def test_grouped_ecdf(self):
        from multiniche_pipeline.prioritization import grouped_ecdf

        df = pd.DataFrame({"g": ["a", "a", "b", "b"], "x": [1.0, 2.0, 10.0, 5.0]})
        assert grouped_ecdf(df, "x", ["g"]).tolist() == [0.5, 1.0, 1.0, 0.5]

    def test_signed_log_pval(self):
        from multiniche_pipeline.prioritization import signed_log_pval

        out = signed_log_pval(pd.Series([0.01, 0.01, 0.0]), pd.Series([1.0, -1.0, 1.0]))
        assert out.tolist() == pytest.approx([2.0, -2.0, 300.0])

    def test_row_zscore(self):
        from multiniche_pipeline.prioritization import row_zscore

        table = pd.DataFrame(
            {"A": [1.0, 5.0, 2.0], "B": [3.0, 5.0, np.nan]}, index=["up", "flat", "single"]
        )
        z = row_zscore(table)
        assert z.loc["up"].tolist() == pytest.approx([-np.sqrt(0.5), np.sqrt(0.5)])
        assert z.loc["flat"].tolist() == [0.0, 0.0]
        assert z.loc["single", "A"] == 0.0
        assert np.isnan(z.loc["single", "B"])

    def test_weighted_mean_renormalizes(self):
        from multiniche_pipeline.prioritization import weighted_mean

        scores = pd.DataFrame({"a": [1.0, 0.5, np.nan], "b": [np.nan, 1.0, np.nan]})
        out = weighted_mean(scores, {"a": 1.0, "b": 3.0})
        assert out.iloc[0] == pytest.approx(1.0)
        assert out.iloc[1] == pytest.approx((0.5 + 3.0) / 4)
        assert np.isnan(out.iloc[2])

    def test_weighted_mean_ignores_zero_weights(self):
        from multiniche_pipeline.prioritization import weighted_mean

        scores = pd.DataFrame({"a": [0.2, 0.8], "b": [0.9, np.nan]})
        changed = scores.assign(b=[0.1, 0.3])
        weights = {"a": 1.0, "b": 0.0}
        pd.testing.assert_series_equal(
            weighted_mean(scores, weights), weighted_mean(changed, weights)
        )


class TestPrioritizationEngine:
    """Test PrioritizationEngine on pipeline output."""

    def test_group_table_layout(self, pipeline_result):
        table = pipeline_result.prioritization.group_table
        assert list(table.columns[:11]) == [
            "id", "contrast", "group", "sender", "receiver", "ligand", "receptor",
            "prioritization_score", "prioritization_rank", "top_group", "fraction_flag",
        ]
        # 2 pairs x 2 senders x 2 receivers per contrast
        assert len(table) == 16
        assert str(table["prioritization_rank"].dtype) == "Int64"
        assert table["prioritization_score"].between(0, 1).all()

    def test_ranks_unique_within_contrast(self, pipeline_result):
        table = pipeline_result.prioritization.group_table
        for _, sub in table.groupby("contrast"):
            assert sorted(sub["prioritization_rank"].tolist()) == list(range(1, len(sub) + 1))

    def test_table_sorted_by_rank(self, pipeline_result):
        table = pipeline_result.prioritization.group_table
        assert table["contrast"].iloc[0] == "Treated-Control"
        first = table.loc[table["contrast"] == "Treated-Control", "prioritization_score"]
        assert first.is_monotonic_decreasing

    def test_de_ranks_pair_above_flat_pair(self, cells, prior_factory, config_factory, engine_factory):
        # no ligand-target edges: activity stays missing, DE and expression decide
        result = _run(cells, prior_factory(with_targets=False), config_factory(), engine_factory())
        table = result.prioritization.group_table
        assert table["activity_up"].isna().all()

        sub = table.loc[table["contrast"] == "Treated-Control"]
        for (sender, receiver), pair in sub.groupby(["sender", "receiver"]):
            ranks = pair.set_index("ligand")["prioritization_rank"]
            assert ranks["L1"] < ranks["L2"]

    def test_de_weights_alone(self, cells, prior_factory, config_factory, engine_factory):
        config = config_factory(weights={"de_ligand": 1.0, "de_receptor": 1.0})
        result = _run(cells, prior_factory(with_targets=False), config, engine_factory())
        table = result.prioritization.group_table
        sub = table.loc[table["contrast"] == "Treated-Control"]
        top = sub.loc[sub["prioritization_rank"] <= 4]
        assert set(top["ligand"]) == {"L1"}
        assert (top["prioritization_score"] == 1.0).all()

    def test_deterministic(self, pipeline_result, config):
        from multiniche_pipeline.prioritization import PrioritizationEngine

        r = pipeline_result
        engine = PrioritizationEngine(config.prioritization, r.de.contrast_table)
        records = engine.build_records(r.lr_de, r.sender_receiver, r.abundance, r.activity)
        pd.testing.assert_frame_equal(engine.score(records), engine.score(records))
        pd.testing.assert_frame_equal(engine.score(records), r.prioritization.group_table)

    def test_zero_weight_criterion_has_no_effect(self, pipeline_result, config):
        from multiniche_pipeline.prioritization import PrioritizationEngine

        r = pipeline_result
        assert config.prioritization.weights["abund_sender"] == 0.0
        engine = PrioritizationEngine(config.prioritization, r.de.contrast_table)
        records = engine.build_records(r.lr_de, r.sender_receiver, r.abundance, r.activity)

        np.random.seed(42)
        changed = records.assign(
            rel_abundance_sender=np.random.uniform(0.001, 1.0, len(records))
        )
        pd.testing.assert_series_equal(
            engine.score(records)["prioritization_score"],
            engine.score(changed)["prioritization_score"],
        )

    def test_shared_id_across_groups(self, pipeline_result):
        from multiniche_pipeline.prioritization import group_comparison

        table = pipeline_result.prioritization.group_table
        ids = table.groupby("id")["group"].nunique()
        assert (ids == 2).all()

        wide = group_comparison(table)
        assert {"Treated", "Control"} <= set(wide.columns)
        assert len(wide) == 8

        for _, sub in table.groupby("id"):
            assert sub["top_group"].nunique() == 1
            best = sub.loc[sub["prioritization_score"].idxmax(), "group"]
            assert sub["top_group"].iloc[0] == best

        l1 = table.loc[table["ligand"] == "L1"]
        assert (l1["top_group"] == "Treated").all()

    def test_activity_criteria_joined(self, pipeline_result):
        table = pipeline_result.prioritization.group_table
        row = table.loc[
            (table["contrast"] == "Treated-Control") & (table["ligand"] == "L1")
            & (table["receiver"] == "Receiver")
        ].iloc[0]
        assert row["activity_up"] > 0
        assert row["scaled_activity_up"] == 1.0

    def test_fraction_flag_keeps_records(self, cells, priors, config_factory, engine_factory):
        config = config_factory(fraction_cutoff=1.01)
        result = _run(cells, priors, config, engine_factory())
        table = result.prioritization.group_table
        assert len(table) == 16
        assert table["fraction_flag"].all()
        assert (table["fraction_expressing_ligand_receptor"] == 0).all()

    def test_coexpression_fraction(self, pipeline_result):
        table = pipeline_result.prioritization.group_table
        assert (table["fraction_expressing_ligand_receptor"] == 1.0).all()
        assert not table["fraction_flag"].any()

    def test_top_n(self, pipeline_result):
        from multiniche_pipeline.prioritization import PrioritizationEngine

        table = pipeline_result.prioritization.group_table
        top = PrioritizationEngine.top_n(table, n=2)
        assert len(top) == 4
        assert set(top["group"]) == {"Treated", "Control"}

        only = PrioritizationEngine.top_n(table, n=10, groups=["Treated"], receivers=["Receiver"])
        assert set(only["group"]) == {"Treated"}
        assert set(only["receiver"]) == {"Receiver"}

    def test_top_n_output(self, cells, priors, config_factory, engine_factory):
        config = config_factory(top_n_output=3)
        result = _run(cells, priors, config, engine_factory())
        assert len(result.prioritization.group_table) == 6


class TestExcludedCellType:
    """Records of cell types without DE results."""

    @pytest.fixture
    def result(self, cell_factory, priors, config_factory, engine_factory):
        cells = cell_factory({
            "Sender": ["T1", "T2", "T3", "C1", "C2", "C3"],
            "Rare": ["T1", "T2", "T3", "C1"],
        })
        config = config_factory(weights={"de_ligand": 1.0})
        return _run(cells, priors, config, engine_factory())

    def test_records_kept_without_de(self, result):
        assert "Rare" in result.de.diagnostics["excluded_celltypes"]
        table = result.prioritization.group_table
        rare = table.loc[table["sender"] == "Rare"]
        assert len(rare) > 0
        assert rare["lfc_ligand"].isna().all()
        assert rare["scaled_de_ligand"].isna().all()

    def test_missing_scores_rank_last(self, result):
        table = result.prioritization.group_table
        for _, sub in table.groupby("contrast"):
            missing = sub["prioritization_score"].isna()
            assert missing.any() and (~missing).any()
            assert sub.loc[~missing, "prioritization_rank"].max() < sub.loc[missing, "prioritization_rank"].min()

    def test_unscored_in_diagnostics(self, result):
        assert result.prioritization.diagnostics["n_unscored"] == 8


class TestSampleTable:
    """Test the sample-level table."""

    def test_inherits_group_scores(self, pipeline_result):
        group = pipeline_result.prioritization.group_table
        sample = pipeline_result.prioritization.sample_table

        row = sample.loc[
            (sample["sample"] == "T1") & (sample["id"] == "L1_R1_Sender_Receiver")
        ]
        assert len(row) == 1
        expected = group.loc[
            (group["group"] == "Treated") & (group["id"] == "L1_R1_Sender_Receiver"),
            "prioritization_score",
        ].iloc[0]
        assert row["prioritization_score"].iloc[0] == pytest.approx(expected)
        assert row["contrast"].iloc[0] == "Treated-Control"

    def test_scaled_product(self, pipeline_result):
        sample = pipeline_result.prioritization.sample_table
        per_id = sample.groupby("id")["scaled_ligand_receptor_pb_prod"]
        np.testing.assert_allclose(per_id.mean().to_numpy(), 0.0, atol=1e-9)
        np.testing.assert_allclose(per_id.std().to_numpy(), 1.0)

        l1 = sample.loc[sample["id"] == "L1_R1_Sender_Receiver"]
        treated = l1.loc[l1["group"] == "Treated", "scaled_ligand_receptor_pb_prod"]
        control = l1.loc[l1["group"] == "Control", "scaled_ligand_receptor_pb_prod"]
        assert treated.min() > control.max()
