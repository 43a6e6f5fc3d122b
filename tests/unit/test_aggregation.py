"""Tests for pseudobulk aggregation and abundance."""

import pytest
import numpy as np
import pandas as pd


class TestNormalization:
    """Test CPM and log helpers."""

    def test_cpm_columns_sum_to_target(self):
        from multiniche_pipeline.aggregation import normalize_expression

        expr = pd.DataFrame({"a": [1.0, 3.0], "b": [0.0, 0.0]})
        cpm = normalize_expression(expr)
        assert cpm["a"].sum() == pytest.approx(1e6)
        # empty library stays zero
        assert (cpm["b"] == 0).all()

    def test_log_transform(self):
        from multiniche_pipeline.aggregation import log_transform

        assert log_transform(np.array([0.0, 1.0, 3.0])).tolist() == [0.0, 1.0, 2.0]


class TestAbundanceAggregator:
    """Test AbundanceAggregator."""

    def test_abundance_table(self, aggregated):
        abundance = aggregated.abundance
        assert list(abundance.columns) == ["sample", "group", "celltype", "n_cells", "keep"]
        assert len(abundance) == 12
        assert (abundance["n_cells"] == 20).all()
        assert (abundance["keep"] == 1).all()

    def test_counts_are_sums(self, cells, aggregated):
        assert aggregated.counts.to_numpy().sum() == pytest.approx(np.asarray(cells.X).sum())

        mask = ((cells.obs["celltype_id"] == "Sender") & (cells.obs["sample_id"] == "T1")).to_numpy()
        expected = np.asarray(cells.X)[mask].sum(axis=0)
        np.testing.assert_allclose(aggregated.counts[("Sender", "T1")].to_numpy(), expected)

    def test_fraction_and_average(self, cells, aggregated):
        mask = ((cells.obs["celltype_id"] == "Receiver") & (cells.obs["sample_id"] == "C2")).to_numpy()
        X = np.asarray(cells.X)[mask]
        np.testing.assert_allclose(
            aggregated.frq_sample[("Receiver", "C2")].to_numpy(), (X > 0).mean(axis=0)
        )
        np.testing.assert_allclose(
            aggregated.avg_sample[("Receiver", "C2")].to_numpy(), X.mean(axis=0)
        )

    def test_group_is_mean_of_kept_samples(self, aggregated):
        samples = [("Sender", s) for s in ("T1", "T2", "T3")]
        expected = aggregated.pb_sample[samples].mean(axis=1)
        np.testing.assert_allclose(
            aggregated.pb_group[("Sender", "Treated")].to_numpy(), expected.to_numpy()
        )

    def test_pseudobulk_is_log_cpm(self, aggregated):
        counts = aggregated.counts[("Receiver", "T1")]
        expected = np.log2(counts / counts.sum() * 1e6 + 1)
        np.testing.assert_allclose(aggregated.pb_sample[("Receiver", "T1")], expected)

    def test_small_pairs_not_kept(self, cell_factory, config):
        from multiniche_pipeline.aggregation import AbundanceAggregator

        cells = cell_factory(cell_counts={("Receiver", "C3"): 5})
        info = AbundanceAggregator(config.columns, config.abundance).aggregate(cells)

        row = info.abundance.set_index(["celltype", "sample"]).loc[("Receiver", "C3")]
        assert row["n_cells"] == 5
        assert row["keep"] == 0
        assert ("Receiver", "C3") not in set(map(tuple, info.kept()[["celltype", "sample"]].to_numpy()))

        # the group summary only uses kept samples
        expected = info.pb_sample[[("Receiver", "C1"), ("Receiver", "C2")]].mean(axis=1)
        np.testing.assert_allclose(info.pb_group[("Receiver", "Control")], expected)
        assert list(info.counts_for("Receiver").columns) == ["C1", "C2", "T1", "T2", "T3"]

    def test_min_cells_monotone(self, cell_factory):
        from multiniche_pipeline.aggregation import AbundanceAggregator
        from multiniche_pipeline.core.config import AbundanceConfig, ColumnSchema

        cells = cell_factory(cell_counts={("Receiver", "C3"): 5, ("Sender", "T2"): 12})
        kept = []
        for min_cells in (0, 6, 12, 15, 25):
            info = AbundanceAggregator(ColumnSchema(), AbundanceConfig(min_cells=min_cells)).aggregate(cells)
            kept.append(set(map(tuple, info.kept()[["celltype", "sample"]].to_numpy())))
        for looser, stricter in zip(kept, kept[1:]):
            assert stricter <= looser
        assert len(kept[-1]) == 0

    def test_expressed_genes(self, aggregated):
        genes = aggregated.expressed_genes("Sender", "Treated")
        assert "L1" in genes
        assert aggregated.expressed_genes("Unknown") == []

    def test_celltypes_of_interest(self, cells):
        from multiniche_pipeline.aggregation import AbundanceAggregator
        from multiniche_pipeline.core.config import AbundanceConfig, ColumnSchema

        config = AbundanceConfig(senders_oi=["Sender"], receivers_oi=["Sender"])
        info = AbundanceAggregator(ColumnSchema(), config).aggregate(cells)
        assert info.celltypes == ["Sender"]

    def test_to_long(self, aggregated):
        long = aggregated.to_long("group", genes=["L1", "R1"])
        assert list(long.columns) == [
            "celltype", "group", "gene", "average_group", "fraction_group", "pb_group",
        ]
        assert len(long) == 2 * 2 * 2
        row = long.loc[
            (long["celltype"] == "Sender") & (long["group"] == "Treated") & (long["gene"] == "L1")
        ].iloc[0]
        assert row["pb_group"] == pytest.approx(aggregated.pb_group.loc["L1", ("Sender", "Treated")])

        with pytest.raises(ValueError):
            aggregated.to_long("cell")

    def test_convenience_function(self, cells):
        from multiniche_pipeline.aggregation import aggregate_pseudobulk

        info = aggregate_pseudobulk(cells, min_cells=25)
        assert (info.abundance["keep"] == 0).all()


class TestRelativeAbundance:
    """Test relative cell type abundance."""

    def test_range(self, aggregated):
        rel = aggregated.rel_abundance
        assert list(rel.columns) == [
            "group", "celltype", "n_cells", "rel_abundance", "rel_abundance_scaled",
        ]
        assert len(rel) == 4
        assert rel["rel_abundance_scaled"].between(0.001, 1.0).all()

    def test_equal_share_is_one(self, aggregated):
        # every cell type has the same cells in both groups
        assert (aggregated.rel_abundance["rel_abundance_scaled"] == 1.0).all()

    def test_absent_celltype_gets_floor(self, cell_factory, config):
        from multiniche_pipeline.aggregation import AbundanceAggregator

        cells = cell_factory({
            "Sender": ["T1", "T2", "T3", "C1", "C2", "C3"],
            "Rare": ["T1", "T2", "T3"],
        })
        info = AbundanceAggregator(config.columns, config.abundance).aggregate(cells)
        rel = info.rel_abundance.set_index(["celltype", "group"])
        assert rel.loc[("Rare", "Control"), "rel_abundance_scaled"] == pytest.approx(0.001)
        assert rel.loc[("Rare", "Treated"), "rel_abundance_scaled"] == pytest.approx(1.0)
        assert rel.loc[("Rare", "Control"), "n_cells"] == 0

    def test_depleted_group_scaled_to_floor(self, cell_factory, config):
        from multiniche_pipeline.aggregation import AbundanceAggregator

        cells = cell_factory(cell_counts={("Receiver", s): 40 for s in ("T1", "T2", "T3")})
        info = AbundanceAggregator(config.columns, config.abundance).aggregate(cells)
        rel = info.rel_abundance.set_index(["celltype", "group"])
        assert rel.loc[("Receiver", "Treated"), "rel_abundance"] == pytest.approx(2 / 3)
        assert rel.loc[("Receiver", "Treated"), "rel_abundance_scaled"] == pytest.approx(1.0)
        assert rel.loc[("Receiver", "Control"), "rel_abundance_scaled"] == pytest.approx(0.001)
