"""End-to-end tests for the pipeline and CSV export."""

import pytest
import pandas as pd


class TestMultiNichePipeline:
    """Test MultiNichePipeline."""

    def test_requires_priors(self, config):
        from multiniche_pipeline import MultiNichePipeline

        with pytest.raises(ValueError):
            MultiNichePipeline(config)

    def test_all_stages(self, pipeline_result):
        r = pipeline_result
        assert len(r.abundance.abundance) == 12
        assert len(r.sender_receiver.group_level) == 16
        assert not r.de.table.empty
        assert len(r.lr_de) == 16
        assert not r.activity.activities.empty
        assert len(r.prioritization.group_table) == 16
        assert r.correlation is not None and not r.correlation.table.empty
        assert set(r.diagnostics) == {
            "abundance", "sender_receiver", "de", "activity", "prioritization", "correlation",
        }
        assert r.output_paths == {}

    def test_skip_correlation(self, cells, priors, config, stub_engine):
        from multiniche_pipeline import MultiNichePipeline

        result = MultiNichePipeline(config, priors, engine=stub_engine).run(cells, correlation=False)
        assert result.correlation is None
        assert result.diagnostics["correlation"] == {}

    def test_validation_before_modeling(self, cells, priors, stub_engine):
        from multiniche_pipeline import Config, ConfigurationError, MultiNichePipeline
        from multiniche_pipeline.core.config import DEConfig

        config = Config(de=DEConfig(contrasts="'Treated-Placebo'",
                                    contrast_groups={"Treated-Placebo": "Treated"}))
        with pytest.raises(ConfigurationError):
            MultiNichePipeline(config, priors, engine=stub_engine).run(cells)
        assert stub_engine.calls == 0

    def test_missing_metadata_column(self, cells, priors, config, stub_engine):
        from multiniche_pipeline import ConfigurationError, MultiNichePipeline

        cells.obs = cells.obs.drop(columns=["group_id"])
        with pytest.raises(ConfigurationError, match="group_id"):
            MultiNichePipeline(config, priors, engine=stub_engine).run(cells)

    def test_custom_column_names(self, cells, priors, stub_engine):
        from multiniche_pipeline import create_pipeline

        cells.obs = cells.obs.rename(columns={"sample_id": "donor", "group_id": "condition"})
        pipeline = create_pipeline(
            priors,
            engine=stub_engine,
            columns={"sample_col": "donor", "group_col": "condition"},
            de={"contrasts": "'Treated-Control','Control-Treated'",
                "contrast_groups": {"Treated-Control": "Treated", "Control-Treated": "Control"}},
        )
        result = pipeline.run(cells, correlation=False)
        assert len(result.prioritization.group_table) == 16

    def test_parallel_workers_match_serial(self, cells, priors, config_factory, engine_factory):
        from multiniche_pipeline import MultiNichePipeline

        serial = MultiNichePipeline(config_factory(), priors, engine=engine_factory()).run(cells)
        config = config_factory()
        config.de.n_workers = 2
        config.activity.n_workers = 2
        parallel = MultiNichePipeline(config, priors, engine=engine_factory()).run(cells)
        pd.testing.assert_frame_equal(
            serial.prioritization.group_table, parallel.prioritization.group_table
        )


class TestCSVWriter:
    """Test CSV export."""

    def test_write_result(self, pipeline_result, temp_dir):
        from multiniche_pipeline.export import write_results_csv

        paths = write_results_csv(pipeline_result, temp_dir)
        assert set(paths) == {
            "abundance", "de_table", "ligand_activities",
            "prioritization_group", "prioritization_sample", "lr_target_correlation",
        }
        for path in paths.values():
            assert path.exists()

        group = pd.read_csv(paths["prioritization_group"])
        assert len(group) == len(pipeline_result.prioritization.group_table)
        assert group.columns[0] == "id"

    def test_pipeline_writes_when_output_dir_set(self, cells, priors, config, stub_engine, temp_dir):
        from multiniche_pipeline import MultiNichePipeline

        config.output_dir = temp_dir / "results"
        result = MultiNichePipeline(config, priors, engine=stub_engine).run(cells, correlation=False)
        assert "lr_target_correlation" not in result.output_paths
        assert (temp_dir / "results" / "de_table.csv").exists()

    def test_write_table(self, temp_dir):
        from multiniche_pipeline.export import CSVWriter

        writer = CSVWriter(temp_dir / "nested")
        path = writer.write_table(pd.DataFrame({"a": [1.0 / 3]}), "table.csv")
        assert path.read_text().splitlines() == ["a", "0.333333"]
