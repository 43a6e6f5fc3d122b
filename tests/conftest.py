"""Pytest configuration and fixtures."""

import pytest
import numpy as np
import pandas as pd
from pathlib import Path
import tempfile


SAMPLE_GROUPS = {
    "T1": "Treated", "T2": "Treated", "T3": "Treated",
    "C1": "Control", "C2": "Control", "C3": "Control",
}
LIGANDS = ["L1", "L2"]
RECEPTORS = ["R1", "R2"]
TARGETS = [f"TG{i}" for i in range(1, 7)]
BACKGROUND = [f"G{i}" for i in range(1, 25)]
GENES = LIGANDS + RECEPTORS + TARGETS + BACKGROUND

CONTRASTS = "'Treated-Control','Control-Treated'"
CONTRAST_GROUPS = {"Treated-Control": "Treated", "Control-Treated": "Control"}

# Mean count per cell; genes not listed have mean 3
TREATED_MEANS = {"L1": 8.0, "R1": 8.0, "TG1": 8.0, "TG2": 8.0, "TG5": 1.0}
CONTROL_MEANS = {"L1": 2.0, "R1": 2.0, "TG1": 2.0, "TG2": 2.0, "TG5": 6.0}

# gene -> (logFC of Treated vs Control, p-value) returned by the stub engine
STUB_STATS = {
    "L1": (2.0, 1e-4),
    "R1": (1.5, 1e-3),
    "L2": (0.1, 0.6),
    "R2": (-0.1, 0.7),
    "TG1": (1.8, 1e-4),
    "TG2": (1.2, 1e-3),
    "TG5": (-1.5, 1e-3),
}


def make_cells(celltype_samples=None, n_cells=20, seed=42, cell_counts=None):
    """Synthetic CellData.

    Args:
        celltype_samples: celltype -> samples it occurs in (default: Sender and
            Receiver in every sample).
        n_cells: Cells per (celltype, sample).
        seed: Random seed.
        cell_counts: Optional (celltype, sample) -> number of cells overrides.
    """
    from multiniche_pipeline.ingest import CellData

    if celltype_samples is None:
        celltype_samples = {
            "Sender": list(SAMPLE_GROUPS),
            "Receiver": list(SAMPLE_GROUPS),
        }
    cell_counts = cell_counts or {}

    np.random.seed(seed)
    blocks = []
    obs = []
    for celltype, samples in celltype_samples.items():
        for sample in samples:
            group = SAMPLE_GROUPS[sample]
            means = TREATED_MEANS if group == "Treated" else CONTROL_MEANS
            mu = np.array([means.get(g, 3.0) for g in GENES])
            n = cell_counts.get((celltype, sample), n_cells)
            blocks.append(np.random.poisson(mu, size=(n, len(GENES))))
            obs.extend([(sample, group, celltype)] * n)

    counts = np.vstack(blocks)
    index = [f"cell_{i}" for i in range(len(counts))]
    obs = pd.DataFrame(obs, columns=["sample_id", "group_id", "celltype_id"], index=index)
    return CellData.from_dataframe(pd.DataFrame(counts, index=index, columns=GENES), obs)


def make_priors(with_targets=True):
    """Two ligand-receptor pairs; L1 targets TG1-TG4, L2 targets TG5, TG6 and G1."""
    from multiniche_pipeline.ingest import PriorNetworks

    lr = pd.DataFrame({"ligand": LIGANDS, "receptor": RECEPTORS})
    ltm = pd.DataFrame(0.0, index=GENES, columns=LIGANDS)
    if with_targets:
        ltm.loc[["TG1", "TG2", "TG3", "TG4"], "L1"] = [0.9, 0.8, 0.7, 0.1]
        ltm.loc[["TG5", "TG6", "G1"], "L2"] = [0.9, 0.5, 0.3]
    return PriorNetworks(lr_network=lr, ligand_target_matrix=ltm)


class StubEngine:
    """DE engine returning STUB_STATS for every cell type.

    The sign of each contrast follows the coefficient of Treated.
    """

    def __init__(self, stats=None, default=(0.05, 0.8)):
        self.stats = STUB_STATS if stats is None else stats
        self.default = default
        self.calls = 0

    def __call__(self, counts, design, contrasts):
        self.calls += 1
        rows = []
        for contrast in contrasts.columns:
            sign = contrasts.loc["Treated", contrast] if "Treated" in contrasts.index else 1.0
            for gene in counts.index:
                lfc, p = self.stats.get(gene, self.default)
                rows.append({
                    "gene": gene,
                    "contrast": contrast,
                    "logFC": lfc * sign,
                    "logCPM": 5.0,
                    "p_val": p,
                })
        return pd.DataFrame(rows)


def make_config(**prioritization):
    from multiniche_pipeline.core.config import (
        AbundanceConfig,
        Config,
        DEConfig,
        PrioritizationConfig,
    )

    return Config(
        abundance=AbundanceConfig(min_cells=10),
        de=DEConfig(contrasts=CONTRASTS, contrast_groups=dict(CONTRAST_GROUPS)),
        prioritization=PrioritizationConfig(**prioritization),
    )


@pytest.fixture
def cells():
    """Sender and Receiver cells in three Treated and three Control samples."""
    return make_cells()


@pytest.fixture
def priors():
    """Prior networks with ligand-target edges."""
    return make_priors()


@pytest.fixture
def stub_engine():
    """DE engine with fixed statistics."""
    return StubEngine()


@pytest.fixture
def config():
    """Configuration with both Treated/Control contrasts."""
    return make_config()


@pytest.fixture
def aggregated(cells, config):
    """Aggregated pseudobulk of the synthetic cells."""
    from multiniche_pipeline.aggregation import AbundanceAggregator

    return AbundanceAggregator(config.columns, config.abundance).aggregate(cells)


@pytest.fixture
def de_result(aggregated, config, stub_engine):
    """DE result from the stub engine."""
    from multiniche_pipeline.differential import DifferentialExpressionRunner

    runner = DifferentialExpressionRunner(config.columns, config.de, engine=stub_engine)
    return runner.run(aggregated)


@pytest.fixture
def pipeline_result(cells, priors, config, stub_engine):
    """Full pipeline run with the stub engine."""
    from multiniche_pipeline import MultiNichePipeline

    return MultiNichePipeline(config, priors, engine=stub_engine).run(cells)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_h5ad(temp_dir):
    """Write the synthetic cells to an H5AD file."""
    try:
        import anndata as ad

        data = make_cells()
        adata = ad.AnnData(
            X=np.asarray(data.X, dtype=np.float32),
            obs=data.obs,
            var=pd.DataFrame(index=data.var_names),
        )
        path = temp_dir / "test.h5ad"
        adata.write_h5ad(path)
        return path
    except ImportError:
        pytest.skip("anndata not installed")


@pytest.fixture
def cell_factory():
    """make_cells, for tests that need a custom layout."""
    return make_cells


@pytest.fixture
def prior_factory():
    """make_priors, for tests that need priors without target edges."""
    return make_priors


@pytest.fixture
def config_factory():
    """make_config, for tests that need custom prioritization settings."""
    return make_config


@pytest.fixture
def engine_factory():
    """StubEngine class, for tests that need custom statistics."""
    return StubEngine
