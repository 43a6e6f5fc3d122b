"""
CSV output writer for tabular exports.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import pandas as pd

if TYPE_CHECKING:
    from multiniche_pipeline.pipeline import PipelineResult

logger = logging.getLogger(__name__)


class CSVWriter:
    """Writes pipeline tables to CSV files."""

    def __init__(
        self,
        output_dir: Path,
        float_format: str = "%.6g",
    ):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.float_format = float_format

    def write_table(
        self,
        table: pd.DataFrame,
        filename: str,
    ) -> Path:
        """Write a long table to CSV.

        Parameters
        ----------
        table : pd.DataFrame
            Table to write (the index is not written)
        filename : str
            Output filename

        Returns
        -------
        Path
            Path to written file
        """
        path = self.output_dir / filename
        table.to_csv(path, index=False, float_format=self.float_format)
        logger.debug("Wrote %d rows to %s", len(table), path)
        return path

    def write_abundance(
        self,
        abundance: pd.DataFrame,
        filename: str = "abundance.csv",
    ) -> Path:
        """Write the cell type / sample abundance table with keep flags."""
        return self.write_table(abundance, filename)

    def write_differential(
        self,
        results: pd.DataFrame,
        filename: str = "de_table.csv",
    ) -> Path:
        """Write the DE table."""
        return self.write_table(results, filename)

    def write_activity(
        self,
        activity: pd.DataFrame,
        filename: str = "ligand_activities.csv",
    ) -> Path:
        """Write ligand activities with their DE targets."""
        return self.write_table(activity, filename)

    def write_prioritization(
        self,
        group_table: pd.DataFrame,
        sample_table: Optional[pd.DataFrame] = None,
        filename_prefix: str = "prioritization",
    ) -> dict[str, Path]:
        """Write group-level and sample-level prioritization tables."""
        paths = {"group": self.write_table(group_table, f"{filename_prefix}_group.csv")}
        if sample_table is not None:
            paths["sample"] = self.write_table(sample_table, f"{filename_prefix}_sample.csv")
        return paths

    def write_correlations(
        self,
        correlations: pd.DataFrame,
        filename: str = "lr_target_correlation.csv",
    ) -> Path:
        """Write ligand-receptor to target correlations."""
        return self.write_table(correlations, filename)

    def write_result(self, result: "PipelineResult") -> dict[str, Path]:
        """Write every table of a pipeline run."""
        paths = {
            "abundance": self.write_abundance(result.abundance.abundance),
            "de_table": self.write_differential(result.de.table),
            "ligand_activities": self.write_activity(result.activity.ligand_activities),
        }
        prioritization = self.write_prioritization(
            result.prioritization.group_table, result.prioritization.sample_table
        )
        paths["prioritization_group"] = prioritization["group"]
        paths["prioritization_sample"] = prioritization["sample"]
        if result.correlation is not None:
            paths["lr_target_correlation"] = self.write_correlations(result.correlation.table)
        logger.info("Wrote %d tables to %s", len(paths), self.output_dir)
        return paths


def write_results_csv(
    result: "PipelineResult",
    output_dir: Path,
) -> dict[str, Path]:
    """Convenience function to write all pipeline tables as CSV."""
    writer = CSVWriter(output_dir)
    return writer.write_result(result)
