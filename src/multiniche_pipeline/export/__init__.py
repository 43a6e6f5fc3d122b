"""
Output generation pipeline.

Writers for CSV tables.
"""

from multiniche_pipeline.export.csv_writer import (
    CSVWriter,
    write_results_csv,
)

__all__ = [
    "CSVWriter",
    "write_results_csv",
]
