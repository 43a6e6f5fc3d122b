"""
Data ingestion.

Cell-level count data and prior knowledge networks.
"""

from multiniche_pipeline.ingest.base import CellData
from multiniche_pipeline.ingest.local_h5ad import LocalH5ADSource
from multiniche_pipeline.ingest.priors import PriorNetworks

__all__ = [
    "CellData",
    "LocalH5ADSource",
    "PriorNetworks",
]
