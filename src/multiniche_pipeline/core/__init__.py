"""
Core infrastructure for multiniche-pipeline.

Provides:
- Configuration management
- Column schema resolution
- Configuration error type
"""

from multiniche_pipeline.core.config import (
    CRITERIA,
    DEFAULT_WEIGHTS,
    AbundanceConfig,
    ActivityConfig,
    ColumnSchema,
    Config,
    ConfigurationError,
    DEConfig,
    PrioritizationConfig,
)

__all__ = [
    "CRITERIA",
    "DEFAULT_WEIGHTS",
    "AbundanceConfig",
    "ActivityConfig",
    "ColumnSchema",
    "Config",
    "ConfigurationError",
    "DEConfig",
    "PrioritizationConfig",
]
