"""
Command-line interface for the multiniche pipeline.

Usage:
    multiniche-pipeline run --config pipeline.yaml
    multiniche-pipeline contrasts --contrasts "'A-(B+C)/2','B-(A+C)/2'"
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

logger = logging.getLogger("multiniche_pipeline")

EXIT_CONFIG_ERROR = 2


def _setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=fmt, handlers=handlers)


def cmd_run(args: argparse.Namespace) -> int:
    """Run the full pipeline from a YAML config file."""
    import yaml
    from multiniche_pipeline.core.config import Config, ConfigurationError
    from multiniche_pipeline.ingest import LocalH5ADSource, PriorNetworks
    from multiniche_pipeline.pipeline import MultiNichePipeline

    config_path = Path(args.config)
    if not config_path.exists():
        logger.error("Config file not found: %s", config_path)
        return 1

    with open(config_path) as f:
        pipeline_def = yaml.safe_load(f) or {}

    missing = [k for k in ("input", "lr_network", "ligand_target_matrix") if k not in pipeline_def]
    if missing:
        logger.error("Pipeline file is missing keys: %s", missing)
        return EXIT_CONFIG_ERROR

    try:
        config = Config.from_dict(pipeline_def.get("config", {}))
        if args.output:
            config.output_dir = Path(args.output)

        priors = PriorNetworks.from_files(
            pipeline_def["lr_network"],
            pipeline_def["ligand_target_matrix"],
            organism=config.organism,
        )
        source = LocalH5ADSource(pipeline_def["input"], layer=pipeline_def.get("layer"))

        pipeline = MultiNichePipeline(config=config, priors=priors)
        result = pipeline.run(source.load(), correlation=not args.no_correlation)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR

    top = result.prioritization.group_table.head(10)
    for row in top.itertuples(index=False):
        logger.info("%s  %s  score=%.3f", row.contrast, row.id, row.prioritization_score)
    for name, path in result.output_paths.items():
        logger.info("Wrote %s: %s", name, path)
    return 0


def cmd_contrasts(args: argparse.Namespace) -> int:
    """Validate a contrast string and print the parsed contrasts."""
    from multiniche_pipeline.core.config import ConfigurationError
    from multiniche_pipeline.differential import contrast_coefficients, contrast_matrix, parse_contrasts

    try:
        contrasts = parse_contrasts(args.contrasts)
        if args.groups:
            contrast_matrix(contrasts, args.groups)
        for contrast in contrasts:
            coefs = contrast_coefficients(contrast)
            terms = ", ".join(f"{g}={c:g}" for g, c in coefs.items())
            print(f"{contrast}\t{terms}")
    except ConfigurationError as e:
        logger.error("%s", e)
        return EXIT_CONFIG_ERROR
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="multiniche-pipeline",
        description="Multi-sample, multi-group cell-cell communication analysis",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-file", type=str, help="Log file path")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- run ---
    p_run = subparsers.add_parser("run", help="Run full pipeline from YAML config")
    p_run.add_argument("--config", required=True, help="Pipeline YAML config file")
    p_run.add_argument("--output", "-o", help="Output directory")
    p_run.add_argument("--no-correlation", action="store_true",
                       help="Skip the LR-target correlation stage")
    p_run.set_defaults(func=cmd_run)

    # --- contrasts ---
    p_con = subparsers.add_parser("contrasts", help="Validate a contrast string")
    p_con.add_argument("--contrasts", required=True,
                       help="Quoted contrast list, e.g. \"'A-B','B-A'\"")
    p_con.add_argument("--groups", nargs="+", help="Groups the contrasts may refer to")
    p_con.set_defaults(func=cmd_contrasts)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    _setup_logging(verbose=args.verbose, log_file=args.log_file)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
