"""
Command-line interface for the Peekbank import pipeline.

Provides commands for:
- Importing canonical observations for one dataset
- Importing wide-format coded-looking (iCoder) grids
- Validating a directory of previously written tables
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import pandas as pd

from config.settings import DatasetConfig, get_config, load_dataset_config
from .exceptions import PeekbankError

# Setup logging
logging.basicConfig(
    level=get_config().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Peekbank import CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import command
    import_parser = subparsers.add_parser(
        "import", help="Import canonical observations for one dataset"
    )
    import_parser.add_argument("dataset_config", type=Path, help="Dataset configuration (JSON)")
    import_parser.add_argument("observations", type=Path, help="Observations file (CSV or TSV)")
    _add_output_arguments(import_parser)

    # iCoder command
    icoder_parser = subparsers.add_parser(
        "icoder", help="Import wide-format coded-looking grids"
    )
    icoder_parser.add_argument("dataset_config", type=Path, help="Dataset configuration (JSON)")
    icoder_parser.add_argument("grids", type=Path, nargs="+", help="Coded grid file(s)")
    icoder_parser.add_argument(
        "--participants",
        type=Path,
        help="Participant/demographics file"
    )
    icoder_parser.add_argument(
        "--participant-id-column",
        default="lab_subject_id",
        help="Subject id column in the participant file"
    )
    icoder_parser.add_argument(
        "--skip-rows",
        type=int,
        default=0,
        help="Preamble lines before the header row"
    )
    icoder_parser.add_argument(
        "--max-offset",
        type=int,
        help="Drop time bins later than this offset (ms)"
    )
    icoder_parser.add_argument(
        "--coding-rate",
        type=float,
        help="Native coding rate (Hz); defaults to the dataset sample rate, else 30"
    )
    _add_output_arguments(icoder_parser)

    # Validate command
    validate_parser = subparsers.add_parser(
        "validate", help="Validate a directory of the nine CSV tables"
    )
    validate_parser.add_argument("tables_dir", type=Path, help="Directory of table CSVs")
    validate_parser.add_argument(
        "--report",
        type=Path,
        help="Write the violations to this CSV file"
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        # Route to appropriate handler
        if args.command == "import":
            return run_import(args)
        elif args.command == "icoder":
            return run_icoder(args)
        elif args.command == "validate":
            return run_validate(args)
    except PeekbankError as e:
        logger.error(str(e))
        return 1
    return 0


def _add_output_arguments(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument(
        "--output",
        type=Path,
        help="Output directory (csv) or database file (sqlite); "
             "defaults to the dataset's processed_data directory"
    )
    subparser.add_argument(
        "--format",
        choices=["csv", "sqlite"],
        help="Export format"
    )


def _output_path(args: argparse.Namespace, dataset_config: DatasetConfig) -> Path:
    if args.output is not None:
        return args.output
    app_config = get_config()
    output = app_config.paths.processed_path(dataset_config.dataset_name)
    if (args.format or app_config.export.format) == "sqlite":
        output = output / app_config.export.sqlite_filename
    return output


def _import_and_write(observations: pd.DataFrame, dataset_config: DatasetConfig, args) -> int:
    from .pipeline import DatasetImporter

    importer = DatasetImporter(dataset_config)
    importer.run(observations)
    output = importer.write(_output_path(args, dataset_config), format=args.format)

    logger.info(f"Dataset {dataset_config.dataset_name} written to {output}")
    return 0


def run_import(args) -> int:
    """Import canonical observations."""
    from .data.loaders import read_raw_table

    dataset_config = load_dataset_config(args.dataset_config)
    logger.info(f"Reading observations from {args.observations}")

    observations = read_raw_table(args.observations)
    if dataset_config.column_map:
        observations = observations.rename(columns=dataset_config.column_map)
    return _import_and_write(observations, dataset_config, args)


def run_icoder(args) -> int:
    """Import coded-looking grids."""
    from .data.formats import attach_participants, observations_from_wide_grid
    from .data.loaders import load_raw_files, read_participants
    from .data.reshape import clean_name

    dataset_config = load_dataset_config(args.dataset_config)
    coding_rate = args.coding_rate or dataset_config.sample_rate or 30.0

    raw = load_raw_files(args.grids, skip_rows=args.skip_rows)

    subject_cols = [k for k, v in dataset_config.column_map.items() if v == "lab_subject_id"]
    header_col = clean_name(subject_cols[0]) if subject_cols else None

    observations = observations_from_wide_grid(
        raw,
        sample_rate_hz=coding_rate,
        column_map={clean_name(k): v for k, v in dataset_config.column_map.items()},
        header_col=header_col,
        max_offset=args.max_offset,
    )

    if args.participants is not None:
        participants = read_participants(args.participants, args.participant_id_column)
        observations = attach_participants(observations, participants)

    return _import_and_write(observations, dataset_config, args)


def run_validate(args) -> int:
    """Validate previously written tables."""
    from .data.export import read_tables
    from .validation import validate_tables

    logger.info(f"Validating tables in {args.tables_dir}")
    report = validate_tables(read_tables(args.tables_dir))

    if args.report is not None:
        args.report.parent.mkdir(parents=True, exist_ok=True)
        report.to_frame().to_csv(args.report, index=False)
        logger.info(f"Validation report saved to {args.report}")

    if report.ok:
        logger.info("All tables are valid")
        return 0
    logger.error(f"{len(report.violations)} violation(s) found")
    return 1


if __name__ == "__main__":
    sys.exit(main())
