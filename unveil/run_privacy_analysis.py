#!/usr/bin/env python3
"""
Privacy Analysis Script - De-anonymization reports for privacy protocols

Reads already-fetched ledger transactions from a JSON file and:
1. Classifies them into deposits / withdrawals / transfers
2. Runs the correlation attack and anonymity-set analysis
3. Scores each protocol (0-100) and prints or writes the reports
4. Optionally saves the reports to DuckDB

Input shapes:
    [ {raw tx}, ... ]                    with --protocol
    { "privacy-cash": [ {raw tx}, ... ], "shadowwire": [...] }

Exit codes: 0 success, 1 configuration/input error, 2 analysis failure.

Usage:
    unveil-analyze --input txs.json --protocol privacy-cash --output report.json
    python -m unveil.run_privacy_analysis --input all.json --save --verbose
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from unveil.analysis.pipeline import analyze_protocols
from unveil.config.logging_config import setup_logging
from unveil.config.protocols import ProfileValidationError, ProtocolRegistry
from unveil.config.settings import load_settings
from unveil.storage.report_repository import ReportRepository

logger = logging.getLogger("unveil.cli")

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_ANALYSIS_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unveil-analyze", description="Privacy protocol de-anonymization analysis"
    )
    parser.add_argument(
        "--input", required=True, help="JSON file with raw transactions"
    )
    parser.add_argument(
        "--protocol",
        help="Protocol id (required for list input; filters dict input)",
    )
    parser.add_argument("--output", help="Write report JSON here instead of stdout")
    parser.add_argument(
        "--save", action="store_true", help="Persist reports to the report database"
    )
    parser.add_argument("--db-path", help="Report database (default: UNVEIL_DB_PATH)")
    parser.add_argument("--env-file", help="Load settings from this .env file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def load_batches(path: Path, protocol: Optional[str]) -> dict[str, list]:
    """
    Read the input file into protocol id -> raw transactions.

    Raises:
        ValueError: On unreadable or wrongly shaped input
    """
    try:
        with open(path) as f:
            data = json.load(f)
    except OSError as e:
        raise ValueError(f"Cannot read {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e

    if isinstance(data, list):
        if not protocol:
            raise ValueError("--protocol is required when the input is a list")
        return {protocol: data}

    if isinstance(data, dict):
        if protocol:
            if protocol not in data:
                raise ValueError(f"Protocol {protocol!r} not present in {path}")
            data = {protocol: data[protocol]}
        for pid, txs in data.items():
            if not isinstance(txs, list):
                raise ValueError(f"Transactions for {pid!r} must be a list")
        return data

    raise ValueError("Input must be a list of transactions or a protocol -> list mapping")


def main(argv: Optional[list[str]] = None) -> int:
    """Main execution flow; returns the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.env_file)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        mode=settings.log_mode,
        log_dir=settings.log_dir,
    )

    try:
        batches = load_batches(Path(args.input), args.protocol)
        profiles = {
            pid: settings.apply_to(ProtocolRegistry.require(pid)) for pid in batches
        }
    except (ValueError, ProfileValidationError) as e:
        logger.error(f"Input error: {e}")
        return EXIT_CONFIG_ERROR

    logger.info(
        f"Analyzing {sum(len(b) for b in batches.values())} transactions "
        f"across {len(batches)} protocol(s)"
    )
    reports = analyze_protocols(
        batches,
        max_workers=settings.max_workers,
        profiles=profiles,
        weak_threshold=settings.weak_set_threshold,
    )

    failed = sorted(set(batches) - set(reports))
    if failed:
        logger.error(f"Analysis failed for: {', '.join(failed)}")

    output = {pid: report.to_json_dict() for pid, report in reports.items()}
    text = json.dumps(output, indent=2)
    if args.output:
        try:
            Path(args.output).write_text(text + "\n")
        except OSError as e:
            logger.error(f"Cannot write {args.output}: {e}")
            return EXIT_ANALYSIS_ERROR
        logger.info(f"Report written to {args.output}")
    else:
        print(text)

    if args.save and reports:
        repository = ReportRepository(args.db_path or settings.db_path)
        if not repository.init_schema():
            return EXIT_ANALYSIS_ERROR
        saved = sum(1 for report in reports.values() if repository.save_report(report))
        repository.close()
        if saved != len(reports):
            logger.error(f"Saved {saved}/{len(reports)} reports")
            return EXIT_ANALYSIS_ERROR
        logger.info(f"Saved {saved} reports to {repository.db_path}")

    for pid, report in reports.items():
        logger.info(
            f"{pid}: {report.privacy_score}/100 ({report.grade}), "
            f"{report.matched_pairs} linked pairs"
        )

    return EXIT_ANALYSIS_ERROR if failed else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
