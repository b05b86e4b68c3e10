#!/usr/bin/env python3
"""
whoami-scan — audit the provenance of the AMIs your EC2 instances run on.

Usage:
    whoami-scan                          Scan every enabled region
    whoami-scan --region eu-west-1       Scan a single region
    whoami-scan --profile prod --verbose Use a named profile, show every step
    whoami-scan --output reports/ami.csv Also write a pipe-delimited report

Exit status is 1 when the account cannot be accessed or the report cannot be
written, 2 for a bad trusted-accounts file.
"""

from __future__ import annotations

import argparse
import logging
import sys

from console.display import GREEN, RED, EventPrinter, print_message, print_summary, use_color
from scanner.aws import AwsImageSource, build_session, get_account_id
from scanner.config import load_trusted_accounts, log_level_from_env
from scanner.errors import ConfigError, CredentialError, ExportWriteError
from scanner.orchestrator import Deadline, run_scan
from scanner.report import summarize, write_export
from scanner.session import ScanSession

logger = logging.getLogger(__name__)


_INSTANCE_STATES_NOTE = (
    "Total Instances counts pending, running, stopping and stopped instances; "
    "terminated and shutting-down instances are ignored."
)


def _positive_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {value!r}")
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"timeout must be greater than 0, got {value}")
    return seconds


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="whoami-scan",
        description="Flag EC2 instances launched from AMIs published by unverified accounts.",
        epilog=_INSTANCE_STATES_NOTE,
    )
    parser.add_argument(
        "--profile", default=None,
        help="AWS profile name [Default: Default profile, IMDS, or environment variables]",
    )
    parser.add_argument("--region", default=None, help="AWS region [Default: All regions]")
    parser.add_argument("--output", default=None, help="Specify file path/name for csv report")
    parser.add_argument(
        "--verbose", action="store_true",
        help="Enable verbose output for detailed status updates",
    )
    parser.add_argument(
        "--trusted-accounts", metavar="FILE", default=None,
        help="YAML file listing publisher account ids to treat as verified",
    )
    parser.add_argument(
        "--workers", type=int, default=1,
        help="Number of regions to scan in parallel [Default: 1]",
    )
    parser.add_argument(
        "--timeout", type=_positive_seconds, default=None, metavar="SECONDS",
        help="Abandon regions still being scanned after this many seconds",
    )
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Run one scan and print the summary."""
    args = _build_parser().parse_args(argv)

    logging.basicConfig(
        level=log_level_from_env(),
        format="%(name)s: %(message)s",
        stream=sys.stderr,
    )

    color = use_color(sys.stdout, args.no_color)

    trusted_accounts: frozenset[str] = frozenset()
    if args.trusted_accounts:
        try:
            trusted_accounts = load_trusted_accounts(args.trusted_accounts)
        except ConfigError as exc:
            print_message(f"Error loading trusted accounts: {exc}", RED, color)
            sys.exit(2)

    if args.verbose:
        print_message("[*] Verbose mode enabled.", color=color)

    deadline = Deadline(args.timeout) if args.timeout is not None else None

    try:
        session = build_session(args.profile)
        account = get_account_id(session)
        logger.info("Detected AWS account: %s", account)
        source = AwsImageSource(session, deadline=deadline)
        regions = [args.region] if args.region else source.list_regions()
    except CredentialError as exc:
        print_message(f"Error: {exc}", RED, color)
        sys.exit(1)

    print_message("\nStarting AMI analysis...", color=color)
    scan = run_scan(
        source,
        regions,
        ScanSession(),
        on_event=EventPrinter(verbose=args.verbose, color=color),
        trusted_accounts=trusted_accounts,
        max_workers=args.workers,
        deadline=deadline,
    )

    print_summary(summarize(scan), color=color)

    if args.output:
        try:
            path = write_export(args.output, scan)
        except ExportWriteError as exc:
            print_message(f"Error creating output file: {exc}", RED, color)
            sys.exit(1)
        print_message(f"Output written to {path}", GREEN, color)


if __name__ == "__main__":
    main()
