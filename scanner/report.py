"""
Summary tallies and the pipe-delimited export of a finished scan.

Reads the final bucket state of a ``ScanSession`` only; nothing here
classifies images again.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import NamedTuple

from scanner.errors import ExportWriteError
from scanner.models import PRIVATE, UNKNOWN, UNVERIFIED, VERIFIED
from scanner.session import ScanSession

logger = logging.getLogger(__name__)

EXPORT_HEADER = (
    "AMI ID",
    "Region",
    "whoAMI status",
    "Public",
    "Owner Alias",
    "Owner ID",
    "Name",
    "Description",
)
EXPORT_DELIMITER = "|"


class ScanSummary(NamedTuple):
    total_instances: int
    total_images: int
    private: int
    verified: int
    unknown: int
    unverified: int


def summarize(session: ScanSession) -> ScanSummary:
    """Return the per-category tallies of *session*."""
    buckets = session.buckets
    return ScanSummary(
        total_instances=session.total_instances,
        total_images=session.distinct_images,
        private=len(buckets[PRIVATE]),
        verified=len(buckets[VERIFIED]),
        unknown=len(buckets[UNKNOWN]),
        unverified=len(buckets[UNVERIFIED]),
    )


def _clean(value: str) -> str:
    # Keep every record on one line with a fixed column count.
    return value.replace(EXPORT_DELIMITER, "/").replace("\r", " ").replace("\n", " ")


def export_rows(session: ScanSession) -> list[list[str]]:
    """Return one row per record: Verified, Private, Unknown, Unverified."""
    rows: list[list[str]] = []
    for record in session.records():
        if record.category == UNKNOWN:
            rows.append([record.image_id, record.region] + [UNKNOWN] * 6)
            continue
        rows.append([
            record.image_id,
            record.region,
            record.category,
            record.visibility,
            _clean(record.owner_alias),
            _clean(record.owner_id),
            _clean(record.name),
            _clean(record.description),
        ])
    return rows


def render_export(session: ScanSession) -> str:
    lines = [EXPORT_DELIMITER.join(EXPORT_HEADER)]
    lines.extend(EXPORT_DELIMITER.join(row) for row in export_rows(session))
    return "\n".join(lines) + "\n"


def prepare_output_path(output: str | Path) -> Path:
    """Resolve *output* to an absolute path and create its parent directories.

    A bare file name lands in the current working directory.
    """
    path = Path(output)
    if not path.is_absolute():
        path = Path(os.getcwd()) / path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ExportWriteError(f"failed to create directories for path {path.parent}: {exc}") from exc
    return path


def write_export(path: str | Path, session: ScanSession) -> Path:
    """Write the export for *session* to *path*; return the absolute path."""
    target = prepare_output_path(path)
    content = render_export(session)
    try:
        with open(target, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(content)
    except OSError as exc:
        raise ExportWriteError(f"error creating output file {target}: {exc}") from exc
    logger.info("Wrote %d rows to %s", content.count("\n") - 1, target)
    return target
