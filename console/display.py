"""
ANSI terminal display for whoami-scan.

Turns the structured ``ScanEvent`` objects emitted by the orchestrator and
the final ``ScanSummary`` into colored (or plain) console lines.  Nothing in
``scanner`` depends on this module.
"""

from __future__ import annotations

import sys
from typing import IO, Optional

from scanner.models import PRIVATE, UNVERIFIED, VERIFIED
from scanner.orchestrator import (
    IMAGE_ANALYZING,
    IMAGE_CACHED,
    IMAGE_CLASSIFIED,
    IMAGE_UNRESOLVED,
    REGION_ABANDONED,
    REGION_SKIPPED,
    REGION_STARTED,
    ScanEvent,
)
from scanner.report import ScanSummary


# ---------------------------------------------------------------------------
# ANSI colour constants
# ---------------------------------------------------------------------------

RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
RESET = "\033[0m"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

class _Painter:
    def __init__(self, color: bool) -> None:
        self.color = color

    def __call__(self, colour: str, text: str) -> str:
        if not self.color or not colour:
            return text
        return f"{colour}{text}{RESET}"


def use_color(stream: IO[str], no_color: bool = False) -> bool:
    """Color only when writing to a terminal and not explicitly disabled."""
    if no_color:
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def _prefix(event: ScanEvent) -> str:
    return f"[{event.position}/{event.total}][{event.region}]"


# ---------------------------------------------------------------------------
# Progress events
# ---------------------------------------------------------------------------

class EventPrinter:
    """Callable passed to ``run_scan`` as ``on_event``.

    Unverified findings, unresolved images and skipped regions are always
    shown; everything else only in verbose mode.
    """

    def __init__(
        self,
        verbose: bool = False,
        color: bool = True,
        stream: Optional[IO[str]] = None,
    ) -> None:
        self.verbose = verbose
        self.stream = stream or sys.stdout
        self._paint = _Painter(color)

    def __call__(self, event: ScanEvent) -> None:
        line = self.format(event)
        if line is not None:
            print(line, file=self.stream)
            self.stream.flush()

    def format(self, event: ScanEvent) -> str | None:
        """Return the console line for *event*, or None to stay quiet."""
        paint = self._paint
        kind = event.kind

        if kind == REGION_SKIPPED:
            return paint(RED, f"Error fetching instances for region {event.region}: {event.detail}")
        if kind == REGION_ABANDONED:
            return paint(RED, f"Abandoned region {event.region}: {event.detail}")
        if kind == IMAGE_UNRESOLVED:
            return paint(YELLOW, f"{_prefix(event)} {event.image_id} has been deleted or made private.")
        if kind == IMAGE_CLASSIFIED and event.category == UNVERIFIED:
            return paint(RED, f"{_prefix(event)} {event.image_id} is a community AMI from an unverified account.")

        if not self.verbose:
            return None

        if kind == REGION_STARTED:
            return f"[*] Checking region {event.region}"
        if kind == IMAGE_CACHED:
            return paint(CYAN, f"{_prefix(event)} {event.image_id} already processed. Skipping.")
        if kind == IMAGE_ANALYZING:
            return f"{_prefix(event)} {event.image_id} being analyzed (Instance: {event.instance_id})"
        if kind == IMAGE_CLASSIFIED and event.category == VERIFIED:
            return paint(GREEN, f"{_prefix(event)} {event.image_id} is a community AMI from a verified account.")
        if kind == IMAGE_CLASSIFIED and event.category == PRIVATE:
            return paint(GREEN, f"{_prefix(event)} {event.image_id} is private.")
        return None


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

_KEY_BORDER = "+--------------------+-----------------------------------------------------------+"

_SUMMARY_KEY = (
    (GREEN, "| Private            | AMIs that are served from this account that are private   |"),
    (GREEN, "| Public & Verified  | AMIs from Verified Accounts (Verified from Amazon)        |"),
    (YELLOW, "| Unknown            | AMIs in use that are no longer available. The AMI may     |"),
    (YELLOW, "|                    | have been deleted or made private. We can not determine   |"),
    (YELLOW, "|                    | if these were served from a verified account              |"),
    (RED, "| Public & Unverified| AMIs from unverified accounts. Be cautious with these     |"),
    (RED, "|                    | unless they are from accounts you control. If not from    |"),
    (RED, "|                    | your accounts, look to replace these with AMIs from       |"),
    (RED, "|                    | verified accounts                                         |"),
)


def format_summary(summary: ScanSummary, color: bool = True) -> str:
    """Return the summary key followed by the per-category totals."""
    paint = _Painter(color)
    lines = [
        "",
        "Summary Key:",
        _KEY_BORDER,
        "| Term               | Definition                                                |",
        _KEY_BORDER,
    ]
    lines.extend(paint(colour, text) for colour, text in _SUMMARY_KEY)
    lines.append(_KEY_BORDER)

    lines += [
        "",
        "Summary:",
        paint(CYAN, f"          Total Instances: {summary.total_instances}"),
        paint(CYAN, f"               Total AMIs: {summary.total_images}"),
        paint(GREEN, f"            Private AMIs: {summary.private}"),
        paint(GREEN, f"  Public & Verified AMIs: {summary.verified}"),
        paint(YELLOW, f"  AMIs w/ Unknown status: {summary.unknown}"),
        paint(RED, f"Public & Unverified AMIs: {summary.unverified}"),
    ]
    return "\n".join(lines)


def print_summary(summary: ScanSummary, color: bool = True, stream: Optional[IO[str]] = None) -> None:
    stream = stream or sys.stdout
    print(format_summary(summary, color=color), file=stream)
    stream.flush()


def print_message(text: str, colour: str = "", color: bool = True, stream: Optional[IO[str]] = None) -> None:
    """Print a single status line, e.g. errors or the export path."""
    stream = stream or sys.stdout
    print(_Painter(color)(colour, text), file=stream)
    stream.flush()
