"""
Scan orchestrator: regions -> instances -> distinct images -> categories.

``run_scan`` drives any image source exposing ``list_instances(region)`` and
``resolve_image(region, image_id)`` (see ``scanner.aws.AwsImageSource``),
records every classified image in the given ``ScanSession`` and reports
progress as ``ScanEvent`` objects.  Presentation is left to the caller.

Per-region and per-image failures never abort the scan: an unavailable
region is skipped, an image that cannot be described is filed as Unknown.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Collection, Iterable, Protocol

from scanner.classify import classify
from scanner.errors import DeadlineExceeded, ImageResolutionError, RegionUnavailable
from scanner.models import UNKNOWN, ImageMetadata, ImageRecord, Instance
from scanner.session import ScanSession

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

REGION_STARTED = "region_started"
REGION_SKIPPED = "region_skipped"
REGION_ABANDONED = "region_abandoned"
IMAGE_CACHED = "image_cached"
IMAGE_ANALYZING = "image_analyzing"
IMAGE_CLASSIFIED = "image_classified"
IMAGE_UNRESOLVED = "image_unresolved"


@dataclass(frozen=True)
class ScanEvent:
    kind: str
    region: str
    image_id: str | None = None
    instance_id: str | None = None
    position: int = 0  # 1-based index of the instance within its region
    total: int = 0  # instances in the region
    category: str | None = None
    detail: str = ""


EventCallback = Callable[[ScanEvent], None]


class ImageSource(Protocol):
    def list_instances(self, region: str) -> list[Instance]: ...

    def resolve_image(self, region: str, image_id: str) -> ImageMetadata | None: ...


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------

class Deadline:
    """A point on the monotonic clock after which no new I/O is started."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        """Seconds left before expiry, never negative."""
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self) -> None:
        if self.expired():
            raise DeadlineExceeded("scan deadline exceeded")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class _Scan:
    """State shared by the region workers of one ``run_scan`` call."""

    def __init__(
        self,
        source: ImageSource,
        session: ScanSession,
        on_event: EventCallback | None,
        trusted_accounts: Collection[str],
        deadline: Deadline | None,
    ) -> None:
        self.source = source
        self.session = session
        self.on_event = on_event
        self.trusted_accounts = frozenset(trusted_accounts)
        self.deadline = deadline
        self._notify_lock = threading.Lock()

    def notify(self, event: ScanEvent) -> None:
        if self.on_event is None:
            return
        with self._notify_lock:
            self.on_event(event)

    def _check_deadline(self) -> None:
        if self.deadline is not None:
            self.deadline.check()

    def scan_region(self, region: str) -> None:
        self.notify(ScanEvent(REGION_STARTED, region))
        try:
            self._check_deadline()
            instances = self.source.list_instances(region)
        except RegionUnavailable as exc:
            logger.warning("Skipping region %s: %s", region, exc.reason or exc)
            self.notify(ScanEvent(REGION_SKIPPED, region, detail=exc.reason or str(exc)))
            return
        except DeadlineExceeded as exc:
            logger.warning("Abandoning region %s: %s", region, exc)
            self.notify(ScanEvent(REGION_ABANDONED, region, detail=str(exc)))
            return

        self.session.add_instances(len(instances))
        total = len(instances)

        for position, instance in enumerate(instances, start=1):
            try:
                self._check_deadline()
            except DeadlineExceeded as exc:
                logger.warning(
                    "Abandoning region %s after %d of %d instances",
                    region, position - 1, total,
                )
                self.notify(ScanEvent(REGION_ABANDONED, region, detail=str(exc)))
                return
            self.scan_instance(instance, position, total)

    def scan_instance(self, instance: Instance, position: int, total: int) -> None:
        region = instance.region
        image_id = instance.image_id
        base = dict(
            region=region,
            image_id=image_id,
            instance_id=instance.instance_id,
            position=position,
            total=total,
        )

        if not self.session.claim(image_id):
            self.notify(ScanEvent(IMAGE_CACHED, **base))
            return

        self.notify(ScanEvent(IMAGE_ANALYZING, **base))

        detail = ""
        try:
            metadata = self.source.resolve_image(region, image_id)
        except ImageResolutionError as exc:
            logger.warning("Treating %s as unresolved: %s", image_id, exc)
            metadata = None
            detail = exc.reason or str(exc)

        category = classify(metadata, self.trusted_accounts)
        self.session.file(ImageRecord.build(image_id, region, metadata, category))

        if metadata is None:
            self.notify(ScanEvent(IMAGE_UNRESOLVED, category=UNKNOWN, detail=detail, **base))
        else:
            self.notify(ScanEvent(IMAGE_CLASSIFIED, category=category, **base))


def run_scan(
    source: ImageSource,
    regions: Iterable[str],
    session: ScanSession,
    on_event: EventCallback | None = None,
    trusted_accounts: Collection[str] = (),
    max_workers: int = 1,
    deadline: Deadline | None = None,
) -> ScanSession:
    """Scan *regions* and classify every distinct image into *session*.

    Parameters
    ----------
    source:
        Object providing ``list_instances`` and ``resolve_image``.
    regions:
        Regions to scan, in order.
    session:
        Fresh ``ScanSession`` for this run.
    on_event:
        Optional callback receiving ``ScanEvent`` objects.  Calls are
        serialized even when regions are scanned in parallel.
    trusted_accounts:
        Publisher account ids whose public images count as Verified.
    max_workers:
        Number of regions scanned concurrently; 1 scans sequentially.
    deadline:
        Optional ``Deadline``; regions still running when it expires are
        abandoned.

    Returns
    -------
    ScanSession
        The same *session*, fully populated.
    """
    regions = list(regions)
    scan = _Scan(source, session, on_event, trusted_accounts, deadline)
    logger.info("Scanning %d regions with %d worker(s)", len(regions), max_workers)

    if max_workers <= 1 or len(regions) <= 1:
        for region in regions:
            scan.scan_region(region)
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            # list() re-raises any unexpected worker exception here.
            list(pool.map(scan.scan_region, regions))

    logger.info(
        "Scan complete: %d instances, %d distinct images",
        session.total_instances,
        session.distinct_images,
    )
    return session
