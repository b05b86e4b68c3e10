"""
Exceptions raised by the AMI provenance scanner.

Region and image level failures are recoverable and are converted into skip
or Unknown outcomes by the orchestrator.  Credential failures abort the run.
"""

from __future__ import annotations


class ScanError(Exception):
    """Base class for every scanner error."""


class CredentialError(ScanError):
    """Raised when the account cannot be accessed at all (identity, regions)."""


class RegionUnavailable(ScanError):
    """Raised when instances cannot be listed for a region."""

    def __init__(self, region: str, reason: str = "") -> None:
        self.region = region
        self.reason = reason
        super().__init__(f"region {region} unavailable: {reason}" if reason else f"region {region} unavailable")


class ImageResolutionError(ScanError):
    """Raised on a transient failure describing an image (not a definitive not-found)."""

    def __init__(self, image_id: str, reason: str = "") -> None:
        self.image_id = image_id
        self.reason = reason
        super().__init__(f"could not describe {image_id}: {reason}")


class DeadlineExceeded(ScanError):
    """Raised when the caller-supplied scan deadline has passed."""


class ExportWriteError(ScanError):
    """Raised when the export file cannot be created or written."""


class ConfigError(ScanError):
    """Raised for an unreadable or malformed configuration file."""
