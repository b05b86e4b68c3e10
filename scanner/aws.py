"""
AWS collaborators for the AMI provenance scan.

Lists regions and instances and describes images using boto3.  Every boto3
API call in this module is a hardcoded, literal, read-only method
invocation: ``get_caller_identity``, ``describe_regions``,
``describe_instances`` and ``describe_images``.
"""

from __future__ import annotations

import logging
import threading

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from scanner.config import DEFAULT_REGION
from scanner.errors import CredentialError, ImageResolutionError, RegionUnavailable
from scanner.models import ImageMetadata, Instance
from scanner.orchestrator import Deadline

logger = logging.getLogger(__name__)

# Error codes meaning the image is gone (deleted or no longer shared).
_IMAGE_NOT_FOUND_CODES = frozenset({
    "InvalidAMIID.NotFound",
    "InvalidAMIID.Unavailable",
    "InvalidAMIID.Malformed",
})

# Instances in these states no longer count as launched from their image.
_IGNORED_STATES = frozenset({"terminated", "shutting-down"})

# Bounds (seconds) for per-call socket timeouts under a scan deadline.
# botocore's own default for both is 60.
_MIN_IO_TIMEOUT = 1.0
_MAX_IO_TIMEOUT = 60.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def build_session(profile: str | None = None) -> boto3.Session:
    """Return a boto3 session for *profile* (default credential chain if None)."""
    session_kwargs: dict[str, str] = {"region_name": DEFAULT_REGION}
    if profile:
        session_kwargs["profile_name"] = profile
    try:
        return boto3.Session(**session_kwargs)
    except BotoCoreError as exc:
        raise CredentialError(f"could not load AWS profile {profile!r}: {exc}") from exc


def get_account_id(session: boto3.Session) -> str:
    """Return the AWS account ID via STS (hardcoded call)."""
    try:
        sts = session.client("sts")
        identity = sts.get_caller_identity()  # HARDCODED read-only
    except (NoCredentialsError, ClientError, BotoCoreError) as exc:
        raise CredentialError(f"could not fetch account ID: {exc}") from exc
    return identity["Account"]


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


# ---------------------------------------------------------------------------
# AwsImageSource
# ---------------------------------------------------------------------------

class AwsImageSource:
    """Region, instance and image lookups against one AWS account.

    EC2 clients are created lazily per region and reused.  Client creation
    is guarded by a lock since boto3 sessions are not thread-safe; the
    clients themselves are.

    With a *deadline*, each client's connect and read timeouts are capped
    by the time remaining when the client is created.
    """

    def __init__(self, session: boto3.Session, deadline: Deadline | None = None) -> None:
        self._session = session
        self._deadline = deadline
        self._clients: dict[str, object] = {}
        self._lock = threading.Lock()

    def _client_config(self) -> Config | None:
        if self._deadline is None:
            return None
        timeout = max(_MIN_IO_TIMEOUT, min(_MAX_IO_TIMEOUT, self._deadline.remaining()))
        return Config(connect_timeout=timeout, read_timeout=timeout)

    def _ec2(self, region: str):
        with self._lock:
            client = self._clients.get(region)
            if client is None:
                config = self._client_config()
                if config is None:
                    client = self._session.client("ec2", region_name=region)
                else:
                    client = self._session.client("ec2", region_name=region, config=config)
                self._clients[region] = client
            return client

    # ------------------------------------------------------------------
    # list_regions
    # ------------------------------------------------------------------

    def list_regions(self) -> list[str]:
        """Return every region enabled for the account."""
        try:
            response = self._ec2(DEFAULT_REGION).describe_regions()  # HARDCODED
        except (ClientError, BotoCoreError) as exc:
            raise CredentialError(f"could not fetch regions: {exc}") from exc
        regions = [r["RegionName"] for r in response.get("Regions", [])]
        logger.info("Valid AWS regions detected: %d", len(regions))
        return regions

    # ------------------------------------------------------------------
    # list_instances
    # ------------------------------------------------------------------

    def list_instances(self, region: str) -> list[Instance]:
        """Return the instances in *region* together with their image ids."""
        instances: list[Instance] = []
        try:
            ec2 = self._ec2(region)
            paginator_token: str | None = None

            while True:
                if paginator_token:
                    response = ec2.describe_instances(NextToken=paginator_token)  # HARDCODED
                else:
                    response = ec2.describe_instances()  # HARDCODED

                for reservation in response.get("Reservations", []):
                    for instance in reservation.get("Instances", []):
                        state = instance.get("State", {}).get("Name")
                        if state in _IGNORED_STATES:
                            continue
                        image_id = instance.get("ImageId")
                        if not image_id:
                            logger.warning(
                                "Instance %s in %s has no image id",
                                instance.get("InstanceId"), region,
                            )
                            continue
                        instances.append(Instance(
                            instance_id=instance["InstanceId"],
                            region=region,
                            image_id=image_id,
                        ))

                paginator_token = response.get("NextToken")
                if not paginator_token:
                    break

        except (ClientError, BotoCoreError) as exc:
            raise RegionUnavailable(region, str(exc)) from exc

        logger.info("Found %d instances in %s", len(instances), region)
        return instances

    # ------------------------------------------------------------------
    # resolve_image
    # ------------------------------------------------------------------

    def resolve_image(self, region: str, image_id: str) -> ImageMetadata | None:
        """Describe *image_id*; return None when the image no longer exists."""
        try:
            response = self._ec2(region).describe_images(ImageIds=[image_id])  # HARDCODED
        except ClientError as exc:
            if _error_code(exc) in _IMAGE_NOT_FOUND_CODES:
                logger.info("Image %s not found in %s", image_id, region)
                return None
            raise ImageResolutionError(image_id, str(exc)) from exc
        except BotoCoreError as exc:
            raise ImageResolutionError(image_id, str(exc)) from exc

        images = response.get("Images", [])
        if not images:
            return None

        image = images[0]
        return ImageMetadata(
            public=bool(image.get("Public", False)),
            owner_alias=image.get("ImageOwnerAlias"),
            owner_id=image.get("OwnerId"),
            name=image.get("Name"),
            description=image.get("Description"),
        )
