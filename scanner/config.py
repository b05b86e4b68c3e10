"""
Configuration for the AMI provenance scan.

Trusted publisher accounts are read from a YAML file holding either a plain
list of account ids or a mapping with a ``trusted_accounts`` key::

    trusted_accounts:
      - "123456789012"   # golden image pipeline
      - "210987654321"
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

import yaml

from scanner.errors import ConfigError

logger = logging.getLogger(__name__)

# Region used for the bootstrap STS / EC2 clients.
DEFAULT_REGION = "us-east-1"

LOG_LEVEL_ENV = "WHOAMI_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "WARNING"

_ACCOUNT_ID_RE = re.compile(r"^\d{12}$")

# Implicit tags that would rewrite an unquoted id (octal ints, ``yes`` -> True).
_NUMERIC_TAGS = frozenset({
    "tag:yaml.org,2002:int",
    "tag:yaml.org,2002:float",
    "tag:yaml.org,2002:bool",
})


class _AccountIdLoader(yaml.SafeLoader):
    """SafeLoader that keeps plain scalars such as ``012345670123`` as strings."""


_AccountIdLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag not in _NUMERIC_TAGS]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def log_level_from_env() -> int:
    """Return the logging level named by ``WHOAMI_LOG_LEVEL`` (default WARNING)."""
    name = os.environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        return logging.WARNING
    return level


def load_trusted_accounts(path: str | Path) -> frozenset[str]:
    """Load trusted publisher account ids from the YAML file at *path*."""
    try:
        data = yaml.load(Path(path).read_text(), Loader=_AccountIdLoader)
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

    if data is None:
        return frozenset()
    if isinstance(data, dict):
        data = data.get("trusted_accounts") or []
    if not isinstance(data, list):
        raise ConfigError(f"{path}: expected a list of account ids")

    accounts: set[str] = set()
    for entry in data:
        if not isinstance(entry, str):
            raise ConfigError(f"{path}: {entry!r} is not an account id; quote the ids, e.g. \"012345678901\"")
        account = entry.strip()
        if not _ACCOUNT_ID_RE.match(account):
            raise ConfigError(f"{path}: {entry!r} is not a 12-digit account id")
        accounts.add(account)

    logger.info("Loaded %d trusted accounts from %s", len(accounts), path)
    return frozenset(accounts)
