"""
Trust classifier for machine images.

``classify`` walks an ordered rule table and returns the category of the
first rule whose predicate matches.  Visibility is checked before the owner
alias: a private image is never Verified or Unverified.

Priority:
  1. Image not found                       -> Unknown
  2. Image not public                      -> Private
  3. Owner alias ``amazon``                -> Verified
  4. Owner alias ``self``                  -> Private
  5. Owner id in the trusted account list  -> Verified
  6. Anything else                         -> Unverified
"""

from __future__ import annotations

from typing import Callable, Collection, NamedTuple

from scanner.models import (
    AMAZON_ALIAS,
    PRIVATE,
    SELF_ALIAS,
    UNKNOWN,
    UNVERIFIED,
    VERIFIED,
    ImageMetadata,
)


class Rule(NamedTuple):
    name: str
    predicate: Callable[[ImageMetadata | None, Collection[str]], bool]
    category: str


RULES: tuple[Rule, ...] = (
    Rule("not_found", lambda m, _t: m is None, UNKNOWN),
    Rule("private_visibility", lambda m, _t: not m.public, PRIVATE),
    Rule("amazon_alias", lambda m, _t: m.owner_alias == AMAZON_ALIAS, VERIFIED),
    Rule("self_alias", lambda m, _t: m.owner_alias == SELF_ALIAS, PRIVATE),
    Rule("trusted_account", lambda m, t: bool(m.owner_id) and m.owner_id in t, VERIFIED),
    Rule("fallback", lambda m, _t: True, UNVERIFIED),
)


def match_rule(
    metadata: ImageMetadata | None,
    trusted_accounts: Collection[str] = (),
) -> Rule:
    """Return the first rule in ``RULES`` matching *metadata*."""
    for rule in RULES:
        if rule.predicate(metadata, trusted_accounts):
            return rule
    # The fallback rule always matches.
    raise AssertionError("no classification rule matched")


def classify(
    metadata: ImageMetadata | None,
    trusted_accounts: Collection[str] = (),
) -> str:
    """Return the trust category for *metadata* (``None`` means not found)."""
    return match_rule(metadata, trusted_accounts).category
