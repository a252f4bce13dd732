"""Identifier checks for ULID primary keys and Stripe object ids."""

import re

import ulid

# cs_test_a1B2..., pi_3N..., acct_1P..., evt_..., re_...
_STRIPE_ID = re.compile(r"^(cs|pi|acct|evt|re|ch|in)_[A-Za-z0-9_]{8,}$")


def is_valid_ulid(value: str) -> bool:
    """Check if a string is a valid ULID."""
    if len(value) != 26:
        return False
    try:
        ulid.ULID.from_str(value)
    except (ValueError, TypeError):
        return False
    return True


def is_stripe_object_id(value: str) -> bool:
    return bool(_STRIPE_ID.match(value))


def is_resource_id(segment: str) -> bool:
    """True for path segments that identify a single row or Stripe object."""
    return segment.isdigit() or is_valid_ulid(segment) or is_stripe_object_id(segment)
