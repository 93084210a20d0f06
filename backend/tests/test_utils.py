"""Shared test utilities."""

from datetime import UTC, datetime

import base58

# Tezos-style tz1 prefix bytes; the test settings accept whatever text prefix they encode to
TEST_ADDRESS_PREFIX = bytes([6, 161, 159])


def utcnow():
    """Get current UTC time as naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def make_address(seed: int = 0) -> str:
    """Build a checksummed 23-byte implicit account address."""
    return base58.b58encode_check(TEST_ADDRESS_PREFIX + bytes([seed]) * 20).decode()
