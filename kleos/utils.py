"""
KLEOS - Utility functions: items hash, pubkey checks, time helpers.
"""

import time
from typing import Sequence

from Crypto.Hash import keccak
from solders.pubkey import Pubkey

from kleos.errors import InvalidInput

ITEMS_HASH_HEX_LENGTH = 64

# Largest on-chain u64 (token amounts, market ids)
U64_MAX = 2**64 - 1


def keccak256_hex(data: str) -> str:
    """Hex keccak-256 digest of a UTF-8 string."""
    digest = keccak.new(digest_bits=256)
    digest.update(data.encode("utf-8"))
    return digest.hexdigest()


def compute_items_hash(items: Sequence[str]) -> str:
    """
    Compute the items hash committed on-chain for a market's option list.

    Items are sorted so the hash does not depend on input order. Each item is
    hashed, the hex digests are concatenated, and the concatenation is hashed.

    Args:
        items: Market option labels (at least two)

    Returns:
        64 hex characters (32 bytes)

    Raises:
        InvalidInput: If fewer than two items are given
    """
    if not isinstance(items, (list, tuple)) or len(items) < 2:
        raise InvalidInput("Items must be an array with at least 2 items")

    hashes = [keccak256_hex(str(item)) for item in sorted(items)]
    return keccak256_hex("".join(hashes))


def normalize_items_hash(value: str) -> str:
    """Lower-case a 32-byte hex hash, accepting an optional 0x prefix."""
    normalized = (value or "").strip().lower()
    if normalized.startswith("0x"):
        normalized = normalized[2:]
    if len(normalized) != ITEMS_HASH_HEX_LENGTH:
        raise InvalidInput("itemsHash must be 32 bytes of hex")
    try:
        bytes.fromhex(normalized)
    except ValueError as exc:
        raise InvalidInput("itemsHash must be 32 bytes of hex") from exc
    return normalized


def validate_pubkey(value: str, field_name: str = "public key") -> str:
    """Return the canonical base58 form of a Solana public key."""
    try:
        return str(Pubkey.from_string((value or "").strip()))
    except ValueError as exc:
        raise InvalidInput(f"Invalid {field_name}: {value!r}") from exc


def now_ts() -> int:
    """Current unix time in whole seconds."""
    return int(time.time())
