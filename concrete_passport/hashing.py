"""
Hashing helpers.

All hashes use SHA-256 with lowercase hexadecimal output. Content locators
produced by the bundled content stores use the ``content:sha256:<hex>`` form;
the registry itself treats every locator as an opaque string.
"""

import hashlib
from typing import Optional, Union

CONTENT_PREFIX = "content:sha256:"


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def content_locator(data: Union[bytes, str]) -> str:
    """Content-addressed locator for a payload."""
    return f"{CONTENT_PREFIX}{sha256_hex(data)}"


def locator_digest(locator: str) -> Optional[str]:
    """Return the hex digest of a ``content:sha256:`` locator, else None."""
    if not locator.startswith(CONTENT_PREFIX):
        return None
    digest = locator[len(CONTENT_PREFIX):]
    if len(digest) != 64:
        return None
    try:
        int(digest, 16)
    except ValueError:
        return None
    return digest.lower()


def verify_locator(locator: str, data: Union[bytes, str]) -> bool:
    """Verify that data matches a ``content:sha256:`` locator."""
    return locator_digest(locator) is not None and content_locator(data) == locator


def chain_entry_hash(prev_entry_hash: Optional[str], payload_hash: str) -> str:
    """
    Link a payload hash to the previous entry, forming a tamper-evident chain.

    The first entry links to the empty string.
    """
    data = (prev_entry_hash or "").encode("utf-8") + payload_hash.encode("utf-8")
    return sha256_hex(data)
