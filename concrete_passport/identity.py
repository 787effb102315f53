"""
Identity ledger.

Issues sequential passport identities and keeps the permanent mapping from
human-readable package keys (batch labels such as "PROD-2024-001") to them.
Identities start at 1; 0 is the NO_IDENTITY sentinel. There is no deletion.
"""

import logging
import threading
from typing import Dict

from .errors import DuplicateKeyError, InvalidArgumentError, NotFoundError, require_text
from .models import NO_IDENTITY

logger = logging.getLogger(__name__)


class IdentityLedger:
    """Package key to passport id mapping with a single allocation lock."""

    def __init__(self):
        self._by_key: Dict[str, int] = {}
        self._next_id = NO_IDENTITY + 1
        self._lock = threading.Lock()

    def allocate(self, package_key: str) -> int:
        """
        Allocate the next identity for ``package_key``.

        Raises:
            InvalidArgumentError: if the key is empty
            DuplicateKeyError: if the key is already mapped
        """
        require_text(package_key, "package_key")
        with self._lock:
            if package_key in self._by_key:
                raise DuplicateKeyError(
                    f"package key already registered: {package_key}",
                    package_key=package_key,
                    id=self._by_key[package_key],
                )
            new_id = self._next_id
            self._by_key[package_key] = new_id
            self._next_id += 1
        logger.debug("allocated passport id %d for %s", new_id, package_key)
        return new_id

    def resolve(self, package_key: str) -> int:
        with self._lock:
            try:
                return self._by_key[package_key]
            except KeyError:
                raise NotFoundError(f"unknown package key: {package_key}", package_key=package_key) from None

    def exists(self, passport_id: int) -> bool:
        with self._lock:
            return NO_IDENTITY < passport_id < self._next_id

    def keys(self) -> Dict[str, int]:
        """Snapshot of the key index."""
        with self._lock:
            return dict(self._by_key)

    def restore(self, mapping: Dict[str, int]) -> None:
        """Load a persisted key index into an empty ledger."""
        with self._lock:
            if self._by_key:
                raise InvalidArgumentError("identity ledger already populated")
            ids = sorted(mapping.values())
            if len(set(ids)) != len(ids) or (ids and ids[0] <= NO_IDENTITY):
                raise InvalidArgumentError("persisted key index is not one-to-one")
            self._by_key = dict(mapping)
            self._next_id = (ids[-1] + 1) if ids else NO_IDENTITY + 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_key)
