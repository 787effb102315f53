"""
Validator registry.

Tracks third-party validators entitled to submit pass/fail attestations.
An identity registers at most once; deactivation is one-way. Reputation is
initialized to the scale midpoint and is not adjusted by any operation.
"""

import logging
import threading
from typing import Callable, Dict, List

from .errors import (
    AlreadyInactiveError,
    AlreadyRegisteredError,
    NotFoundError,
    UnauthorizedError,
    require_text,
)
from .models import REPUTATION_INITIAL, Validator, utc_now

logger = logging.getLogger(__name__)


class ValidatorRegistry:

    def __init__(self, clock: Callable = utc_now):
        self._clock = clock
        self._validators: Dict[str, Validator] = {}
        self._lock = threading.RLock()

    def register(self, identity: str, organization_name: str, certification_number: str) -> Validator:
        require_text(identity, "identity")
        require_text(organization_name, "organization_name")
        with self._lock:
            if identity in self._validators:
                raise AlreadyRegisteredError(f"validator already registered: {identity}", identity=identity)
            validator = Validator(
                identity=identity,
                organization_name=organization_name,
                certification_number=certification_number or "",
                registered_at=self._clock(),
                validation_count=0,
                reputation_score=REPUTATION_INITIAL,
                is_active=True,
            )
            self._validators[identity] = validator
            logger.info("validator %s registered (%s)", identity, organization_name)
            return Validator(**vars(validator))

    def is_authorized(self, identity: str) -> bool:
        with self._lock:
            v = self._validators.get(identity)
            return v is not None and v.is_active

    def get(self, identity: str) -> Validator:
        with self._lock:
            v = self._validators.get(identity)
            if v is None:
                raise NotFoundError(f"unknown validator: {identity}", identity=identity)
            return Validator(**vars(v))

    def list_validators(self) -> List[Validator]:
        with self._lock:
            return [Validator(**vars(v)) for v in self._validators.values()]

    def deactivate(self, identity: str) -> Validator:
        with self._lock:
            v = self._validators.get(identity)
            if v is None:
                raise NotFoundError(f"unknown validator: {identity}", identity=identity)
            if not v.is_active:
                raise AlreadyInactiveError(f"validator already inactive: {identity}", identity=identity)
            v.is_active = False
            logger.info("validator %s deactivated", identity)
            return Validator(**vars(v))

    def record_validation(self, identity: str) -> int:
        """Re-check authorization and bump the activity counter atomically."""
        with self._lock:
            v = self._validators.get(identity)
            if v is None or not v.is_active:
                raise UnauthorizedError(f"not an active validator: {identity}", identity=identity)
            v.validation_count += 1
            return v.validation_count

    def restore(self, validators: List[Validator]) -> None:
        with self._lock:
            for v in validators:
                self._validators[v.identity] = Validator(**vars(v))
