"""
Passport store.

Owns the mutable lifecycle of every passport:

    create -> (update data locator | set derived hash | append cert hash)*
           -> finalize  (irreversible, freezes content, fixes grade)

    deactivate is a separate one-way switch that blocks further mutation;
    a deactivated passport can no longer be finalized.

Guards on every mutation are checked in a fixed order and before any field
changes: NotFound, Forbidden, Locked, Inactive, InvalidArgument, then the
operation-specific check (AlreadySet, ConsensusNotReached).
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Union

from .errors import (
    AlreadyInactiveError,
    AlreadySetError,
    ConsensusNotReachedError,
    ForbiddenError,
    InactiveError,
    InvalidArgumentError,
    LockedError,
    NotFoundError,
    require_text,
)
from .identity import IdentityLedger
from .locking import KeyedLocks
from .models import DerivedHashSlot, Passport, utc_now

logger = logging.getLogger(__name__)


def _slot(slot: Union[DerivedHashSlot, str]) -> DerivedHashSlot:
    try:
        return DerivedHashSlot(slot)
    except ValueError:
        valid = [s.value for s in DerivedHashSlot]
        raise InvalidArgumentError(f"unknown derived hash slot '{slot}': must be one of {valid}",
                                   slot=str(slot)) from None


class _OrderedIndex:
    """value -> insertion-ordered set of passport ids."""

    def __init__(self):
        self._index: Dict[str, Dict[int, None]] = {}

    def add(self, value: Optional[str], passport_id: int) -> None:
        if value:
            self._index.setdefault(value, {})[passport_id] = None

    def remove(self, value: Optional[str], passport_id: int) -> None:
        ids = self._index.get(value or "")
        if ids is not None:
            ids.pop(passport_id, None)
            if not ids:
                del self._index[value]

    def get(self, value: str) -> List[int]:
        return list(self._index.get(value, {}))


class PassportStore:
    """
    Exclusive owner of Passport records.

    ``attestation`` is an optional policy consulted by ``finalize``; when set
    and not satisfied, finalization fails with ConsensusNotReachedError.
    """

    def __init__(
        self,
        identity: IdentityLedger,
        clock: Callable = utc_now,
        attestation=None,
    ):
        self.identity = identity
        self.attestation = attestation
        self._clock = clock
        self._passports: Dict[int, Passport] = {}
        self._locks = KeyedLocks()
        self._index_lock = threading.Lock()
        self._by_owner = _OrderedIndex()
        self._by_lab = _OrderedIndex()
        self._by_grade = _OrderedIndex()

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def create(
        self,
        package_key: str,
        material_id: str,
        data_locator: str,
        creator_identity: str,
        lab_identity: Optional[str] = None,
    ) -> Passport:
        """Create a passport; propagates DuplicateKeyError from the identity ledger."""
        require_text(package_key, "package_key")
        require_text(data_locator, "data_locator")
        require_text(creator_identity, "creator_identity")

        passport_id = self.identity.allocate(package_key)
        passport = Passport(
            id=passport_id,
            package_key=package_key,
            material_id=material_id or "",
            owner=creator_identity,
            creator=creator_identity,
            created_at=self._clock(),
            data_locator=data_locator,
            lab_identity=lab_identity or None,
        )
        with self._index_lock:
            self._passports[passport_id] = passport
            self._by_owner.add(passport.owner, passport_id)
            self._by_lab.add(passport.lab_identity, passport_id)
        logger.info("passport %d created for %s by %s", passport_id, package_key, creator_identity)
        return passport.snapshot()

    def get(self, passport_id: int) -> Passport:
        with self.hold(passport_id):
            return self._require(passport_id).snapshot()

    def get_by_key(self, package_key: str) -> Passport:
        return self.get(self.identity.resolve(package_key))

    def exists(self, passport_id: int) -> bool:
        with self._index_lock:
            return passport_id in self._passports

    def is_finalized(self, passport_id: int) -> bool:
        with self.hold(passport_id):
            return self._require(passport_id).is_finalized

    def all_ids(self) -> List[int]:
        with self._index_lock:
            return list(self._passports)

    def ids_by_owner(self, owner: str) -> List[int]:
        with self._index_lock:
            return self._by_owner.get(owner)

    def ids_by_lab(self, lab_identity: str) -> List[int]:
        with self._index_lock:
            return self._by_lab.get(lab_identity)

    def ids_by_grade(self, grade: str) -> List[int]:
        with self._index_lock:
            return self._by_grade.get(grade)

    def hold(self, passport_id: int):
        """
        Serialize a block of work against one passport.

        Raises NotFoundError for unknown ids, so no lock is ever made for them.
        """
        self._require(passport_id)
        return self._locks.hold(passport_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_data_locator(self, passport_id: int, new_locator: str, caller_identity: str) -> Passport:
        with self.hold(passport_id):
            passport = self._require_mutable(passport_id, caller_identity)
            require_text(new_locator, "data_locator")
            passport.data_locator = new_locator
            passport.version += 1
            logger.debug("passport %d data locator -> version %d", passport_id, passport.version)
            return passport.snapshot()

    def set_derived_hash(
        self,
        passport_id: int,
        slot: Union[DerivedHashSlot, str],
        value: str,
        caller_identity: str,
    ) -> Passport:
        with self.hold(passport_id):
            passport = self._require_mutable(passport_id, caller_identity)
            slot = _slot(slot)
            require_text(value, "hash")
            if passport.derived_hashes.get(slot):
                raise AlreadySetError(
                    f"derived hash '{slot.value}' already set on passport {passport_id}",
                    passport_id=passport_id,
                    slot=slot.value,
                )
            passport.derived_hashes[slot] = value
            return passport.snapshot()

    def append_material_cert_hash(self, passport_id: int, value: str, caller_identity: str) -> Passport:
        with self.hold(passport_id):
            passport = self._require_mutable(passport_id, caller_identity)
            require_text(value, "hash")
            passport.material_cert_hashes.append(value)
            return passport.snapshot()

    def deactivate(self, passport_id: int, caller_identity: str) -> Passport:
        with self.hold(passport_id):
            passport = self._require(passport_id)
            self._require_owner(passport, caller_identity)
            if not passport.is_active:
                raise AlreadyInactiveError(f"passport {passport_id} is already inactive", passport_id=passport_id)
            passport.is_active = False
            logger.info("passport %d deactivated by %s", passport_id, caller_identity)
            return passport.snapshot()

    def finalize(
        self,
        passport_id: int,
        final_grade: str,
        certification_hash: str,
        caller_identity: str,
    ) -> Passport:
        """
        Lock the passport and fix its grade and certification hash.

        Grade, hash and the finalized flag are written together after every
        guard, including the attestation policy, has passed.
        """
        with self.hold(passport_id):
            passport = self._require_mutable(passport_id, caller_identity)
            require_text(final_grade, "final_grade")
            require_text(certification_hash, "certification_hash")
            if self.attestation is not None and not self.attestation.is_satisfied(passport_id):
                raise ConsensusNotReachedError(
                    f"passport {passport_id} lacks required attestation: {self.attestation.describe()}",
                    passport_id=passport_id,
                )
            passport.final_grade = final_grade
            passport.certification_hash = certification_hash
            passport.finalized_at = self._clock()
            passport.is_finalized = True
            with self._index_lock:
                self._by_grade.add(final_grade, passport_id)
            logger.info("passport %d finalized with grade %s", passport_id, final_grade)
            return passport.snapshot()

    def transfer(self, passport_id: int, new_owner: str, caller_identity: str) -> Passport:
        with self.hold(passport_id):
            passport = self._require(passport_id)
            self._require_owner(passport, caller_identity)
            require_text(new_owner, "new_owner")
            old_owner = passport.owner
            with self._index_lock:
                self._by_owner.remove(old_owner, passport_id)
                self._by_owner.add(new_owner, passport_id)
                passport.owner = new_owner
            logger.info("passport %d transferred %s -> %s", passport_id, old_owner, new_owner)
            return passport.snapshot()

    # ------------------------------------------------------------------
    # Persistence support
    # ------------------------------------------------------------------

    def restore(self, passport: Passport) -> None:
        """Insert a persisted passport; its key must already be in the identity ledger."""
        if self.identity.keys().get(passport.package_key) != passport.id:
            raise InvalidArgumentError(f"passport {passport.id} is not in the identity ledger")
        with self._index_lock:
            if passport.id in self._passports:
                raise InvalidArgumentError(f"passport {passport.id} already loaded")
            self._passports[passport.id] = passport.snapshot()
            self._by_owner.add(passport.owner, passport.id)
            self._by_lab.add(passport.lab_identity, passport.id)
            if passport.is_finalized:
                self._by_grade.add(passport.final_grade, passport.id)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _require(self, passport_id: int) -> Passport:
        with self._index_lock:
            passport = self._passports.get(passport_id)
        if passport is None:
            raise NotFoundError(f"no passport with id {passport_id}", passport_id=passport_id)
        return passport

    @staticmethod
    def _require_owner(passport: Passport, caller_identity: str) -> None:
        if caller_identity != passport.owner:
            raise ForbiddenError(
                f"caller is not the owner of passport {passport.id}",
                passport_id=passport.id,
                caller=caller_identity,
            )

    def _require_mutable(self, passport_id: int, caller_identity: str) -> Passport:
        passport = self._require(passport_id)
        self._require_owner(passport, caller_identity)
        if passport.is_finalized:
            raise LockedError(f"passport {passport_id} is finalized", passport_id=passport_id)
        if not passport.is_active:
            raise InactiveError(f"passport {passport_id} is inactive", passport_id=passport_id)
        return passport
