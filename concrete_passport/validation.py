"""
Validation ledger.

Append-only per-passport record of validator attestations, plus the
consensus computation that gates trust in a passport's data.

Every submission is kept. A validator that submits more than once for the
same passport still only casts one vote: consensus counts the latest
submission of each distinct validator, so a single identity can never reach
the threshold on its own.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from .errors import InvalidArgumentError, NotFoundError, UnauthorizedError
from .locking import KeyedLocks
from .models import ValidationRecord, utc_now
from .passports import PassportStore
from .validators import ValidatorRegistry

logger = logging.getLogger(__name__)

REQUIRED_VALIDATIONS = 3


@dataclass(frozen=True)
class ConsensusStatus:
    """
    total:    every stored submission for the passport
    passed:   distinct validators whose latest submission passed
    required: threshold for consensus
    """
    total: int
    passed: int
    required: int

    @property
    def reached(self) -> bool:
        return self.passed >= self.required

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "required": self.required,
            "reached": self.reached,
        }


class ValidationLedger:

    def __init__(
        self,
        passports: PassportStore,
        validators: ValidatorRegistry,
        required_validations: int = REQUIRED_VALIDATIONS,
        clock: Callable = utc_now,
    ):
        if required_validations < 1:
            raise InvalidArgumentError("required_validations must be at least 1")
        self.passports = passports
        self.validators = validators
        self.required_validations = required_validations
        self._clock = clock
        self._records: Dict[int, List[ValidationRecord]] = {}
        self._locks = KeyedLocks()

    def submit(
        self,
        passport_id: int,
        validator_identity: str,
        passed: bool,
        report_locator: str,
        signature: bytes = b"",
    ) -> ValidationRecord:
        if not self.passports.exists(passport_id):
            raise NotFoundError(f"no passport with id {passport_id}", passport_id=passport_id)
        if not self.validators.is_authorized(validator_identity):
            raise UnauthorizedError(f"not an active validator: {validator_identity}",
                                    identity=validator_identity)

        with self._locks.hold(passport_id):
            # re-checks authorization under the validator lock
            self.validators.record_validation(validator_identity)
            record = ValidationRecord(
                passport_id=passport_id,
                validator_identity=validator_identity,
                timestamp=self._clock(),
                passed=bool(passed),
                report_locator=report_locator or "",
                signature=bytes(signature or b""),
            )
            self._records.setdefault(passport_id, []).append(record)
        logger.info("passport %d validation by %s: %s", passport_id, validator_identity,
                    "PASS" if passed else "FAIL")
        return record

    def records(self, passport_id: int) -> List[ValidationRecord]:
        if not self.passports.exists(passport_id):
            raise NotFoundError(f"no passport with id {passport_id}", passport_id=passport_id)
        with self._locks.hold(passport_id):
            return list(self._records.get(passport_id, []))

    def records_by_validator(self, validator_identity: str) -> List[ValidationRecord]:
        out: List[ValidationRecord] = []
        for passport_id in sorted(self._records.copy()):
            with self._locks.hold(passport_id):
                out.extend(r for r in self._records[passport_id] if r.validator_identity == validator_identity)
        return out

    def status(self, passport_id: int) -> ConsensusStatus:
        records = self.records(passport_id)
        latest: Dict[str, bool] = {}
        for r in records:
            latest[r.validator_identity] = r.passed
        return ConsensusStatus(
            total=len(records),
            passed=sum(1 for ok in latest.values() if ok),
            required=self.required_validations,
        )

    def is_consensus_reached(self, passport_id: int) -> bool:
        return self.status(passport_id).reached

    def restore(self, records: List[ValidationRecord]) -> None:
        for r in records:
            self._records.setdefault(r.passport_id, []).append(r)
