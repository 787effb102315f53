"""
Lab test workflow.

Accredited labs submit test results against passports and peer labs validate
them. A result moves through:

    PENDING --validate--> VALIDATED | REJECTED   (terminal)
                      +-> DISPUTED --validate--> VALIDATED | REJECTED | DISPUTED

The submitting lab can never validate its own result, and a result's data
can only be revised while it is still PENDING.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Union

from .errors import (
    AlreadyInactiveError,
    AlreadyRegisteredError,
    ForbiddenError,
    InvalidArgumentError,
    LockedError,
    NotFoundError,
    UnauthorizedError,
    require_text,
)
from .locking import KeyedLocks
from .models import Lab, TestKind, TestResult, TestStatus, utc_now
from .passports import PassportStore

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({TestStatus.VALIDATED, TestStatus.REJECTED})
RESULT_SUMMARY_MAX = 256


def _test_kind(kind: Union[TestKind, str]) -> TestKind:
    try:
        return TestKind(kind)
    except ValueError:
        valid = [k.value for k in TestKind]
        raise InvalidArgumentError(f"unknown test kind '{kind}': must be one of {valid}") from None


def _outcome(outcome: Union[TestStatus, str]) -> TestStatus:
    try:
        status = TestStatus(outcome)
    except ValueError:
        status = None
    if status is None or status == TestStatus.PENDING:
        raise InvalidArgumentError(
            f"invalid validation outcome '{outcome}': must be Validated, Rejected or Disputed"
        )
    return status


class LabDirectory:
    """Authorized testing facilities."""

    def __init__(self, clock: Callable = utc_now):
        self._clock = clock
        self._labs: Dict[str, Lab] = {}
        self._lock = threading.RLock()

    def authorize(self, identity: str, name: str, accreditation: str = "") -> Lab:
        require_text(identity, "identity")
        require_text(name, "name")
        with self._lock:
            if identity in self._labs:
                raise AlreadyRegisteredError(f"lab already authorized: {identity}", identity=identity)
            lab = Lab(identity=identity, name=name, accreditation=accreditation or "",
                      authorized_at=self._clock())
            self._labs[identity] = lab
            logger.info("lab %s authorized (%s)", identity, name)
            return Lab(**vars(lab))

    def revoke(self, identity: str) -> Lab:
        with self._lock:
            lab = self._labs.get(identity)
            if lab is None:
                raise NotFoundError(f"unknown lab: {identity}", identity=identity)
            if not lab.is_active:
                raise AlreadyInactiveError(f"lab already revoked: {identity}", identity=identity)
            lab.is_active = False
            logger.info("lab %s revoked", identity)
            return Lab(**vars(lab))

    def is_authorized(self, identity: str) -> bool:
        with self._lock:
            lab = self._labs.get(identity)
            return lab is not None and lab.is_active

    def get(self, identity: str) -> Lab:
        with self._lock:
            lab = self._labs.get(identity)
            if lab is None:
                raise NotFoundError(f"unknown lab: {identity}", identity=identity)
            return Lab(**vars(lab))

    def list_labs(self) -> List[Lab]:
        with self._lock:
            return [Lab(**vars(lab)) for lab in self._labs.values()]

    def restore(self, labs: List[Lab]) -> None:
        with self._lock:
            for lab in labs:
                self._labs[lab.identity] = Lab(**vars(lab))


class LabTestLedger:

    def __init__(self, passports: PassportStore, labs: LabDirectory, clock: Callable = utc_now):
        self.passports = passports
        self.labs = labs
        self._clock = clock
        self._tests: Dict[int, TestResult] = {}
        self._by_passport: Dict[int, List[int]] = {}
        self._next_id = 1
        self._lock = threading.Lock()
        self._locks = KeyedLocks()

    def submit_test_result(
        self,
        passport_id: int,
        test_kind: Union[TestKind, str],
        data_locator: str,
        test_date: datetime,
        curing_age: int,
        result_summary: str,
        caller_identity: str,
    ) -> TestResult:
        if not self.passports.exists(passport_id):
            raise NotFoundError(f"no passport with id {passport_id}", passport_id=passport_id)
        if not self.labs.is_authorized(caller_identity):
            raise UnauthorizedError(f"not an authorized lab: {caller_identity}", identity=caller_identity)

        kind = _test_kind(test_kind)
        require_text(data_locator, "data_locator")
        if isinstance(curing_age, bool) or not isinstance(curing_age, int) or curing_age < 0:
            raise InvalidArgumentError("curing_age must be a non-negative number of days", curing_age=curing_age)
        summary = result_summary or ""
        if len(summary) > RESULT_SUMMARY_MAX:
            raise InvalidArgumentError(f"result_summary must not exceed {RESULT_SUMMARY_MAX} characters")
        if not isinstance(test_date, datetime):
            raise InvalidArgumentError("test_date must be a datetime")
        if test_date.tzinfo is None:
            test_date = test_date.replace(tzinfo=timezone.utc)
        now = self._clock()
        if test_date > now:
            raise InvalidArgumentError("test_date must not be in the future", test_date=test_date.isoformat())

        with self._lock:
            test_id = self._next_id
            self._next_id += 1
            result = TestResult(
                test_id=test_id,
                passport_id=passport_id,
                test_kind=kind,
                data_locator=data_locator,
                lab_identity=caller_identity,
                submitter_identity=caller_identity,
                submitted_at=now,
                test_date=test_date,
                curing_age=curing_age,
                result_summary=summary,
            )
            self._tests[test_id] = result
            self._by_passport.setdefault(passport_id, []).append(test_id)
        logger.info("test %d (%s) submitted for passport %d by %s", test_id, kind.value,
                    passport_id, caller_identity)
        return TestResult(**vars(result))

    def validate_test_result(
        self,
        test_id: int,
        outcome: Union[TestStatus, str],
        caller_identity: str,
    ) -> TestResult:
        with self._hold(test_id):
            result = self._require(test_id)
            if not self.labs.is_authorized(caller_identity):
                raise UnauthorizedError(f"not an authorized lab: {caller_identity}", identity=caller_identity)
            if caller_identity == result.lab_identity:
                raise ForbiddenError("a lab cannot validate its own test result", test_id=test_id)
            if result.status in TERMINAL_STATUSES:
                raise LockedError(f"test {test_id} is already {result.status.value}", test_id=test_id)
            status = _outcome(outcome)
            result.status = status
            result.validator_identity = caller_identity
            result.validated_at = self._clock()
            logger.info("test %d resolved %s by %s", test_id, status.value, caller_identity)
            return TestResult(**vars(result))

    def update_test_result(
        self,
        test_id: int,
        new_locator: str,
        caller_identity: str,
        result_summary: Optional[str] = None,
    ) -> TestResult:
        with self._hold(test_id):
            result = self._require(test_id)
            if caller_identity != result.submitter_identity:
                raise ForbiddenError("only the submitting lab may update a test result", test_id=test_id)
            if result.status != TestStatus.PENDING:
                raise LockedError(f"test {test_id} is {result.status.value}", test_id=test_id)
            require_text(new_locator, "data_locator")
            if result_summary is not None and len(result_summary) > RESULT_SUMMARY_MAX:
                raise InvalidArgumentError(f"result_summary must not exceed {RESULT_SUMMARY_MAX} characters")
            result.data_locator = new_locator
            if result_summary is not None:
                result.result_summary = result_summary
            return TestResult(**vars(result))

    def get_test_result(self, test_id: int) -> TestResult:
        with self._hold(test_id):
            return TestResult(**vars(self._require(test_id)))

    def tests_for_passport(self, passport_id: int) -> List[TestResult]:
        if not self.passports.exists(passport_id):
            raise NotFoundError(f"no passport with id {passport_id}", passport_id=passport_id)
        with self._lock:
            ids = list(self._by_passport.get(passport_id, []))
        return [self.get_test_result(i) for i in ids]

    def all_tests(self) -> List[TestResult]:
        with self._lock:
            ids = sorted(self._tests)
        return [self.get_test_result(i) for i in ids]

    def restore(self, results: List[TestResult]) -> None:
        with self._lock:
            for r in sorted(results, key=lambda t: t.test_id):
                self._tests[r.test_id] = TestResult(**vars(r))
                self._by_passport.setdefault(r.passport_id, []).append(r.test_id)
                self._next_id = max(self._next_id, r.test_id + 1)

    def _hold(self, test_id: int):
        self._require(test_id)
        return self._locks.hold(test_id)

    def _require(self, test_id: int) -> TestResult:
        with self._lock:
            result = self._tests.get(test_id)
        if result is None:
            raise NotFoundError(f"no test result with id {test_id}", test_id=test_id)
        return result
