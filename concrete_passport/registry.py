"""
Registry facade.

ProvenanceRegistry composes the identity ledger, passport store, provenance
log, validator registry, validation ledger and lab test workflow into one
object, wires the deployment's finalize attestation policy, and emits one
RegistryEvent per successful state change.

A failed call emits nothing. Events about one passport are written while its
lock is still held, so they reach the log in the order the changes were made.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, List, Optional, Union

from .attestation import FinalizePolicy, build_attestation
from .errors import ForbiddenError, RegistryError
from .events import EntityKind, EventLog, InMemoryEventLog, RegistryEvent
from .identity import IdentityLedger
from .lab_tests import LabDirectory, LabTestLedger
from .models import (
    DerivedHashSlot,
    Lab,
    MaterialBatch,
    Passport,
    ProcessEvent,
    TestKind,
    TestResult,
    TestStatus,
    ValidationRecord,
    Validator,
    format_ts,
    utc_now,
)
from .passports import PassportStore
from .provenance import ProvenanceLog
from .validation import REQUIRED_VALIDATIONS, ConsensusStatus, ValidationLedger
from .validators import ValidatorRegistry

logger = logging.getLogger(__name__)


@dataclass
class RegistryConfig:
    """
    Deployment policy.

    admin_identity: when set, lab authorization/revocation and validator
    deactivation are restricted to this identity.
    """
    required_validations: int = REQUIRED_VALIDATIONS
    finalize_policy: FinalizePolicy = FinalizePolicy.NONE
    freeze_materials_on_finalize: bool = False
    lab_tests_required: int = 1
    admin_identity: Optional[str] = None

    def __post_init__(self):
        self.finalize_policy = FinalizePolicy(self.finalize_policy)
        if self.required_validations < 1:
            raise ValueError("required_validations must be at least 1")
        if self.lab_tests_required < 1:
            raise ValueError("lab_tests_required must be at least 1")
        if self.admin_identity is not None and not self.admin_identity.strip():
            self.admin_identity = None

    def to_dict(self):
        return {
            "required_validations": self.required_validations,
            "finalize_policy": self.finalize_policy.value,
            "freeze_materials_on_finalize": self.freeze_materials_on_finalize,
            "lab_tests_required": self.lab_tests_required,
            "admin_configured": self.admin_identity is not None,
        }


class ProvenanceRegistry:

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        event_log: Optional[EventLog] = None,
    ):
        self.config = config or RegistryConfig()
        self.clock = clock
        self.events = event_log if event_log is not None else InMemoryEventLog()

        self.identity = IdentityLedger()
        self.passports = PassportStore(self.identity, clock=clock)
        self.provenance = ProvenanceLog(self.passports, clock=clock,
                                        freeze_materials=self.config.freeze_materials_on_finalize)
        self.validators = ValidatorRegistry(clock=clock)
        self.validations = ValidationLedger(self.passports, self.validators,
                                            required_validations=self.config.required_validations,
                                            clock=clock)
        self.labs = LabDirectory(clock=clock)
        self.lab_tests = LabTestLedger(self.passports, self.labs, clock=clock)
        self.passports.attestation = build_attestation(
            self.config.finalize_policy,
            self.validations,
            self.lab_tests,
            self.config.lab_tests_required,
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _operation(self, name: str, caller: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except RegistryError as e:
            logger.warning("%s rejected (%s) for caller %s: %s", name, e.kind.value, caller, e.message)
            raise

    @contextmanager
    def _passport_operation(self, name: str, passport_id: int, caller: Optional[str] = None) -> Iterator[None]:
        """An operation whose event must reach the log in the passport's commit order."""
        with self._operation(name, caller), self.passports.hold(passport_id):
            yield

    def _emit(self, entity_kind: str, entity_id: Any, operation: str, **fields: Any) -> RegistryEvent:
        return self.events.append(RegistryEvent(
            entity_kind=entity_kind,
            entity_id=str(entity_id),
            operation=operation,
            timestamp=self.clock(),
            fields=fields,
        ))

    def _require_admin(self, caller_identity: Optional[str], action: str) -> None:
        admin = self.config.admin_identity
        if admin is not None and caller_identity != admin:
            raise ForbiddenError(f"only the registry admin may {action}", caller=caller_identity)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def allocate(self, package_key: str) -> int:
        with self._operation("allocate"):
            passport_id = self.identity.allocate(package_key)
        self._emit(EntityKind.IDENTITY, passport_id, "allocated", package_key=package_key)
        return passport_id

    def resolve(self, package_key: str) -> int:
        return self.identity.resolve(package_key)

    # ------------------------------------------------------------------
    # Passports
    # ------------------------------------------------------------------

    def create_passport(
        self,
        package_key: str,
        material_id: str,
        data_locator: str,
        caller_identity: str,
        lab_identity: Optional[str] = None,
    ) -> Passport:
        with self._operation("create_passport", caller_identity):
            passport = self.passports.create(package_key, material_id, data_locator,
                                             caller_identity, lab_identity)
        self._emit(EntityKind.PASSPORT, passport.id, "created",
                   package_key=passport.package_key, material_id=passport.material_id,
                   owner=passport.owner, lab_identity=passport.lab_identity,
                   data_locator=passport.data_locator)
        return passport

    def get_passport(self, passport_id: int) -> Passport:
        return self.passports.get(passport_id)

    def get_passport_by_key(self, package_key: str) -> Passport:
        return self.passports.get_by_key(package_key)

    def passports_by_owner(self, owner: str) -> List[Passport]:
        return [self.passports.get(i) for i in self.passports.ids_by_owner(owner)]

    def passports_by_lab(self, lab_identity: str) -> List[Passport]:
        return [self.passports.get(i) for i in self.passports.ids_by_lab(lab_identity)]

    def passports_by_grade(self, grade: str) -> List[Passport]:
        return [self.passports.get(i) for i in self.passports.ids_by_grade(grade)]

    def update_data_locator(self, passport_id: int, new_locator: str, caller_identity: str) -> Passport:
        with self._passport_operation("update_data_locator", passport_id, caller_identity):
            passport = self.passports.update_data_locator(passport_id, new_locator, caller_identity)
            self._emit(EntityKind.PASSPORT, passport_id, "data_locator_updated",
                       data_locator=passport.data_locator, version=passport.version)
        return passport

    def set_derived_hash(
        self,
        passport_id: int,
        slot: Union[DerivedHashSlot, str],
        value: str,
        caller_identity: str,
    ) -> Passport:
        with self._passport_operation("set_derived_hash", passport_id, caller_identity):
            passport = self.passports.set_derived_hash(passport_id, slot, value, caller_identity)
            self._emit(EntityKind.PASSPORT, passport_id, "derived_hash_set",
                       slot=DerivedHashSlot(slot).value, hash=value)
        return passport

    def append_material_cert_hash(self, passport_id: int, value: str, caller_identity: str) -> Passport:
        with self._passport_operation("append_material_cert_hash", passport_id, caller_identity):
            passport = self.passports.append_material_cert_hash(passport_id, value, caller_identity)
            self._emit(EntityKind.PASSPORT, passport_id, "material_cert_hash_appended",
                       hash=value, count=len(passport.material_cert_hashes))
        return passport

    def deactivate(self, passport_id: int, caller_identity: str) -> Passport:
        with self._passport_operation("deactivate", passport_id, caller_identity):
            passport = self.passports.deactivate(passport_id, caller_identity)
            self._emit(EntityKind.PASSPORT, passport_id, "deactivated")
        return passport

    def finalize(self, passport_id: int, final_grade: str, certification_hash: str,
                 caller_identity: str) -> Passport:
        with self._passport_operation("finalize", passport_id, caller_identity):
            passport = self.passports.finalize(passport_id, final_grade, certification_hash, caller_identity)
            self._emit(EntityKind.PASSPORT, passport_id, "finalized",
                       final_grade=passport.final_grade,
                       certification_hash=passport.certification_hash,
                       finalized_at=format_ts(passport.finalized_at))
        return passport

    def transfer(self, passport_id: int, new_owner: str, caller_identity: str) -> Passport:
        with self._passport_operation("transfer", passport_id, caller_identity):
            passport = self.passports.transfer(passport_id, new_owner, caller_identity)
            self._emit(EntityKind.PASSPORT, passport_id, "transferred",
                       previous_owner=caller_identity, owner=passport.owner)
        return passport

    # ------------------------------------------------------------------
    # Provenance
    # ------------------------------------------------------------------

    def add_material_batch(
        self,
        passport_id: int,
        batch_number: str,
        material_type: str,
        supplier_name: str,
        certificate_hash: str,
        expiry_at: Optional[datetime],
        caller_identity: str,
    ) -> MaterialBatch:
        with self._passport_operation("add_material_batch", passport_id, caller_identity):
            batch = self.provenance.add_material_batch(passport_id, batch_number, material_type,
                                                       supplier_name, certificate_hash, expiry_at,
                                                       caller_identity)
            self._emit(EntityKind.MATERIAL_BATCH, passport_id, "appended",
                       sequence=batch.sequence, batch_number=batch.batch_number,
                       material_type=batch.material_type, certificate_hash=batch.certificate_hash)
        return batch

    def record_process_event(
        self,
        passport_id: int,
        event_kind: str,
        caller_identity: str,
        data_locator: str = "",
        parameters_hash: str = "",
    ) -> ProcessEvent:
        with self._passport_operation("record_process_event", passport_id, caller_identity):
            event = self.provenance.record_process_event(passport_id, event_kind, caller_identity,
                                                         data_locator, parameters_hash)
            self._emit(EntityKind.PROCESS_EVENT, passport_id, "appended",
                       sequence=event.sequence, event_kind=event.event_kind,
                       operator_identity=event.operator_identity, data_locator=event.data_locator,
                       parameters_hash=event.parameters_hash)
        return event

    def history(self, passport_id: int) -> List[ProcessEvent]:
        return self.provenance.history(passport_id)

    def materials(self, passport_id: int) -> List[MaterialBatch]:
        return self.provenance.materials(passport_id)

    # ------------------------------------------------------------------
    # Validators and consensus
    # ------------------------------------------------------------------

    def register_validator(self, identity: str, organization_name: str, certification_number: str) -> Validator:
        with self._operation("register_validator", identity):
            validator = self.validators.register(identity, organization_name, certification_number)
        self._emit(EntityKind.VALIDATOR, identity, "registered",
                   organization_name=organization_name, certification_number=validator.certification_number)
        return validator

    def get_validator(self, identity: str) -> Validator:
        return self.validators.get(identity)

    def list_validators(self) -> List[Validator]:
        return self.validators.list_validators()

    def is_authorized_validator(self, identity: str) -> bool:
        return self.validators.is_authorized(identity)

    def deactivate_validator(self, identity: str, caller_identity: Optional[str] = None) -> Validator:
        with self._operation("deactivate_validator", caller_identity):
            self._require_admin(caller_identity, "deactivate validators")
            validator = self.validators.deactivate(identity)
        self._emit(EntityKind.VALIDATOR, identity, "deactivated")
        return validator

    def submit_validation(
        self,
        passport_id: int,
        caller_identity: str,
        passed: bool,
        report_locator: str = "",
        signature: bytes = b"",
    ) -> ValidationRecord:
        with self._passport_operation("submit_validation", passport_id, caller_identity):
            record = self.validations.submit(passport_id, caller_identity, passed, report_locator, signature)
            status = self.validations.status(passport_id)
            self._emit(EntityKind.VALIDATION, passport_id, "submitted",
                       validator_identity=caller_identity, passed=record.passed,
                       report_locator=record.report_locator,
                       passed_count=status.passed, consensus_reached=status.reached)
        return record

    def validation_records(self, passport_id: int) -> List[ValidationRecord]:
        return self.validations.records(passport_id)

    def consensus_status(self, passport_id: int) -> ConsensusStatus:
        return self.validations.status(passport_id)

    def is_consensus_reached(self, passport_id: int) -> bool:
        return self.validations.is_consensus_reached(passport_id)

    # ------------------------------------------------------------------
    # Labs and test results
    # ------------------------------------------------------------------

    def authorize_lab(self, identity: str, name: str, accreditation: str = "",
                      caller_identity: Optional[str] = None) -> Lab:
        with self._operation("authorize_lab", caller_identity):
            self._require_admin(caller_identity, "authorize labs")
            lab = self.labs.authorize(identity, name, accreditation)
        self._emit(EntityKind.LAB, identity, "authorized", name=name, accreditation=lab.accreditation)
        return lab

    def revoke_lab(self, identity: str, caller_identity: Optional[str] = None) -> Lab:
        with self._operation("revoke_lab", caller_identity):
            self._require_admin(caller_identity, "revoke labs")
            lab = self.labs.revoke(identity)
        self._emit(EntityKind.LAB, identity, "revoked")
        return lab

    def get_lab(self, identity: str) -> Lab:
        return self.labs.get(identity)

    def list_labs(self) -> List[Lab]:
        return self.labs.list_labs()

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
        with self._operation("submit_test_result", caller_identity):
            result = self.lab_tests.submit_test_result(passport_id, test_kind, data_locator, test_date,
                                                       curing_age, result_summary, caller_identity)
        self._emit(EntityKind.TEST_RESULT, result.test_id, "submitted",
                   passport_id=passport_id, test_kind=result.test_kind.value,
                   lab_identity=result.lab_identity, data_locator=result.data_locator,
                   curing_age=result.curing_age)
        return result

    def validate_test_result(self, test_id: int, outcome: Union[TestStatus, str],
                             caller_identity: str) -> TestResult:
        with self._operation("validate_test_result", caller_identity):
            result = self.lab_tests.validate_test_result(test_id, outcome, caller_identity)
        self._emit(EntityKind.TEST_RESULT, test_id, "resolved",
                   passport_id=result.passport_id, status=result.status.value,
                   validator_identity=result.validator_identity)
        return result

    def update_test_result(self, test_id: int, new_locator: str, caller_identity: str,
                           result_summary: Optional[str] = None) -> TestResult:
        with self._operation("update_test_result", caller_identity):
            result = self.lab_tests.update_test_result(test_id, new_locator, caller_identity, result_summary)
        self._emit(EntityKind.TEST_RESULT, test_id, "updated",
                   passport_id=result.passport_id, data_locator=result.data_locator)
        return result

    def get_test_result(self, test_id: int) -> TestResult:
        return self.lab_tests.get_test_result(test_id)

    def tests_for_passport(self, passport_id: int) -> List[TestResult]:
        return self.lab_tests.tests_for_passport(passport_id)
