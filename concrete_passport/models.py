"""
Registry records.

Plain dataclasses for every entity the registry owns. Records handed out by
the components are copies; mutating them never changes registry state.
Timestamps are timezone-aware UTC datetimes, serialized as RFC 3339 with a
trailing ``Z``.
"""

import base64
import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# Identity 0 never names a passport.
NO_IDENTITY = 0

REPUTATION_INITIAL = 500


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_ts(s: Optional[str]) -> Optional[datetime]:
    if s is None:
        return None
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class DerivedHashSlot(str, Enum):
    """Write-once auxiliary verification hashes carried by a passport."""
    DESIGN_INTENT = "design_intent"        # machine-instruction (G-code) file
    MIX_DESIGN = "mix_design"
    PRINT_PARAMETERS = "print_parameters"


class TestKind(str, Enum):
    COMPRESSION = "Compression"
    FLEXURAL = "Flexural"
    TENSILE = "Tensile"
    ULTRASONIC = "Ultrasonic"
    REBOUND_HAMMER = "ReboundHammer"
    DURABILITY = "Durability"
    CHEMICAL = "Chemical"
    OTHER = "Other"

    __test__ = False


class TestStatus(str, Enum):
    """
    Lab test result states.

    PENDING: submitted, awaiting a peer lab
    VALIDATED / REJECTED: terminal
    DISPUTED: may be re-resolved by a peer lab
    """
    PENDING = "Pending"
    VALIDATED = "Validated"
    DISPUTED = "Disputed"
    REJECTED = "Rejected"

    __test__ = False


@dataclass
class Passport:
    """
    Per-production-unit identity and lifecycle record.

    ``version`` counts data locator revisions starting at 1. Once
    ``is_finalized`` is set every content field is frozen.
    """
    id: int
    package_key: str
    material_id: str
    owner: str
    creator: str
    created_at: datetime
    data_locator: str
    lab_identity: Optional[str] = None
    version: int = 1
    derived_hashes: Dict[DerivedHashSlot, str] = field(default_factory=dict)
    material_cert_hashes: List[str] = field(default_factory=list)
    is_active: bool = True
    is_finalized: bool = False
    final_grade: Optional[str] = None
    certification_hash: Optional[str] = None
    finalized_at: Optional[datetime] = None

    def snapshot(self) -> 'Passport':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "package_key": self.package_key,
            "material_id": self.material_id,
            "owner": self.owner,
            "creator": self.creator,
            "created_at": format_ts(self.created_at),
            "lab_identity": self.lab_identity,
            "data_locator": self.data_locator,
            "version": self.version,
            "derived_hashes": {slot.value: h for slot, h in sorted(self.derived_hashes.items())},
            "material_cert_hashes": list(self.material_cert_hashes),
            "is_active": self.is_active,
            "is_finalized": self.is_finalized,
            "final_grade": self.final_grade,
            "certification_hash": self.certification_hash,
            "finalized_at": format_ts(self.finalized_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Passport':
        return cls(
            id=int(data["id"]),
            package_key=data["package_key"],
            material_id=data["material_id"],
            owner=data["owner"],
            creator=data["creator"],
            created_at=parse_ts(data["created_at"]),
            lab_identity=data.get("lab_identity"),
            data_locator=data["data_locator"],
            version=int(data.get("version", 1)),
            derived_hashes={DerivedHashSlot(k): v for k, v in data.get("derived_hashes", {}).items()},
            material_cert_hashes=list(data.get("material_cert_hashes", [])),
            is_active=bool(data.get("is_active", True)),
            is_finalized=bool(data.get("is_finalized", False)),
            final_grade=data.get("final_grade"),
            certification_hash=data.get("certification_hash"),
            finalized_at=parse_ts(data.get("finalized_at")),
        )


@dataclass(frozen=True)
class ProcessEvent:
    """Immutable process step (mixing, printing, curing, testing...)."""
    passport_id: int
    sequence: int
    event_kind: str
    operator_identity: str
    timestamp: datetime
    data_locator: str
    parameters_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passport_id": self.passport_id,
            "sequence": self.sequence,
            "event_kind": self.event_kind,
            "operator_identity": self.operator_identity,
            "timestamp": format_ts(self.timestamp),
            "data_locator": self.data_locator,
            "parameters_hash": self.parameters_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProcessEvent':
        return cls(
            passport_id=int(data["passport_id"]),
            sequence=int(data["sequence"]),
            event_kind=data["event_kind"],
            operator_identity=data["operator_identity"],
            timestamp=parse_ts(data["timestamp"]),
            data_locator=data["data_locator"],
            parameters_hash=data["parameters_hash"],
        )


@dataclass(frozen=True)
class MaterialBatch:
    """Immutable raw-material batch attestation."""
    passport_id: int
    sequence: int
    batch_number: str
    material_type: str
    supplier_name: str
    certificate_hash: str
    received_at: datetime
    expiry_at: Optional[datetime]
    recorded_by: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passport_id": self.passport_id,
            "sequence": self.sequence,
            "batch_number": self.batch_number,
            "material_type": self.material_type,
            "supplier_name": self.supplier_name,
            "certificate_hash": self.certificate_hash,
            "received_at": format_ts(self.received_at),
            "expiry_at": format_ts(self.expiry_at),
            "recorded_by": self.recorded_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MaterialBatch':
        return cls(
            passport_id=int(data["passport_id"]),
            sequence=int(data["sequence"]),
            batch_number=data["batch_number"],
            material_type=data["material_type"],
            supplier_name=data["supplier_name"],
            certificate_hash=data["certificate_hash"],
            received_at=parse_ts(data["received_at"]),
            expiry_at=parse_ts(data.get("expiry_at")),
            recorded_by=data["recorded_by"],
        )


@dataclass
class Validator:
    identity: str
    organization_name: str
    certification_number: str
    registered_at: datetime
    validation_count: int = 0
    reputation_score: int = REPUTATION_INITIAL
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "organization_name": self.organization_name,
            "certification_number": self.certification_number,
            "registered_at": format_ts(self.registered_at),
            "validation_count": self.validation_count,
            "reputation_score": self.reputation_score,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Validator':
        return cls(
            identity=data["identity"],
            organization_name=data["organization_name"],
            certification_number=data["certification_number"],
            registered_at=parse_ts(data["registered_at"]),
            validation_count=int(data.get("validation_count", 0)),
            reputation_score=int(data.get("reputation_score", REPUTATION_INITIAL)),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass(frozen=True)
class ValidationRecord:
    """
    A validator's pass/fail attestation against a passport.

    ``signature`` is opaque; the registry stores it without verifying it.
    """
    passport_id: int
    validator_identity: str
    timestamp: datetime
    passed: bool
    report_locator: str
    signature: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passport_id": self.passport_id,
            "validator_identity": self.validator_identity,
            "timestamp": format_ts(self.timestamp),
            "passed": self.passed,
            "report_locator": self.report_locator,
            "signature_b64": base64.b64encode(self.signature).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ValidationRecord':
        return cls(
            passport_id=int(data["passport_id"]),
            validator_identity=data["validator_identity"],
            timestamp=parse_ts(data["timestamp"]),
            passed=bool(data["passed"]),
            report_locator=data["report_locator"],
            signature=base64.b64decode(data.get("signature_b64", "")),
        )


@dataclass
class Lab:
    """An accredited testing facility."""
    identity: str
    name: str
    accreditation: str
    authorized_at: datetime
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "name": self.name,
            "accreditation": self.accreditation,
            "authorized_at": format_ts(self.authorized_at),
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Lab':
        return cls(
            identity=data["identity"],
            name=data["name"],
            accreditation=data.get("accreditation", ""),
            authorized_at=parse_ts(data["authorized_at"]),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass
class TestResult:
    test_id: int
    passport_id: int
    test_kind: TestKind
    data_locator: str
    lab_identity: str
    submitter_identity: str
    submitted_at: datetime
    test_date: datetime
    curing_age: int
    result_summary: str
    status: TestStatus = TestStatus.PENDING
    validator_identity: Optional[str] = None
    validated_at: Optional[datetime] = None

    # not a pytest test class
    __test__ = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "passport_id": self.passport_id,
            "test_kind": self.test_kind.value,
            "data_locator": self.data_locator,
            "lab_identity": self.lab_identity,
            "submitter_identity": self.submitter_identity,
            "submitted_at": format_ts(self.submitted_at),
            "status": self.status.value,
            "validator_identity": self.validator_identity,
            "validated_at": format_ts(self.validated_at),
            "test_date": format_ts(self.test_date),
            "curing_age": self.curing_age,
            "result_summary": self.result_summary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TestResult':
        return cls(
            test_id=int(data["test_id"]),
            passport_id=int(data["passport_id"]),
            test_kind=TestKind(data["test_kind"]),
            data_locator=data["data_locator"],
            lab_identity=data["lab_identity"],
            submitter_identity=data["submitter_identity"],
            submitted_at=parse_ts(data["submitted_at"]),
            test_date=parse_ts(data["test_date"]),
            curing_age=int(data["curing_age"]),
            result_summary=data.get("result_summary", ""),
            status=TestStatus(data.get("status", TestStatus.PENDING.value)),
            validator_identity=data.get("validator_identity"),
            validated_at=parse_ts(data.get("validated_at")),
        )
