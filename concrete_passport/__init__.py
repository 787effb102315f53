"""
Concrete Passport Registry

Version: 1.0.0

A provenance and certification registry for concrete production runs.

Each production unit gets a Passport: an identity, a data package pointer
that stays mutable until the passport is finalized, append-only logs of
material batches and process events, and third-party attestations from
registered validators and accredited labs. Finalization is irreversible and
fixes a quality grade and certification hash.

Usage:
    from concrete_passport import ProvenanceRegistry, RegistryConfig

    registry = ProvenanceRegistry(RegistryConfig(finalize_policy="consensus"))

    passport = registry.create_passport(
        "PROD-2024-001", "MIX-A", "content:sha256:...", caller_identity="alice"
    )
    registry.record_process_event(passport.id, "printing", "alice")

    for v in ("v1", "v2", "v3"):
        registry.register_validator(v, "Org " + v, "CERT-" + v)
        registry.submit_validation(passport.id, v, passed=True, report_locator="...")

    registry.finalize(passport.id, "M40", "0xcert", caller_identity="alice")
"""

__version__ = "1.0.0"

# Errors
from .errors import (
    ErrorKind,
    RegistryError,
    NotFoundError,
    DuplicateKeyError,
    AlreadyRegisteredError,
    AlreadySetError,
    ForbiddenError,
    UnauthorizedError,
    LockedError,
    InactiveError,
    AlreadyInactiveError,
    InvalidArgumentError,
    ConsensusNotReachedError,
)

# Records
from .models import (
    NO_IDENTITY,
    REPUTATION_INITIAL,
    DerivedHashSlot,
    Passport,
    ProcessEvent,
    MaterialBatch,
    Validator,
    ValidationRecord,
    Lab,
    TestKind,
    TestStatus,
    TestResult,
)

# Canonicalization and hashing
from .canonicalization import canonicalize
from .hashing import sha256_hex, content_locator, verify_locator

# Components
from .identity import IdentityLedger
from .passports import PassportStore
from .provenance import ProvenanceLog
from .validators import ValidatorRegistry
from .validation import REQUIRED_VALIDATIONS, ConsensusStatus, ValidationLedger
from .lab_tests import LabDirectory, LabTestLedger
from .attestation import (
    Attestation,
    ConsensusAttestation,
    LabTestAttestation,
    AllOf,
    FinalizePolicy,
)

# Facade
from .registry import ProvenanceRegistry, RegistryConfig

# Events
from .events import RegistryEvent, EventLog, InMemoryEventLog, SqliteEventLog, verify_event_chain

# Collaborators
from .storage import (
    ContentStore,
    ContentNotFound,
    InMemoryContentStore,
    FileContentStore,
    HttpContentStore,
    S3ContentStore,
    get_content_store,
)
from .persistence import SqliteSnapshotStore
from .signing import ValidatorKey, sign_validation, verify_validation_signature


__all__ = [
    "__version__",

    # Errors
    "ErrorKind",
    "RegistryError",
    "NotFoundError",
    "DuplicateKeyError",
    "AlreadyRegisteredError",
    "AlreadySetError",
    "ForbiddenError",
    "UnauthorizedError",
    "LockedError",
    "InactiveError",
    "AlreadyInactiveError",
    "InvalidArgumentError",
    "ConsensusNotReachedError",

    # Records
    "NO_IDENTITY",
    "REPUTATION_INITIAL",
    "DerivedHashSlot",
    "Passport",
    "ProcessEvent",
    "MaterialBatch",
    "Validator",
    "ValidationRecord",
    "Lab",
    "TestKind",
    "TestStatus",
    "TestResult",

    # Canonicalization and hashing
    "canonicalize",
    "sha256_hex",
    "content_locator",
    "verify_locator",

    # Components
    "IdentityLedger",
    "PassportStore",
    "ProvenanceLog",
    "ValidatorRegistry",
    "REQUIRED_VALIDATIONS",
    "ConsensusStatus",
    "ValidationLedger",
    "LabDirectory",
    "LabTestLedger",
    "Attestation",
    "ConsensusAttestation",
    "LabTestAttestation",
    "AllOf",
    "FinalizePolicy",

    # Facade
    "ProvenanceRegistry",
    "RegistryConfig",

    # Events
    "RegistryEvent",
    "EventLog",
    "InMemoryEventLog",
    "SqliteEventLog",
    "verify_event_chain",

    # Collaborators
    "ContentStore",
    "ContentNotFound",
    "InMemoryContentStore",
    "FileContentStore",
    "HttpContentStore",
    "S3ContentStore",
    "get_content_store",
    "SqliteSnapshotStore",
    "ValidatorKey",
    "sign_validation",
    "verify_validation_signature",
]
