import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from concrete_passport import __version__
from concrete_passport.certificate import certificate_manifest, render_certificate
from concrete_passport.errors import ErrorKind, InvalidArgumentError, RegistryError, UnauthorizedError
from concrete_passport.events import InMemoryEventLog, SqliteEventLog
from concrete_passport.persistence import SqliteSnapshotStore
from concrete_passport.registry import ProvenanceRegistry, RegistryConfig
from concrete_passport.storage import ContentNotFound, get_content_store

from . import config
from .logging_config import audit_log, configure_logging, set_request_id
from .models import (
    AuthorizeLabRequest,
    CreatePassportRequest,
    DataLocatorRequest,
    FinalizeRequest,
    HashRequest,
    LabTestRequest,
    MaterialBatchRequest,
    ProcessEventRequest,
    RegisterValidatorRequest,
    TransferRequest,
    UpdateTestRequest,
    ValidateTestRequest,
    ValidationRequest,
)
from .rate_limit import RateLimiter
from .security import (
    ValidationError,
    decode_signature,
    extract_caller_identity,
    extract_client_id,
    validate_hash,
    validate_identity,
    validate_locator,
    validate_package_key,
    validate_string_length,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Concrete Passport Registry", version=__version__)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DUPLICATE_KEY: 409,
    ErrorKind.ALREADY_REGISTERED: 409,
    ErrorKind.ALREADY_SET: 409,
    ErrorKind.ALREADY_INACTIVE: 409,
    ErrorKind.LOCKED: 409,
    ErrorKind.INACTIVE: 409,
    ErrorKind.CONSENSUS_NOT_REACHED: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.INVALID_ARGUMENT: 422,
}

REGISTRY: ProvenanceRegistry = None
SNAPSHOTS: Optional[SqliteSnapshotStore] = None
CONTENT = get_content_store()
mutate_limiter = RateLimiter(config.MUTATE_RPM)


def build_registry(registry_config: Optional[RegistryConfig] = None) -> ProvenanceRegistry:
    """(Re)build the process-wide registry from configuration and the snapshot, if any."""
    global REGISTRY, SNAPSHOTS
    if config.EVENT_LOG_BACKEND == "sqlite":
        event_log = SqliteEventLog(config.EVENT_LOG_PATH)
    else:
        event_log = InMemoryEventLog()
    registry_config = registry_config or config.registry_config()
    if config.DB_PATH:
        SNAPSHOTS = SqliteSnapshotStore(config.DB_PATH)
        REGISTRY = SNAPSHOTS.load(registry_config, event_log=event_log)
    else:
        SNAPSHOTS = None
        REGISTRY = ProvenanceRegistry(registry_config, event_log=event_log)
    return REGISTRY


def reset_state(registry_config: Optional[RegistryConfig] = None) -> ProvenanceRegistry:
    mutate_limiter.reset()
    return build_registry(registry_config)


def _persist() -> None:
    if SNAPSHOTS is not None:
        SNAPSHOTS.save(REGISTRY)


build_registry()


@app.on_event("startup")
def _startup():
    configure_logging(config.LOG_LEVEL, json_format=config.LOG_JSON)
    for problem in config.validate_config():
        logger.warning("configuration problem: %s", problem)


# ============================================================
# Middleware, dependencies and error mapping
# ============================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = set_request_id(request.headers.get("x-request-id") or None)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def require_caller(request: Request) -> str:
    """Authenticated caller for mutating routes, rate limited per caller."""
    caller = extract_caller_identity(request.headers)
    if caller is None:
        audit_log.security_event("missing_caller_identity", severity="low", path=request.url.path)
        raise UnauthorizedError("missing X-Caller-Identity header")
    client_id = extract_client_id(request.headers)
    result = mutate_limiter.check(client_id)
    if not result.allowed:
        audit_log.rate_limit_exceeded(client_id, request.url.path)
        raise HTTPException(429, "RATE_LIMIT", headers={"Retry-After": str(int(result.retry_after or 1))})
    return caller


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    audit_log.operation_rejected(
        f"{request.method} {request.url.path}",
        exc.kind.value,
        request.headers.get("x-caller-identity"),
        exc.message,
    )
    return JSONResponse(status_code=STATUS_BY_KIND.get(exc.kind, 400),
                        content={"error": exc.kind.value, "detail": exc.message})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422,
                        content={"error": ErrorKind.INVALID_ARGUMENT.value, "detail": str(exc)})


# ============================================================
# Passports
# ============================================================

@app.post("/passports", status_code=201)
def create_passport(req: CreatePassportRequest, caller: str = Depends(require_caller)):
    validate_package_key(req.package_key)
    validate_string_length(req.material_id, "material_id")
    validate_locator(req.data_locator)
    if req.lab_identity:
        validate_identity(req.lab_identity, "lab_identity")
    p = REGISTRY.create_passport(req.package_key, req.material_id, req.data_locator, caller, req.lab_identity)
    _persist()
    audit_log.passport_created(p.id, p.package_key, p.owner)
    return p.to_dict()


@app.get("/passports")
def query_passports(owner: Optional[str] = None, lab: Optional[str] = None, grade: Optional[str] = None):
    given = [(k, v) for k, v in (("owner", owner), ("lab", lab), ("grade", grade)) if v]
    if len(given) != 1:
        raise InvalidArgumentError("exactly one of owner, lab or grade is required")
    field, value = given[0]
    if field == "owner":
        found = REGISTRY.passports_by_owner(value)
    elif field == "lab":
        found = REGISTRY.passports_by_lab(value)
    else:
        found = REGISTRY.passports_by_grade(value)
    return {field: value, "passports": [p.to_dict() for p in found]}


@app.get("/passports/by-key/{package_key}")
def get_passport_by_key(package_key: str):
    return REGISTRY.get_passport_by_key(package_key).to_dict()


@app.get("/passports/{passport_id}")
def get_passport(passport_id: int):
    return REGISTRY.get_passport(passport_id).to_dict()


@app.put("/passports/{passport_id}/data-locator")
def update_data_locator(passport_id: int, req: DataLocatorRequest, caller: str = Depends(require_caller)):
    validate_locator(req.data_locator)
    p = REGISTRY.update_data_locator(passport_id, req.data_locator, caller)
    _persist()
    return p.to_dict()


@app.put("/passports/{passport_id}/derived-hashes/{slot}")
def set_derived_hash(passport_id: int, slot: str, req: HashRequest, caller: str = Depends(require_caller)):
    validate_hash(req.hash)
    p = REGISTRY.set_derived_hash(passport_id, slot, req.hash, caller)
    _persist()
    return p.to_dict()


@app.post("/passports/{passport_id}/material-cert-hashes")
def append_material_cert_hash(passport_id: int, req: HashRequest, caller: str = Depends(require_caller)):
    validate_hash(req.hash)
    p = REGISTRY.append_material_cert_hash(passport_id, req.hash, caller)
    _persist()
    return p.to_dict()


@app.post("/passports/{passport_id}/deactivate")
def deactivate(passport_id: int, caller: str = Depends(require_caller)):
    p = REGISTRY.deactivate(passport_id, caller)
    _persist()
    return p.to_dict()


@app.post("/passports/{passport_id}/finalize")
def finalize(passport_id: int, req: FinalizeRequest, caller: str = Depends(require_caller)):
    validate_string_length(req.final_grade, "final_grade", max_length=32)
    validate_hash(req.certification_hash, "certification_hash")
    p = REGISTRY.finalize(passport_id, req.final_grade, req.certification_hash, caller)
    _persist()
    audit_log.passport_finalized(p.id, p.final_grade, p.certification_hash)
    return p.to_dict()


@app.post("/passports/{passport_id}/transfer")
def transfer(passport_id: int, req: TransferRequest, caller: str = Depends(require_caller)):
    validate_identity(req.new_owner, "new_owner")
    p = REGISTRY.transfer(passport_id, req.new_owner, caller)
    _persist()
    return p.to_dict()


# ============================================================
# Provenance
# ============================================================

@app.post("/passports/{passport_id}/materials", status_code=201)
def add_material_batch(passport_id: int, req: MaterialBatchRequest, caller: str = Depends(require_caller)):
    validate_string_length(req.batch_number, "batch_number")
    validate_string_length(req.material_type, "material_type")
    validate_string_length(req.supplier_name, "supplier_name")
    validate_hash(req.certificate_hash, "certificate_hash")
    batch = REGISTRY.add_material_batch(passport_id, req.batch_number, req.material_type, req.supplier_name,
                                        req.certificate_hash, req.expiry_at, caller)
    _persist()
    return batch.to_dict()


@app.get("/passports/{passport_id}/materials")
def list_materials(passport_id: int):
    return {"passport_id": passport_id,
            "materials": [m.to_dict() for m in REGISTRY.materials(passport_id)]}


@app.post("/passports/{passport_id}/events", status_code=201)
def record_process_event(passport_id: int, req: ProcessEventRequest, caller: str = Depends(require_caller)):
    validate_string_length(req.event_kind, "event_kind", max_length=64)
    validate_locator(req.data_locator)
    validate_hash(req.parameters_hash, "parameters_hash")
    event = REGISTRY.record_process_event(passport_id, req.event_kind, caller,
                                          req.data_locator, req.parameters_hash)
    _persist()
    return event.to_dict()


@app.get("/passports/{passport_id}/events")
def list_process_events(passport_id: int):
    return {"passport_id": passport_id,
            "events": [e.to_dict() for e in REGISTRY.history(passport_id)]}


# ============================================================
# Validators and consensus
# ============================================================

@app.post("/validators", status_code=201)
def register_validator(req: RegisterValidatorRequest, caller: str = Depends(require_caller)):
    validate_string_length(req.organization_name, "organization_name")
    validate_string_length(req.certification_number, "certification_number", max_length=64)
    v = REGISTRY.register_validator(caller, req.organization_name, req.certification_number)
    _persist()
    return v.to_dict()


@app.get("/validators/{identity}")
def get_validator(identity: str):
    return REGISTRY.get_validator(identity).to_dict()


@app.post("/validators/{identity}/deactivate")
def deactivate_validator(identity: str, caller: str = Depends(require_caller)):
    v = REGISTRY.deactivate_validator(identity, caller)
    _persist()
    return v.to_dict()


@app.post("/passports/{passport_id}/validations", status_code=201)
def submit_validation(passport_id: int, req: ValidationRequest, caller: str = Depends(require_caller)):
    validate_locator(req.report_locator, "report_locator")
    signature = decode_signature(req.signature_b64)
    record = REGISTRY.submit_validation(passport_id, caller, req.passed, req.report_locator, signature)
    _persist()
    status = REGISTRY.consensus_status(passport_id)
    audit_log.validation_submitted(passport_id, caller, record.passed, status.reached)
    return {"record": record.to_dict(), "consensus": status.to_dict()}


@app.get("/passports/{passport_id}/validations")
def list_validations(passport_id: int):
    return {"passport_id": passport_id,
            "validations": [r.to_dict() for r in REGISTRY.validation_records(passport_id)]}


@app.get("/passports/{passport_id}/consensus")
def consensus(passport_id: int):
    status = REGISTRY.consensus_status(passport_id)
    return {"passport_id": passport_id, **status.to_dict()}


# ============================================================
# Labs and test results
# ============================================================

@app.post("/labs", status_code=201)
def authorize_lab(req: AuthorizeLabRequest, caller: str = Depends(require_caller)):
    validate_identity(req.identity)
    validate_string_length(req.name, "name")
    validate_string_length(req.accreditation, "accreditation", max_length=64)
    lab = REGISTRY.authorize_lab(req.identity, req.name, req.accreditation, caller)
    _persist()
    return lab.to_dict()


@app.post("/labs/{identity}/revoke")
def revoke_lab(identity: str, caller: str = Depends(require_caller)):
    lab = REGISTRY.revoke_lab(identity, caller)
    _persist()
    return lab.to_dict()


@app.post("/passports/{passport_id}/tests", status_code=201)
def submit_test_result(passport_id: int, req: LabTestRequest, caller: str = Depends(require_caller)):
    validate_locator(req.data_locator)
    result = REGISTRY.submit_test_result(passport_id, req.test_kind, req.data_locator, req.test_date,
                                         req.curing_age, req.result_summary, caller)
    _persist()
    return result.to_dict()


@app.get("/passports/{passport_id}/tests")
def list_test_results(passport_id: int):
    return {"passport_id": passport_id,
            "tests": [t.to_dict() for t in REGISTRY.tests_for_passport(passport_id)]}


@app.post("/tests/{test_id}/validate")
def validate_test_result(test_id: int, req: ValidateTestRequest, caller: str = Depends(require_caller)):
    result = REGISTRY.validate_test_result(test_id, req.outcome, caller)
    _persist()
    return result.to_dict()


@app.put("/tests/{test_id}")
def update_test_result(test_id: int, req: UpdateTestRequest, caller: str = Depends(require_caller)):
    validate_locator(req.data_locator)
    result = REGISTRY.update_test_result(test_id, req.data_locator, caller, req.result_summary)
    _persist()
    return result.to_dict()


@app.get("/tests/{test_id}")
def get_test_result(test_id: int):
    return REGISTRY.get_test_result(test_id).to_dict()


# ============================================================
# Certificates, content and event log
# ============================================================

def _certificate_inputs(passport_id: int):
    return (
        REGISTRY.get_passport(passport_id),
        REGISTRY.materials(passport_id),
        REGISTRY.history(passport_id),
        REGISTRY.consensus_status(passport_id),
        REGISTRY.tests_for_passport(passport_id),
    )


@app.get("/passports/{passport_id}/certificate")
def certificate(passport_id: int):
    pdf = render_certificate(*_certificate_inputs(passport_id))
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="passport-{passport_id}.pdf"'},
    )


@app.get("/passports/{passport_id}/certificate/manifest")
def certificate_json(passport_id: int):
    inputs = _certificate_inputs(passport_id)
    if not inputs[0].is_finalized:
        raise InvalidArgumentError(f"NotFinalized: passport {passport_id} has not been finalized")
    return certificate_manifest(*inputs)


@app.post("/content", status_code=201)
async def put_content(request: Request, caller: str = Depends(require_caller)):
    payload = await request.body()
    if not payload:
        raise ValidationError("body", "cannot be empty")
    return {"locator": CONTENT.put(payload)}


@app.get("/content/{locator:path}")
def get_content(locator: str):
    try:
        payload = CONTENT.get(locator)
    except ContentNotFound:
        raise HTTPException(404, "NOT_FOUND")
    return Response(content=payload, media_type="application/octet-stream")


@app.get("/events")
def export_events(since: int = 0):
    return {"events": [e.to_dict() for e in REGISTRY.events.entries() if e.seq >= since]}


@app.get("/events/proof")
def events_proof():
    return REGISTRY.events.proof()


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": __version__,
        "config": config.summary(),
        "policy": REGISTRY.config.to_dict(),
        "config_problems": config.validate_config(),
    }
