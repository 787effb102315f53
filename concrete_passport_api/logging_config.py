"""
Logging configuration for the Concrete Passport service.

Service logs go out as one JSON object per line, tagged with the request id
of the HTTP request being served. Audit records (passport milestones,
attestations, rejected and throttled requests) go through ``audit_log`` on
the ``concrete_passport.audit`` logger so they can be routed separately.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

AUDIT_LOGGER = "concrete_passport.audit"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")


class StructuredFormatter(logging.Formatter):
    """JSON lines formatter; audit fields are merged into the top-level object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        rid = request_id_var.get()
        if rid:
            entry["request_id"] = rid
        audit = getattr(record, "audit", None)
        if audit:
            entry.update(audit)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class AuditLogger:
    """Audit trail for passport milestones and rejected requests."""

    SEVERITY_LEVELS = {
        "low": logging.INFO,
        "medium": logging.WARNING,
        "high": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    def __init__(self, name: str = AUDIT_LOGGER):
        self._logger = logging.getLogger(name)

    def emit(self, level: int, event_type: str, message: str, **fields: Any) -> None:
        fields["event_type"] = event_type
        self._logger.log(level, message, extra={"audit": fields})

    def passport_created(self, passport_id: int, package_key: str, owner: str) -> None:
        self.emit(logging.INFO, "PASSPORT_CREATED", f"passport {passport_id} created for {package_key}",
                  passport_id=passport_id, package_key=package_key, owner=owner)

    def passport_finalized(self, passport_id: int, final_grade: str, certification_hash: str) -> None:
        self.emit(logging.INFO, "PASSPORT_FINALIZED", f"passport {passport_id} locked at grade {final_grade}",
                  passport_id=passport_id, final_grade=final_grade, certification_hash=certification_hash)

    def validation_submitted(self, passport_id: int, validator_identity: str, passed: bool,
                             consensus_reached: bool) -> None:
        verdict = "pass" if passed else "fail"
        self.emit(logging.INFO, "VALIDATION_SUBMITTED",
                  f"{validator_identity} voted {verdict} on passport {passport_id}",
                  passport_id=passport_id, validator_identity=validator_identity,
                  passed=passed, consensus_reached=consensus_reached)

    def operation_rejected(self, operation: str, kind: str, caller: Optional[str], reason: str) -> None:
        self.emit(logging.WARNING, "OPERATION_REJECTED", f"{operation} rejected ({kind})",
                  operation=operation, error_kind=kind, caller=caller, reason=reason)

    def security_event(self, event: str, severity: str = "medium", **details: Any) -> None:
        level = self.SEVERITY_LEVELS.get(severity, logging.WARNING)
        self.emit(level, "SECURITY_EVENT", event, security_event=event, severity=severity, **details)

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self.emit(logging.WARNING, "RATE_LIMIT_EXCEEDED", f"{client_id} throttled on {endpoint}",
                  client_id=client_id, endpoint=endpoint)


def configure_logging(level: str = "INFO", json_format: bool = True, log_file: Optional[str] = None) -> None:
    """
    Install handlers on the root logger, replacing any already there.

    Args:
        level: Root log level name
        json_format: JSON lines (production) or a plain text format
        log_file: Also write to this file when given
    """
    root = logging.getLogger()
    root.setLevel(logging.getLevelName(level.upper()))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context, generating one if needed."""
    rid = request_id or uuid.uuid4().hex
    request_id_var.set(rid)
    return rid


def get_request_id() -> str:
    return request_id_var.get()


audit_log = AuditLogger()
