"""
Validator signing helpers.

Ed25519 (RFC 8032) signatures over a canonical JSON payload describing a
validation. The registry stores signatures as opaque bytes and never
verifies them; verification is for auditors holding the validator's public
key.
"""

import base64
from dataclasses import dataclass
from typing import Any, Dict

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .canonicalization import canonicalize
from .models import ValidationRecord


@dataclass
class ValidatorKey:
    """Ed25519 key pair held by a validator."""
    identity: str
    signing_key: bytes
    verify_key: bytes
    algorithm: str = "Ed25519"

    @classmethod
    def generate(cls, identity: str) -> 'ValidatorKey':
        sk = SigningKey.generate()
        return cls(identity=identity, signing_key=bytes(sk), verify_key=bytes(sk.verify_key))

    @classmethod
    def from_b64(cls, identity: str, signing_key_b64: str) -> 'ValidatorKey':
        sk = SigningKey(base64.b64decode(signing_key_b64))
        return cls(identity=identity, signing_key=bytes(sk), verify_key=bytes(sk.verify_key))

    @property
    def verify_key_b64(self) -> str:
        return base64.b64encode(self.verify_key).decode("utf-8")

    def to_dict(self) -> Dict[str, Any]:
        """Public part only."""
        return {
            "identity": self.identity,
            "algorithm": self.algorithm,
            "public_key": self.verify_key_b64,
        }


def validation_payload(passport_id: int, validator_identity: str, passed: bool, report_locator: str) -> bytes:
    """Canonical bytes a validator signs."""
    return canonicalize({
        "passport_id": passport_id,
        "validator_identity": validator_identity,
        "passed": bool(passed),
        "report_locator": report_locator or "",
    })


def sign_validation(key: ValidatorKey, passport_id: int, passed: bool, report_locator: str) -> bytes:
    payload = validation_payload(passport_id, key.identity, passed, report_locator)
    return SigningKey(key.signing_key).sign(payload).signature


def verify_validation_signature(record: ValidationRecord, verify_key_b64: str) -> bool:
    """
    Verify the signature stored on a validation record.

    Returns:
        True if the signature matches the record's fields, False otherwise
    """
    if not record.signature:
        return False
    payload = validation_payload(record.passport_id, record.validator_identity,
                                 record.passed, record.report_locator)
    try:
        VerifyKey(base64.b64decode(verify_key_b64)).verify(payload, record.signature)
        return True
    except (BadSignatureError, ValueError):
        return False
