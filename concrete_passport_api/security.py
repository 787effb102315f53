"""
Security module for the Concrete Passport service.

Input validation and caller extraction. The registry core
rejects empty values itself; these checks bound shape and size at the edge.
"""

import base64
import re
from typing import Mapping, Optional


# ============================================================
# Input Validation
# ============================================================

BASE64_PATTERN = re.compile(r'^[A-Za-z0-9+/]*={0,2}$')
IDENTITY_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._:@-]{0,127}$')
PACKAGE_KEY_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._:/-]{0,127}$')

MAX_LOCATOR_LENGTH = 512
MAX_HASH_LENGTH = 256
MAX_TEXT_LENGTH = 256

CALLER_HEADER = "x-caller-identity"


class ValidationError(Exception):
    """Raised when input validation fails."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def validate_identity(value: str, field_name: str = "identity") -> str:
    if not isinstance(value, str) or not IDENTITY_PATTERN.match(value):
        raise ValidationError(field_name, "invalid identity format")
    return value


def validate_package_key(value: str) -> str:
    if not isinstance(value, str) or not PACKAGE_KEY_PATTERN.match(value):
        raise ValidationError("package_key", "invalid package key format")
    return value


def validate_string_length(value: Optional[str], field_name: str, max_length: int = MAX_TEXT_LENGTH) -> Optional[str]:
    """Bound a free-text field; None passes through."""
    if value is not None and len(value) > max_length:
        raise ValidationError(field_name, f"longer than {max_length} characters")
    return value


def validate_locator(value: Optional[str], field_name: str = "data_locator") -> Optional[str]:
    return validate_string_length(value, field_name, max_length=MAX_LOCATOR_LENGTH)


def validate_hash(value: Optional[str], field_name: str = "hash") -> Optional[str]:
    """Hashes are opaque to the registry; only their length is bounded."""
    return validate_string_length(value, field_name, max_length=MAX_HASH_LENGTH)


def decode_signature(value: str, field_name: str = "signature_b64") -> bytes:
    """Decode an optional base64 signature ("" means none)."""
    if not value:
        return b""
    value = value.strip()
    if not BASE64_PATTERN.match(value):
        raise ValidationError(field_name, "must be valid base64")
    try:
        return base64.b64decode(value, validate=True)
    except ValueError:
        raise ValidationError(field_name, "must be valid base64") from None


# ============================================================
# Caller identity
# ============================================================

def extract_caller_identity(headers: Mapping[str, str]) -> Optional[str]:
    """
    Read the caller identity the upstream gateway authenticated.
    Returns None when the header is absent or empty.
    """
    value = (headers.get(CALLER_HEADER) or "").strip()
    if not value:
        return None
    return validate_identity(value, "X-Caller-Identity")


def extract_client_id(headers: Mapping[str, str]) -> str:
    """Identifier for rate limiting: the caller if known, else the client IP."""
    caller = (headers.get(CALLER_HEADER) or "").strip()
    if caller:
        return f"caller:{caller}"
    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    return "anonymous"

