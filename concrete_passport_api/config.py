"""
Configuration module for the Concrete Passport service.

Centralizes all configuration with environment variable support and
validation.
"""

import os
from typing import Dict, List

from concrete_passport.attestation import FinalizePolicy
from concrete_passport.registry import RegistryConfig

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("PASSPORT_ENV", "dev")  # dev|stage|prod

# Registry policy
REQUIRED_VALIDATIONS = int(os.getenv("REQUIRED_VALIDATIONS", "3"))
FINALIZE_POLICY = os.getenv("FINALIZE_POLICY", "none")  # none|consensus|lab_test|both
FREEZE_MATERIALS_ON_FINALIZE = os.getenv("FREEZE_MATERIALS_ON_FINALIZE", "false").lower() in ("1", "true", "yes")
LAB_TESTS_REQUIRED = int(os.getenv("LAB_TESTS_REQUIRED", "1"))
ADMIN_IDENTITY = os.getenv("ADMIN_IDENTITY", "")

# Persistence ("" keeps the registry in memory only)
DB_PATH = os.getenv("DB_PATH", "")
EVENT_LOG_BACKEND = os.getenv("EVENT_LOG_BACKEND", "memory")  # memory|sqlite
EVENT_LOG_PATH = os.getenv("EVENT_LOG_PATH", "data/events.db")

# Off-chain content store (see concrete_passport.storage.get_content_store)
CONTENT_STORE_BACKEND = os.getenv("CONTENT_STORE_BACKEND", "memory")  # memory|file|ipfs|s3

# Rate limits (requests per minute, per caller)
MUTATE_RPM = int(os.getenv("MUTATE_RPM", "240"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")


def registry_config() -> RegistryConfig:
    """Build the registry policy from the environment."""
    return RegistryConfig(
        required_validations=REQUIRED_VALIDATIONS,
        finalize_policy=FinalizePolicy(FINALIZE_POLICY),
        freeze_materials_on_finalize=FREEZE_MATERIALS_ON_FINALIZE,
        lab_tests_required=LAB_TESTS_REQUIRED,
        admin_identity=ADMIN_IDENTITY or None,
    )


# ============================================================
# Validation
# ============================================================

def validate_config() -> List[str]:
    """
    Check the environment for inconsistent settings.
    Returns a list of problems (empty when the configuration is usable).
    """
    problems = []
    if ENV not in ("dev", "stage", "prod"):
        problems.append(f"PASSPORT_ENV must be dev, stage or prod (got {ENV!r})")
    if FINALIZE_POLICY not in [p.value for p in FinalizePolicy]:
        problems.append(f"unknown FINALIZE_POLICY {FINALIZE_POLICY!r}")
    if REQUIRED_VALIDATIONS < 1:
        problems.append("REQUIRED_VALIDATIONS must be at least 1")
    if LAB_TESTS_REQUIRED < 1:
        problems.append("LAB_TESTS_REQUIRED must be at least 1")
    if EVENT_LOG_BACKEND not in ("memory", "sqlite"):
        problems.append(f"unknown EVENT_LOG_BACKEND {EVENT_LOG_BACKEND!r}")
    if CONTENT_STORE_BACKEND not in ("memory", "file", "ipfs", "s3"):
        problems.append(f"unknown CONTENT_STORE_BACKEND {CONTENT_STORE_BACKEND!r}")
    if CONTENT_STORE_BACKEND == "s3" and not os.getenv("S3_BUCKET"):
        problems.append("S3_BUCKET is required for the s3 content store")
    if is_production():
        if not DB_PATH:
            problems.append("DB_PATH must be set in production")
        if not ADMIN_IDENTITY:
            problems.append("ADMIN_IDENTITY must be set in production")
    return problems


def summary() -> Dict[str, object]:
    return {
        "env": ENV,
        "finalize_policy": FINALIZE_POLICY,
        "required_validations": REQUIRED_VALIDATIONS,
        "persistent": bool(DB_PATH),
        "event_log_backend": EVENT_LOG_BACKEND,
        "content_store_backend": CONTENT_STORE_BACKEND,
    }


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"
