"""
Configuration module for the EBK registration ledger.

Centralizes all configuration with environment variable support
and validation.
"""

import os
from typing import Dict
from pathlib import Path

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("EBK_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = Path(os.getenv("EBK_DB_PATH", "data/ebk.db"))
DB_BUSY_TIMEOUT = float(os.getenv("EBK_DB_BUSY_TIMEOUT", "30"))

# Admission control
FRESHNESS_WINDOW_SECONDS = int(os.getenv("EBK_FRESHNESS_WINDOW", "300"))
SIGNATURE_SCHEME = os.getenv("EBK_SIGNATURE_SCHEME", "md5")  # md5|hmac-sha256
MAX_BODY_BYTES = int(os.getenv("EBK_MAX_BODY_BYTES", str(256 * 1024)))

# Audit trail
AUDIT_BACKEND = os.getenv("AUDIT_BACKEND", "sqlite")  # sqlite|s3_object_lock
S3_BUCKET = os.getenv("S3_BUCKET", "")
S3_PREFIX = os.getenv("S3_PREFIX", "ebk/audit/")
S3_RETENTION_DAYS = int(os.getenv("S3_RETENTION_DAYS", "365"))
S3_LEGAL_HOLD = os.getenv("S3_LEGAL_HOLD", "OFF")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "1").lower() in ("1", "true", "yes")

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))

SIGNATURE_SCHEMES = ("md5", "hmac-sha256")
AUDIT_BACKENDS = ("sqlite", "s3_object_lock")


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


def load_api_secret() -> str:
    """
    Read the shared signing secret from the environment.

    Read at call time rather than import time so the app can be
    constructed before the secret is known (tests, tooling).

    Raises:
        ConfigError: If API_SECRET is unset or empty
    """
    secret = os.getenv("API_SECRET", "")
    if not secret:
        raise ConfigError("Missing API_SECRET env var")
    return secret


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate the current configuration.
    Returns dict of setting -> usable.
    """
    checks = {
        "api_secret": bool(os.getenv("API_SECRET")),
        "signature_scheme": SIGNATURE_SCHEME in SIGNATURE_SCHEMES,
        "audit_backend": AUDIT_BACKEND in AUDIT_BACKENDS,
        "freshness_window": FRESHNESS_WINDOW_SECONDS > 0,
    }
    if AUDIT_BACKEND == "s3_object_lock":
        checks["s3_bucket"] = bool(S3_BUCKET)
    return checks
