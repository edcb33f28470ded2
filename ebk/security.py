"""
Security helpers for the EBK registration ledger.

Client identification and redaction of secrets before logging.
"""

import re
import uuid
from typing import Any, Dict, List, Optional, Mapping

REQUEST_ID_PATTERN = re.compile(r'^[A-Za-z0-9._-]{1,64}$')

SENSITIVE_FIELDS = ["sig", "secret", "api_secret", "password", "token"]


def generate_request_id() -> str:
    """Generate a unique request ID for log correlation."""
    return str(uuid.uuid4())


def accept_request_id(value: Optional[str]) -> str:
    """Use an inbound X-Request-ID if it is well-formed, else mint a new one."""
    if value and REQUEST_ID_PATTERN.match(value):
        return value
    return generate_request_id()


def extract_client_id(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """
    Extract a client identifier from request headers for logging.
    Falls back to the peer address, then a default.
    """
    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"

    if peer:
        return f"ip:{peer}"

    return "anonymous"


def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: List[str] = None) -> Dict[str, Any]:
    """
    Sanitize data for logging by masking sensitive fields.

    Args:
        data: The data to sanitize
        sensitive_fields: List of field names to mask

    Returns:
        Sanitized copy of the data
    """
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            if isinstance(value, str) and len(value) > 8:
                result[key] = value[:4] + "..." + value[-4:]
            else:
                result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        elif isinstance(value, list):
            result[key] = [
                sanitize_for_logging(item, sensitive_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value

    return result
