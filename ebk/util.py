"""
Utility functions for the EBK registration ledger.

Provides canonical JSON serialization, digests, and time utilities.
"""

import json
import hashlib
import hmac
import time
from datetime import datetime, timezone
from typing import Any, Union


def canonicalize(obj: Any) -> bytes:
    """
    Convert object to canonical JSON bytes.

    Canonical JSON:
    - Lexicographically sorted keys
    - No whitespace
    - UTF-8 encoded
    """
    s = json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    return s.encode('utf-8')


def md5_hex(data: Union[bytes, str]) -> str:
    """Compute MD5 digest and return as lowercase hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.md5(data).hexdigest()


def hmac_sha256_hex(key: Union[bytes, str], data: Union[bytes, str]) -> str:
    """Compute HMAC-SHA256 and return as lowercase hex string."""
    if isinstance(key, str):
        key = key.encode('utf-8')
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hmac.new(key, data, hashlib.sha256).hexdigest()


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def utc_rfc3339(ts_epoch: int) -> str:
    """Convert Unix timestamp to RFC3339 UTC string."""
    return datetime.fromtimestamp(ts_epoch, tz=timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two strings/bytes in constant time to prevent timing attacks.
    """
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)
