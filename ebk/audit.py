"""
Audit trail for accepted write requests.

Each accepted birth or transfer is appended here as the raw request,
after the ledger write has succeeded or no-oped. The audit trail sits
outside the ledger's consistency boundary: a failed append is logged
and reported to the caller as False, never raised.
"""

import logging
from typing import Any, Dict

from . import config
from .db import append_audit
from .logging_config import audit_log
from .util import canonicalize, utc_rfc3339

logger = logging.getLogger(__name__)

EVENT_BIRTH = "birth"
EVENT_TRANSFER = "transfer"


class AuditBackend:
    def write_entry(self, event: str, payload: Dict[str, Any], ts: int) -> None:
        raise NotImplementedError


class SqliteAuditBackend(AuditBackend):
    def write_entry(self, event: str, payload: Dict[str, Any], ts: int) -> None:
        append_audit(event, payload, ts)


class S3ObjectLockAudit(AuditBackend):
    """Writes each audit entry as a separate immutable object to an S3 bucket with Object Lock.
    Requires bucket with Object Lock enabled.
    Docs: https://docs.aws.amazon.com/AmazonS3/latest/userguide/object-lock.html
    """
    def __init__(self, bucket: str, prefix: str, retention_days: int, legal_hold: str = "OFF", client=None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.retention_days = retention_days
        self.legal_hold = legal_hold
        self._client = client

    def _s3(self):
        if self._client is None:
            try:
                import boto3
            except Exception as e:
                raise RuntimeError("boto3 required for S3 Object Lock audit. Install the s3 extra") from e
            self._client = boto3.client("s3")
        return self._client

    def object_key(self, event: str, payload: Dict[str, Any], ts: int) -> str:
        ident = payload.get("cert_id") or payload.get("sid") or "unknown"
        return f"{self.prefix}{event}/{utc_rfc3339(ts)}-{ident}-{payload.get('sig', '')[:12]}.json"

    def write_entry(self, event: str, payload: Dict[str, Any], ts: int) -> None:
        from datetime import datetime, timedelta, timezone

        body = canonicalize({"event": event, "payload": payload, "ts": ts})
        # Retain until now + retention_days
        retain_until = datetime.now(timezone.utc) + timedelta(days=int(self.retention_days))
        self._s3().put_object(
            Bucket=self.bucket,
            Key=self.object_key(event, payload, ts),
            Body=body,
            ContentType="application/json",
            ObjectLockMode="COMPLIANCE",
            ObjectLockRetainUntilDate=retain_until,
            ObjectLockLegalHoldStatus=self.legal_hold
        )


def get_audit_backend() -> AuditBackend:
    if config.AUDIT_BACKEND == "s3_object_lock":
        return S3ObjectLockAudit(
            bucket=config.S3_BUCKET,
            prefix=config.S3_PREFIX,
            retention_days=config.S3_RETENTION_DAYS,
            legal_hold=config.S3_LEGAL_HOLD
        )
    return SqliteAuditBackend()


class AuditTrail:
    """Best-effort append-only log of accepted requests."""

    def __init__(self, backend: AuditBackend):
        self.backend = backend

    def append(self, event: str, payload: Dict[str, Any], ts: int) -> bool:
        try:
            self.backend.write_entry(event, payload, ts)
        except Exception as e:
            # StorageError from sqlite, botocore's own hierarchy from S3
            logger.exception("audit append failed")
            audit_log.audit_append_failed(event=event, error=type(e).__name__)
            return False
        return True
