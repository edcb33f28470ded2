"""
Ledger operations behind the HTTP surface.

Births are idempotent inserts keyed by cert_id, transfers are plain
appends, and verification is a read-only lookup with an optional
content-hash cross-check. None of these hold state between calls;
every call goes to the store.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from . import db
from .models import BirthRequest, TransferRequest
from .util import now_epoch


class VerificationStatus(str, Enum):
    """
    VERIFIED: record exists, and no asserted hash was given or it matches
    CONTENT_MISMATCH: both hashes are non-empty and differ
    NOT_FOUND: no record for the identifier
    """
    VERIFIED = "verified"
    CONTENT_MISMATCH = "content_mismatch"
    NOT_FOUND = "not_found"


# Wire reasons for negative outcomes
VERIFICATION_REASONS = {
    VerificationStatus.CONTENT_MISMATCH: "dna mismatch",
    VerificationStatus.NOT_FOUND: "not found",
}


@dataclass
class VerificationResult:
    status: VerificationStatus
    record: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status == VerificationStatus.VERIFIED

    @property
    def reason(self) -> Optional[str]:
        return VERIFICATION_REASONS.get(self.status)

    @classmethod
    def verified(cls, record: Dict[str, Any]) -> 'VerificationResult':
        return cls(status=VerificationStatus.VERIFIED, record=record)

    @classmethod
    def content_mismatch(cls) -> 'VerificationResult':
        return cls(status=VerificationStatus.CONTENT_MISMATCH)

    @classmethod
    def not_found(cls) -> 'VerificationResult':
        return cls(status=VerificationStatus.NOT_FOUND)


def record_birth(req: BirthRequest, created_at: Optional[int] = None) -> bool:
    """
    Record a birth certificate. Safe to retry without limit.

    Returns:
        True if this call inserted the record, False if it already existed

    Raises:
        StorageError: On any store failure other than the duplicate cert_id
    """
    if created_at is None:
        created_at = now_epoch()
    return db.record_birth(
        cert_id=req.cert_id,
        created_at=created_at,
        kit_sid=req.kit_sid,
        p1=req.p1,
        p2=req.p2,
        gen=req.gen,
        tier=req.tier,
        dna_hash=req.dna_hash,
        cert_ts=req.cert_ts,
        owner=req.owner,
    )


def record_transfer(req: TransferRequest) -> None:
    """Append an ownership change stamped with the request's signed ts."""
    db.record_transfer(req.sid, req.from_owner, req.to_owner, req.ts)


def verify_certificate(cert_id: str, dna_hash: Optional[str] = None) -> VerificationResult:
    """
    Look up a certificate and cross-check an asserted content hash.

    Raises:
        StorageError: If the lookup fails
    """
    record = db.get_certificate(cert_id)
    if record is None:
        return VerificationResult.not_found()
    stored = record.get("dna_hash")
    if dna_hash and stored and dna_hash != stored:
        return VerificationResult.content_mismatch()
    return VerificationResult.verified(record)
