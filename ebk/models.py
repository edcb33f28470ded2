from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .signing import ordered_fields

# SQLite INTEGER is a signed 64-bit value.
INT64_MIN = -2**63
INT64_MAX = 2**63 - 1


class SignedRequest(BaseModel):
    # Unknown keys are kept so the audit trail sees the whole request.
    model_config = ConfigDict(extra="allow")

    OPERATION: ClassVar[str] = ""

    ts: int = Field(default=0, ge=INT64_MIN, le=INT64_MAX)
    sig: str = ""

    def signed_fields(self) -> List[Any]:
        return ordered_fields(self.OPERATION, self.model_dump())

    def raw_payload(self) -> Dict[str, Any]:
        """The request as the caller sent it: supplied fields plus unknown keys."""
        data = self.model_dump(mode="json")
        sent = set(self.model_fields_set) | set(self.model_extra or {})
        return {k: v for k, v in data.items() if k in sent}


class BirthRequest(SignedRequest):
    OPERATION: ClassVar[str] = "birth"

    cert_id: str = Field(min_length=1, max_length=256)
    kit_sid: Optional[str] = None
    cert_ts: Optional[int] = Field(default=None, ge=INT64_MIN, le=INT64_MAX)
    p1: Optional[str] = None
    p2: Optional[str] = None
    gen: Optional[int] = Field(default=None, ge=INT64_MIN, le=INT64_MAX)
    tier: Optional[int] = Field(default=None, ge=INT64_MIN, le=INT64_MAX)
    dna_hash: Optional[str] = None
    owner: Optional[str] = None


class TransferRequest(SignedRequest):
    OPERATION: ClassVar[str] = "transfer"

    sid: str = Field(min_length=1, max_length=256)
    from_owner: Optional[str] = None
    to_owner: Optional[str] = None


class VerifyRequest(SignedRequest):
    OPERATION: ClassVar[str] = "verify"

    cert_id: str = Field(min_length=1, max_length=256)
    dna_hash: Optional[str] = None
