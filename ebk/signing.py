"""
Request signing for the EBK protocol.

A signature is the hex digest of the request timestamp and the
operation's signed fields joined with ``|``, followed by the shared
secret::

    sig = md5_hex("<ts>|<field1>|...|<fieldN>|<secret>")

Field order is fixed per operation (``SIGNED_FIELDS``) and must be
identical on the issuing client and the verifying server. Both sides
import this module.

The ``hmac-sha256`` scheme keys an HMAC with the secret over
``"<ts>|<field1>|...|<fieldN>"`` instead. It keeps the hex wire format
but is not compatible with existing md5 signers.
"""

from typing import Any, Dict, Iterable, List, Optional

from .util import md5_hex, hmac_sha256_hex, now_epoch

DELIMITER = "|"

SIGNED_FIELDS: Dict[str, List[str]] = {
    "birth": ["cert_id", "cert_ts", "p1", "p2", "gen", "tier", "dna_hash", "owner"],
    "transfer": ["sid", "from_owner", "to_owner"],
    "verify": ["cert_id", "dna_hash"],
}


def render_field(value: Any) -> str:
    """Render one field value as it appears in the signed string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def signing_string(ts: int, fields: Iterable[Any]) -> str:
    """Join the timestamp and the ordered field values with the delimiter."""
    return DELIMITER.join([str(ts)] + [render_field(v) for v in fields])


def compute_signature(ts: int, fields: Iterable[Any], secret: str, scheme: str = "md5") -> str:
    """
    Compute the hex signature for a timestamp and ordered fields.

    Args:
        ts: Claimed request timestamp (unix seconds)
        fields: Field values in protocol order
        secret: Shared secret
        scheme: "md5" (wire-compatible) or "hmac-sha256"

    Returns:
        Lowercase hex digest
    """
    core = signing_string(ts, fields)
    if scheme == "md5":
        return md5_hex(f"{core}{DELIMITER}{secret}")
    if scheme == "hmac-sha256":
        return hmac_sha256_hex(secret, core)
    raise ValueError(f"unknown signature scheme: {scheme}")


def ordered_fields(operation: str, body: Dict[str, Any]) -> List[Any]:
    """Pick the signed fields for an operation out of a request body, in order."""
    try:
        names = SIGNED_FIELDS[operation]
    except KeyError:
        raise ValueError(f"unknown operation: {operation}") from None
    return [body.get(name) for name in names]


def sign_body(
    operation: str,
    body: Dict[str, Any],
    secret: str,
    ts: Optional[int] = None,
    scheme: str = "md5",
) -> Dict[str, Any]:
    """
    Return a copy of ``body`` stamped with ``ts`` and a matching ``sig``.
    Client-side helper; the server never signs.
    """
    if ts is None:
        ts = now_epoch()
    signed = dict(body)
    signed["ts"] = ts
    signed["sig"] = compute_signature(ts, ordered_fields(operation, body), secret, scheme)
    return signed
