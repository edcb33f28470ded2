"""
Admission gates for the EBK registration ledger.

Every signed operation must pass both gates, freshness first, before
any storage access. Each gate evaluates a specific condition and
returns True (pass) or False (fail).
"""

from typing import Any, Iterable, Optional

from .config import FRESHNESS_WINDOW_SECONDS
from .signing import compute_signature
from .util import constant_time_compare, now_epoch

REASON_STALE_TS = "stale ts"
REASON_BAD_SIG = "bad sig"


def gate_fresh(ts: int, now: Optional[int] = None, window: int = FRESHNESS_WINDOW_SECONDS) -> bool:
    """
    Evaluate the freshness gate.

    Rejects stale and far-future timestamps alike; the window is a
    clock skew tolerance in both directions.

    Args:
        ts: Claimed request timestamp (unix seconds)
        now: Server time, defaults to the wall clock
        window: Maximum allowed skew in seconds (inclusive)

    Returns:
        True if |now - ts| <= window, False otherwise
    """
    if now is None:
        now = now_epoch()
    return abs(now - ts) <= window


def gate_signature(
    ts: int,
    fields: Iterable[Any],
    sig: str,
    secret: str,
    scheme: str = "md5"
) -> bool:
    """
    Evaluate the signature gate.

    Recomputes the keyed digest over the supplied ts and fields. The
    signature is only ever checked against the ts the caller sent.

    Args:
        ts: Claimed request timestamp, as signed
        fields: Signed field values in protocol order
        sig: Caller-supplied hex signature
        secret: Shared secret
        scheme: Signature scheme, see ebk.signing

    Returns:
        True if the signature matches, False otherwise
    """
    if not sig:
        return False
    expected = compute_signature(ts, fields, secret, scheme)
    return constant_time_compare(expected, sig)


def admit(
    ts: int,
    fields: Iterable[Any],
    sig: str,
    secret: str,
    scheme: str = "md5",
    now: Optional[int] = None
) -> Optional[str]:
    """
    Run both gates in order.

    Returns:
        None if admitted, otherwise the rejection reason
    """
    if not gate_fresh(ts, now=now):
        return REASON_STALE_TS
    if not gate_signature(ts, fields, sig, secret, scheme):
        return REASON_BAD_SIG
    return None
