"""
EBK registration ledger.

Signed, replay-resistant birth certificates and ownership transfers
for bred kits, with an append-only audit trail.
"""

__version__ = "0.1.0"
