"""
Trust Kernel - IOLTA client trust ledger

A transactional, append-only trust accounting ledger with:
- Per-matter sub-accounts that can never be silently overdrawn
- Immutable entries, corrected only by reversal
- Transactional audit outbox
- Exact decimal money, no floats anywhere
"""

__version__ = "0.1.0"
