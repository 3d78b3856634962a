"""
Payment Kernel - clinic payment ledger and reconciliation engine.

A single-currency, bucketed payment ledger with:
- Derived totals and status (never independently settable)
- Safe refund processing with optimistic-lock retries
- Globally unique payment numbers from an atomic counter row
- Append-only archive of deleted payments
- Read-only outstanding-balance, revenue and aging reporting
"""

__version__ = "0.1.0"
