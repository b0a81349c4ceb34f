"""
Escrow Kernel - booking escrow lifecycle and provider earnings ledger.

A transactional core for service bookings with:
- A forward-only booking state machine
- Commission and provider amounts locked at completion
- A 48-hour escrow hold with two-party confirmation
- Deadline-driven auto-confirmation
- Provider earnings derived on demand from booking rows
"""

__version__ = "0.1.0"
