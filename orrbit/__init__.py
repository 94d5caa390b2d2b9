"""
Orrbit Billing Backend

Reconciliation engine for a creator-subscription platform settled on the
Stellar network:
- Idempotent recording of subscription, renewal and tip payments
- Signed payment webhook ingestion
- Scheduled renewal worker (reminders, renewal requests, expiry)
- WebSocket notifications for state changes
"""

__version__ = "0.1.0"
__author__ = "Orrbit Team"
