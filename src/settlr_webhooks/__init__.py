"""Settlr webhook dispatch.

Signed, retried delivery of payout and treasury events to merchant
endpoints, with an audit trail of every attempt.
"""

__version__ = "1.0.0"
