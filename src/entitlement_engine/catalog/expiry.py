"""Expiry policy — computes an entitlement's validity window."""

from datetime import datetime

from entitlement_engine.catalog.validation import FixedExpiry, RelativeDuration, ValidityPolicy


def compute_expiry(policy: ValidityPolicy, activated_at: datetime) -> datetime:
    """Return the expiry instant for an entitlement activated at ``activated_at``.

    ``activated_at`` is the transaction's own timestamp, so a late
    reconciliation reproduces the window the customer originally bought.
    """
    if isinstance(policy, FixedExpiry):
        return policy.expires_at
    if isinstance(policy, RelativeDuration):
        return activated_at + policy.duration
    raise TypeError(f"Unknown validity policy: {policy!r}")
