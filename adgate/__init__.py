"""adgate - ad-gated content unlocking with a referral rewards ledger."""

__version__ = "0.1.0"
