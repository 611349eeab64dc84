"""
M365 Safelist Sync
==================
Keeps an authenticated-sender safelist transport rule in sync across every
customer tenant under a Microsoft partner account.

One run = one reconciliation pass:
  Safe Domains.csv -> Partner Center tenant list -> per-tenant rule create/update.
"""

__version__ = "1.0.0"
__author__ = "M365 Safelist Sync"
