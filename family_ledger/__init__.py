"""
Family Ledger - Source Package

Shared-state core of a personal and family expense tracker: transactions,
shared categories and accounts, family groups with invite codes, and
private receipt attachments.

DESIGN PRINCIPLES:
1. One principal session per process, everything else lives in the store
2. Family membership widens transaction visibility, never attachment access
3. Catalog entries are shared records with per-user subscriptions
4. Every mutation fails loudly with a typed error
5. Storage and file backends are swappable
"""

__version__ = "1.0.0"
__author__ = "Family Ledger Team"
