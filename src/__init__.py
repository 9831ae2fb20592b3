"""
Personal Ledger - Source Package

A multi-currency personal finance ledger: accounts with wallets, cards,
beneficiaries and a transaction log, served over a small JSON API.

DESIGN PRINCIPLES:
1. Validate before touching the store
2. One writer at a time; a mutation commits fully or not at all
3. Credentials never leave the service
4. Every business event is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Personal Ledger Team"
