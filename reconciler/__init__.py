"""
Ledger Reconciler - Source Package

Balance checkpoint and ledger reconciliation engine for personal and
business financial ledgers.

DESIGN PRINCIPLES:
1. No money without origin - every unit of balance traces to a transaction
2. Unexplained gaps become flagged ledger entries, never hidden corrections
3. Derived values are always recomputable from the ledger
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Reconciler Team"
