"""Stock ledger and period reconciliation engine"""

__version__ = "1.0.0"
