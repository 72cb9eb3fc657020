"""
Split Kernel

The calculation-and-reconciliation core of a shared-expense tracker:
- Fixed-point Money with remainder-safe distribution
- Six split strategies with per-strategy validation
- Single and multiple payer allocation
- Balance computation with conservation checks
- Settlement ledger with proportional multi-payer crediting
"""

__version__ = "0.1.0"
