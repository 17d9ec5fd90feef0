"""
Savings Ledger - a shared two-person savings ledger.

The store enforces row-level ownership policies on every statement; the
client package reads the shared ledger, derives totals and submits
contributions on behalf of one authenticated member.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
