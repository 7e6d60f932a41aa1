"""
Banking Demo Core

Account signup, funding and transaction listing with strict field
validation, single-session enforcement and exact Decimal balances.
"""

__version__ = "1.0.0"
