"""
Withdrawal Service

Subscription-tiered cash withdrawals: fee calculation, single-use redemption
tokens and agent payout accounting.
"""

__version__ = "1.0.0"
