"""
Withdrawal Service Events

Event models and publishers for withdrawal and token lifecycle events.
"""

from .models import WithdrawalEventType, WithdrawalStreamConfig
from .publishers import (
    publish_token_cancelled,
    publish_token_expired,
    publish_token_issued,
    publish_token_redeemed,
    publish_withdrawal_initiated,
)

__all__ = [
    "WithdrawalEventType",
    "WithdrawalStreamConfig",
    "publish_withdrawal_initiated",
    "publish_token_issued",
    "publish_token_redeemed",
    "publish_token_cancelled",
    "publish_token_expired",
]
