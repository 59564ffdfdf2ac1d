"""
Withdrawal Fee Calculator

Pure functions deciding whether a withdrawal is allowed and what it costs.
No I/O and no side effects: safe to call repeatedly for live previews.
"""

from decimal import Decimal, ROUND_HALF_UP
from types import MappingProxyType
from typing import Mapping, Optional

from .models import (
    RejectionReason,
    Subscription,
    SubscriptionTier,
    TierLimits,
    WithdrawalCalculation,
)

CURRENCY = "UGX"
MINIMUM_WITHDRAWAL_AMOUNT = 1000
MINIMUM_OVER_LIMIT_FEE = 500
AGENT_COMMISSION_RATE = Decimal("0.01")


def _limits(tier, monthly_fee, included, max_amount, percentage) -> TierLimits:
    return TierLimits(
        tier=tier,
        monthly_fee=monthly_fee,
        included_withdrawals=included,
        max_amount_per_withdrawal=max_amount,
        over_limit_fee_percentage=Decimal(percentage),
    )


TIER_LIMITS: Mapping[SubscriptionTier, TierLimits] = MappingProxyType({
    SubscriptionTier.LITE_USER: _limits(SubscriptionTier.LITE_USER, 0, 5, 50_000, "2.0"),
    SubscriptionTier.BASIC_TIER: _limits(SubscriptionTier.BASIC_TIER, 5_000, 15, 300_000, "1.8"),
    SubscriptionTier.STANDARD_TIER: _limits(SubscriptionTier.STANDARD_TIER, 15_000, 25, 500_000, "1.5"),
    SubscriptionTier.PREMIUM_TIER: _limits(SubscriptionTier.PREMIUM_TIER, 60_000, 100, 1_500_000, "1.0"),
    SubscriptionTier.BUSINESS_TIER: _limits(SubscriptionTier.BUSINESS_TIER, 200_000, 500, 5_000_000, "0.5"),
    # Enterprise pricing is negotiated per contract
    SubscriptionTier.ENTERPRISE_TIER: _limits(SubscriptionTier.ENTERPRISE_TIER, 0, 999_999, 999_999_999, "0.25"),
})


def get_tier_limits(tier: str) -> Optional[TierLimits]:
    """Limits for a stored tier code, None if the code is not a known tier"""
    try:
        return TIER_LIMITS[SubscriptionTier(tier)]
    except ValueError:
        return None


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(amount: int) -> str:
    return f"{CURRENCY} {amount:,}"


def calculate_over_limit_fee(amount: int, percentage: Decimal) -> int:
    """Percentage fee rounded half-up, then floored at the minimum fee"""
    fee = round_half_up(Decimal(amount) * Decimal(percentage) / Decimal(100))
    return max(fee, MINIMUM_OVER_LIMIT_FEE)


def calculate_commission(amount: int) -> int:
    """Agent commission for paying out `amount`"""
    return round_half_up(Decimal(amount) * AGENT_COMMISSION_RATE)


def calculate(subscription: Optional[Subscription], requested_amount: int) -> WithdrawalCalculation:
    """
    Decide a withdrawal for a subscription.

    Checks run in order and the first failure wins: active subscription,
    recognized tier, per-withdrawal cap, system minimum. `remaining_free` is
    reported before this withdrawal consumes a slot.
    """
    if subscription is None or not subscription.is_active:
        return WithdrawalCalculation(
            can_withdraw=False,
            amount=requested_amount,
            message="No active subscription found. Please subscribe to a plan.",
            rejection_reason=RejectionReason.NO_ACTIVE_SUBSCRIPTION,
        )

    limits = get_tier_limits(subscription.tier)
    if limits is None:
        return WithdrawalCalculation(
            can_withdraw=False,
            amount=requested_amount,
            tier=subscription.tier,
            message="Invalid subscription tier.",
            rejection_reason=RejectionReason.INVALID_TIER,
        )

    remaining_free = max(0, subscription.transaction_limit - subscription.transactions_used)
    max_amount = limits.max_amount_per_withdrawal

    if requested_amount > max_amount:
        plan = limits.tier.value.replace("_", " ")
        return WithdrawalCalculation(
            can_withdraw=False,
            amount=requested_amount,
            remaining_free=remaining_free,
            max_amount_per_withdrawal=max_amount,
            tier=limits.tier.value,
            message=f"Amount exceeds maximum withdrawal limit of {format_amount(max_amount)} for your {plan} plan.",
            rejection_reason=RejectionReason.AMOUNT_ABOVE_MAXIMUM,
        )

    if requested_amount < MINIMUM_WITHDRAWAL_AMOUNT:
        return WithdrawalCalculation(
            can_withdraw=False,
            amount=requested_amount,
            remaining_free=remaining_free,
            max_amount_per_withdrawal=max_amount,
            tier=limits.tier.value,
            message=f"Minimum withdrawal amount is {format_amount(MINIMUM_WITHDRAWAL_AMOUNT)}.",
            rejection_reason=RejectionReason.AMOUNT_BELOW_MINIMUM,
        )

    if remaining_free > 0:
        fee = 0
        message = f"Fee-free withdrawal ({remaining_free} remaining this month)"
    else:
        fee = calculate_over_limit_fee(requested_amount, limits.over_limit_fee_percentage)
        message = f"Over-limit fee of {format_amount(fee)} applies"

    return WithdrawalCalculation(
        can_withdraw=True,
        amount=requested_amount,
        fee_amount=fee,
        total_amount=requested_amount + fee,
        is_fee_free=remaining_free > 0,
        remaining_free=remaining_free,
        max_amount_per_withdrawal=max_amount,
        tier=limits.tier.value,
        message=message,
    )
