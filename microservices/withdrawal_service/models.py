"""
Withdrawal Service Data Models

Subscription-tiered cash withdrawals: fee calculation results, withdrawal
transactions, single-use redemption tokens and the agents who pay them out.
All amounts are integer UGX (no fractional sub-units).
"""

from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, field_validator


# ====================
# Enumerations
# ====================

class SubscriptionTier(str, Enum):
    """Recognized subscription tiers"""
    LITE_USER = "lite_user"
    BASIC_TIER = "basic_tier"
    STANDARD_TIER = "standard_tier"
    PREMIUM_TIER = "premium_tier"
    BUSINESS_TIER = "business_tier"
    ENTERPRISE_TIER = "enterprise_tier"


class SubscriptionStatus(str, Enum):
    """Subscription status values"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"


class TransactionType(str, Enum):
    """Transaction type values"""
    WITHDRAWAL = "withdrawal"


class TransactionStatus(str, Enum):
    """Withdrawal transaction status values"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TokenStatus(str, Enum):
    """Withdrawal token status values. Every state but PENDING is terminal."""
    PENDING = "pending"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class AgentStatus(str, Enum):
    """Agent status values"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class RejectionReason(str, Enum):
    """Machine-readable reasons a withdrawal calculation is refused"""
    NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
    INVALID_TIER = "invalid_tier"
    AMOUNT_ABOVE_MAXIMUM = "amount_above_maximum"
    AMOUNT_BELOW_MINIMUM = "amount_below_minimum"


class NotificationType(str, Enum):
    """User notifications emitted by the token lifecycle"""
    TOKEN_GENERATED = "withdrawal_token_generated"
    WITHDRAWAL_COMPLETED = "withdrawal_completed"


# ====================
# Core Data Models
# ====================

class TierLimits(BaseModel):
    """Fixed pricing and limits of one subscription tier"""
    model_config = ConfigDict(frozen=True)

    tier: SubscriptionTier
    monthly_fee: int = Field(..., ge=0, description="Monthly fee (UGX)")
    included_withdrawals: int = Field(..., ge=0, description="Fee-free withdrawals per period")
    max_amount_per_withdrawal: int = Field(..., gt=0, description="Cap per single withdrawal (UGX)")
    over_limit_fee_percentage: Decimal = Field(..., ge=0, description="Fee percentage once quota is used up")


class Subscription(BaseModel):
    """
    A user's subscription ledger entry.

    `tier` is kept as the raw stored string so that records carrying a tier
    outside the recognized set can still be loaded and refused by the
    calculator instead of failing at parse time.
    """
    subscription_id: str = Field(..., min_length=1, description="Subscription ID")
    user_id: str = Field(..., min_length=1, description="Owning user ID")
    tier: str = Field(..., description="Tier code")
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE)

    monthly_fee: int = Field(default=0, ge=0, description="Monthly fee (UGX)")
    transaction_limit: int = Field(default=0, ge=0, description="Fee-free withdrawals included this period")
    transactions_used: int = Field(default=0, ge=0, description="Fee-free withdrawals consumed this period")

    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


class WithdrawalTransaction(BaseModel):
    """A monetary withdrawal attempt"""
    transaction_id: str = Field(..., min_length=1, description="Transaction ID")
    user_id: str = Field(..., min_length=1, description="Owning user ID")
    transaction_type: TransactionType = Field(default=TransactionType.WITHDRAWAL)
    amount: int = Field(..., gt=0, description="Requested amount (UGX)")
    fee: int = Field(default=0, ge=0, description="Computed fee (UGX)")
    total_amount: int = Field(..., gt=0, description="Amount plus fee (UGX)")
    status: TransactionStatus = Field(default=TransactionStatus.PENDING)
    reference: str = Field(..., min_length=1, description="Human-shareable reference code")
    agent_id: Optional[str] = Field(None, description="Agent hint or redeeming agent")
    agent_location: Optional[str] = Field(None, description="Agent location hint")
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WithdrawalToken(BaseModel):
    """Single-use credential authorizing an agent to pay out cash"""
    token_id: str = Field(..., min_length=1, description="Token record ID")
    token: str = Field(..., min_length=8, description="Token code presented to the agent")
    user_id: str = Field(..., min_length=1, description="Owning user ID")
    transaction_id: Optional[str] = Field(None, description="Linked withdrawal transaction")
    amount: int = Field(..., gt=0, description="Cash amount to pay out (UGX)")
    status: TokenStatus = Field(default=TokenStatus.PENDING)
    qr_payload: Dict[str, Any] = Field(default_factory=dict, description="Versioned QR payload")
    expires_at: datetime = Field(..., description="Expiry timestamp")
    created_at: Optional[datetime] = None

    agent_id: Optional[str] = Field(None, description="Redeeming agent")
    redeemed_at: Optional[datetime] = None
    redeemed_location: Optional[str] = Field(None, description="Free-text redemption location")
    updated_at: Optional[datetime] = None


class Agent(BaseModel):
    """Field agent permitted to redeem tokens"""
    agent_id: str = Field(..., min_length=1, description="Agent ID")
    user_id: Optional[str] = Field(None, description="Linked user account")
    agent_code: Optional[str] = Field(None, description="Public agent code")
    business_name: Optional[str] = None
    location: Optional[str] = None
    status: AgentStatus = Field(default=AgentStatus.ACTIVE)

    total_transactions: int = Field(default=0, ge=0)
    total_amount: int = Field(default=0, ge=0, description="Total cash paid out (UGX)")
    commission_earned: int = Field(default=0, ge=0, description="Accrued commission (UGX)")

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WithdrawalCalculation(BaseModel):
    """Outcome of the fee calculator for one requested amount"""
    can_withdraw: bool
    amount: int
    fee_amount: int = 0
    total_amount: int = 0
    is_fee_free: bool = False
    remaining_free: int = Field(0, ge=0, description="Fee-free withdrawals left before this one")
    max_amount_per_withdrawal: int = 0
    tier: Optional[str] = None
    message: str
    rejection_reason: Optional[RejectionReason] = None


# ====================
# Request Models
# ====================

class CalculateWithdrawalRequest(BaseModel):
    """Preview a withdrawal"""
    user_id: str = Field(..., min_length=1, description="User ID")
    amount: int = Field(..., description="Requested amount (UGX)")


class ProcessWithdrawalRequest(BaseModel):
    """Commit a withdrawal and mint its token"""
    user_id: str = Field(..., min_length=1, description="User ID")
    amount: int = Field(..., description="Requested amount (UGX)")
    agent_id: Optional[str] = Field(None, description="Preferred agent")
    agent_location: Optional[str] = Field(None, max_length=255, description="Preferred pickup location")


class IssueTokenRequest(BaseModel):
    """Replace the token of a PENDING transaction whose token expired"""
    user_id: str = Field(..., min_length=1, description="User ID")
    transaction_id: str = Field(..., min_length=1, description="PENDING withdrawal transaction ID")
    amount: Optional[int] = Field(None, description="Must equal the transaction amount when given (UGX)")


class VerifyTokenRequest(BaseModel):
    """Agent-side token check"""
    token: str = Field(..., description="Token code")

    @field_validator('token')
    @classmethod
    def normalize_token(cls, v):
        """Token codes are upper-case alphanumerics"""
        return v.strip().upper()


class RedeemTokenRequest(VerifyTokenRequest):
    """Agent-side cash payout"""
    agent_id: str = Field(..., min_length=1, description="Redeeming agent ID")
    location: Optional[str] = Field(None, max_length=255, description="Where the cash was handed over")


class CancelTokenRequest(BaseModel):
    """Owner cancels a pending token"""
    user_id: str = Field(..., min_length=1, description="Requesting user ID")


# ====================
# Response Models
# ====================

class ProcessWithdrawalResponse(BaseModel):
    """Committed withdrawal"""
    success: bool = True
    message: str
    calculation: WithdrawalCalculation
    transaction: WithdrawalTransaction
    token: WithdrawalToken


class TokenVerificationResponse(BaseModel):
    """Successful verification"""
    success: bool = True
    message: str
    token: WithdrawalToken
    user_name: Optional[str] = Field(None, description="Owner display name for agent confirmation")


class RedemptionResponse(BaseModel):
    """Successful redemption"""
    success: bool = True
    message: str
    token: WithdrawalToken
    transaction: Optional[WithdrawalTransaction] = None
    agent: Agent
    commission: int = Field(..., ge=0, description="Commission credited for this payout (UGX)")


class CancellationResponse(BaseModel):
    """Successful cancellation"""
    success: bool = True
    message: str
    token: WithdrawalToken
    transaction: Optional[WithdrawalTransaction] = None


class TokenListResponse(BaseModel):
    """Tokens, newest first"""
    tokens: List[WithdrawalToken] = Field(default_factory=list)
    count: int = Field(0, ge=0)


class TransactionListResponse(BaseModel):
    """Withdrawal transactions, newest first"""
    transactions: List[WithdrawalTransaction] = Field(default_factory=list)
    count: int = Field(0, ge=0)


class SubscriptionUsage(BaseModel):
    """Quota consumption of the current period"""
    tier: str
    used: int
    included: int
    remaining: int
    usage_percentage: float
    max_amount_per_withdrawal: int
    next_billing_date: Optional[datetime] = None


class MonthlyWithdrawalStats(BaseModel):
    """Withdrawals created since the start of the calendar month"""
    total_transactions: int = 0
    total_withdrawn: int = 0
    total_fees: int = 0
    average_withdrawal: int = 0


class WithdrawalStatsResponse(BaseModel):
    """Usage dashboard for one user"""
    user_id: str
    subscription: Optional[SubscriptionUsage] = None
    monthly_stats: MonthlyWithdrawalStats


class ErrorResponse(BaseModel):
    """Error body returned by exception handlers"""
    detail: str
    error_code: str


class HealthCheckResponse(BaseModel):
    """Standard health check response"""
    status: str = Field(..., description="Health status")
    service: str = Field(..., description="Service name")
    port: int = Field(..., description="Service port")
    version: str = Field(..., description="Service version")
    timestamp: str = Field(..., description="Timestamp ISO format")


class DetailedHealthCheckResponse(BaseModel):
    """Detailed health check with dependency status"""
    service: str = Field(default="withdrawal_service")
    status: str = Field(default="operational")
    port: int
    version: str
    database_connected: bool
    event_bus_connected: bool
    timestamp: str
