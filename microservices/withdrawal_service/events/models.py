"""
Withdrawal Service Event Models

Event data models for withdrawal and token lifecycle events.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================

class WithdrawalEventType(str, Enum):
    """
    Events published by withdrawal_service.

    Stream: withdrawal-stream
    Subjects: withdrawal.>
    """
    WITHDRAWAL_INITIATED = "withdrawal.initiated"
    TOKEN_ISSUED = "withdrawal.token.issued"
    TOKEN_REDEEMED = "withdrawal.token.redeemed"
    TOKEN_CANCELLED = "withdrawal.token.cancelled"
    TOKEN_EXPIRED = "withdrawal.token.expired"


class WithdrawalStreamConfig:
    """Stream configuration for withdrawal_service"""
    STREAM_NAME = "withdrawal-stream"
    SUBJECTS = ["withdrawal.>"]
    MAX_MESSAGES = 100000


# ============================================================================
# Event Data Models
# ============================================================================


class WithdrawalInitiatedEventData(BaseModel):
    """
    Event: withdrawal.initiated
    Triggered after a withdrawal transaction and its token are committed
    """

    transaction_id: str = Field(..., description="Withdrawal transaction ID")
    user_id: str = Field(..., description="Withdrawing user")
    amount: int = Field(..., description="Requested amount (UGX)")
    fee_amount: int = Field(..., description="Fee charged (UGX)")
    is_fee_free: bool = Field(..., description="Whether a fee-free slot was consumed")
    reference: str = Field(..., description="Transaction reference code")
    token_id: str = Field(..., description="Issued token ID")
    agent_id: Optional[str] = Field(None, description="Preferred agent")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class TokenIssuedEventData(BaseModel):
    """
    Event: withdrawal.token.issued
    """

    token_id: str
    user_id: str
    transaction_id: Optional[str] = None
    amount: int
    expires_at: datetime
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class TokenRedeemedEventData(BaseModel):
    """
    Event: withdrawal.token.redeemed
    Triggered after the token, its transaction and the agent totals commit
    """

    token_id: str
    user_id: str
    transaction_id: Optional[str] = None
    agent_id: str
    amount: int
    commission: int = Field(..., description="Commission credited to the agent (UGX)")
    location: Optional[str] = None
    redeemed_at: datetime
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class TokenCancelledEventData(BaseModel):
    """
    Event: withdrawal.token.cancelled
    """

    token_id: str
    user_id: str
    transaction_id: Optional[str] = None
    amount: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class TokenExpiredEventData(BaseModel):
    """
    Event: withdrawal.token.expired
    Emitted when a read notices the deadline passed and persists EXPIRED
    """

    token_id: str
    user_id: str
    transaction_id: Optional[str] = None
    amount: int
    expires_at: datetime
    timestamp: datetime = Field(default_factory=datetime.utcnow)
