"""
Pydantic Transaction Record

Accumulated workflow state for one payment attempt, keyed by reference.
Records are immutable; stages replace them via model_copy(update=...).
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from .payments import Payment
from .gateway import (
    AuthenticationResult,
    AuthenticatedResult,
    ChallengedResult,
    DeviceDataCollection,
    FraudRiskResult,
)


class TransactionRecord(BaseModel):
    """
    Transaction workflow state.

    Lifecycle:
    - Created once tokenization, risk assessment and device data
      initialization have all succeeded
    - authentication moves absent -> challenged -> terminal, or absent -> terminal
    - completed_at is set when completion claims the record; the card
      token is deleted at the gateway right after
    """
    payment: Payment
    device_data_collection: DeviceDataCollection
    device_session_id: str
    risk_assessment: FraudRiskResult
    authentication: Optional[AuthenticationResult] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @property
    def reference(self) -> str:
        return self.payment.reference

    @property
    def is_challenge_pending(self) -> bool:
        return isinstance(self.authentication, ChallengedResult)

    @property
    def is_authentication_terminal(self) -> bool:
        return self.authentication is not None and not self.is_challenge_pending

    @property
    def is_authorized(self) -> bool:
        """True when the payment may be submitted (authenticated or bypassed)."""
        return isinstance(self.authentication, AuthenticatedResult)
