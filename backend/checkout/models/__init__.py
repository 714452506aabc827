"""
Pydantic models for the checkout workflow.
"""
from .payments import (
    GatewayModel,
    BillingAddress,
    CardHolder,
    CardExpiryDate,
    CardData,
    TokenPaymentInstrument,
    Payment,
)
from .gateway import (
    DeviceDataCollection,
    RiskProfile,
    FraudRiskResult,
    BrowserData,
    ThreeDsAuthentication,
    AuthenticatedResult,
    UnsuccessfulAuthenticationResult,
    ChallengedResult,
    Challenge,
    AuthenticationResult,
    TerminalAuthenticationResult,
    authentication_result_adapter,
    verification_result_adapter,
)
from .transactions import TransactionRecord

__all__ = [
    "GatewayModel",
    "BillingAddress",
    "CardHolder",
    "CardExpiryDate",
    "CardData",
    "TokenPaymentInstrument",
    "Payment",
    "DeviceDataCollection",
    "RiskProfile",
    "FraudRiskResult",
    "BrowserData",
    "ThreeDsAuthentication",
    "AuthenticatedResult",
    "UnsuccessfulAuthenticationResult",
    "ChallengedResult",
    "Challenge",
    "AuthenticationResult",
    "TerminalAuthenticationResult",
    "authentication_result_adapter",
    "verification_result_adapter",
    "TransactionRecord",
]
