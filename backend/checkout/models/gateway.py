"""
Pydantic Gateway Response Models

Device data collection, fraud assessment and 3-D Secure results.

3DS results are a sum type discriminated by `outcome`:
- AuthenticatedResult: authenticated | bypassed (payment may proceed)
- UnsuccessfulAuthenticationResult: authenticationFailed | unavailable
- ChallengedResult: challenged (interactive challenge pending)
"""
from typing import Optional, Literal, Union, Annotated
from pydantic import ConfigDict, Field, TypeAdapter

from .payments import GatewayModel


# ==================== Device Data & Risk ====================

class DeviceDataCollection(GatewayModel):
    """Parameters returned by device data initialization."""
    jwt: str
    url: str
    bin: str


class RiskProfile(GatewayModel):
    href: str


class FraudRiskResult(GatewayModel):
    """Fraud assessment outcome."""
    outcome: Literal["lowRisk", "highRisk", "review"]
    transaction_reference: Optional[str] = None
    score: float
    risk_profile: RiskProfile


class BrowserData(GatewayModel):
    """Browser fingerprint sent with the 3DS authentication request."""
    accept_header: str
    user_agent_header: str
    browser_language: Optional[str] = None
    browser_java_enabled: Optional[bool] = None
    browser_color_depth: Optional[Literal["1", "4", "8", "15", "16", "24", "32", "48"]] = None
    browser_screen_height: Optional[int] = None
    browser_screen_width: Optional[int] = None
    time_zone: Optional[str] = None
    browser_javascript_enabled: Optional[bool] = None
    ip_address: Optional[str] = None


# ==================== 3DS Results ====================

class ThreeDsAuthentication(GatewayModel):
    """
    Authentication block forwarded verbatim to the payment request.

    Extra fields returned by the gateway are kept so nothing is lost
    on the way to the charge.
    """
    version: str
    authentication_value: Optional[str] = None
    eci: Optional[str] = None
    transaction_id: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class AuthenticatedResult(GatewayModel):
    outcome: Literal["authenticated", "bypassed"]
    transaction_reference: Optional[str] = None
    acs_transaction_id: Optional[str] = None
    status: Optional[str] = None
    enrolled: Optional[str] = None
    authentication: ThreeDsAuthentication


class UnsuccessfulAuthenticationResult(GatewayModel):
    outcome: Literal["authenticationFailed", "unavailable"]
    transaction_reference: Optional[str] = None
    status: Optional[str] = None
    enrolled: Optional[str] = None


class ChallengeVersion(GatewayModel):
    version: str


class Challenge(GatewayModel):
    """Issuer challenge to be posted from the browser."""
    reference: str
    url: str
    jwt: str
    payload: Optional[str] = None


class ChallengedResult(GatewayModel):
    outcome: Literal["challenged"]
    transaction_reference: Optional[str] = None
    authentication: Optional[ChallengeVersion] = None
    challenge: Challenge


TerminalAuthenticationResult = Annotated[
    Union[AuthenticatedResult, UnsuccessfulAuthenticationResult],
    Field(discriminator="outcome"),
]

AuthenticationResult = Annotated[
    Union[AuthenticatedResult, UnsuccessfulAuthenticationResult, ChallengedResult],
    Field(discriminator="outcome"),
]

authentication_result_adapter = TypeAdapter(AuthenticationResult)
verification_result_adapter = TypeAdapter(TerminalAuthenticationResult)
