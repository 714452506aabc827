"""
Pytest configuration and fixtures for checkout tests.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from checkout.config import Settings
from checkout.models import (
    AuthenticatedResult,
    ChallengedResult,
    DeviceDataCollection,
    FraudRiskResult,
    Payment,
    TokenPaymentInstrument,
    TransactionRecord,
    UnsuccessfulAuthenticationResult,
    authentication_result_adapter,
)
from checkout.services.checkout_service import CheckoutService, PaymentForm
from checkout.services.gateway_client import GatewayClient
from checkout.services.transaction_store import InMemoryTransactionStore


TOKEN_HREF = "https://try.access.worldpay.com/tokens/test-token"
RISK_PROFILE_HREF = "https://try.access.worldpay.com/riskProfile/test-profile"
DDC_URL = "https://ddc-test.cardinalcommerce.com/V2/Cruise/Collect"
CHALLENGE_URL = "https://acs-test.cardinalcommerce.com/V2/Cruise/StepUp"


# =============================================================================
# Gateway Payloads
# =============================================================================

def authenticated_payload(outcome: str = "authenticated") -> dict:
    return {
        "outcome": outcome,
        "transactionReference": "R1",
        "acsTransactionId": "acs-123",
        "status": "Y",
        "enrolled": "Y",
        "authentication": {
            "version": "2.1.0",
            "authenticationValue": "MAAAAAAAAAAAAAAAAAAAAAAAAAA=",
            "eci": "05",
            "transactionId": "c5b808e7-1de1-4069-a17b-f70d3b3b1645",
        },
    }


def challenged_payload() -> dict:
    return {
        "outcome": "challenged",
        "transactionReference": "R1",
        "authentication": {"version": "2.1.0"},
        "challenge": {
            "reference": "challenge-ref-1",
            "url": CHALLENGE_URL,
            "jwt": "challenge-jwt",
            "payload": "challenge-payload",
        },
    }


def failed_payload(outcome: str = "authenticationFailed") -> dict:
    return {"outcome": outcome, "transactionReference": "R1"}


def authenticated_result(outcome: str = "authenticated") -> AuthenticatedResult:
    return authentication_result_adapter.validate_python(authenticated_payload(outcome))


def challenged_result() -> ChallengedResult:
    return authentication_result_adapter.validate_python(challenged_payload())


def failed_result(outcome: str = "authenticationFailed") -> UnsuccessfulAuthenticationResult:
    return authentication_result_adapter.validate_python(failed_payload(outcome))


def make_record(reference: str = "R1", created_at: datetime = None, **updates) -> TransactionRecord:
    """Build a freshly initiated transaction record."""
    record = TransactionRecord(
        payment=Payment(
            reference=reference,
            token=TokenPaymentInstrument(type="card/tokenized", href=TOKEN_HREF),
            amount=100,
            currency="GBP",
            card_cvc="123",
        ),
        device_data_collection=DeviceDataCollection(jwt="ddc-jwt", url=DDC_URL, bin="555555"),
        device_session_id="tmx-session-1",
        risk_assessment=FraudRiskResult(
            outcome="lowRisk",
            score=12.5,
            risk_profile={"href": RISK_PROFILE_HREF},
        ),
        created_at=created_at or datetime.now(timezone.utc),
    )
    return record.model_copy(update=updates) if updates else record


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def test_settings():
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        gateway_base_url="https://gateway.test/",
        gateway_username="user",
        gateway_password="pass",
        merchant_entity="TESTMERCHANT",
        merchant_data_secret="test-merchant-data-secret",
        public_base_url="http://testserver",
        payment_amount=100,
        payment_currency="GBP",
    )


@pytest.fixture
def store():
    return InMemoryTransactionStore(ttl_minutes=30)


@pytest.fixture
def gateway():
    """Gateway client double returning a successful, frictionless flow."""
    gateway = AsyncMock(spec=GatewayClient)
    gateway.create_token.return_value = TokenPaymentInstrument(type="card/tokenized", href=TOKEN_HREF)
    gateway.fraud_assessment.return_value = FraudRiskResult(
        outcome="lowRisk",
        transaction_reference="R1",
        score=12.5,
        risk_profile={"href": RISK_PROFILE_HREF},
    )
    gateway.device_data_initialization.return_value = DeviceDataCollection(
        jwt="ddc-jwt", url=DDC_URL, bin="555555"
    )
    gateway.authenticate.return_value = authenticated_result()
    gateway.verify.return_value = authenticated_result()
    gateway.customer_initiated_transaction.return_value = {
        "outcome": "authorized",
        "transactionReference": "R1",
    }
    gateway.delete_token.return_value = None
    return gateway


@pytest.fixture
def service(store, gateway, test_settings):
    return CheckoutService(store=store, gateway=gateway, config=test_settings)


@pytest.fixture
def fixed_reference(monkeypatch):
    """Make the next generated transaction reference R1."""
    monkeypatch.setattr(
        "checkout.services.checkout_service.generate_reference",
        lambda: "R1"
    )
    return "R1"


@pytest.fixture
def payment_form():
    return PaymentForm(
        card_holder_name="Sherlock Holmes",
        card_holder_email="sherlock@example.com",
        card_number="4111 1111 1111 1111",
        card_expiry="12/30",
        card_cvc="123",
        tmx_session_id="tmx-session-1",
    )


@pytest.fixture
def payment_form_data(payment_form):
    return payment_form.model_dump()


@pytest.fixture
def client(service):
    """Test client serving the checkout app with the gateway double."""
    from fastapi.testclient import TestClient
    from checkout.main import create_app

    return TestClient(create_app(service))
