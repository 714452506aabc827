"""
Payment Gateway Client

Async wrapper over the gateway's HAL+JSON REST endpoints: tokens,
device data initialization, fraud assessment, 3DS authentication and
verification, and customer-initiated card payments.

Every call carries the merchant entity and the static credential from
settings. Non-2xx responses, and 2xx bodies of an unexpected shape, are
logged with status and body and raised as GatewayError; nothing is retried.
"""
from typing import Any, Callable, Dict, Optional, TypeVar
import logging

import httpx

from ..config import Settings, settings as default_settings
from ..exceptions import GatewayError
from ..models.payments import CardData, Payment, TokenPaymentInstrument
from ..models.gateway import (
    AuthenticationResult,
    BrowserData,
    DeviceDataCollection,
    FraudRiskResult,
    TerminalAuthenticationResult,
    ThreeDsAuthentication,
    authentication_result_adapter,
    verification_result_adapter,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Versioned media types per endpoint family
TOKENS_MEDIA_TYPE = "application/vnd.worldpay.tokens-v3.hal+json"
VERIFICATIONS_MEDIA_TYPE = "application/vnd.worldpay.verifications.customers-v3.hal+json"
FRAUDSIGHT_MEDIA_TYPE = "application/vnd.worldpay.fraudsight-v1.hal+json"
PAYMENTS_MEDIA_TYPE = "application/vnd.worldpay.payments-v7+json"


class GatewayClient:
    """
    Client for the payment gateway API.

    One instance is shared by the application; close it with aclose()
    on shutdown.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize client.

        Args:
            config: Settings to read gateway URL, credentials and merchant from
            transport: Optional httpx transport (used by tests)
        """
        self.config = config or default_settings
        self.http_client = httpx.AsyncClient(
            base_url=self.config.gateway_base_url,
            auth=httpx.BasicAuth(self.config.gateway_username, self.config.gateway_password),
            timeout=self.config.gateway_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()

    def _merchant(self, **extra: Any) -> Dict[str, Any]:
        return {"entity": self.config.merchant_entity, **extra}

    async def _request(
        self,
        operation: str,
        method: str,
        url: str,
        media_type: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        Send a request and raise GatewayError on transport failure or non-2xx.

        Args:
            operation: Human-readable operation name for logs and errors
            method: HTTP method
            url: Path relative to the gateway base URL, or an absolute href
            media_type: Versioned media type for Accept and Content-Type
            body: JSON body
        """
        headers = {}
        if media_type:
            headers["Accept"] = media_type
            headers["Content-Type"] = media_type

        try:
            response = await self.http_client.request(method, url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Gateway {operation} request failed: {e}")
            raise GatewayError(operation) from e

        if not response.is_success:
            logger.error(f"Gateway {operation} error: {response.status_code}\n{response.text}")
            raise GatewayError(operation, response.status_code, response.text)

        logger.debug(f"Gateway {operation} response: {response.status_code}")
        return response

    def _parse(self, operation: str, response: httpx.Response, parse: Callable[[Any], T]) -> T:
        """Parse a 2xx body, raising GatewayError when it is not the expected shape."""
        try:
            return parse(response.json())
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Gateway {operation} returned unexpected body: {e}\n{response.text}")
            raise GatewayError(operation, response.status_code, response.text) from e

    # ========================================================================
    # Tokens
    # ========================================================================

    async def create_token(self, card: CardData) -> TokenPaymentInstrument:
        """
        Tokenize a card.

        Returns:
            Token handle used in place of the card number from here on

        Raises:
            GatewayError: Card rejected by the gateway
        """
        payment_instrument = {
            "type": "card/front",
            "cardHolderName": card.card_holder.name,
            "cardNumber": card.card_number,
            "cardExpiryDate": card.card_expiry_date.to_gateway(),
            "billingAddress": card.card_holder.billing_address.to_gateway(),
        }
        response = await self._request(
            "create token",
            "POST",
            "tokens",
            TOKENS_MEDIA_TYPE,
            {"merchant": self._merchant(), "paymentInstrument": payment_instrument},
        )
        return self._parse(
            "create token",
            response,
            lambda data: TokenPaymentInstrument.model_validate(data["tokenPaymentInstrument"]),
        )

    async def delete_token(self, token_href: str) -> None:
        """Delete a token so the card is not left live at the gateway."""
        await self._request("delete token", "DELETE", token_href)
        logger.info(f"Deleted token: {token_href}")

    # ========================================================================
    # Device Data & Fraud
    # ========================================================================

    async def device_data_initialization(self, payment: Payment) -> DeviceDataCollection:
        """Obtain the JWT, BIN and collection URL for browser device data collection."""
        response = await self._request(
            "initialize device data collection",
            "POST",
            "verifications/customers/3ds/deviceDataInitialization",
            VERIFICATIONS_MEDIA_TYPE,
            {
                "transactionReference": payment.reference,
                "merchant": self._merchant(),
                "paymentInstrument": {"type": "card/tokenized", "href": payment.token.href},
            },
        )
        return self._parse(
            "initialize device data collection",
            response,
            lambda data: DeviceDataCollection.model_validate(data["deviceDataCollection"]),
        )

    async def fraud_assessment(
        self,
        payment: Payment,
        device_session_id: str,
        browser_ip: Optional[str],
        card_holder_email: str
    ) -> FraudRiskResult:
        """Score the payment for fraud using the profiling session id."""
        body = {
            "transactionReference": payment.reference,
            "merchant": self._merchant(),
            "instruction": {
                "paymentInstrument": {"type": "card/tokenized", "href": payment.token.href},
                "value": {"currency": payment.currency, "amount": payment.amount},
            },
            "deviceData": {
                "collectionReference": device_session_id,
                "ipAddress": browser_ip,
            },
            "riskData": {
                "account": {"email": card_holder_email},
            },
        }
        response = await self._request(
            "create fraud assessment",
            "POST",
            "fraudsight/assessment",
            FRAUDSIGHT_MEDIA_TYPE,
            body,
        )
        return self._parse("create fraud assessment", response, FraudRiskResult.model_validate)

    # ========================================================================
    # 3DS
    # ========================================================================

    async def authenticate(
        self,
        payment: Payment,
        browser_data: BrowserData,
        challenge_return_url: str,
        collection_reference: Optional[str] = None
    ) -> AuthenticationResult:
        """
        Request 3DS authentication.

        Returns:
            AuthenticatedResult, UnsuccessfulAuthenticationResult or ChallengedResult
        """
        body = {
            "transactionReference": payment.reference,
            "merchant": self._merchant(overrideName=self.config.merchant_override_name),
            "instruction": {
                "paymentInstrument": {"type": "card/tokenized", "href": payment.token.href},
                "value": {"currency": payment.currency, "amount": payment.amount},
            },
            "deviceData": {
                **({"collectionReference": collection_reference} if collection_reference else {}),
                **browser_data.to_gateway(),
            },
            "challenge": {
                "windowSize": "fullPage",
                "preference": "noPreference",
                "returnUrl": challenge_return_url,
            },
        }
        response = await self._request(
            "authenticate",
            "POST",
            "verifications/customers/3ds/authentication",
            VERIFICATIONS_MEDIA_TYPE,
            body,
        )
        return self._parse("authenticate", response, authentication_result_adapter.validate_python)

    async def verify(
        self,
        transaction_reference: str,
        challenge_reference: str
    ) -> TerminalAuthenticationResult:
        """Fetch the final 3DS outcome after an interactive challenge."""
        response = await self._request(
            "verify challenge",
            "POST",
            "verifications/customers/3ds/verification",
            VERIFICATIONS_MEDIA_TYPE,
            {
                "transactionReference": transaction_reference,
                "merchant": self._merchant(),
                "challenge": {"reference": challenge_reference},
            },
        )
        return self._parse("verify challenge", response, verification_result_adapter.validate_python)

    # ========================================================================
    # Card Payments
    # ========================================================================

    async def customer_initiated_transaction(
        self,
        payment: Payment,
        three_ds_authentication: ThreeDsAuthentication,
        risk_profile_href: str
    ) -> Dict[str, Any]:
        """
        Authorize (and auto-settle) the payment.

        Returns:
            Gateway payment response as returned by the API
        """
        body = {
            "transactionReference": payment.reference,
            "merchant": self._merchant(paymentFacilitator=self._payment_facilitator()),
            "instruction": {
                "requestAutoSettlement": {"enabled": True},
                "narrative": {"line1": "Test payment"},
                "value": {"currency": payment.currency, "amount": payment.amount},
                "paymentInstrument": {
                    "type": "card/token",
                    "href": payment.token.href,
                    "cvc": payment.card_cvc,
                },
            },
            "channel": "ecom",
            "authentication": {"threeDS": three_ds_authentication.to_gateway()},
            "riskProfile": risk_profile_href,
        }
        response = await self._request(
            "authorize payment",
            "POST",
            "cardPayments/customerInitiatedTransactions",
            PAYMENTS_MEDIA_TYPE,
            body,
        )
        return self._parse("authorize payment", response, _json_object)

    def _payment_facilitator(self) -> Dict[str, Any]:
        # TODO: capture facilitator and sub-merchant details per merchant setup instead of fixed demo values
        return {
            "schemeId": "1000",
            "independentSalesOrganizationId": "1",
            "subMerchant": {
                "name": "Mind Palace",
                "reference": "1",
                "address": {
                    "postalCode": "W1A 1AA",
                    "street": "W1A 1AA",
                    "city": "London",
                    "state": "LND",
                    "countryCode": "GB",
                },
                "phoneNumber": "+40721234567",
                "email": "random@test.org",
                "taxReference": "1234567890",
            },
        }


def _json_object(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise TypeError(f"expected a JSON object, got {type(data).__name__}")
    return data
