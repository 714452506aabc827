"""
Checkout Service

Orchestrates the card payment workflow across its five stages:

1. Initiate: tokenize the card, then fraud assessment and device data
   initialization together; register the transaction
2. Device data collection: relay the signed token to the collection URL
3. Authenticate: 3DS authentication, possibly requiring a challenge
4. Challenge callback: verify the challenge and store the final outcome
5. Complete: charge if authenticated, then always delete the card token

Each stage either advances the stored record or leaves it as it was.
"""
import asyncio
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union
from pydantic import BaseModel
import logging

from ..config import Settings, settings as default_settings
from ..exceptions import CardValidationError, GatewayError, WorkflowStateError
from ..models.payments import BillingAddress, CardData, CardExpiryDate, CardHolder, Payment
from ..models.gateway import (
    AuthenticationResult,
    BrowserData,
    ChallengedResult,
    TerminalAuthenticationResult,
)
from ..models.transactions import TransactionRecord
from .gateway_client import GatewayClient
from .merchant_data import decode_merchant_data, encode_merchant_data
from .transaction_store import TransactionStore

logger = logging.getLogger(__name__)

SUPPORTED_COLOR_DEPTHS = {"1", "4", "8", "15", "16", "24", "32", "48"}

_EXPIRY_RE = re.compile(r"^\s*(\d{1,2})\s*/\s*(\d{2}|\d{4})\s*$")


# ============================================================================
# Stage Inputs & Outcomes
# ============================================================================

class PaymentForm(BaseModel):
    """Fields submitted from the payment page."""
    card_holder_name: str
    card_holder_email: str
    card_number: str
    card_expiry: str
    card_cvc: str
    tmx_session_id: str


@dataclass
class RelayForm:
    """A form the browser posts to a gateway-hosted URL."""
    url: str
    fields: Dict[str, str]


@dataclass
class CompletionRedirect:
    """Authentication finished without a challenge; go straight to completion."""
    reference: str


@dataclass
class ChallengeRequired:
    """Issuer requires an interactive challenge before completion."""
    reference: str
    form: RelayForm


AuthenticationStep = Union[CompletionRedirect, ChallengeRequired]


@dataclass
class PaymentSubmitted:
    reference: str
    payment_result: Dict[str, Any]


@dataclass
class AuthenticationDeclined:
    reference: str
    authentication: Dict[str, Any] = field(default_factory=dict)


CompletionOutcome = Union[PaymentSubmitted, AuthenticationDeclined]


# ============================================================================
# Input Normalization
# ============================================================================

def normalize_card_number(raw: str) -> str:
    """Strip everything but digits from a card number."""
    digits = re.sub(r"\D", "", raw or "")
    if not 12 <= len(digits) <= 19:
        raise CardValidationError(
            "Card number must contain 12 to 19 digits",
            {"digits": len(digits)}
        )
    return digits


def parse_card_expiry(raw: str) -> Tuple[int, int]:
    """
    Parse an MM/YY expiry into (month, four-digit year).

    Raises:
        CardValidationError: Not MM/YY (MM/YYYY is also accepted), month out of
            range, or year outside 2000-2099
    """
    match = _EXPIRY_RE.match(raw or "")
    if not match:
        raise CardValidationError("Card expiry must be in MM/YY format", {"expiry": raw})

    month = int(match.group(1))
    year = int(match.group(2))
    if year < 100:
        year += 2000

    if not 1 <= month <= 12:
        raise CardValidationError("Card expiry month must be between 1 and 12", {"expiry": raw})

    if not 2000 <= year <= 2099:
        raise CardValidationError("Card expiry year must be between 2000 and 2099", {"expiry": raw})

    return month, year


def build_card(form: PaymentForm, config: Settings) -> CardData:
    """Normalize form input into card data for tokenization."""
    month, year = parse_card_expiry(form.card_expiry)
    cvc = form.card_cvc.strip()
    if not cvc.isdigit() or not 3 <= len(cvc) <= 4:
        raise CardValidationError("Card verification code must be 3 or 4 digits")

    return CardData(
        card_holder=CardHolder(
            name=form.card_holder_name.strip(),
            email=form.card_holder_email.strip(),
            billing_address=BillingAddress(
                city=config.billing_city,
                address1=config.billing_address1,
                postal_code=config.billing_postal_code,
                country_code=config.billing_country_code,
                state=config.billing_state,
            ),
        ),
        card_cvc=cvc,
        card_number=normalize_card_number(form.card_number),
        card_expiry_date=CardExpiryDate(month=month, year=year),
    )


def build_browser_data(
    accept_header: Optional[str],
    user_agent_header: Optional[str],
    ip_address: Optional[str],
    browser_language: Optional[str] = None,
    browser_java_enabled: Optional[str] = None,
    browser_color_depth: Optional[str] = None,
    browser_screen_height: Optional[str] = None,
    browser_screen_width: Optional[str] = None,
    time_zone: Optional[str] = None,
    browser_javascript_enabled: Optional[str] = None
) -> BrowserData:
    """
    Build the 3DS browser fingerprint from request headers and form fields.

    Flags arrive as "true"/"false" strings; unsupported color depths and
    non-numeric screen sizes are dropped rather than rejected.
    """
    def _int(value: Optional[str]) -> Optional[int]:
        return int(value) if value and value.strip().isdigit() else None

    return BrowserData(
        accept_header=accept_header or "*/*",
        user_agent_header=user_agent_header or "",
        browser_language=browser_language or None,
        browser_java_enabled=browser_java_enabled == "true",
        browser_color_depth=browser_color_depth if browser_color_depth in SUPPORTED_COLOR_DEPTHS else None,
        browser_screen_height=_int(browser_screen_height),
        browser_screen_width=_int(browser_screen_width),
        time_zone=time_zone or None,
        browser_javascript_enabled=browser_javascript_enabled == "true",
        ip_address=ip_address,
    )


def generate_reference() -> str:
    """Generate a transaction reference, unique per payment attempt."""
    return f"TEST-{uuid.uuid4().hex[:16]}"


# ============================================================================
# Authentication State
# ============================================================================

def advance_authentication(
    record: TransactionRecord,
    result: AuthenticationResult
) -> TransactionRecord:
    """
    Move a record's authentication state forward.

    Allowed transitions:
    - absent -> challenged | terminal
    - challenged -> terminal

    Raises:
        WorkflowStateError: Record completed, already terminal, or challenged twice
    """
    if record.completed_at is not None:
        raise WorkflowStateError(
            "Transaction already completed",
            {"reference": record.reference}
        )

    if record.is_authentication_terminal:
        raise WorkflowStateError(
            "Authentication already finished for this transaction",
            {"reference": record.reference, "outcome": record.authentication.outcome}
        )

    if record.is_challenge_pending and isinstance(result, ChallengedResult):
        raise WorkflowStateError(
            "Challenge already pending for this transaction",
            {"reference": record.reference}
        )

    return record.model_copy(update={"authentication": result})


def claim_for_completion(record: TransactionRecord) -> TransactionRecord:
    """
    Mark a record completed so it is charged at most once.

    Raises:
        WorkflowStateError: Authentication not finished or record already completed
    """
    if record.completed_at is not None:
        raise WorkflowStateError(
            "Transaction already completed",
            {"reference": record.reference}
        )

    if not record.is_authentication_terminal:
        raise WorkflowStateError(
            "Authentication not complete for this transaction",
            {
                "reference": record.reference,
                "outcome": record.authentication.outcome if record.authentication else None,
            }
        )

    return record.model_copy(update={"completed_at": datetime.now(timezone.utc)})


# ============================================================================
# Workflow
# ============================================================================

class CheckoutService:
    """
    Workflow orchestrator for one-off card payments with 3DS.

    The store and gateway client are injected so tests can substitute
    both.
    """

    def __init__(
        self,
        store: TransactionStore,
        gateway: GatewayClient,
        config: Optional[Settings] = None
    ):
        self.store = store
        self.gateway = gateway
        self.config = config or default_settings

    @property
    def challenge_return_url(self) -> str:
        return f"{self.config.public_base_url.rstrip('/')}/auth-callback"

    async def initiate(self, form: PaymentForm, client_ip: Optional[str]) -> str:
        """
        Tokenize the card and register a new transaction.

        Fraud assessment and device data initialization run concurrently
        and both must succeed; otherwise nothing is registered and the
        token is deleted.

        Args:
            form: Payment page submission
            client_ip: Browser IP address for fraud scoring

        Returns:
            Reference of the new transaction

        Raises:
            CardValidationError: Malformed card input
            GatewayError: Card rejected, or either concurrent call failed
        """
        card = build_card(form, self.config)
        token = await self.gateway.create_token(card)

        payment = Payment(
            reference=generate_reference(),
            token=token,
            amount=self.config.payment_amount,
            currency=self.config.payment_currency,
            card_cvc=card.card_cvc,
        )

        risk, ddc = await asyncio.gather(
            self.gateway.fraud_assessment(
                payment,
                device_session_id=form.tmx_session_id,
                browser_ip=client_ip,
                card_holder_email=card.card_holder.email,
            ),
            self.gateway.device_data_initialization(payment),
            return_exceptions=True,
        )

        for result in (risk, ddc):
            if isinstance(result, BaseException):
                logger.warning(f"Initiation aborted for {payment.reference}: {result}")
                await self._discard_token(payment)
                raise result

        record = TransactionRecord(
            payment=payment,
            device_data_collection=ddc,
            device_session_id=form.tmx_session_id,
            risk_assessment=risk,
            created_at=datetime.now(timezone.utc),
        )
        await self.store.put(payment.reference, record)

        logger.info(
            f"Initiated transaction: {payment.reference}, "
            f"risk={risk.outcome} score={risk.score}"
        )
        return payment.reference

    async def device_data_collection(self, reference: str) -> RelayForm:
        """Build the form relaying the signed token to the device data collection URL."""
        record = await self.store.get(reference)
        ddc = record.device_data_collection

        return RelayForm(url=ddc.url, fields={"JWT": ddc.jwt, "Bin": ddc.bin})

    async def authenticate(
        self,
        reference: str,
        device_session_id: Optional[str],
        browser_data: BrowserData
    ) -> AuthenticationStep:
        """
        Run 3DS authentication for a registered transaction.

        Returns:
            CompletionRedirect for authenticated, bypassed, failed or unavailable
            outcomes; ChallengeRequired when the issuer wants a challenge

        Raises:
            TransactionNotFoundError: Unknown reference
            WorkflowStateError: Authentication already started
            GatewayError: Gateway call failed
        """
        record = await self.store.get(reference)
        if record.authentication is not None or record.completed_at is not None:
            raise WorkflowStateError(
                "Authentication already started for this transaction",
                {"reference": reference}
            )

        result = await self.gateway.authenticate(
            record.payment,
            browser_data,
            challenge_return_url=self.challenge_return_url,
            collection_reference=device_session_id,
        )
        await self.store.update(reference, lambda current: advance_authentication(current, result))

        logger.info(f"3DS authentication for {reference}: {result.outcome}")

        if isinstance(result, ChallengedResult):
            return ChallengeRequired(
                reference=reference,
                form=RelayForm(
                    url=result.challenge.url,
                    fields={
                        "JWT": result.challenge.jwt,
                        "MD": encode_merchant_data(reference, self.config.merchant_data_secret),
                    },
                ),
            )

        return CompletionRedirect(reference=reference)

    async def handle_challenge_callback(
        self,
        transaction_id: str,
        merchant_data: str
    ) -> TerminalAuthenticationResult:
        """
        Verify a completed challenge and store the final outcome.

        Args:
            transaction_id: Challenge reference posted by the issuer
            merchant_data: MD posted back by the issuer

        Returns:
            The verified authentication result

        Raises:
            MerchantDataError: MD missing or tampered with
            TransactionNotFoundError: Unknown reference
            WorkflowStateError: No challenge pending for the transaction
            GatewayError: Verification failed
        """
        reference = decode_merchant_data(merchant_data, self.config.merchant_data_secret).reference

        record = await self.store.get(reference)
        if not record.is_challenge_pending:
            raise WorkflowStateError(
                "No challenge pending for this transaction",
                {"reference": reference}
            )

        result = await self.gateway.verify(
            transaction_reference=reference,
            challenge_reference=transaction_id,
        )
        await self.store.update(reference, lambda current: advance_authentication(current, result))

        logger.info(f"3DS challenge verified for {reference}: {result.outcome}")
        return result

    async def complete(self, reference: str) -> CompletionOutcome:
        """
        Charge the payment if authenticated, then delete the card token.

        The token is deleted whatever the outcome, including when the
        charge itself fails.

        Raises:
            TransactionNotFoundError: Unknown reference
            WorkflowStateError: Authentication not finished, or already completed
            GatewayError: Charge failed (a failed token deletion is only logged)
        """
        record = await self.store.update(reference, claim_for_completion)

        try:
            if record.is_authorized:
                payment_result = await self.gateway.customer_initiated_transaction(
                    record.payment,
                    three_ds_authentication=record.authentication.authentication,
                    risk_profile_href=record.risk_assessment.risk_profile.href,
                )
                logger.info(f"Payment submitted for {reference}: {payment_result.get('outcome')}")
                return PaymentSubmitted(reference=reference, payment_result=payment_result)

            logger.info(f"Payment not attempted for {reference}: {record.authentication.outcome}")
            return AuthenticationDeclined(
                reference=reference,
                authentication=record.authentication.model_dump(by_alias=True, exclude_none=True),
            )
        finally:
            await self._discard_token(record.payment)

    async def _discard_token(self, payment: Payment) -> None:
        """Delete a payment's card token; deletion failure is only logged."""
        try:
            await self.gateway.delete_token(payment.token.href)
        except GatewayError as e:
            logger.warning(f"Could not delete token for {payment.reference}: {e}")
