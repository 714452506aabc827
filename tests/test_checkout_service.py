"""
Checkout workflow tests
"""
import asyncio

import pytest

from checkout.exceptions import (
    CardValidationError,
    GatewayError,
    MerchantDataError,
    TransactionNotFoundError,
    WorkflowStateError,
)
from checkout.models import AuthenticatedResult
from checkout.services.checkout_service import (
    AuthenticationDeclined,
    ChallengeRequired,
    CompletionRedirect,
    PaymentSubmitted,
    advance_authentication,
    build_browser_data,
    normalize_card_number,
    parse_card_expiry,
)
from checkout.services.merchant_data import decode_merchant_data, encode_merchant_data

from conftest import (
    RISK_PROFILE_HREF,
    TOKEN_HREF,
    authenticated_result,
    challenged_result,
    failed_result,
    make_record,
)


def browser_data():
    return build_browser_data(
        accept_header="text/html",
        user_agent_header="Mozilla/5.0",
        ip_address="127.0.0.1",
        browser_language="en-GB",
        browser_color_depth="24",
        browser_screen_height="1080",
        browser_screen_width="1920",
        time_zone="-60",
        browser_javascript_enabled="true",
        browser_java_enabled="false",
    )


# =============================================================================
# Input Normalization
# =============================================================================

class TestCardInput:
    """Card field normalization"""

    def test_card_number_strips_non_digits(self):
        assert normalize_card_number("4111 1111-1111 1111") == "4111111111111111"

    @pytest.mark.parametrize("raw", ["", "4111", "abcd efgh"])
    def test_card_number_too_short(self, raw):
        with pytest.raises(CardValidationError):
            normalize_card_number(raw)

    def test_expiry_two_digit_year(self):
        assert parse_card_expiry("12/30") == (12, 2030)

    def test_expiry_four_digit_year_and_spaces(self):
        assert parse_card_expiry(" 03 / 2031 ") == (3, 2031)

    @pytest.mark.parametrize("raw", ["", "1230", "13/30", "00/30", "12/3", "12/1999", "01/2100"])
    def test_invalid_expiry(self, raw):
        with pytest.raises(CardValidationError):
            parse_card_expiry(raw)

    def test_browser_data_drops_unsupported_values(self):
        data = build_browser_data(
            accept_header=None,
            user_agent_header="Mozilla/5.0",
            ip_address=None,
            browser_color_depth="30",
            browser_screen_height="tall",
        )

        assert data.accept_header == "*/*"
        assert data.browser_color_depth is None
        assert data.browser_screen_height is None
        assert data.browser_javascript_enabled is False


# =============================================================================
# Initiate
# =============================================================================

class TestInitiate:
    """Stage 1: tokenization, risk and device data initialization"""

    @pytest.mark.asyncio
    async def test_creates_record(self, service, store, gateway, payment_form, fixed_reference):
        reference = await service.initiate(payment_form, "10.0.0.1")

        assert reference == "R1"
        record = await store.get("R1")
        assert record.payment.amount == 100
        assert record.payment.currency == "GBP"
        assert record.payment.token.href == TOKEN_HREF
        assert record.payment.card_cvc == "123"
        assert record.device_session_id == "tmx-session-1"
        assert record.risk_assessment.risk_profile.href == RISK_PROFILE_HREF
        assert record.authentication is None

    @pytest.mark.asyncio
    async def test_tokenizes_normalized_card(self, service, gateway, payment_form, fixed_reference):
        await service.initiate(payment_form, "10.0.0.1")

        card = gateway.create_token.await_args.args[0]
        assert card.card_number == "4111111111111111"
        assert card.card_expiry_date.month == 12
        assert card.card_expiry_date.year == 2030
        assert card.card_holder.billing_address.country_code == "GB"

    @pytest.mark.asyncio
    async def test_risk_uses_profiling_session(self, service, gateway, payment_form, fixed_reference):
        await service.initiate(payment_form, "10.0.0.1")

        kwargs = gateway.fraud_assessment.await_args.kwargs
        assert kwargs["device_session_id"] == "tmx-session-1"
        assert kwargs["browser_ip"] == "10.0.0.1"
        assert kwargs["card_holder_email"] == "sherlock@example.com"

    @pytest.mark.asyncio
    async def test_invalid_card_makes_no_gateway_call(self, service, gateway, payment_form):
        form = payment_form.model_copy(update={"card_expiry": "2030-12"})

        with pytest.raises(CardValidationError):
            await service.initiate(form, "10.0.0.1")

        gateway.create_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tokenization_failure(self, service, store, gateway, payment_form):
        gateway.create_token.side_effect = GatewayError("create token", 400, "{}")

        with pytest.raises(GatewayError):
            await service.initiate(payment_form, "10.0.0.1")

        gateway.fraud_assessment.assert_not_awaited()
        gateway.device_data_initialization.assert_not_awaited()
        assert len(store) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failing", ["fraud_assessment", "device_data_initialization"])
    async def test_concurrent_failure_stores_nothing(
        self, service, store, gateway, payment_form, fixed_reference, failing
    ):
        getattr(gateway, failing).side_effect = GatewayError(failing, 500, "boom")

        with pytest.raises(GatewayError):
            await service.initiate(payment_form, "10.0.0.1")

        assert len(store) == 0
        with pytest.raises(TransactionNotFoundError):
            await store.get("R1")
        gateway.delete_token.assert_awaited_once_with(TOKEN_HREF)


# =============================================================================
# Device Data Collection
# =============================================================================

class TestDeviceDataCollection:
    """Stage 2: relay form"""

    @pytest.mark.asyncio
    async def test_relays_stored_jwt_and_bin(self, service, store, gateway):
        await store.put("R1", make_record("R1"))

        relay = await service.device_data_collection("R1")

        assert relay.url.startswith("https://ddc-test")
        assert relay.fields == {"JWT": "ddc-jwt", "Bin": "555555"}
        assert gateway.method_calls == []

    @pytest.mark.asyncio
    async def test_unknown_reference(self, service):
        with pytest.raises(TransactionNotFoundError):
            await service.device_data_collection("missing")


# =============================================================================
# Authenticate
# =============================================================================

class TestAuthenticate:
    """Stage 3: 3DS authentication"""

    @pytest.mark.asyncio
    async def test_authenticated_redirects_to_completion(self, service, store, gateway):
        await store.put("R1", make_record("R1"))

        step = await service.authenticate("R1", "ddc-session-1", browser_data())

        assert step == CompletionRedirect(reference="R1")
        assert isinstance((await store.get("R1")).authentication, AuthenticatedResult)

        kwargs = gateway.authenticate.await_args.kwargs
        assert kwargs["challenge_return_url"] == "http://testserver/auth-callback"
        assert kwargs["collection_reference"] == "ddc-session-1"

    @pytest.mark.asyncio
    async def test_failed_outcome_still_redirects(self, service, store, gateway):
        gateway.authenticate.return_value = failed_result("unavailable")
        await store.put("R1", make_record("R1"))

        step = await service.authenticate("R1", "ddc-session-1", browser_data())

        assert isinstance(step, CompletionRedirect)
        assert (await store.get("R1")).authentication.outcome == "unavailable"

    @pytest.mark.asyncio
    async def test_challenge_defers_completion(self, service, store, gateway, test_settings):
        gateway.authenticate.return_value = challenged_result()
        await store.put("R1", make_record("R1"))

        step = await service.authenticate("R1", "ddc-session-1", browser_data())

        assert isinstance(step, ChallengeRequired)
        assert step.form.url.startswith("https://acs-test")
        assert step.form.fields["JWT"] == "challenge-jwt"
        merchant_data = decode_merchant_data(step.form.fields["MD"], test_settings.merchant_data_secret)
        assert merchant_data.reference == "R1"

        record = await store.get("R1")
        assert record.is_challenge_pending
        assert not record.is_authentication_terminal

    @pytest.mark.asyncio
    async def test_repeat_authentication_rejected(self, service, store, gateway):
        await store.put("R1", make_record("R1"))
        await service.authenticate("R1", "ddc-session-1", browser_data())

        with pytest.raises(WorkflowStateError):
            await service.authenticate("R1", "ddc-session-1", browser_data())

        assert gateway.authenticate.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_reference(self, service, gateway):
        with pytest.raises(TransactionNotFoundError):
            await service.authenticate("missing", None, browser_data())

        gateway.authenticate.assert_not_awaited()


# =============================================================================
# Authentication State Transitions
# =============================================================================

class TestAuthenticationState:
    """absent -> challenged -> terminal, absent -> terminal"""

    def test_absent_to_terminal(self):
        record = advance_authentication(make_record(), authenticated_result())

        assert record.is_authentication_terminal

    def test_challenged_to_terminal(self):
        record = advance_authentication(make_record(), challenged_result())
        record = advance_authentication(record, failed_result())

        assert record.authentication.outcome == "authenticationFailed"

    @pytest.mark.parametrize("result_factory", [authenticated_result, failed_result, challenged_result])
    def test_terminal_never_changes(self, result_factory):
        record = advance_authentication(make_record(), authenticated_result("bypassed"))

        with pytest.raises(WorkflowStateError):
            advance_authentication(record, result_factory())

    def test_second_challenge_rejected(self):
        record = advance_authentication(make_record(), challenged_result())

        with pytest.raises(WorkflowStateError):
            advance_authentication(record, challenged_result())


# =============================================================================
# Challenge Callback
# =============================================================================

class TestChallengeCallback:
    """Stage 4: verification after the challenge"""

    @pytest.mark.asyncio
    async def test_verified_result_replaces_challenge(self, service, store, gateway, test_settings):
        await store.put("R1", make_record("R1", authentication=challenged_result()))
        merchant_data = encode_merchant_data("R1", test_settings.merchant_data_secret)

        result = await service.handle_challenge_callback("txn-99", merchant_data)

        assert isinstance(result, AuthenticatedResult)
        gateway.verify.assert_awaited_once_with(
            transaction_reference="R1",
            challenge_reference="txn-99",
        )
        record = await store.get("R1")
        assert record.is_authorized

    @pytest.mark.asyncio
    async def test_unknown_reference_makes_no_gateway_call(self, service, gateway, test_settings):
        merchant_data = encode_merchant_data("unknown", test_settings.merchant_data_secret)

        with pytest.raises(TransactionNotFoundError):
            await service.handle_challenge_callback("txn-99", merchant_data)

        gateway.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_forged_merchant_data(self, service, store, gateway):
        await store.put("R1", make_record("R1", authentication=challenged_result()))

        with pytest.raises(MerchantDataError):
            await service.handle_challenge_callback("txn-99", encode_merchant_data("R1", "wrong"))

        gateway.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_pending_challenge(self, service, store, gateway, test_settings):
        await store.put("R1", make_record("R1", authentication=authenticated_result()))
        merchant_data = encode_merchant_data("R1", test_settings.merchant_data_secret)

        with pytest.raises(WorkflowStateError):
            await service.handle_challenge_callback("txn-99", merchant_data)

        gateway.verify.assert_not_awaited()
        assert (await store.get("R1")).authentication.outcome == "authenticated"

    @pytest.mark.asyncio
    async def test_concurrent_callbacks_settle_once(self, service, store, gateway, test_settings):
        await store.put("R1", make_record("R1", authentication=challenged_result()))
        merchant_data = encode_merchant_data("R1", test_settings.merchant_data_secret)

        results = await asyncio.gather(
            service.handle_challenge_callback("txn-1", merchant_data),
            service.handle_challenge_callback("txn-2", merchant_data),
            return_exceptions=True,
        )

        accepted = [r for r in results if isinstance(r, AuthenticatedResult)]
        rejected = [r for r in results if isinstance(r, WorkflowStateError)]
        assert len(accepted) == 1
        assert len(rejected) == 1
        assert (await store.get("R1")).is_authorized


# =============================================================================
# Complete
# =============================================================================

class TestComplete:
    """Stage 5: charge and token cleanup"""

    @pytest.mark.asyncio
    async def test_authenticated_submits_payment(self, service, store, gateway):
        auth = authenticated_result()
        await store.put("R1", make_record("R1", authentication=auth))

        outcome = await service.complete("R1")

        assert outcome == PaymentSubmitted(
            reference="R1",
            payment_result={"outcome": "authorized", "transactionReference": "R1"},
        )
        kwargs = gateway.customer_initiated_transaction.await_args.kwargs
        assert kwargs["three_ds_authentication"] == auth.authentication
        assert kwargs["risk_profile_href"] == RISK_PROFILE_HREF
        gateway.delete_token.assert_awaited_once_with(TOKEN_HREF)

    @pytest.mark.asyncio
    async def test_bypassed_submits_payment(self, service, store, gateway):
        await store.put("R1", make_record("R1", authentication=authenticated_result("bypassed")))

        outcome = await service.complete("R1")

        assert isinstance(outcome, PaymentSubmitted)
        gateway.customer_initiated_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_authentication_skips_charge(self, service, store, gateway):
        await store.put("R1", make_record("R1", authentication=failed_result()))

        outcome = await service.complete("R1")

        assert isinstance(outcome, AuthenticationDeclined)
        assert outcome.authentication["outcome"] == "authenticationFailed"
        gateway.customer_initiated_transaction.assert_not_awaited()
        gateway.delete_token.assert_awaited_once_with(TOKEN_HREF)

    @pytest.mark.asyncio
    async def test_requires_authentication_result(self, service, store, gateway):
        await store.put("R1", make_record("R1"))

        with pytest.raises(WorkflowStateError):
            await service.complete("R1")

        gateway.customer_initiated_transaction.assert_not_awaited()
        gateway.delete_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pending_challenge_not_completed(self, service, store, gateway):
        await store.put("R1", make_record("R1", authentication=challenged_result()))

        with pytest.raises(WorkflowStateError):
            await service.complete("R1")

        gateway.customer_initiated_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_token_deleted_when_charge_fails(self, service, store, gateway):
        gateway.customer_initiated_transaction.side_effect = GatewayError("authorize payment", 500, "{}")
        await store.put("R1", make_record("R1", authentication=authenticated_result()))

        with pytest.raises(GatewayError):
            await service.complete("R1")

        gateway.delete_token.assert_awaited_once_with(TOKEN_HREF)

    @pytest.mark.asyncio
    async def test_token_deletion_failure_keeps_payment_result(self, service, store, gateway):
        gateway.delete_token.side_effect = GatewayError("delete token", 500, "{}")
        await store.put("R1", make_record("R1", authentication=authenticated_result()))

        outcome = await service.complete("R1")

        assert isinstance(outcome, PaymentSubmitted)
        assert outcome.payment_result["outcome"] == "authorized"
        gateway.customer_initiated_transaction.assert_awaited_once()
        gateway.delete_token.assert_awaited_once_with(TOKEN_HREF)

    @pytest.mark.asyncio
    async def test_token_deletion_failure_keeps_decline(self, service, store, gateway):
        gateway.delete_token.side_effect = GatewayError("delete token")
        await store.put("R1", make_record("R1", authentication=failed_result()))

        outcome = await service.complete("R1")

        assert isinstance(outcome, AuthenticationDeclined)

    @pytest.mark.asyncio
    async def test_second_completion_does_not_charge_again(self, service, store, gateway):
        await store.put("R1", make_record("R1", authentication=authenticated_result()))
        await service.complete("R1")

        with pytest.raises(WorkflowStateError):
            await service.complete("R1")

        gateway.customer_initiated_transaction.assert_awaited_once()
        gateway.delete_token.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_reference(self, service, gateway):
        with pytest.raises(TransactionNotFoundError):
            await service.complete("missing")

        gateway.delete_token.assert_not_awaited()


class TestScenario:
    """End to end through the service: challenge flow"""

    @pytest.mark.asyncio
    async def test_challenge_flow(self, service, store, gateway, payment_form, fixed_reference):
        gateway.authenticate.return_value = challenged_result()

        reference = await service.initiate(payment_form, "10.0.0.1")
        step = await service.authenticate(reference, "ddc-session-1", browser_data())
        await service.handle_challenge_callback("txn-99", step.form.fields["MD"])
        outcome = await service.complete(reference)

        assert isinstance(outcome, PaymentSubmitted)
        assert (await store.get(reference)).completed_at is not None
        gateway.delete_token.assert_awaited_once_with(TOKEN_HREF)
