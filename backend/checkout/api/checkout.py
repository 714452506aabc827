"""
Checkout API Endpoints

Browser-facing pages driving the payment workflow:

    GET  /               payment form
    POST /               initiate -> redirect to /ddc
    GET  /ddc            device data collection relay page
    GET  /post-form      auto-submitting form to a gateway-hosted URL
    POST /auth           3DS authentication -> redirect or challenge page
    GET  /auth-complete  charge and report the outcome
    POST /auth-callback  challenge callback from the issuer

Workflow errors (CheckoutError) are rendered by the application's
exception handler.
"""
from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode
import json
import logging
import uuid

from ..services.checkout_service import (
    CheckoutService,
    ChallengeRequired,
    PaymentForm,
    PaymentSubmitted,
    RelayForm,
    build_browser_data,
)

logger = logging.getLogger(__name__)

router = APIRouter()

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))


def get_checkout_service(request: Request) -> CheckoutService:
    """Checkout service attached to the application at startup."""
    return request.app.state.checkout_service


def _relay_url(relay: RelayForm) -> str:
    return "/post-form?" + urlencode({"url": relay.url, "p": json.dumps(relay.fields)})


def _complete_url(reference: str) -> str:
    return "/auth-complete?" + urlencode({"reference": reference})


@router.get("/", response_class=HTMLResponse)
async def payment_page(
    request: Request,
    service: CheckoutService = Depends(get_checkout_service)
):
    """Render the payment form with a fresh device profiling session id."""
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "tm_profiling_domain": service.config.tm_profiling_domain,
            "tm_organisation_id": service.config.tm_organisation_id,
            "tm_session_id": str(uuid.uuid4()),
            "amount": service.config.payment_amount,
            "currency": service.config.payment_currency,
        },
    )


@router.post("/")
async def initiate_payment(
    request: Request,
    card_holder_name: str = Form(...),
    card_holder_email: str = Form(...),
    card_number: str = Form(...),
    card_expiry: str = Form(...),
    card_cvc: str = Form(...),
    tmx_session_id: str = Form(...),
    service: CheckoutService = Depends(get_checkout_service)
):
    """
    Tokenize the card and start the workflow.

    Returns:
        303 redirect to the device data collection page
    """
    form = PaymentForm(
        card_holder_name=card_holder_name,
        card_holder_email=card_holder_email,
        card_number=card_number,
        card_expiry=card_expiry,
        card_cvc=card_cvc,
        tmx_session_id=tmx_session_id,
    )
    client_ip = request.client.host if request.client else None

    reference = await service.initiate(form, client_ip)

    return RedirectResponse("/ddc?" + urlencode({"reference": reference}), status_code=303)


@router.get("/ddc", response_class=HTMLResponse)
async def device_data_collection_page(
    request: Request,
    reference: str = Query(..., description="Transaction reference"),
    service: CheckoutService = Depends(get_checkout_service)
):
    """Relay the signed device data token to the gateway's collection URL."""
    relay = await service.device_data_collection(reference)

    return templates.TemplateResponse(
        request,
        "device_data_collection.html",
        {
            "reference": reference,
            "relay_url": _relay_url(relay),
            "collection_url": relay.url,
        },
    )


@router.get("/post-form", response_class=HTMLResponse)
async def post_form_page(
    request: Request,
    url: str = Query(..., description="Target URL"),
    p: str = Query(..., description="JSON object of form fields")
):
    """Auto-submit a form of hidden fields to the target URL."""
    if not url.startswith(("https://", "http://")):
        raise HTTPException(status_code=400, detail="Target URL must be http(s)")

    try:
        fields = json.loads(p)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Form payload must be JSON")

    if not isinstance(fields, dict) or not all(isinstance(v, str) for v in fields.values()):
        raise HTTPException(status_code=400, detail="Form payload must map names to strings")

    return templates.TemplateResponse(
        request,
        "post_form.html",
        {"target_url": url, "fields": fields},
    )


@router.post("/auth")
async def authenticate(
    request: Request,
    reference: str = Form(...),
    session_id: Optional[str] = Form(None, alias="sessionId"),
    browser_language: Optional[str] = Form(None, alias="browserLanguage"),
    browser_java_enabled: Optional[str] = Form(None, alias="browserJavaEnabled"),
    browser_color_depth: Optional[str] = Form(None, alias="browserColorDepth"),
    browser_screen_height: Optional[str] = Form(None, alias="browserScreenHeight"),
    browser_screen_width: Optional[str] = Form(None, alias="browserScreenWidth"),
    browser_tz: Optional[str] = Form(None, alias="browserTZ"),
    browser_javascript_enabled: Optional[str] = Form(None, alias="browserJavascriptEnabled"),
    service: CheckoutService = Depends(get_checkout_service)
):
    """
    Run 3DS authentication.

    Returns:
        303 redirect to /auth-complete, or the challenge page
    """
    browser_data = build_browser_data(
        accept_header=request.headers.get("accept"),
        user_agent_header=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
        browser_language=browser_language,
        browser_java_enabled=browser_java_enabled,
        browser_color_depth=browser_color_depth,
        browser_screen_height=browser_screen_height,
        browser_screen_width=browser_screen_width,
        time_zone=browser_tz,
        browser_javascript_enabled=browser_javascript_enabled,
    )

    step = await service.authenticate(reference, session_id, browser_data)

    if isinstance(step, ChallengeRequired):
        return templates.TemplateResponse(
            request,
            "challenge.html",
            {
                "relay_url": _relay_url(step.form),
                "complete_url": _complete_url(step.reference),
            },
        )

    return RedirectResponse(_complete_url(step.reference), status_code=303)


@router.get("/auth-complete", response_class=HTMLResponse)
async def complete_payment(
    request: Request,
    reference: str = Query(..., description="Transaction reference"),
    service: CheckoutService = Depends(get_checkout_service)
):
    """Charge the payment if authenticated and show the outcome."""
    outcome = await service.complete(reference)

    if isinstance(outcome, PaymentSubmitted):
        heading, details = "Payment complete", outcome.payment_result
    else:
        heading, details = "Auth failed", outcome.authentication

    return templates.TemplateResponse(
        request,
        "result.html",
        {
            "heading": heading,
            "reference": outcome.reference,
            "details": json.dumps(details, indent=2),
        },
    )


@router.post("/auth-callback", response_class=HTMLResponse)
async def challenge_callback(
    request: Request,
    transaction_id: str = Form("", alias="TransactionId"),
    merchant_data: str = Form("", alias="MD"),
    service: CheckoutService = Depends(get_checkout_service)
):
    """
    Receive the issuer's post after an interactive challenge.

    Responds with a page telling the embedding page the challenge is complete.
    """
    await service.handle_challenge_callback(transaction_id, merchant_data)

    return templates.TemplateResponse(request, "challenge_complete.html", {})
