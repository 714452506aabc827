"""
Merchant Data Codec

Encodes the correlation data passed to the issuer as MD with the 3DS
challenge and decodes it when the issuer posts it back to the callback.

Format: v1.<base64url canonical JSON>.<hex HMAC-SHA256 of version + payload>
"""
import base64
import binascii
import hmac
import hashlib
import json
from typing import Dict, Any, Optional
from pydantic import BaseModel, ValidationError

from ..config import settings
from ..exceptions import MerchantDataError

CURRENT_VERSION = "v1"


class MerchantData(BaseModel):
    """Correlation data round-tripped through the issuer."""
    reference: str


def create_canonical_json(data: Dict[str, Any]) -> str:
    """
    Create canonical JSON representation for signing.

    Ensures consistent serialization:
    - Sorted keys
    - No whitespace
    """
    return json.dumps(data, sort_keys=True, separators=(',', ':'))


def _sign(version: str, payload: str, secret_key: str) -> str:
    message = f"{version}.{payload}"
    return hmac.new(
        secret_key.encode('utf-8'),
        message.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()


def encode_merchant_data(reference: str, secret_key: Optional[str] = None) -> str:
    """
    Encode a transaction reference as signed merchant data.

    Args:
        reference: Transaction reference to correlate the callback with
        secret_key: HMAC key (defaults to settings.merchant_data_secret)

    Returns:
        Opaque MD string safe to embed in a form field
    """
    secret_key = secret_key or settings.merchant_data_secret
    canonical = create_canonical_json(MerchantData(reference=reference).model_dump())
    payload = base64.urlsafe_b64encode(canonical.encode('utf-8')).decode('ascii').rstrip("=")
    return f"{CURRENT_VERSION}.{payload}.{_sign(CURRENT_VERSION, payload, secret_key)}"


def decode_merchant_data(value: str, secret_key: Optional[str] = None) -> MerchantData:
    """
    Decode and verify merchant data posted back by the issuer.

    Args:
        value: MD string from the callback
        secret_key: HMAC key (defaults to settings.merchant_data_secret)

    Returns:
        Decoded MerchantData

    Raises:
        MerchantDataError: Malformed value, unknown version or bad signature
    """
    secret_key = secret_key or settings.merchant_data_secret

    parts = (value or "").split(".")
    if len(parts) != 3:
        raise MerchantDataError("Merchant data missing or malformed")

    version, payload, signature = parts
    if version != CURRENT_VERSION:
        raise MerchantDataError(
            f"Unsupported merchant data version: {version}",
            {"version": version}
        )

    # Constant-time comparison
    if not hmac.compare_digest(_sign(version, payload, secret_key), signature):
        raise MerchantDataError("Merchant data signature mismatch")

    try:
        padded = payload + "=" * (-len(payload) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode('ascii')))
        return MerchantData.model_validate(data)
    except (binascii.Error, UnicodeDecodeError, ValueError, ValidationError) as e:
        raise MerchantDataError("Merchant data payload unreadable") from e
