"""
Pydantic Card and Payment Models

Card data as submitted to tokenization, and the payment handle carried
through every later gateway call. Field aliases match the gateway's camelCase JSON.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GatewayModel(BaseModel):
    """Base for models exchanged with the gateway (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_gateway(self) -> dict:
        """Serialize using gateway field names, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class BillingAddress(GatewayModel):
    """Card holder billing address."""
    city: str = Field(max_length=50)
    address1: str = Field(max_length=80)
    postal_code: str = Field(max_length=15)
    country_code: str = Field(min_length=2, max_length=2)
    state: Optional[str] = Field(default=None, max_length=30)  # ISO-3166-2 subdivision
    address2: Optional[str] = Field(default=None, max_length=80)
    address3: Optional[str] = Field(default=None, max_length=80)


class CardHolder(GatewayModel):
    name: str
    email: str
    billing_address: BillingAddress


class CardExpiryDate(GatewayModel):
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2099)


class CardData(GatewayModel):
    """Raw card data. Only ever sent to tokenization, never stored."""
    card_holder: CardHolder
    card_cvc: str
    card_number: str = Field(pattern=r"^\d{12,19}$")
    card_expiry_date: CardExpiryDate


class TokenPaymentInstrument(GatewayModel):
    """Gateway-issued token standing in for the card."""
    type: str
    href: str


class Payment(GatewayModel):
    """
    Payment attempt carried through the whole workflow.

    Immutable once created: amount, currency, reference and token
    are fixed at initiation.
    """
    reference: str
    token: TokenPaymentInstrument
    amount: int = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    card_cvc: str

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "reference": "TEST-5f0c2a9d41b84e07",
                "token": {
                    "type": "card/tokenized",
                    "href": "https://try.access.worldpay.com/tokens/MjQ0OT"
                },
                "amount": 100,
                "currency": "GBP",
                "cardCvc": "123"
            }
        }
    )
