"""
Checkout Configuration Module

Loads environment variables for the gateway integration and the browser-facing server.
"""
from pydantic_settings import BaseSettings
from typing import Literal


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Notes:
    - Gateway credentials default to the empty test credential
    - public_base_url must be reachable by the issuer for the challenge callback
    - Demo mode exposes error types in 500 responses
    """

    # Gateway Configuration
    gateway_base_url: str = "https://try.access.worldpay.com/"
    gateway_username: str = ""
    gateway_password: str = ""
    gateway_timeout_seconds: float = 30.0
    merchant_entity: str = "SOKINEU"
    merchant_override_name: str = "SubmerchName"  # max 25 chars

    # Device profiling (ThreatMetrix)
    tm_organisation_id: str = "afevfjm6"
    tm_profiling_domain: str = "ddc-test.worldpay.com"

    # Payment defaults
    payment_amount: int = 100
    payment_currency: str = "GBP"

    # Billing address used for every card (demo flow)
    billing_city: str = "London"
    billing_address1: str = "221B Baker Street"
    billing_postal_code: str = "NW1 6XE"
    billing_country_code: str = "GB"
    billing_state: str = "LND"

    # Challenge correlation
    merchant_data_secret: str = "merchant_data_secret_demo_only_change_me"

    # Registry expiry
    transaction_ttl_minutes: int = 30
    sweep_interval_minutes: float = 5

    # Demo Configuration
    demo_mode: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Server
    public_base_url: str = "http://localhost:3000"
    host: str = "0.0.0.0"
    port: int = 3000

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
