"""
Checkout services: gateway client, transaction store and workflow orchestration.
"""
from .gateway_client import GatewayClient
from .transaction_store import TransactionStore, InMemoryTransactionStore
from .checkout_service import CheckoutService
from .scheduler import ExpiryScheduler

__all__ = [
    "GatewayClient",
    "TransactionStore",
    "InMemoryTransactionStore",
    "CheckoutService",
    "ExpiryScheduler",
]
