"""
Card checkout with 3-D Secure against the Worldpay Access API.

Packages:
- api: browser-facing FastAPI routes
- services: gateway client, transaction store, workflow orchestration, expiry scheduler
- models: pydantic models for gateway payloads and transaction records
"""

__version__ = "0.1.0"
