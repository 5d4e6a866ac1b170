"""
HTTP client integrations for x402 payment handling.

Core exports:
    - x402Client: Base client for payment handling
    - decode_x_payment_response: Decode X-Payment-Response header

Transport integrations:
    from x402_core.clients.httpx import x402HttpxClient
    from x402_core.clients.requests import x402_requests
"""

from x402_core.clients.base import x402Client, decode_x_payment_response

__all__ = [
    "x402Client",
    "decode_x_payment_response",
]
