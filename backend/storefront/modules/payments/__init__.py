"""
Payments Module - Payment provider adapters.

Features:
- NETS QR code generation and status polling
- PayPal order create/capture
- One checkout strategy per payment method
"""

from storefront.modules.payments.nets import NetsClient, NetsStatusStream
from storefront.modules.payments.paypal import PayPalClient

__all__ = [
    "NetsClient",
    "NetsStatusStream",
    "PayPalClient",
]
