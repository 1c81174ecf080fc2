"""
                        Services Module

Business logic for the storefront back-office.

Services:
    - promptpay: EMVCo PromptPay QR payload encoder
    - rate_limiter: In-memory login attempt limiter
    - staff_session: Versioned staff session tokens and PIN hashing
    - order_status: Compare-and-swap order status transitions
    - notifications: LINE push messaging (Mock/LINE)
"""

from storefront.services.rate_limiter import LoginRateLimiter, client_identifier
from storefront.services.order_status import OrderStatusGuard, TransitionOutcome
from storefront.services.staff_session import StaffSessionAuthority

__all__ = [
    "LoginRateLimiter",
    "client_identifier",
    "OrderStatusGuard",
    "TransitionOutcome",
    "StaffSessionAuthority",
]
