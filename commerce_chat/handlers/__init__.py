"""Business handlers behind every catalog function.

Each public method is named after its catalog entry, takes keyword-only
snake_case arguments plus the injected ``user_id``/``session_id``, and returns
``{"success", "message", "data"?, "error"?}``. Handlers never raise.
"""

from __future__ import annotations

from .account import AccountHandlersMixin
from .base import HandlerBase, HandlerResult, fail, ok, product_summary
from .cart import CartHandlersMixin
from .orders import OrderHandlersMixin
from .payments import PaymentHandlersMixin
from .personalization import PersonalizationHandlersMixin
from .products import ProductHandlersMixin
from .promotions import PromotionHandlersMixin
from .reviews import ReviewHandlersMixin
from .vouchers import VoucherHandlersMixin


class IntentHandlers(
    ProductHandlersMixin,
    CartHandlersMixin,
    OrderHandlersMixin,
    PaymentHandlersMixin,
    VoucherHandlersMixin,
    AccountHandlersMixin,
    ReviewHandlersMixin,
    PersonalizationHandlersMixin,
    PromotionHandlersMixin,
):
    """All handler groups over one set of services and one context manager."""


__all__ = ["HandlerBase", "HandlerResult", "IntentHandlers", "fail", "ok", "product_summary"]
