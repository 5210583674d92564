from __future__ import annotations

from typing import Any, Optional

from .base import HandlerBase, HandlerResult, fail, guarded, ok

DEFAULT_CLIENT_IP = "127.0.0.1"
PAYMENT_STATUS_TEXT = {
    "pending": "Chờ thanh toán",
    "completed": "Đã thanh toán",
    "failed": "Thanh toán thất bại",
    "refunded": "Đã hoàn tiền",
}


class PaymentHandlersMixin(HandlerBase):
    @guarded("Không thể tạo link thanh toán.")
    def create_payment_link(
        self,
        *,
        user_id: str,
        order_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        session_id: Optional[str] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        """Gateway redirect for an unpaid order; ip_address comes from the HTTP request."""
        resolved = self.resolve_order_id(order_id, session_id)
        if not resolved:
            return fail("Bạn muốn thanh toán đơn hàng nào?")
        payment = self.services.payments.create_payment_url(resolved, user_id, ip_address or DEFAULT_CLIENT_IP)
        self.remember_order(session_id, resolved)
        return ok(
            "Link thanh toán đã được tạo!",
            {"order_id": resolved, "payment_url": payment.get("payment_url"), "amount": payment.get("amount")},
        )

    @guarded("Không tìm thấy thông tin thanh toán.", expose_service_errors=False)
    def check_payment_status(
        self, *, user_id: str, order_id: Optional[str] = None, session_id: Optional[str] = None, **_ignored: Any
    ) -> HandlerResult:
        resolved = self.resolve_order_id(order_id, session_id)
        if not resolved:
            return fail("Bạn muốn kiểm tra thanh toán của đơn hàng nào?")
        # Ownership check before reading the payment record.
        self.services.orders.get_by_id(resolved, user_id)
        self.remember_order(session_id, resolved)
        payment = self.services.payments.get_by_order_id(resolved)
        status = payment.get("status") or "pending"
        status_text = PAYMENT_STATUS_TEXT.get(status, status)
        return ok(
            f"Trạng thái thanh toán: {status_text}",
            {"order_id": resolved, "status": status, "status_text": status_text, "amount": payment.get("amount")},
        )
