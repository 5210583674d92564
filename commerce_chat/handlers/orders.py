from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..utils import format_vnd
from .base import HandlerBase, HandlerResult, fail, guarded, ok

ORDER_STATUS_TEXT = {
    "pending": "Đang chờ xử lý",
    "confirmed": "Đã xác nhận",
    "processing": "Đang xử lý",
    "shipping": "Đang giao hàng",
    "delivered": "Đã giao hàng",
    "completed": "Hoàn thành",
    "cancelled": "Đã hủy",
    "refunded": "Đã hoàn tiền",
}
# Shorter labels used on the order detail card.
ORDER_CARD_STATUS_TEXT = {
    "pending": "Chờ xác nhận",
    "confirmed": "Đã xác nhận",
    "shipping": "Đang giao hàng",
    "completed": "Hoàn thành",
    "cancelled": "Đã hủy",
}
ORDER_STAGES = {"pending": 0, "confirmed": 1, "shipping": 2, "completed": 3, "cancelled": -1}

ORDER_ACTIONS: Dict[str, List[Dict[str, str]]] = {
    "pending": [{"action": "cancel_order", "label": "Hủy đơn hàng", "icon": "❌"}],
    "confirmed": [{"action": "check_order_status", "label": "Theo dõi đơn hàng", "icon": "📍"}],
    "shipping": [{"action": "check_order_status", "label": "Theo dõi đơn hàng", "icon": "📍"}],
    "completed": [
        {"action": "create_product_review", "label": "Đánh giá sản phẩm", "icon": "⭐"},
        {"action": "reorder_past_purchase", "label": "Mua lại", "icon": "🔄"},
        {"action": "recommend_products", "label": "Sản phẩm tương tự", "icon": "💡"},
    ],
    "cancelled": [{"action": "search_products", "label": "Tìm sản phẩm khác", "icon": "🔍"}],
}


def order_status_text(status: Optional[str]) -> str:
    return ORDER_STATUS_TEXT.get(status or "", status or "")


def order_timeline(order: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Purpose: Build the four-step progress bar for an order.
    Inputs/Outputs: Input is an order dict; returns steps with label, icon, status and timestamp.
    Side Effects / State: None.
    Dependencies: ORDER_STAGES.
    Failure Modes: Unknown statuses render as freshly placed.
    If Removed: Order detail cards lose their progress view.
    Testing Notes: A cancelled order marks every step after placement as cancelled.
    """
    # Step states derive from a single stage number; -1 means cancelled.
    stage = ORDER_STAGES.get(order.get("status") or "", 0)
    cancelled = stage == -1

    if stage >= 1:
        confirm_state = "completed"
    elif stage == 0:
        confirm_state = "active"
    else:
        confirm_state = "cancelled"

    if stage >= 2:
        shipping_state = "completed"
    elif stage == 1:
        shipping_state = "active"
    else:
        shipping_state = "cancelled" if cancelled else "pending"

    if stage == 3:
        done_state = "completed"
    else:
        done_state = "cancelled" if cancelled else "pending"

    return [
        {"step": "placed", "label": "Đặt hàng", "icon": "📦", "status": "completed", "timestamp": order.get("created_at")},
        {"step": "confirmed", "label": "Xác nhận", "icon": "✅", "status": confirm_state, "timestamp": order.get("confirmed_at")},
        {"step": "shipping", "label": "Đang giao", "icon": "🚚", "status": shipping_state, "timestamp": order.get("shipping_at")},
        {"step": "completed", "label": "Hoàn thành", "icon": "🎉", "status": done_state, "timestamp": order.get("completed_at")},
    ]


def order_actions(status: Optional[str]) -> List[Dict[str, str]]:
    return [dict(action) for action in ORDER_ACTIONS.get(status or "", [])]


def order_brief(order: Dict[str, Any]) -> Dict[str, Any]:
    items = order.get("items") or []
    return {
        "id": order.get("id"),
        "short_id": str(order.get("id", ""))[-6:],
        "status": order.get("status"),
        "status_text": order_status_text(order.get("status")),
        "payment_status": order.get("payment_status"),
        "total_amount": order.get("total_amount"),
        "item_count": sum(int(item.get("quantity") or 0) for item in items),
        "created_at": order.get("created_at"),
    }


class OrderHandlersMixin(HandlerBase):
    """Order listing, status tracking, detail cards and cancellation."""

    @guarded("Không thể lấy danh sách đơn hàng.", expose_service_errors=False)
    def get_user_orders(self, *, user_id: str, limit: int = 5, **_ignored: Any) -> HandlerResult:
        result = self.services.orders.list_for_user(user_id, limit=int(limit))
        orders = [order_brief(order) for order in result.get("orders") or []]
        total = result.get("total", len(orders))
        return ok(f"Bạn có {total} đơn hàng.", {"orders": orders, "total": total})

    @guarded("Không tìm thấy đơn hàng hoặc bạn không có quyền truy cập.", expose_service_errors=False)
    def check_order_status(
        self, *, user_id: str, order_id: Optional[str] = None, session_id: Optional[str] = None, **_ignored: Any
    ) -> HandlerResult:
        """Purpose: Report the status of one order, or list recent orders when none is known.
        Inputs/Outputs: Inputs are order_id (falls back to last_mentioned_order); returns
            data={"order_id", "status", "status_text", "timeline"}.
        Side Effects / State: Remembers the order on the session.
        Dependencies: OrderService.get_by_id, get_user_orders.
        Failure Modes: Missing or foreign orders share one message so existence is not leaked.
        If Removed: Order tracking intents have no handler.
        Testing Notes: Another user's order id must fail with the shared message.
        """
        # Without a referent, show the latest orders so the user can pick one.
        resolved = self.resolve_order_id(order_id, session_id)
        if not resolved:
            return self.get_user_orders(user_id=user_id, limit=3)
        order = self.services.orders.get_by_id(resolved, user_id)
        self.remember_order(session_id, order["id"])
        status_text = order_status_text(order.get("status"))
        return ok(
            f"Đơn hàng #{order['id']} hiện đang ở trạng thái: {status_text}",
            {
                "order_id": order["id"],
                "status": order.get("status"),
                "status_text": status_text,
                "order": order_brief(order),
                "timeline": order_timeline(order),
            },
        )

    @guarded("Không thể lấy chi tiết đơn hàng.", expose_service_errors=False)
    def get_order_details(
        self, *, user_id: str, order_id: Optional[str] = None, session_id: Optional[str] = None, **_ignored: Any
    ) -> HandlerResult:
        resolved = self.resolve_order_id(order_id, session_id)
        if not resolved:
            return fail("Bạn muốn xem chi tiết đơn hàng nào?")
        order = self.services.orders.get_by_id(resolved, user_id)
        self.remember_order(session_id, order["id"])
        status = order.get("status")
        status_text = ORDER_CARD_STATUS_TEXT.get(status or "", order_status_text(status))
        return ok(
            f"Đơn hàng #{order['id'][-6:]}: {status_text} - {format_vnd(order.get('total_amount'))}",
            {
                "order": order,
                "order_id": order["id"],
                "status_text": status_text,
                "timeline": order_timeline(order),
                "actions": order_actions(status),
            },
        )

    @guarded("Không thể hủy đơn hàng.")
    def cancel_order(
        self,
        *,
        user_id: str,
        order_id: Optional[str] = None,
        reason: Optional[str] = None,
        session_id: Optional[str] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        resolved = self.resolve_order_id(order_id, session_id)
        if not resolved:
            return fail("Bạn muốn hủy đơn hàng nào?")
        order = self.services.orders.cancel(resolved, user_id, reason or "")
        self.remember_order(session_id, order["id"])
        self.services.notifier.notify(user_id, {"type": "order_cancelled", "order_id": order["id"], "reason": reason or ""})
        return ok("Đơn hàng đã được hủy thành công!", {"order_id": order["id"], "status": order.get("status")})
