from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional

from ..errors import SessionNotFound
from ..utils import format_vnd, time_ago
from .base import HandlerBase, HandlerResult, fail, guarded, logger, ok, product_summary

FAVORITE_LIMIT = 3


def _mask_name(name: Optional[str]) -> str:
    return f"{name[0]}***" if name else "Khách***"


class PersonalizationHandlersMixin(HandlerBase):
    """Purchase history analysis, preferences and social proof."""

    def _purchase_stats(self, user_id: str, limit: int) -> Dict[str, Any]:
        """Purpose: Summarize a user's recent orders.
        Inputs/Outputs: Inputs are user_id and how many orders to scan; returns
            {orders, total_orders, total_spent, avg_order_value, favorite_categories,
            last_purchase_date}.
        Side Effects / State: None.
        Dependencies: OrderService.list_for_user, CatalogService.list_categories.
        Failure Modes: Service errors propagate to the calling handler.
        If Removed: History, recommendations and preferences have no shared basis.
        Testing Notes: u1001's seed orders favour Điện thoại, Phụ kiện and Áo sơ mi.
        """
        # Category names come from the catalog; order lines only carry ids.
        result = self.services.orders.list_for_user(user_id, limit=int(limit))
        orders = result.get("orders") or []
        total_orders = int(result.get("total", len(orders)))
        names = {str(c["id"]): c.get("name") for c in self.services.catalog.list_categories()}
        counts: Counter = Counter()
        total_spent = 0.0
        for order in orders:
            total_spent += float(order.get("total_amount") or 0)
            for item in order.get("items") or []:
                name = names.get(str(item.get("category")))
                if name:
                    counts[name] += 1
        return {
            "orders": orders,
            "total_orders": total_orders,
            "total_spent": total_spent,
            "avg_order_value": total_spent / (total_orders or 1),
            "favorite_categories": [name for name, _ in counts.most_common(FAVORITE_LIMIT)],
            "last_purchase_date": orders[0].get("created_at") if orders else None,
        }

    @guarded("Không thể lấy lịch sử mua hàng.")
    def get_user_purchase_history(self, *, user_id: str, limit: int = 5, **_ignored: Any) -> HandlerResult:
        stats = self._purchase_stats(user_id, limit)
        orders = stats.pop("orders")
        return ok(
            f"Bạn đã mua {stats['total_orders']} đơn hàng, chi {format_vnd(stats['total_spent'])}",
            {"orders": orders, "stats": stats},
        )

    @guarded("Không thể tạo gợi ý cá nhân hóa.")
    def get_personalized_recommendations(self, *, user_id: str, limit: int = 5, **_ignored: Any) -> HandlerResult:
        stats = self._purchase_stats(user_id, 10)
        products: List[Dict[str, Any]] = []
        reason = ""
        favorites = stats["favorite_categories"]
        if favorites:
            category = self.services.catalog.find_category(favorites[0])
            if category:
                products = self.services.catalog.list_by_category(category["id"], limit=int(limit))
                reason = f"Vì bạn thích {favorites[0]}"
        if not products:
            products = self.services.catalog.search("", sort="popular", limit=int(limit))
            reason = "Sản phẩm đề xuất cho bạn"
        return ok(
            f"{reason} - {len(products)} sản phẩm phù hợp!",
            {"products": [product_summary(p) for p in products], "reason": reason},
        )

    @guarded("Không thể tracking hành vi.")
    def track_user_behavior(
        self,
        *,
        user_id: str,
        action: Optional[str] = None,
        product_id: Optional[str] = None,
        session_id: Optional[str] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        if not action:
            return fail("Thiếu loại hành động cần ghi nhận.")
        event = {"user_id": user_id, "action": action, "product_id": product_id}
        if session_id:
            try:
                self.contexts.record_last_action(session_id, {"action": action, "product_id": product_id})
            except SessionNotFound:
                logger.debug("session=%s gone before action could be recorded", session_id)
        logger.info("behavior user=%s action=%s product=%s", user_id, action, product_id)
        return ok(f"Đã ghi nhận hành động: {action}", {**event, "timestamp": self.now()})

    @guarded("Không thể lấy preferences.")
    def get_user_preferences(self, *, user_id: str, session_id: Optional[str] = None, **_ignored: Any) -> HandlerResult:
        """Purpose: Derive brand, price and category preferences from past orders.
        Inputs/Outputs: Input is user_id; returns data={"preferred_brands", "price_range",
            "interests"}.
        Side Effects / State: Caches the result in the session's user_preferences.
        Dependencies: _purchase_stats, ContextManager.update_user_preferences.
        Failure Modes: No purchases yields empty preferences with a neutral message.
        If Removed: Preference questions fall back to generic recommendations.
        Testing Notes: u1001 prefers Apple; min/max come from order line prices.
        """
        # Brands and prices are read per order line.
        stats = self._purchase_stats(user_id, 20)
        prices: List[float] = []
        brands: Counter = Counter()
        for order in stats["orders"]:
            for item in order.get("items") or []:
                prices.append(float(item.get("price") or 0))
                if item.get("brand"):
                    brands[item["brand"]] += 1
        if not prices:
            empty = {"preferred_brands": [], "price_range": {"min": 0, "max": 0, "avg": 0}, "interests": []}
            return ok("Chưa có dữ liệu preferences.", empty)
        preferences = {
            "preferred_brands": [name for name, _ in brands.most_common(FAVORITE_LIMIT)],
            "price_range": {"min": min(prices), "max": max(prices), "avg": sum(prices) / len(prices)},
            "interests": stats["favorite_categories"],
        }
        if session_id:
            try:
                self.contexts.update_user_preferences(session_id, preferences)
            except SessionNotFound:
                logger.debug("session=%s gone before preferences were cached", session_id)
        return ok(
            f"Bạn thích {', '.join(preferences['preferred_brands'])} và {', '.join(preferences['interests'])}",
            preferences,
        )

    @guarded("Không thể lấy thông tin mua hàng gần đây.")
    def get_recent_purchases(self, *, product_id: Optional[str] = None, limit: int = 5, **_ignored: Any) -> HandlerResult:
        orders = self.services.orders.list_recent(status="completed", product_id=product_id, limit=int(limit))
        now = self.now()
        purchases = []
        for order in orders:
            items = order.get("items") or []
            item = next((i for i in items if product_id and str(i.get("product_id")) == str(product_id)), None)
            item = item or (items[0] if items else {})
            purchases.append(
                {
                    "user_name": _mask_name(order.get("customer_name")),
                    "product_name": item.get("name"),
                    "timestamp": order.get("created_at"),
                    "time_ago": time_ago(order.get("created_at"), now),
                    "location": (order.get("shipping_address") or {}).get("province"),
                }
            )
        return ok(
            f"👥 {len(purchases)} người vừa mua gần đây",
            {"purchases": purchases, "total_purchases": len(purchases)},
        )
