from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ..utils import format_vnd, time_ago
from .base import HandlerBase, HandlerResult, fail, guarded, ok, product_summary

HOUR_SEC = 60 * 60
FLASH_DEAL_WINDOW_SEC = 3 * HOUR_SEC
RECOVERY_EXPIRY_SEC = HOUR_SEC
BUNDLE_DISCOUNT = 0.15
TOGETHER_DISCOUNT = 0.2
LOW_STOCK_THRESHOLD = 10
CRITICAL_STOCK_THRESHOLD = 3
UPGRADE_WORTH_RATIO = 0.3
UPGRADE_BENEFITS = ["Camera tốt hơn", "Pin lâu hơn", "Hiệu năng cao hơn"]
RECOVERY_DISCOUNT_CAP = 500000

# trigger -> (amount, code, headline, expiry minutes)
PERSONALIZED_DISCOUNTS: Dict[str, Tuple[int, str, str, int]] = {
    "first_purchase": (500000, "FIRST500K", "🎉 Chào mừng khách hàng mới!", 60),
    "cart_abandonment": (300000, "COMEBACK300", "💝 Chúng tôi nhớ bạn! Quay lại nhé", 30),
    "vip": (1000000, "VIP1M", "👑 Ưu đãi VIP đặc biệt", 120),
    "loyalty": (200000, "THANKYOU200", "❤️ Cảm ơn bạn đã tin tưởng", 30),
}
DEFAULT_PERSONALIZED_DISCOUNT = (100000, "SPECIAL100", "🎁 Ưu đãi đặc biệt", 30)


def stock_urgency(stock: int) -> Tuple[str, str]:
    """Return (urgency_level, message) for a stock count."""
    if stock <= 0:
        return "critical", "Đã hết hàng"
    if stock <= CRITICAL_STOCK_THRESHOLD:
        return "critical", f"⚠️ CHỈ CÒN {stock} SẢN PHẨM CUỐI CÙNG!"
    if stock <= LOW_STOCK_THRESHOLD:
        return "warning", f"Sắp hết! Còn {stock} sản phẩm"
    return "normal", "Còn hàng"


def recovery_incentive(incentive_type: Optional[str], cart_total: float, discount_percent: Optional[float]) -> Dict[str, Any]:
    if incentive_type == "free_shipping":
        return {
            "type": "free_shipping",
            "value": 30000,
            "code": "FREESHIP",
            "message": "🚚 FREESHIP toàn quốc nếu thanh toán trong 1 giờ!",
        }
    if incentive_type == "discount":
        percent = float(discount_percent or 10)
        value = round(min(cart_total * percent / 100, RECOVERY_DISCOUNT_CAP))
        return {"type": "discount", "value": value, "code": "CART10", "message": f"💸 Giảm thêm {format_vnd(value)}!"}
    if incentive_type == "gift":
        return {
            "type": "gift",
            "value": 0,
            "gift_name": "Túi xách cao cấp",
            "message": "🎁 Tặng túi xách cao cấp khi hoàn tất đơn!",
        }
    return {"type": "reminder", "message": "👋 Giỏ hàng của bạn đang chờ!"}


class PromotionHandlersMixin(HandlerBase):
    """Urgency, incentive, cart-recovery and upsell tools."""

    @guarded("Không thể lấy flash deals.")
    def get_flash_deals(self, *, limit: int = 5, **_ignored: Any) -> HandlerResult:
        ends_at = self.now() + FLASH_DEAL_WINDOW_SEC
        deals = []
        for product in self.services.catalog.list_on_sale(limit=int(limit)):
            summary = product_summary(product)
            list_price = float(product.get("price") or 0)
            saved = list_price - summary["price"]
            deals.append(
                {
                    **summary,
                    "flash_sale_end": ends_at,
                    "saved_amount": saved,
                    "percent_off": round(saved / list_price * 100) if list_price else 0,
                }
            )
        return ok(
            f"🔥 {len(deals)} Flash Deals - CHỈ CÒN 3 GIỜ!",
            {"products": deals, "time_remaining": "Còn 3 giờ", "total_deals": len(deals)},
        )

    @guarded("Không thể kiểm tra tồn kho.")
    def get_low_stock_products(
        self, *, product_id: Optional[str] = None, session_id: Optional[str] = None, **_ignored: Any
    ) -> HandlerResult:
        resolved = self.resolve_product_id(product_id, session_id)
        if not resolved:
            return fail("Bạn muốn kiểm tra tồn kho sản phẩm nào?")
        product = self.services.catalog.find_by_id(resolved)
        self.remember_product(session_id, product)
        stock = int(product.get("stock") or 0)
        level, message = stock_urgency(stock)
        return ok(
            message,
            {
                "product_id": resolved,
                "product_name": product.get("name"),
                "stock": stock,
                "is_low_stock": 0 < stock <= LOW_STOCK_THRESHOLD,
                "urgency_level": level,
            },
        )

    @guarded("Không thể lấy limited offers.")
    def get_limited_time_offers(self, *, limit: int = 3, **_ignored: Any) -> HandlerResult:
        now = self.now()
        offers = []
        for discount in self.services.discounts.list_active(limit=int(limit)):
            end_date = discount.get("end_date")
            offers.append(
                {
                    "code": discount.get("code"),
                    "description": discount.get("description"),
                    "discount_type": discount.get("discount_type"),
                    "value": discount.get("value"),
                    "min_order_value": discount.get("min_order_value"),
                    "expiry_date": end_date,
                    "hours_remaining": round((float(end_date) - now) / HOUR_SEC) if end_date else None,
                    "exclusivity": "Chỉ dành cho bạn",
                }
            )
        return ok(f"🎁 {len(offers)} ưu đãi đặc biệt đang chờ bạn!", {"offers": offers, "total_offers": len(offers)})

    @guarded("Không thể lấy sản phẩm trending.")
    def get_trending_now(self, *, limit: int = 10, **_ignored: Any) -> HandlerResult:
        trending = []
        for product in self.services.catalog.search("", sort="popular", limit=int(limit)):
            views = int(product.get("view_count") or 0)
            sold = int(product.get("sold_count") or 0)
            trending.append(
                {
                    **product_summary(product),
                    "view_count": views,
                    "purchase_count": sold,
                    "trending_score": views + sold * 5 + float(product.get("rating") or 0) * 10,
                }
            )
        return ok(f"🔥 {len(trending)} sản phẩm đang VIRAL hôm nay!", {"products": trending, "total_trending": len(trending)})

    @guarded("Không thể tạo mã giảm giá.")
    def generate_personalized_discount(
        self, *, trigger: Optional[str] = None, target_amount: Optional[float] = None, **_ignored: Any
    ) -> HandlerResult:
        amount, code, headline, minutes = PERSONALIZED_DISCOUNTS.get(trigger or "", DEFAULT_PERSONALIZED_DISCOUNT)
        return ok(
            f"{headline} - Giảm {format_vnd(amount)} (mã: {code})",
            {
                "discount_code": code,
                "discount_amount": amount,
                "min_order_value": float(target_amount or 0),
                "expiry_time": self.now() + minutes * 60,
                "expiry_minutes": minutes,
                "trigger": trigger,
            },
        )

    @guarded("Không thể tính bundle savings.")
    def calculate_bundle_savings(self, *, product_ids: Optional[List[str]] = None, **_ignored: Any) -> HandlerResult:
        ids = [str(pid) for pid in product_ids or [] if pid]
        if len(ids) < 2:
            return fail("Cần ít nhất 2 sản phẩm để tính bundle.")
        products = [product_summary(p) for p in self.fetch_products(ids)]
        individual = sum(p["price"] for p in products)
        bundle_price = individual * (1 - BUNDLE_DISCOUNT)
        savings = individual - bundle_price
        percent = round(BUNDLE_DISCOUNT * 100)
        return ok(
            f"💰 Mua combo tiết kiệm {format_vnd(savings)} ({percent}%)!",
            {
                "products": products,
                "individual_price": individual,
                "bundle_price": bundle_price,
                "savings": savings,
                "savings_percent": percent,
            },
        )

    @guarded("Không thể lấy thông tin giỏ hàng.")
    def get_abandoned_cart(self, *, user_id: str, **_ignored: Any) -> HandlerResult:
        cart = self.services.cart.get(user_id)
        items = cart.get("items") or []
        if not items:
            return fail("Giỏ hàng trống.")
        total = float(cart.get("total_amount") or 0)
        return ok(
            f"🛒 Bạn có {len(items)} sản phẩm chờ thanh toán ({format_vnd(total)})",
            {
                "cart": cart,
                "abandoned_at": cart.get("updated_at"),
                "time_since_abandoned": time_ago(cart.get("updated_at"), self.now()),
                "total_value": total,
                "item_count": len(items),
            },
        )

    @guarded("Không thể gửi cart recovery incentive.")
    def send_cart_recovery_incentive(
        self,
        *,
        user_id: str,
        incentive_type: str = "free_shipping",
        discount_percent: Optional[float] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        cart = self.services.cart.get(user_id)
        if not cart.get("items"):
            return fail("Giỏ hàng trống, không thể gửi incentive.")
        total = float(cart.get("total_amount") or 0)
        incentive = recovery_incentive(incentive_type, total, discount_percent)
        expires_at = self.now() + RECOVERY_EXPIRY_SEC
        self.services.notifier.notify(user_id, {"type": "cart_recovery", "incentive": incentive, "expiry_time": expires_at})
        return ok(incentive["message"], {"incentive": incentive, "cart_value": total, "expiry_time": expires_at})

    @guarded("Không thể lấy upgrade suggestions.")
    def get_upgrade_suggestions(
        self, *, current_product_id: Optional[str] = None, session_id: Optional[str] = None, **_ignored: Any
    ) -> HandlerResult:
        """Purpose: Offer pricier products from the same category as upgrades.
        Inputs/Outputs: Input is current_product_id (context fallback); returns
            data={"current_product", "upgrades": [{product, price_diff, benefits, worth_it}]}.
        Side Effects / State: None.
        Dependencies: CatalogService.find_by_id/list_by_category.
        Failure Modes: No pricier product is still a success with a "best already" message.
        If Removed: Upsell questions have no handler.
        Testing Notes: iPhone 15 -> iPhone 15 Pro is worth it; the gap is under 30%.
        """
        # Worth it when the price gap is under 30% of the current list price.
        resolved = self.resolve_product_id(current_product_id, session_id)
        if not resolved:
            return fail("Bạn muốn nâng cấp từ sản phẩm nào?")
        current = self.services.catalog.find_by_id(resolved)
        current_summary = product_summary(current)
        upgrades = []
        for product in self.services.catalog.list_by_category(current["category"], limit=20):
            summary = product_summary(product)
            if summary["id"] == resolved or summary["price"] <= current_summary["price"]:
                continue
            diff = summary["price"] - current_summary["price"]
            upgrades.append(
                {
                    "product": summary,
                    "price_diff": diff,
                    "benefits": list(UPGRADE_BENEFITS),
                    "worth_it": diff < float(current.get("price") or 0) * UPGRADE_WORTH_RATIO,
                }
            )
            if len(upgrades) == 3:
                break
        message = f"📱 Có {len(upgrades)} phiên bản cao cấp hơn!" if upgrades else "Sản phẩm này đã là phiên bản tốt nhất."
        return ok(
            message,
            {
                "current_product": {"id": resolved, "name": current.get("name"), "price": current_summary["price"]},
                "upgrades": upgrades,
            },
        )

    @guarded("Không thể lấy frequently bought together.")
    def get_frequently_bought_together(
        self, *, product_ids: Optional[List[str]] = None, session_id: Optional[str] = None, **_ignored: Any
    ) -> HandlerResult:
        ids = [str(pid) for pid in product_ids or [] if pid]
        if not ids:
            referent = self.resolve_product_id(None, session_id)
            ids = [referent] if referent else []
        if not ids:
            return fail("Cần ít nhất 1 sản phẩm.")
        main = self.services.catalog.find_by_id(ids[0])
        candidates = self.services.catalog.list_by_category(main["category"], limit=10)
        suggestions = [
            {
                **product_summary(p),
                "buy_together_percent": self._rng.randint(60, 90),
                "bundle_discount": TOGETHER_DISCOUNT,
            }
            for p in candidates
            if str(p.get("id")) not in ids
        ][:3]
        average = sum(s["buy_together_percent"] for s in suggestions) / (len(suggestions) or 1)
        headline = suggestions[0]["buy_together_percent"] if suggestions else 85
        return ok(
            f"🎒 {headline}% người cũng mua thêm {len(suggestions)} sản phẩm này (giảm 20%)",
            {
                "main_products": len(ids),
                "products": suggestions,
                "bundle_discount": round(TOGETHER_DISCOUNT * 100),
                "avg_buy_together_percent": average,
            },
        )
