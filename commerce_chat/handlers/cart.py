from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ..errors import SessionNotFound, VoucherError
from ..utils import format_vnd, normalize_text
from .base import HandlerBase, HandlerResult, fail, guarded, logger, ok, product_summary

SHIPPING_BASE_FEE = 30000
REMOTE_SURCHARGE = 20000
REMOTE_CITIES = ("Cần Thơ", "Đà Nẵng", "Huế", "Nha Trang")
PAYMENT_METHODS = ("COD", "VNPAY")


def shipping_fee_for(city: str) -> int:
    """Flat domestic rate with a surcharge for the listed remote cities."""
    wanted = normalize_text(city)
    remote = any(normalize_text(name) in wanted for name in REMOTE_CITIES) if wanted else False
    return SHIPPING_BASE_FEE + (REMOTE_SURCHARGE if remote else 0)


def pick_address(addresses: List[Dict[str, Any]], address_id: Optional[str]) -> Optional[Dict[str, Any]]:
    # An explicit id must match; otherwise prefer the default address.
    if address_id:
        return next((a for a in addresses if str(a.get("id")) == str(address_id)), None)
    return next((a for a in addresses if a.get("is_default")), addresses[0] if addresses else None)


class CartHandlersMixin(HandlerBase):
    """Cart edits, checkout and shipping quotes."""

    @guarded("Không thể thêm sản phẩm vào giỏ hàng.")
    def add_to_cart(
        self,
        *,
        user_id: str,
        product_id: Optional[str] = None,
        quantity: int = 1,
        variant_id: Optional[str] = None,
        session_id: Optional[str] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        """Purpose: Put a product into the user's cart.
        Inputs/Outputs: Inputs are product_id (falls back to the session referent), quantity
            and variant_id; returns data={"cart", "product"}.
        Side Effects / State: Mutates the cart; refreshes the product referent.
        Dependencies: CatalogService.find_by_id, CartService.add.
        Failure Modes: No resolvable product asks which one; stock errors surface verbatim.
        If Removed: "thêm vào giỏ" has nothing to call.
        Testing Notes: After get_product_details, call with no product_id.
        """
        # Resolve "it" from context before touching the cart.
        resolved = self.resolve_product_id(product_id, session_id)
        if not resolved:
            return fail("Bạn muốn thêm sản phẩm nào vào giỏ hàng? Hãy nói rõ tên sản phẩm nhé.")
        product = self.services.catalog.find_by_id(resolved)
        cart = self.services.cart.add(
            user_id, {"product_id": resolved, "variant_id": variant_id, "quantity": int(quantity or 1)}
        )
        self.remember_product(session_id, product)
        return ok("Đã thêm sản phẩm vào giỏ hàng!", {"cart": cart, "product": product_summary(product)})

    @guarded("Không thể xem giỏ hàng.")
    def view_cart(self, *, user_id: str, **_ignored: Any) -> HandlerResult:
        cart = self.services.cart.get(user_id)
        if not cart.get("items"):
            return ok("Giỏ hàng của bạn đang trống.", {"cart": cart, "item_count": 0})
        message = f"Giỏ hàng của bạn có {cart['item_count']} sản phẩm, tổng: {format_vnd(cart['total_amount'])}"
        return ok(message, {"cart": cart, "item_count": cart["item_count"]})

    @guarded("Không thể xóa sản phẩm khỏi giỏ hàng.")
    def remove_from_cart(self, *, user_id: str, product_id: Optional[str] = None, **_ignored: Any) -> HandlerResult:
        if not product_id:
            return fail("Bạn muốn xóa sản phẩm nào khỏi giỏ hàng?")
        cart = self.services.cart.remove(user_id, product_id)
        return ok("Đã xóa sản phẩm khỏi giỏ hàng!", {"cart": cart})

    @guarded("Không thể cập nhật giỏ hàng.")
    def update_cart_item(
        self, *, user_id: str, product_id: Optional[str] = None, quantity: Optional[int] = None, **_ignored: Any
    ) -> HandlerResult:
        if not product_id or quantity is None:
            return fail("Bạn muốn cập nhật số lượng sản phẩm nào?")
        cart = self.services.cart.update(user_id, product_id, int(quantity))
        return ok("Đã cập nhật số lượng sản phẩm!", {"cart": cart})

    @guarded("Không thể tạo đơn hàng.")
    def create_order_from_cart(
        self,
        *,
        user_id: str,
        address_id: Optional[str] = None,
        payment_method: str = "COD",
        notes: Optional[str] = None,
        session_id: Optional[str] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        """Purpose: Turn the current cart into a pending order.
        Inputs/Outputs: Inputs are address_id (default address when omitted), payment_method
            (COD/VNPAY) and notes; returns data={"order", "order_id"}.
        Side Effects / State: Creates the order, clears the cart, remembers the order, drops
            the session's applied voucher and sends an order_created notification.
        Dependencies: CartService, UserService.list_addresses, _checkout_voucher, OrderService.create,
            Notifier.
        Failure Modes: Empty cart and unknown address return failures without side effects.
        If Removed: Checkout from chat is impossible.
        Testing Notes: Cart must be empty afterwards and the notifier must hold one entry.
        """
        # Validate cart and address first; the order is the only write that can fail midway.
        cart = self.services.cart.get(user_id)
        if not cart.get("items"):
            return fail("Giỏ hàng của bạn đang trống.")
        address = pick_address(self.services.users.list_addresses(user_id), address_id)
        if not address:
            return fail("Địa chỉ giao hàng không hợp lệ.")
        method = str(payment_method or "COD").upper()
        if method not in PAYMENT_METHODS:
            method = "COD"
        voucher, voucher_note = self._checkout_voucher(session_id, cart)
        order_data = {
            "items": cart["items"],
            "shipping_address": address,
            "payment_method": method,
            "notes": notes or "",
            "shipping_fee": shipping_fee_for(address.get("province", "")),
        }
        if voucher:
            order_data["discount_amount"] = voucher["discount_amount"]
            order_data["voucher_code"] = voucher["code"]
        order = self.services.orders.create(user_id, order_data)
        self.services.cart.clear(user_id)
        self._forget_voucher(session_id)
        self.remember_order(session_id, order["id"])
        self.services.notifier.notify(
            user_id, {"type": "order_created", "order_id": order["id"], "total_amount": order["total_amount"]}
        )
        logger.info("order created user=%s order=%s total=%s", user_id, order["id"], order["total_amount"])
        message = f"Đơn hàng #{order['id'][-6:]} đã được tạo thành công!"
        if voucher_note:
            message = f"{message} {voucher_note}"
        return ok(message, {"order": order, "order_id": order["id"]})

    def _checkout_voucher(
        self, session_id: Optional[str], cart: Dict[str, Any]
    ) -> Tuple[Optional[Dict[str, Any]], str]:
        """Purpose: Re-check the voucher applied earlier in the session against the cart.
        Inputs/Outputs: Inputs are session_id and the cart; returns (discount or None, note).
        Side Effects / State: None.
        Dependencies: ContextManager applied_voucher snapshot, DiscountService.validate_and_apply.
        Failure Modes: A voucher that no longer qualifies yields None and a note for the user.
        If Removed: Orders ignore vouchers the user was told were applied.
        Testing Notes: Apply a voucher, check out, and compare total_amount with the discount.
        """
        # The cart may have changed since the voucher was applied, so price it again.
        applied = self.session_context(session_id).get("applied_voucher")
        if not isinstance(applied, dict) or not applied.get("code"):
            return None, ""
        total = float(cart.get("total_amount") or 0)
        product_ids = [str(item["product_id"]) for item in cart.get("items") or []]
        try:
            return self.services.discounts.validate_and_apply(applied["code"], total, product_ids), ""
        except VoucherError as exc:
            logger.info("voucher %s dropped at checkout: %s", applied["code"], exc.user_message)
            return None, f"Mã {applied['code']} không còn áp dụng được: {exc.user_message}"

    def _forget_voucher(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        try:
            self.contexts.update_context(session_id, {"applied_voucher": None})
        except SessionNotFound:
            logger.debug("session=%s gone before voucher could be cleared", session_id)

    @guarded("Không thể tính phí vận chuyển.")
    def calculate_shipping_fee(
        self, *, user_id: str, address_id: Optional[str] = None, city: Optional[str] = None, **_ignored: Any
    ) -> HandlerResult:
        if city and not address_id:
            destination = city
        else:
            address = pick_address(self.services.users.list_addresses(user_id), address_id)
            destination = (address or {}).get("province") or city
        if not destination:
            return fail("Bạn muốn giao hàng đến tỉnh/thành phố nào?")
        fee = shipping_fee_for(destination)
        return ok(f"Phí vận chuyển đến {destination}: {format_vnd(fee)}", {"city": destination, "shipping_fee": fee})
