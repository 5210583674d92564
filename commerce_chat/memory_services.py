"""In-memory business services seeded from a JSON file.

These implement the protocols in ``services`` for local runs and tests. The
seed file holds ``categories``, ``products``, ``users``, ``discounts``,
``orders`` and ``reviews``. Relative ages (``created_days_ago``,
``start_days_ago``, ``end_in_days``) are resolved against the injected clock so
the demo data stays fresh.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlencode

from .errors import (
    InsufficientStockError,
    InvalidOperationError,
    NotFoundError,
    PermissionDeniedError,
    VoucherInactive,
    VoucherMinOrderNotMet,
    VoucherNotApplicable,
    VoucherNotFound,
    VoucherUsageExceeded,
)
from .services import CommerceServices
from .utils import effective_price, format_vnd, normalize_text, slugify

logger = logging.getLogger("commerce_chat.services")

DAY_SEC = 24 * 60 * 60
PAYMENT_GATEWAY_URL = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
ORDER_STATUS_TIMESTAMPS = {
    "confirmed": "confirmed_at",
    "shipping": "shipping_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
}
CANCELLABLE_STATUSES = ("pending", "confirmed")

Clock = Callable[[], float]


def load_seed(path: Optional[Path]) -> Dict[str, Any]:
    """Purpose: Read the store seed JSON.
    Inputs/Outputs: Input is an optional path; returns the decoded dict (empty when absent).
    Side Effects / State: Reads the filesystem.
    Dependencies: json.loads.
    Failure Modes: Invalid JSON is logged and treated as an empty store.
    If Removed: The demo server starts with no products, users, or vouchers.
    Testing Notes: Missing file returns {}; valid file returns its sections.
    """
    # Missing seed is allowed so tests can build empty stores.
    if not path or not path.exists():
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("store seed %s is not valid JSON; starting empty", path)
        return {}


def _resolve_age(record: Dict[str, Any], now: float) -> Dict[str, Any]:
    record = dict(record)
    if "created_days_ago" in record:
        record["created_at"] = now - float(record.pop("created_days_ago")) * DAY_SEC
    if "start_days_ago" in record:
        record["start_date"] = now - float(record.pop("start_days_ago")) * DAY_SEC
    if "end_in_days" in record:
        record["end_date"] = now + float(record.pop("end_in_days")) * DAY_SEC
    return record


class InMemoryCatalog:
    """Product and category lookups over seeded records."""

    def __init__(self, products: Iterable[Dict[str, Any]], categories: Iterable[Dict[str, Any]]) -> None:
        self._categories: Dict[str, Dict[str, Any]] = {}
        for category in categories:
            record = dict(category)
            record.setdefault("slug", slugify(record.get("name", "")))
            self._categories[str(record["id"])] = record
        self._products: Dict[str, Dict[str, Any]] = {}
        for product in products:
            record = dict(product)
            record.setdefault("slug", slugify(record.get("name", "")))
            category = self._categories.get(str(record.get("category")))
            record.setdefault("category_name", category["name"] if category else "")
            self._products[str(record["id"])] = record
        self._lock = threading.Lock()

    def find_by_id(self, product_id: str) -> Dict[str, Any]:
        product = self._products.get(str(product_id))
        if product is None:
            raise NotFoundError("Không tìm thấy sản phẩm.")
        return copy.deepcopy(product)

    def find_by_slug(self, slug: str) -> Dict[str, Any]:
        for product in self._products.values():
            if product.get("slug") == slug:
                return copy.deepcopy(product)
        raise NotFoundError("Không tìm thấy sản phẩm.")

    def search(
        self,
        keyword: str = "",
        filters: Optional[Dict[str, Any]] = None,
        sort: Optional[str] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """Purpose: Keyword + filter search with optional ordering.
        Inputs/Outputs: Inputs are keyword, filters (category, min_price, max_price, min_rating,
            brand, size, color, created_after), sort and limit; returns product dicts.
        Side Effects / State: None.
        Dependencies: normalize_text for accent-insensitive matching.
        Failure Modes: None; unknown sort keys keep catalog order.
        If Removed: Search and every filter handler return nothing.
        Testing Notes: "ao so mi" matches "Áo sơ mi"; price filters use the sale price.
        """
        # Token match on name/brand/category, then filters, then sort.
        filters = filters or {}
        tokens = normalize_text(keyword).split()
        matched = []
        for product in self._products.values():
            haystack = normalize_text(
                " ".join(
                    str(product.get(key) or "") for key in ("name", "brand", "category_name", "description")
                )
            )
            if tokens and not all(token in haystack for token in tokens):
                continue
            if not self._matches_filters(product, filters):
                continue
            matched.append(product)
        matched = _sort_products(matched, sort)
        return [copy.deepcopy(product) for product in matched[: max(int(limit), 0)]]

    def _matches_filters(self, product: Dict[str, Any], filters: Dict[str, Any]) -> bool:
        price = effective_price(product)
        if filters.get("category") and not self._in_category(product, str(filters["category"])):
            return False
        if filters.get("min_price") is not None and price < float(filters["min_price"]):
            return False
        if filters.get("max_price") is not None and price > float(filters["max_price"]):
            return False
        if filters.get("min_rating") is not None and float(product.get("rating") or 0) < float(filters["min_rating"]):
            return False
        if filters.get("brand") and normalize_text(filters["brand"]) not in normalize_text(product.get("brand", "")):
            return False
        if filters.get("created_after") is not None and float(product.get("created_at") or 0) < float(filters["created_after"]):
            return False
        for attribute in ("size", "color"):
            wanted = filters.get(attribute)
            if wanted and not any(
                normalize_text(wanted) in normalize_text(variant.get(attribute, ""))
                for variant in product.get("variants") or []
            ):
                return False
        return True

    def _in_category(self, product: Dict[str, Any], category: str) -> bool:
        if str(product.get("category")) == category:
            return True
        wanted = normalize_text(category)
        return bool(wanted) and (
            wanted in normalize_text(product.get("category_name", ""))
            or slugify(category) == self._categories.get(str(product.get("category")), {}).get("slug")
        )

    def list_by_category(self, category_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        products = [p for p in self._products.values() if str(p.get("category")) == str(category_id)]
        return [copy.deepcopy(p) for p in products[: max(int(limit), 0)]]

    def list_on_sale(self, limit: int = 10) -> List[Dict[str, Any]]:
        products = [
            p for p in self._products.values() if p.get("sale_price") and float(p["sale_price"]) < float(p.get("price") or 0)
        ]
        products.sort(key=lambda p: 1 - float(p["sale_price"]) / float(p["price"]), reverse=True)
        return [copy.deepcopy(p) for p in products[: max(int(limit), 0)]]

    def _variant(self, product: Dict[str, Any], variant_id: str) -> Dict[str, Any]:
        for variant in product.get("variants") or []:
            if str(variant.get("id")) == str(variant_id):
                return variant
        raise NotFoundError("Không tìm thấy phiên bản sản phẩm.")

    def get_stock(self, product_id: str, variant_id: Optional[str] = None) -> int:
        product = self.find_by_id(product_id)
        if variant_id:
            return int(self._variant(product, variant_id).get("stock") or 0)
        return int(product.get("stock") or 0)

    def get_price(self, product_id: str, variant_id: Optional[str] = None) -> float:
        product = self.find_by_id(product_id)
        if variant_id:
            variant = self._variant(product, variant_id)
            if variant.get("price"):
                return float(variant["price"])
        return effective_price(product)

    def reserve_stock(self, product_id: str, quantity: int, variant_id: Optional[str] = None) -> None:
        """Decrement stock after an order is placed; raises when not enough is left."""
        with self._lock:
            product = self._products.get(str(product_id))
            if product is None:
                raise NotFoundError("Không tìm thấy sản phẩm.")
            holder = self._variant(product, variant_id) if variant_id else product
            available = int(holder.get("stock") or 0)
            if available < quantity:
                raise InsufficientStockError(f"Sản phẩm {product.get('name')} chỉ còn {available} sản phẩm.")
            holder["stock"] = available - quantity
            if variant_id:
                product["stock"] = max(int(product.get("stock") or 0) - quantity, 0)
            product["sold_count"] = int(product.get("sold_count") or 0) + quantity

    def list_categories(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(c) for c in self._categories.values() if c.get("is_active", True)]

    def find_category(self, name_or_slug: str) -> Optional[Dict[str, Any]]:
        if not name_or_slug:
            return None
        wanted_slug = slugify(name_or_slug)
        for category in self._categories.values():
            if str(category["id"]) == str(name_or_slug) or category.get("slug") == wanted_slug:
                return copy.deepcopy(category)
        wanted = normalize_text(name_or_slug)
        for category in self._categories.values():
            if wanted and wanted in normalize_text(category.get("name", "")):
                return copy.deepcopy(category)
        return None


def _sort_products(products: List[Dict[str, Any]], sort: Optional[str]) -> List[Dict[str, Any]]:
    keys: Dict[str, Callable[[Dict[str, Any]], Any]] = {
        "price_asc": effective_price,
        "price_desc": lambda p: -effective_price(p),
        "rating": lambda p: -float(p.get("rating") or 0),
        "newest": lambda p: -float(p.get("created_at") or 0),
        "best_selling": lambda p: -int(p.get("sold_count") or 0),
        "popular": lambda p: -int(p.get("view_count") or 0),
    }
    key = keys.get(sort or "")
    return sorted(products, key=key) if key else list(products)


class InMemoryCart:
    """Per-user carts; prices and names come from the catalog at add time."""

    def __init__(self, catalog: InMemoryCatalog, clock: Clock = time.time) -> None:
        self._catalog = catalog
        self._clock = clock
        self._carts: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _view(self, user_id: str) -> Dict[str, Any]:
        cart = self._carts.get(str(user_id)) or {"items": [], "updated_at": None}
        items = copy.deepcopy(cart["items"])
        return {
            "user_id": str(user_id),
            "items": items,
            "total_amount": sum(float(item["price"]) * int(item["quantity"]) for item in items),
            "item_count": sum(int(item["quantity"]) for item in items),
            "updated_at": cart["updated_at"],
        }

    def get(self, user_id: str) -> Dict[str, Any]:
        with self._lock:
            return self._view(user_id)

    def add(self, user_id: str, item: Dict[str, Any]) -> Dict[str, Any]:
        """Purpose: Add a product line or increase the quantity of an existing line.
        Inputs/Outputs: Inputs are user_id and {product_id, variant_id, quantity, price};
            returns the cart view.
        Side Effects / State: Mutates the user's cart.
        Dependencies: InMemoryCatalog.find_by_id/get_stock.
        Failure Modes: NotFoundError for unknown products; InsufficientStockError when the
            combined quantity exceeds stock; InvalidOperationError for quantity < 1.
        If Removed: Nothing can be bought.
        Testing Notes: Adding the same product twice merges into one line.
        """
        # Merge by (product, variant) and re-check stock against the merged quantity.
        quantity = int(item.get("quantity") or 1)
        if quantity < 1:
            raise InvalidOperationError("Số lượng phải lớn hơn 0.")
        product_id = str(item["product_id"])
        variant_id = item.get("variant_id")
        product = self._catalog.find_by_id(product_id)
        stock = self._catalog.get_stock(product_id, variant_id)
        with self._lock:
            cart = self._carts.setdefault(str(user_id), {"items": [], "updated_at": None})
            line = next(
                (
                    existing
                    for existing in cart["items"]
                    if existing["product_id"] == product_id and existing.get("variant_id") == variant_id
                ),
                None,
            )
            wanted = quantity + (int(line["quantity"]) if line else 0)
            if wanted > stock:
                raise InsufficientStockError(f"Sản phẩm {product.get('name')} chỉ còn {stock} sản phẩm trong kho.")
            price = float(item.get("price") or self._catalog.get_price(product_id, variant_id))
            if line:
                line["quantity"] = wanted
                line["price"] = price
            else:
                cart["items"].append(
                    {
                        "product_id": product_id,
                        "variant_id": variant_id,
                        "name": product.get("name"),
                        "category": product.get("category"),
                        "brand": product.get("brand"),
                        "quantity": quantity,
                        "price": price,
                    }
                )
            cart["updated_at"] = self._clock()
            return self._view(user_id)

    def update(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        quantity = int(quantity)
        with self._lock:
            cart = self._carts.get(str(user_id)) or {"items": []}
            line = next((item for item in cart["items"] if item["product_id"] == str(product_id)), None)
            if line is None:
                raise NotFoundError("Sản phẩm không có trong giỏ hàng.")
            if quantity <= 0:
                cart["items"].remove(line)
            else:
                stock = self._catalog.get_stock(line["product_id"], line.get("variant_id"))
                if quantity > stock:
                    raise InsufficientStockError(f"Chỉ còn {stock} sản phẩm trong kho.")
                line["quantity"] = quantity
            cart["updated_at"] = self._clock()
            return self._view(user_id)

    def remove(self, user_id: str, product_id: str) -> Dict[str, Any]:
        with self._lock:
            cart = self._carts.get(str(user_id)) or {"items": []}
            remaining = [item for item in cart["items"] if item["product_id"] != str(product_id)]
            if len(remaining) == len(cart["items"]):
                raise NotFoundError("Sản phẩm không có trong giỏ hàng.")
            cart["items"] = remaining
            cart["updated_at"] = self._clock()
            return self._view(user_id)

    def clear(self, user_id: str) -> Dict[str, Any]:
        with self._lock:
            self._carts[str(user_id)] = {"items": [], "updated_at": self._clock()}
            return self._view(user_id)


class InMemoryOrders:
    """Orders keyed by id; ownership is enforced on every per-order read."""

    def __init__(
        self,
        orders: Iterable[Dict[str, Any]] = (),
        catalog: Optional[InMemoryCatalog] = None,
        clock: Clock = time.time,
    ) -> None:
        self._catalog = catalog
        self._clock = clock
        self._orders: Dict[str, Dict[str, Any]] = {str(o["id"]): _resolve_age(o, clock()) for o in orders}
        self._lock = threading.Lock()

    def create(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        items = [dict(item) for item in data.get("items") or []]
        if not items:
            raise InvalidOperationError("Đơn hàng phải có ít nhất một sản phẩm.")
        subtotal = sum(float(item["price"]) * int(item["quantity"]) for item in items)
        shipping_fee = float(data.get("shipping_fee") or 0)
        discount_amount = float(data.get("discount_amount") or 0)
        now = self._clock()
        order = {
            "id": uuid.uuid4().hex[:24],
            "user_id": str(user_id),
            "customer_name": (data.get("shipping_address") or {}).get("name", ""),
            "items": items,
            "status": "pending",
            "payment_status": "unpaid",
            "payment_method": data.get("payment_method") or "COD",
            "notes": data.get("notes") or "",
            "subtotal": subtotal,
            "shipping_fee": shipping_fee,
            "discount_amount": discount_amount,
            "voucher_code": data.get("voucher_code"),
            "total_amount": max(subtotal + shipping_fee - discount_amount, 0),
            "shipping_address": dict(data.get("shipping_address") or {}),
            "created_at": now,
            "confirmed_at": None,
            "shipping_at": None,
            "completed_at": None,
        }
        if self._catalog is not None:
            for item in items:
                if self._catalog.get_stock(item["product_id"], item.get("variant_id")) < int(item["quantity"]):
                    raise InsufficientStockError(f"Sản phẩm {item.get('name')} không đủ số lượng trong kho.")
            for item in items:
                self._catalog.reserve_stock(item["product_id"], int(item["quantity"]), item.get("variant_id"))
        with self._lock:
            self._orders[order["id"]] = order
        return copy.deepcopy(order)

    def _owned(self, order_id: str, user_id: str) -> Dict[str, Any]:
        order = self._orders.get(str(order_id))
        if order is None:
            raise NotFoundError("Không tìm thấy đơn hàng.")
        if order.get("user_id") != str(user_id):
            raise PermissionDeniedError("Bạn không có quyền truy cập đơn hàng này.")
        return order

    def get_by_id(self, order_id: str, user_id: str) -> Dict[str, Any]:
        return copy.deepcopy(self._owned(order_id, user_id))

    def list_for_user(self, user_id: str, limit: int = 5) -> Dict[str, Any]:
        orders = [o for o in self._orders.values() if o.get("user_id") == str(user_id)]
        orders.sort(key=lambda o: float(o.get("created_at") or 0), reverse=True)
        return {"orders": copy.deepcopy(orders[: max(int(limit), 0)]), "total": len(orders)}

    def update_status(self, order_id: str, status: str) -> Dict[str, Any]:
        with self._lock:
            order = self._orders.get(str(order_id))
            if order is None:
                raise NotFoundError("Không tìm thấy đơn hàng.")
            order["status"] = status
            stamp = ORDER_STATUS_TIMESTAMPS.get(status)
            if stamp:
                order[stamp] = self._clock()
            return copy.deepcopy(order)

    def cancel(self, order_id: str, user_id: str, reason: str = "") -> Dict[str, Any]:
        with self._lock:
            order = self._owned(order_id, user_id)
            if order.get("status") not in CANCELLABLE_STATUSES:
                raise InvalidOperationError("Chỉ có thể hủy đơn hàng đang chờ xác nhận hoặc đã xác nhận.")
            order["status"] = "cancelled"
            order["cancelled_at"] = self._clock()
            order["cancel_reason"] = reason
            return copy.deepcopy(order)

    def list_recent(
        self, status: Optional[str] = None, product_id: Optional[str] = None, limit: int = 5
    ) -> List[Dict[str, Any]]:
        orders = [
            o
            for o in self._orders.values()
            if (status is None or o.get("status") == status)
            and (product_id is None or any(i.get("product_id") == str(product_id) for i in o.get("items") or []))
        ]
        orders.sort(key=lambda o: float(o.get("created_at") or 0), reverse=True)
        return copy.deepcopy(orders[: max(int(limit), 0)])

    def completed_product_ids(self, user_id: str) -> List[str]:
        return [
            str(item.get("product_id"))
            for order in self._orders.values()
            if order.get("user_id") == str(user_id) and order.get("status") == "completed"
            for item in order.get("items") or []
        ]


class InMemoryPayments:
    """Builds gateway redirect URLs and records one payment per order."""

    def __init__(self, orders: InMemoryOrders, gateway_url: str = PAYMENT_GATEWAY_URL, clock: Clock = time.time) -> None:
        self._orders = orders
        self._gateway_url = gateway_url
        self._clock = clock
        self._payments: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create_payment_url(self, order_id: str, user_id: str, ip_address: str) -> Dict[str, Any]:
        order = self._orders.get_by_id(order_id, user_id)
        if order.get("payment_status") == "paid":
            raise InvalidOperationError("Đơn hàng đã được thanh toán.")
        if order.get("status") == "cancelled":
            raise InvalidOperationError("Không thể thanh toán đơn hàng đã hủy.")
        transaction_id = f"{order['id'][-8:]}{int(self._clock() * 1000)}"
        query = urlencode(
            {
                "vnp_Amount": int(float(order["total_amount"]) * 100),
                "vnp_TxnRef": transaction_id,
                "vnp_OrderInfo": f"Thanh toan don hang {order['id']}",
                "vnp_IpAddr": ip_address,
            }
        )
        payment = {
            "order_id": order["id"],
            "transaction_id": transaction_id,
            "amount": order["total_amount"],
            "status": "pending",
            "ip_address": ip_address,
            "payment_url": f"{self._gateway_url}?{query}",
            "created_at": self._clock(),
        }
        with self._lock:
            self._payments[order["id"]] = payment
        return dict(payment)

    def get_by_order_id(self, order_id: str) -> Dict[str, Any]:
        payment = self._payments.get(str(order_id))
        if payment is None:
            raise NotFoundError("Không tìm thấy thông tin thanh toán.")
        return dict(payment)


class InMemoryDiscounts:
    """Voucher rules: time window, usage cap, minimum order, product applicability."""

    def __init__(self, discounts: Iterable[Dict[str, Any]] = (), clock: Clock = time.time) -> None:
        self._clock = clock
        self._discounts: Dict[str, Dict[str, Any]] = {
            str(d["code"]).upper(): _resolve_age(d, clock()) for d in discounts
        }

    def _usable(self, discount: Dict[str, Any]) -> bool:
        now = self._clock()
        if not discount.get("is_active", True):
            return False
        if discount.get("start_date") is not None and now < float(discount["start_date"]):
            return False
        if discount.get("end_date") is not None and now > float(discount["end_date"]):
            return False
        return True

    def validate_and_apply(self, code: str, order_total: float, product_ids: List[str]) -> Dict[str, Any]:
        """Purpose: Check a voucher against an order and compute its discount.
        Inputs/Outputs: Inputs are code, order_total and product ids; returns
            {code, discount_type, value, discount_amount, final_amount}.
        Side Effects / State: None; redemption is not recorded here.
        Dependencies: _usable for the time window.
        Failure Modes: VoucherNotFound, VoucherInactive, VoucherUsageExceeded,
            VoucherMinOrderNotMet, VoucherNotApplicable.
        If Removed: Voucher handlers cannot validate or price a discount.
        Testing Notes: Percent vouchers are capped by max_discount and never exceed the total.
        """
        # Check rules in a fixed order so the first failing one is reported.
        discount = self._discounts.get(str(code or "").strip().upper())
        if discount is None:
            raise VoucherNotFound()
        if not self._usable(discount):
            raise VoucherInactive()
        usage_limit = discount.get("usage_limit")
        if usage_limit is not None and int(discount.get("used_count") or 0) >= int(usage_limit):
            raise VoucherUsageExceeded()
        minimum = float(discount.get("min_order_value") or 0)
        if float(order_total or 0) < minimum:
            raise VoucherMinOrderNotMet(f"Đơn hàng tối thiểu {format_vnd(minimum)} để dùng mã {discount['code']}.")
        applicable = [str(pid) for pid in discount.get("applicable_products") or []]
        if applicable and not set(applicable) & {str(pid) for pid in product_ids or []}:
            raise VoucherNotApplicable()
        if discount.get("discount_type") == "percent":
            amount = float(order_total) * float(discount.get("value") or 0) / 100
            if discount.get("max_discount"):
                amount = min(amount, float(discount["max_discount"]))
        else:
            amount = float(discount.get("value") or 0)
        amount = round(min(amount, float(order_total)))
        return {
            "code": discount["code"],
            "discount_type": discount.get("discount_type", "fixed"),
            "value": discount.get("value"),
            "discount_amount": amount,
            "final_amount": float(order_total) - amount,
        }

    def list_active(self, limit: int = 10) -> List[Dict[str, Any]]:
        active = [
            d
            for d in self._discounts.values()
            if self._usable(d)
            and (d.get("usage_limit") is None or int(d.get("used_count") or 0) < int(d["usage_limit"]))
        ]
        return copy.deepcopy(active[: max(int(limit), 0)])


class InMemoryReviews:
    """Reviews restricted to buyers of a product, one review per user and product."""

    def __init__(
        self,
        orders: InMemoryOrders,
        reviews: Iterable[Dict[str, Any]] = (),
        clock: Clock = time.time,
    ) -> None:
        self._orders = orders
        self._clock = clock
        self._reviews: List[Dict[str, Any]] = [_resolve_age(r, clock()) for r in reviews]
        self._lock = threading.Lock()

    def eligibility_check(self, user_id: str, product_id: str) -> Dict[str, Any]:
        if str(product_id) not in self._orders.completed_product_ids(user_id):
            return {"can_review": False, "message": "Bạn chỉ có thể đánh giá sản phẩm đã mua."}
        if any(r["user_id"] == str(user_id) and r["product_id"] == str(product_id) for r in self._reviews):
            return {"can_review": False, "message": "Bạn đã đánh giá sản phẩm này rồi."}
        return {"can_review": True, "message": ""}

    def create(self, user_id: str, product_id: str, rating: float, comment: str = "") -> Dict[str, Any]:
        if not 1 <= float(rating) <= 5:
            raise InvalidOperationError("Điểm đánh giá phải từ 1 đến 5.")
        review = {
            "id": uuid.uuid4().hex[:24],
            "user_id": str(user_id),
            "product_id": str(product_id),
            "rating": float(rating),
            "comment": comment or "",
            "created_at": self._clock(),
        }
        with self._lock:
            self._reviews.append(review)
        return dict(review)

    def list_for_product(self, product_id: str, limit: int = 5) -> Dict[str, Any]:
        reviews = [r for r in self._reviews if r["product_id"] == str(product_id)]
        reviews.sort(key=lambda r: float(r.get("created_at") or 0), reverse=True)
        average = sum(float(r["rating"]) for r in reviews) / len(reviews) if reviews else 0
        return {
            "reviews": copy.deepcopy(reviews[: max(int(limit), 0)]),
            "total": len(reviews),
            "average_rating": round(average, 1),
        }


class InMemoryUsers:
    def __init__(self, users: Iterable[Dict[str, Any]] = ()) -> None:
        self._users: Dict[str, Dict[str, Any]] = {str(u["id"]): copy.deepcopy(u) for u in users}
        self._lock = threading.Lock()

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        user = self._users.get(str(user_id))
        if user is None:
            raise NotFoundError("Không tìm thấy người dùng.")
        profile = {key: value for key, value in user.items() if key != "addresses"}
        return copy.deepcopy(profile)

    def list_addresses(self, user_id: str) -> List[Dict[str, Any]]:
        user = self._users.get(str(user_id)) or {}
        return copy.deepcopy(user.get("addresses") or [])

    def add_address(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        for key in ("name", "phone", "address"):
            if not data.get(key):
                raise InvalidOperationError("Vui lòng cung cấp tên người nhận, số điện thoại và địa chỉ.")
        with self._lock:
            user = self._users.setdefault(str(user_id), {"id": str(user_id), "addresses": []})
            addresses = user.setdefault("addresses", [])
            address = {
                "id": uuid.uuid4().hex[:24],
                "name": data["name"],
                "phone": data["phone"],
                "address": data["address"],
                "province": data.get("province") or "",
                "district": data.get("district") or "",
                "ward": data.get("ward") or "",
                "is_default": not addresses,
            }
            addresses.append(address)
            return dict(address)


class InMemoryNotifier:
    """Records notifications; a real deployment would push them over a socket."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def notify(self, user_id: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.sent.append({"user_id": str(user_id), "payload": dict(payload)})
        logger.info("notify user=%s type=%s", user_id, payload.get("type"))


def build_memory_services(seed_path: Optional[Path] = None, clock: Clock = time.time) -> CommerceServices:
    """Purpose: Build the full set of in-memory services from a seed file.
    Inputs/Outputs: Inputs are an optional seed path and a clock; returns CommerceServices.
    Side Effects / State: Reads the seed file once.
    Dependencies: load_seed and the InMemory* classes.
    Failure Modes: Missing or invalid seed yields empty services.
    If Removed: The app has no collaborators to dispatch handlers against.
    Testing Notes: Build with seed_path=None and inject records directly for isolation.
    """
    # Resolve relative ages once against the clock, then wire dependents.
    seed = load_seed(seed_path)
    now = clock()
    products = [_resolve_age(p, now) for p in seed.get("products") or []]
    catalog = InMemoryCatalog(products, seed.get("categories") or [])
    orders = InMemoryOrders(seed.get("orders") or [], catalog=catalog, clock=clock)
    return CommerceServices(
        catalog=catalog,
        cart=InMemoryCart(catalog, clock=clock),
        orders=orders,
        payments=InMemoryPayments(orders, clock=clock),
        discounts=InMemoryDiscounts(seed.get("discounts") or [], clock=clock),
        reviews=InMemoryReviews(orders, seed.get("reviews") or [], clock=clock),
        users=InMemoryUsers(seed.get("users") or []),
        notifier=InMemoryNotifier(),
    )
