"""Contracts of the business services the assistant calls.

The assistant never talks to a database directly. Every handler goes through
one of these protocols with plain identifiers and plain dict DTOs. Failures
are reported by raising a ``ServiceError`` subclass from ``errors``.

DTO fields the assistant reads:
    product: id, name, slug, category, category_name, brand, price, sale_price,
        stock, variants[{id, size, color, price, stock}], rating, review_count,
        view_count, sold_count, images, created_at
    cart: items[{product_id, variant_id, name, quantity, price, category}],
        total_amount, item_count, updated_at
    order: id, user_id, items[{product_id, variant_id, name, quantity, price,
        category, brand}], status, payment_status, payment_method, subtotal,
        shipping_fee, discount_amount, total_amount, shipping_address,
        created_at, confirmed_at, shipping_at, completed_at
    discount: code, description, discount_type (percent|fixed), value,
        max_discount, min_order_value, start_date, end_date, usage_limit,
        used_count, applicable_products, is_active
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol


class CatalogService(Protocol):
    def find_by_id(self, product_id: str) -> Dict[str, Any]: ...

    def find_by_slug(self, slug: str) -> Dict[str, Any]: ...

    def search(
        self,
        keyword: str = "",
        filters: Optional[Dict[str, Any]] = None,
        sort: Optional[str] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]: ...

    def list_by_category(self, category_id: str, limit: int = 10) -> List[Dict[str, Any]]: ...

    def list_on_sale(self, limit: int = 10) -> List[Dict[str, Any]]: ...

    def get_stock(self, product_id: str, variant_id: Optional[str] = None) -> int: ...

    def get_price(self, product_id: str, variant_id: Optional[str] = None) -> float: ...

    def list_categories(self) -> List[Dict[str, Any]]: ...

    def find_category(self, name_or_slug: str) -> Optional[Dict[str, Any]]: ...


class CartService(Protocol):
    def get(self, user_id: str) -> Dict[str, Any]: ...

    def add(self, user_id: str, item: Dict[str, Any]) -> Dict[str, Any]: ...

    def update(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]: ...

    def remove(self, user_id: str, product_id: str) -> Dict[str, Any]: ...

    def clear(self, user_id: str) -> Dict[str, Any]: ...


class OrderService(Protocol):
    def create(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]: ...

    def get_by_id(self, order_id: str, user_id: str) -> Dict[str, Any]: ...

    def list_for_user(self, user_id: str, limit: int = 5) -> Dict[str, Any]: ...

    def update_status(self, order_id: str, status: str) -> Dict[str, Any]: ...

    def cancel(self, order_id: str, user_id: str, reason: str = "") -> Dict[str, Any]: ...

    def list_recent(
        self, status: Optional[str] = None, product_id: Optional[str] = None, limit: int = 5
    ) -> List[Dict[str, Any]]: ...


class PaymentService(Protocol):
    def create_payment_url(self, order_id: str, user_id: str, ip_address: str) -> Dict[str, Any]: ...

    def get_by_order_id(self, order_id: str) -> Dict[str, Any]: ...


class DiscountService(Protocol):
    def validate_and_apply(self, code: str, order_total: float, product_ids: List[str]) -> Dict[str, Any]: ...

    def list_active(self, limit: int = 10) -> List[Dict[str, Any]]: ...


class ReviewService(Protocol):
    def create(self, user_id: str, product_id: str, rating: float, comment: str = "") -> Dict[str, Any]: ...

    def list_for_product(self, product_id: str, limit: int = 5) -> Dict[str, Any]: ...

    def eligibility_check(self, user_id: str, product_id: str) -> Dict[str, Any]: ...


class UserService(Protocol):
    def get_profile(self, user_id: str) -> Dict[str, Any]: ...

    def list_addresses(self, user_id: str) -> List[Dict[str, Any]]: ...

    def add_address(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]: ...


class Notifier(Protocol):
    def notify(self, user_id: str, payload: Dict[str, Any]) -> None: ...


@dataclass
class CommerceServices:
    """Bundle of collaborators injected into the intent handlers."""
    catalog: CatalogService
    cart: CartService
    orders: OrderService
    payments: PaymentService
    discounts: DiscountService
    reviews: ReviewService
    users: UserService
    notifier: Notifier
