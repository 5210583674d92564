from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..errors import SessionNotFound
from ..utils import format_vnd
from .base import HandlerBase, HandlerResult, fail, guarded, logger, ok, product_summary

DAY_SEC = 24 * 60 * 60
PRICE_SORTS = {"highest": "price_desc", "lowest": "price_asc"}
TIME_FRAME_TEXT = {"day": "hôm nay", "week": "tuần này", "month": "tháng này"}


def _phrase(*parts: Any) -> str:
    """Join non-empty fragments with single spaces."""
    return " ".join(str(part).strip() for part in parts if part not in (None, "") and str(part).strip())


class ProductHandlersMixin(HandlerBase):
    """Catalog search, discovery, filtering, comparison and stock lookups."""

    @guarded("Không thể tìm kiếm sản phẩm.")
    def search_products(
        self,
        *,
        query: Optional[str] = None,
        keyword: Optional[str] = None,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        limit: int = 10,
        **_ignored: Any,
    ) -> HandlerResult:
        term = (query or keyword or "").strip()
        filters = {"category": category, "min_price": min_price, "max_price": max_price}
        products = self.services.catalog.search(term, filters, limit=limit)
        if not products:
            return fail(f'Không tìm thấy sản phẩm nào cho "{term}".', data={"products": [], "query": term})
        return ok(
            f'Tìm thấy {len(products)} sản phẩm cho "{term}"',
            {"products": [product_summary(p) for p in products], "query": term, "total": len(products)},
        )

    @guarded("Không tìm thấy sản phẩm.", expose_service_errors=False)
    def get_product_details(
        self,
        *,
        product_id: Optional[str] = None,
        slug: Optional[str] = None,
        session_id: Optional[str] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        """Purpose: Show one product and make it the session's current referent.
        Inputs/Outputs: Inputs are product_id or slug (falls back to context); returns
            data={"product": {...}}.
        Side Effects / State: Sets last_mentioned_product/current_product on the session.
        Dependencies: CatalogService.find_by_id/find_by_slug, resolve_product_id.
        Failure Modes: No id and no referent returns a clarifying question.
        If Removed: Follow-ups like "add it" lose their subject.
        Testing Notes: With last_mentioned_product set, call without arguments.
        """
        # Slug is only used when no id is given and no referent exists.
        resolved = self.resolve_product_id(product_id, session_id) if not slug or product_id else None
        if resolved:
            product = self.services.catalog.find_by_id(resolved)
        elif slug:
            product = self.services.catalog.find_by_slug(slug)
        else:
            return fail("Bạn muốn xem chi tiết sản phẩm nào?")
        self.remember_product(session_id, product)
        detail = {**product_summary(product), "variants": product.get("variants") or [], "description": product.get("description")}
        return ok(f"Thông tin chi tiết sản phẩm: {product.get('name')}", {"product": detail})

    @guarded("Không thể lấy danh sách danh mục.")
    def browse_categories(self, **_ignored: Any) -> HandlerResult:
        categories = self.services.catalog.list_categories()
        return ok(f"Có {len(categories)} danh mục sản phẩm.", {"categories": categories})

    @guarded("Không thể lấy sản phẩm theo danh mục.")
    def get_products_by_category(self, *, category: Optional[str] = None, limit: int = 10, **_ignored: Any) -> HandlerResult:
        if not category:
            return fail("Bạn muốn xem danh mục nào?")
        found = self.services.catalog.find_category(category)
        if not found:
            return fail(f'Không tìm thấy danh mục "{category}".')
        products = self.services.catalog.list_by_category(found["id"], limit=limit)
        return ok(
            f"Tìm thấy {len(products)} sản phẩm trong danh mục {found['name']}.",
            {"category": found, "products": [product_summary(p) for p in products]},
        )

    @guarded("Không thể lấy danh sách flash sale.")
    def get_flash_sale_products(self, *, limit: int = 10, **_ignored: Any) -> HandlerResult:
        products = self.services.catalog.list_on_sale(limit=limit)
        return ok(f"Có {len(products)} sản phẩm đang giảm giá!", {"products": [product_summary(p) for p in products]})

    @guarded("Không thể lấy gợi ý sản phẩm.")
    def recommend_products(self, *, keyword: Optional[str] = None, limit: int = 5, **_ignored: Any) -> HandlerResult:
        products = self.services.catalog.search(keyword or "", sort="rating", limit=limit)
        return ok(f"Gợi ý {len(products)} sản phẩm cho bạn", {"products": [product_summary(p) for p in products]})

    @guarded("Không thể lấy sản phẩm tương tự.")
    def get_similar_products(
        self, *, product_id: Optional[str] = None, limit: int = 5, session_id: Optional[str] = None, **_ignored: Any
    ) -> HandlerResult:
        resolved = self.resolve_product_id(product_id, session_id)
        if not resolved:
            return fail("Bạn muốn tìm sản phẩm tương tự với sản phẩm nào?")
        product = self.services.catalog.find_by_id(resolved)
        candidates = self.services.catalog.list_by_category(product["category"], limit=int(limit) + 1)
        similar = [p for p in candidates if str(p.get("id")) != resolved][: int(limit)]
        return ok(
            f"Tìm thấy {len(similar)} sản phẩm tương tự.",
            {"source": product_summary(product), "products": [product_summary(p) for p in similar]},
        )

    @guarded("Không thể lấy sản phẩm bán chạy.")
    def get_bestselling_products(self, *, category: Optional[str] = None, limit: int = 10, **_ignored: Any) -> HandlerResult:
        products = self.services.catalog.search("", {"category": category}, sort="best_selling", limit=limit)
        return ok(f"Có {len(products)} sản phẩm bán chạy.", {"products": [product_summary(p) for p in products]})

    @guarded("Không thể lấy sản phẩm trending.")
    def get_trending_products(self, *, limit: int = 10, **_ignored: Any) -> HandlerResult:
        products = self.services.catalog.search("", sort="newest", limit=limit)
        return ok(f"Có {len(products)} sản phẩm đang hot.", {"products": [product_summary(p) for p in products]})

    @guarded("Không thể lấy sản phẩm mới.")
    def get_new_arrivals(
        self, *, category: Optional[str] = None, days: int = 30, limit: int = 15, **_ignored: Any
    ) -> HandlerResult:
        days = int(days)
        filters = {"category": category, "created_after": self.now() - days * DAY_SEC}
        products = self.services.catalog.search("", filters, sort="newest", limit=limit)
        if not products:
            return fail(_phrase("Chưa có sản phẩm", category, f"mới trong {days} ngày qua."))
        return ok(
            _phrase(len(products), "sản phẩm", category, f"mới trong {days} ngày qua"),
            {"products": [product_summary(p) for p in products], "days": days},
        )

    @guarded("Không thể lấy sản phẩm trending.")
    def get_hot_trending_products(
        self,
        *,
        category: Optional[str] = None,
        time_frame: str = "week",
        limit: int = 10,
        **_ignored: Any,
    ) -> HandlerResult:
        """Rank by views + 5 x sold + 10 x rating and keep the top ``limit``."""
        limit = int(limit)
        candidates = self.services.catalog.search("", {"category": category}, limit=limit * 2)
        if not candidates:
            return fail(_phrase("Không tìm thấy sản phẩm", category, "trending."))
        scored = []
        for product in candidates:
            score = (
                int(product.get("view_count") or 0)
                + int(product.get("sold_count") or 0) * 5
                + float(product.get("rating") or 0) * 10
            )
            scored.append({**product_summary(product), "trending_score": score})
        scored.sort(key=lambda item: item["trending_score"], reverse=True)
        top = scored[:limit]
        frame_text = TIME_FRAME_TEXT.get(time_frame, TIME_FRAME_TEXT["month"])
        return ok(_phrase(f"Top {len(top)} sản phẩm", category, f"hot nhất {frame_text}"), {"products": top})

    @guarded("Không thể so sánh sản phẩm.")
    def compare_products(
        self, *, product_ids: Optional[List[str]] = None, session_id: Optional[str] = None, **_ignored: Any
    ) -> HandlerResult:
        """Purpose: Side-by-side comparison of two or more products.
        Inputs/Outputs: Input is product_ids (topped up from the session comparison list);
            returns data={"products": [...], "cheapest_id", "best_rated_id"}.
        Side Effects / State: Pushes each compared product onto the comparison list.
        Dependencies: fetch_products (concurrent, order-preserving), ContextManager.add_to_comparison.
        Failure Modes: Fewer than two ids after fallback returns a clarifying failure.
        If Removed: "compare these" has no handler.
        Testing Notes: Output order must match the requested id order.
        """
        # Explicit ids first, then fill from the session's comparison list.
        ids: List[str] = [str(pid) for pid in product_ids or [] if pid]
        if len(ids) < 2:
            for entry in self.session_context(session_id).get("comparison_list") or []:
                entry_id = str(entry.get("id")) if isinstance(entry, dict) and entry.get("id") else None
                if entry_id and entry_id not in ids:
                    ids.append(entry_id)
        if len(ids) < 2:
            return fail("Cần ít nhất 2 sản phẩm để so sánh.")
        products = self.fetch_products(ids)
        comparison = [
            {
                **product_summary(p),
                "sale_price": p.get("sale_price"),
            }
            for p in products
        ]
        if session_id:
            try:
                for item in comparison:
                    self.contexts.add_to_comparison(session_id, {"id": item["id"], "name": item["name"], "price": item["price"]})
            except SessionNotFound:
                logger.debug("session=%s gone before comparison list update", session_id)
        cheapest = min(comparison, key=lambda item: item["price"])
        best_rated = max(comparison, key=lambda item: float(item.get("rating") or 0))
        return ok(
            f"So sánh {len(comparison)} sản phẩm.",
            {"products": comparison, "cheapest_id": cheapest["id"], "best_rated_id": best_rated["id"]},
        )

    @guarded("Không thể lọc sản phẩm theo giá.")
    def filter_products_by_price(
        self,
        *,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        category: Optional[str] = None,
        sort_by: Optional[str] = None,
        limit: int = 20,
        **_ignored: Any,
    ) -> HandlerResult:
        filters = {"category": category, "min_price": min_price or None, "max_price": max_price or None}
        products = self.services.catalog.search("", filters, sort=PRICE_SORTS.get(sort_by or ""), limit=limit)
        if not products:
            if category:
                return fail(f"Không tìm thấy {category} trong khoảng giá này.")
            return fail("Không tìm thấy sản phẩm trong khoảng giá này.")
        if sort_by == "highest":
            message = _phrase(len(products), "sản phẩm", category, "có giá cao nhất")
        elif sort_by == "lowest":
            message = _phrase(len(products), "sản phẩm", category, "có giá rẻ nhất")
        else:
            message = _phrase(
                f"Tìm thấy {len(products)} sản phẩm",
                category,
                f"từ {format_vnd(min_price)}" if min_price else "",
                f"đến {format_vnd(max_price)}" if max_price else "",
            )
        return ok(message, {"products": [product_summary(p) for p in products]})

    @guarded("Không thể lấy sản phẩm theo đánh giá.")
    def get_products_by_rating(
        self, *, min_rating: float = 4.0, category: Optional[str] = None, limit: int = 10, **_ignored: Any
    ) -> HandlerResult:
        products = self.services.catalog.search(
            "", {"category": category, "min_rating": min_rating}, sort="rating", limit=limit
        )
        if not products:
            return fail(_phrase("Không tìm thấy sản phẩm", category, f"có đánh giá từ {min_rating} sao."))
        return ok(
            _phrase(f"Top {len(products)} sản phẩm", category, f"có đánh giá cao nhất (từ {min_rating} sao)"),
            {"products": [product_summary(p) for p in products]},
        )

    @guarded("Không thể lọc sản phẩm theo thuộc tính.")
    def filter_products_by_attributes(
        self,
        *,
        category: Optional[str] = None,
        size: Optional[str] = None,
        color: Optional[str] = None,
        brand: Optional[str] = None,
        limit: int = 20,
        session_id: Optional[str] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        # Remember stated attributes as slots for later turns.
        slots = {key: value for key, value in (("size", size), ("color", color), ("brand", brand)) if value}
        if session_id and slots:
            try:
                self.contexts.update_context(session_id, {"entities": slots})
            except SessionNotFound:
                logger.debug("session=%s gone before attribute slots were stored", session_id)
        filters: Dict[str, Any] = {"category": category, **slots}
        products = self.services.catalog.search("", filters, limit=limit)
        if not products:
            missing = ", ".join(
                label for label in (f"size {size}" if size else "", f"màu {color}" if color else "", f"thương hiệu {brand}" if brand else "") if label
            )
            return fail(_phrase("Không tìm thấy sản phẩm", category, missing) + ".")
        found = ", ".join(label for label in (brand or "", f"size {size}" if size else "", f"màu {color}" if color else "") if label)
        return ok(
            _phrase(f"Tìm thấy {len(products)} sản phẩm", category, found),
            {"products": [product_summary(p) for p in products], "filters": slots},
        )

    @guarded("Không thể kiểm tra tồn kho.")
    def check_stock_availability(
        self,
        *,
        product_id: Optional[str] = None,
        variant_id: Optional[str] = None,
        session_id: Optional[str] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        resolved = self.resolve_product_id(product_id, session_id)
        if not resolved:
            return fail("Bạn muốn kiểm tra tồn kho sản phẩm nào?")
        product = self.services.catalog.find_by_id(resolved)
        stock = self.services.catalog.get_stock(resolved, variant_id)
        self.remember_product(session_id, product)
        message = f"Sản phẩm còn {stock} sản phẩm trong kho." if stock > 0 else "Sản phẩm tạm hết hàng."
        return ok(
            message,
            {
                "product_id": resolved,
                "variant_id": variant_id,
                "product_name": product.get("name"),
                "in_stock": stock > 0,
                "quantity": stock,
            },
        )
