from __future__ import annotations

from typing import Any, Optional

from .base import HandlerBase, HandlerResult, fail, guarded, ok


def _stars(rating: float) -> str:
    value = float(rating)
    return str(int(value)) if value.is_integer() else f"{value:.1f}"


class ReviewHandlersMixin(HandlerBase):
    @guarded("Không thể tạo đánh giá.")
    def create_product_review(
        self,
        *,
        user_id: str,
        product_id: Optional[str] = None,
        rating: Optional[float] = None,
        comment: Optional[str] = None,
        session_id: Optional[str] = None,
        **_ignored: Any,
    ) -> HandlerResult:
        """Purpose: Record a 1-5 star review from a buyer of the product.
        Inputs/Outputs: Inputs are product_id (context fallback), rating and comment;
            returns data={"review"}.
        Side Effects / State: Persists the review through ReviewService.
        Dependencies: ReviewService.eligibility_check/create.
        Failure Modes: Non-buyers and repeat reviewers get the eligibility message.
        If Removed: Completed-order cards offer an action nothing can serve.
        Testing Notes: u1001 may review p001 once; a second attempt must fail.
        """
        # Eligibility first so non-buyers are not asked for a rating.
        resolved = self.resolve_product_id(product_id, session_id)
        if not resolved:
            return fail("Bạn muốn đánh giá sản phẩm nào?")
        eligibility = self.services.reviews.eligibility_check(user_id, resolved)
        if not eligibility.get("can_review"):
            return fail(eligibility.get("message") or "Bạn không thể đánh giá sản phẩm này.")
        if rating is None:
            return fail("Bạn muốn đánh giá sản phẩm này mấy sao (1-5)?")
        review = self.services.reviews.create(user_id, resolved, float(rating), comment or "")
        return ok(f"Cảm ơn bạn đã đánh giá {_stars(review['rating'])} sao!", {"review": review})

    @guarded("Không thể lấy đánh giá sản phẩm.")
    def get_product_reviews(
        self, *, product_id: Optional[str] = None, limit: int = 5, session_id: Optional[str] = None, **_ignored: Any
    ) -> HandlerResult:
        resolved = self.resolve_product_id(product_id, session_id)
        if not resolved:
            return fail("Bạn muốn xem đánh giá của sản phẩm nào?")
        result = self.services.reviews.list_for_product(resolved, limit=int(limit))
        return ok(f"Sản phẩm có {result['total']} đánh giá.", {"product_id": resolved, **result})
