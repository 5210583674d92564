from __future__ import annotations

import functools
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ..context_manager import ContextManager
from ..errors import ServiceError, SessionNotFound
from ..services import CommerceServices
from ..utils import effective_price

logger = logging.getLogger("commerce_chat.handlers")

HandlerResult = Dict[str, Any]
F = TypeVar("F", bound=Callable[..., HandlerResult])

MAX_LOOKUP_WORKERS = 8


def ok(message: str, data: Any = None) -> HandlerResult:
    return {"success": True, "message": message, "data": data}


def fail(message: str, error: Optional[str] = None, data: Any = None) -> HandlerResult:
    result: HandlerResult = {"success": False, "message": message}
    if data is not None:
        result["data"] = data
    if error:
        result["error"] = error
    return result


def guarded(failure_message: str, expose_service_errors: bool = True) -> Callable[[F], F]:
    """Purpose: Turn any exception raised inside a handler into a failure envelope.
    Inputs/Outputs: Inputs are the generic failure message and whether a ServiceError's own
        message is shown to the user; returns a decorator.
    Side Effects / State: Logs unexpected exceptions with traceback.
    Dependencies: ServiceError.user_message.
    Failure Modes: None; the wrapped call always returns {success, message, ...}.
    If Removed: A failing service call escapes to dispatch as a raw exception.
    Testing Notes: Raise NotFoundError and RuntimeError from a stub service and check both
        results are success=False with a string message.
    """

    def decorator(handler: F) -> F:
        @functools.wraps(handler)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> HandlerResult:
            # Service errors carry a user-facing message; anything else gets the generic one.
            try:
                return handler(self, *args, **kwargs)
            except ServiceError as exc:
                logger.info("%s failed: %s", handler.__name__, exc)
                message = exc.user_message if expose_service_errors else failure_message
                return fail(message, error=str(exc))
            except Exception as exc:
                logger.exception("%s raised unexpectedly", handler.__name__)
                return fail(failure_message, error=str(exc) or exc.__class__.__name__)

        return wrapper  # type: ignore[return-value]

    return decorator


def product_summary(product: Dict[str, Any]) -> Dict[str, Any]:
    """Compact product view used in lists, comparisons and the history annotation."""
    images = product.get("images") or []
    return {
        "id": product.get("id"),
        "name": product.get("name"),
        "slug": product.get("slug"),
        "brand": product.get("brand"),
        "category": product.get("category_name") or product.get("category"),
        "price": effective_price(product),
        "original_price": product.get("price"),
        "rating": product.get("rating"),
        "review_count": product.get("review_count"),
        "stock": product.get("stock"),
        "image": images[0] if images else None,
    }


class HandlerBase:
    """Shared collaborators and context helpers for every handler mixin."""

    def __init__(
        self,
        services: CommerceServices,
        contexts: ContextManager,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.services = services
        self.contexts = contexts
        self._clock = clock
        self._rng = rng or random.Random()

    def now(self) -> float:
        return self._clock()

    def session_context(self, session_id: Optional[str]) -> Dict[str, Any]:
        if not session_id:
            return {}
        return self.contexts.get_context(session_id) or {}

    def resolve_product_id(self, product_id: Optional[str], session_id: Optional[str]) -> Optional[str]:
        """Purpose: Pick the product a handler should act on.
        Inputs/Outputs: Inputs are the explicit id and session_id; returns an id or None.
        Side Effects / State: None.
        Dependencies: ContextManager.get_context.
        Failure Modes: Unknown sessions behave as empty context.
        If Removed: "add it to my cart" cannot find "it".
        Testing Notes: Explicit id wins, then last_mentioned_product, then current_product.id.
        """
        # Explicit argument first, then the session referents in order.
        if product_id:
            return str(product_id)
        context = self.session_context(session_id)
        if context.get("last_mentioned_product"):
            return str(context["last_mentioned_product"])
        current = context.get("current_product")
        if isinstance(current, dict) and current.get("id"):
            return str(current["id"])
        return None

    def resolve_order_id(self, order_id: Optional[str], session_id: Optional[str]) -> Optional[str]:
        if order_id:
            return str(order_id)
        context = self.session_context(session_id)
        return str(context["last_mentioned_order"]) if context.get("last_mentioned_order") else None

    def remember_product(self, session_id: Optional[str], product: Dict[str, Any]) -> None:
        # Record the single product just shown as the session referent.
        if not session_id or not product.get("id"):
            return
        try:
            self.contexts.update_context(session_id, {"last_mentioned_product": product["id"]})
            self.contexts.store_conversation_entity(
                session_id,
                "current_product",
                {"id": product["id"], "name": product.get("name"), "price": effective_price(product)},
            )
        except SessionNotFound:
            logger.debug("session=%s gone before product referent could be stored", session_id)

    def remember_order(self, session_id: Optional[str], order_id: Optional[str]) -> None:
        if not session_id or not order_id:
            return
        try:
            self.contexts.update_context(session_id, {"last_mentioned_order": order_id})
        except SessionNotFound:
            logger.debug("session=%s gone before order referent could be stored", session_id)

    def fetch_products(self, product_ids: List[str]) -> List[Dict[str, Any]]:
        """Purpose: Look up several products concurrently.
        Inputs/Outputs: Input is an ordered id list; returns products in the same order.
        Side Effects / State: Uses a short-lived thread pool.
        Dependencies: CatalogService.find_by_id.
        Failure Modes: The first lookup error is re-raised to the caller.
        If Removed: Comparison and bundle handlers fall back to sequential reads.
        Testing Notes: Ids [b, a] return [product_b, product_a] even if a resolves first.
        """
        # Executor.map yields results in input order regardless of completion order.
        if not product_ids:
            return []
        workers = min(len(product_ids), MAX_LOOKUP_WORKERS)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="catalog-lookup") as pool:
            return list(pool.map(self.services.catalog.find_by_id, product_ids))
