"""Conversation orchestrator.

Role:
    Runs one user turn end to end: resolve the session, load history, classify,
    dispatch the selected function, update context, phrase the reply and persist
    it. It is the single place where core failures become the apology envelope.

Turn data contract (TurnContext):
    - user_id, message, ip_address: caller input.
    - session_id: resolved (possibly newly created) session.
    - history: annotated prior turns, loaded before the current message is stored.
    - classification: ClassificationResult from the model.
    - function_result: handler envelope when a function was called.
    - reply, data: what the caller receives.

Step contracts:
    resolve_session -> load_history -> record_user_message -> classify
    -> dispatch -> update_context -> compose_reply -> record_reply
    dispatch and update_context only run for function calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .context_manager import ContextManager
from .errors import SessionNotFound
from .handlers import HandlerResult
from .intent_classifier import ClassificationResult, IntentClassifier
from .models import SessionRecord
from .pipeline_runtime import PipelineRunner, PipelineStep

logger = logging.getLogger("commerce_chat.chatbot")

DEFAULT_HISTORY_LIMIT = 10
GENERAL_INTENT = "general_conversation"

EMPTY_REPLY_MESSAGE = "Xin lỗi, tôi không hiểu ý bạn. Bạn có thể nói rõ hơn không?"
FAILURE_MESSAGE = "Xin lỗi, tôi gặp chút vấn đề kỹ thuật. Bạn có thể thử lại không?"
SESSION_NOT_FOUND_MESSAGE = "Không tìm thấy phiên chat."
HISTORY_FAILURE_MESSAGE = "Không thể lấy lịch sử chat."
CLEARED_MESSAGE = "Đã xóa lịch sử chat."
CLEAR_FAILURE_MESSAGE = "Không thể xóa lịch sử chat."
SESSIONS_FAILURE_MESSAGE = "Không thể lấy danh sách phiên chat."

DEFAULT_SUGGESTIONS = ["Tìm sản phẩm", "Xem giỏ hàng", "Đơn hàng của tôi", "Mã giảm giá"]
PRODUCT_SEARCH_SUGGESTIONS = ["Xem chi tiết sản phẩm này", "Thêm vào giỏ hàng", "Tìm sản phẩm khác", "So sánh giá"]
CART_VIEW_SUGGESTIONS = ["Thanh toán ngay", "Áp dụng mã giảm giá", "Cập nhật số lượng", "Xóa sản phẩm"]
ORDER_TRACKING_SUGGESTIONS = ["Hủy đơn hàng", "Cập nhật địa chỉ", "Thanh toán đơn hàng", "Xem đơn hàng khác"]


def _search_update(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"current_intent": "product_search", "conversation_state": "awaiting_product_selection"}


def _details_update(data: Dict[str, Any]) -> Dict[str, Any]:
    product = data.get("product") or {}
    update: Dict[str, Any] = {"current_intent": "product_details"}
    if product.get("id"):
        update["last_mentioned_product"] = product["id"]
    return update


def _add_to_cart_update(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"current_intent": "cart_management", "conversation_state": "idle"}


def _order_status_update(data: Dict[str, Any]) -> Dict[str, Any]:
    update: Dict[str, Any] = {"current_intent": "order_tracking"}
    if data.get("order_id"):
        update["last_mentioned_order"] = data["order_id"]
    return update


def _view_cart_update(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"cart_context": data.get("cart") or {}, "current_intent": "cart_view"}


# function name -> context fields to set after a successful call
CONTEXT_UPDATES: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "search_products": _search_update,
    "get_product_details": _details_update,
    "add_to_cart": _add_to_cart_update,
    "check_order_status": _order_status_update,
    "view_cart": _view_cart_update,
}


@dataclass
class TurnContext:
    """Mutable state passed through each turn step."""
    user_id: str
    message: str
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    history: List[Dict[str, str]] = field(default_factory=list)
    classification: Optional[ClassificationResult] = None
    function_result: Optional[HandlerResult] = None
    reply: str = ""
    data: Any = None

    @property
    def function_called(self) -> bool:
        return bool(self.classification and self.classification.is_function_call)

    @property
    def function_name(self) -> Optional[str]:
        return self.classification.function_name if self.function_called else None


def get_suggestions(context: Optional[Dict[str, Any]]) -> List[str]:
    """Purpose: Quick-reply chips for the current conversation position.
    Inputs/Outputs: Input is a context dict (may be None); returns four strings.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: None; unknown positions get DEFAULT_SUGGESTIONS.
    If Removed: The chat UI shows no quick replies.
    Testing Notes: conversation_state "cart_view" returns CART_VIEW_SUGGESTIONS.
    """
    # current_intent wins over conversation_state.
    context = context or {}
    for key in ("current_intent", "conversation_state"):
        value = context.get(key)
        if value in ("product_search", "awaiting_product_selection"):
            return list(PRODUCT_SEARCH_SUGGESTIONS)
        if value == "cart_view":
            return list(CART_VIEW_SUGGESTIONS)
        if value == "order_tracking":
            return list(ORDER_TRACKING_SUGGESTIONS)
    return list(DEFAULT_SUGGESTIONS)


class ChatbotService:
    def __init__(
        self,
        contexts: ContextManager,
        classifier: IntentClassifier,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        """Purpose: Wire the context manager and classifier into the turn pipeline.
        Inputs/Outputs: Inputs are ContextManager, IntentClassifier and history limit;
            no return value.
        Side Effects / State: Builds a PipelineRunner with ordered steps.
        Dependencies: PipelineRunner/PipelineStep and the step methods on this class.
        Failure Modes: None at init.
        If Removed: The HTTP layer has nothing to hand a user message to.
        Testing Notes: Build with a fake model and in-memory store; check step order.
        """
        # Dispatch and context update are skipped for plain text replies.
        self._contexts = contexts
        self._classifier = classifier
        self._history_limit = history_limit
        not_function_call: Callable[[TurnContext], bool] = lambda turn: not turn.function_called
        self._pipeline: PipelineRunner[TurnContext] = PipelineRunner(
            [
                PipelineStep("resolve_session", self._step_resolve_session),
                PipelineStep("load_history", self._step_load_history),
                PipelineStep("record_user_message", self._step_record_user_message),
                PipelineStep("classify", self._step_classify),
                PipelineStep("dispatch", self._step_dispatch, skip_if=not_function_call),
                PipelineStep("update_context", self._step_update_context, skip_if=not_function_call),
                PipelineStep("compose_reply", self._step_compose_reply),
                PipelineStep("record_reply", self._step_record_reply),
            ]
        )

    @property
    def contexts(self) -> ContextManager:
        return self._contexts

    def process_message(
        self,
        user_id: str,
        message: str,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Purpose: Handle one user message and return the reply envelope.
        Inputs/Outputs: Inputs are user_id, message, optional session_id and IP; returns
            {success, session_id, message, data, metadata{intent, function_called}} or
            {success False, error, message} on failure.
        Side Effects / State: Creates/updates the session, may run a handler with side effects.
        Dependencies: The turn pipeline steps.
        Failure Modes: Any exception becomes FAILURE_MESSAGE; nothing is raised.
        If Removed: The assistant cannot answer.
        Testing Notes: Make the fake model raise and check the apology envelope.
        """
        # All core failures are normalized here.
        turn = TurnContext(user_id=str(user_id), message=message, session_id=session_id, ip_address=ip_address)
        try:
            self._pipeline.run(turn)
        except Exception as exc:
            logger.exception("user=%s session=%s turn failed", user_id, turn.session_id)
            return {"success": False, "error": str(exc) or exc.__class__.__name__, "message": FAILURE_MESSAGE}
        return {
            "success": True,
            "session_id": turn.session_id,
            "message": turn.reply,
            "data": turn.data,
            "metadata": {
                "intent": turn.function_name or GENERAL_INTENT,
                "function_called": turn.function_called,
            },
        }

    def _step_resolve_session(self, turn: TurnContext) -> None:
        record = self._contexts.get_or_create_session(turn.user_id, turn.session_id)
        turn.session_id = record.session_id

    def _step_load_history(self, turn: TurnContext) -> None:
        # Loaded before the current message is stored so it is not sent twice.
        turn.history = self._contexts.get_conversation_history(turn.session_id, self._history_limit)

    def _step_record_user_message(self, turn: TurnContext) -> None:
        self._contexts.add_message(turn.session_id, "user", turn.message)

    def _step_classify(self, turn: TurnContext) -> None:
        turn.classification = self._classifier.classify(turn.message, turn.history, turn.user_id)

    def _step_dispatch(self, turn: TurnContext) -> None:
        classification = turn.classification
        turn.function_result = self._classifier.execute_function(
            classification.function_name,
            classification.arguments,
            turn.user_id,
            session_id=turn.session_id,
            ip_address=turn.ip_address,
        )
        if not turn.function_result.get("success"):
            logger.info(
                "session=%s function=%s failed: %s",
                turn.session_id,
                classification.function_name,
                turn.function_result.get("message"),
            )

    def _step_update_context(self, turn: TurnContext) -> None:
        self.update_context_from_function(turn.session_id, turn.function_name, turn.function_result)

    def _step_compose_reply(self, turn: TurnContext) -> None:
        """Purpose: Decide the reply text and data for the turn.
        Inputs/Outputs: Input is the TurnContext; sets reply and data.
        Side Effects / State: May call the model once for response synthesis.
        Dependencies: IntentClassifier.generate_response.
        Failure Modes: Empty replies become EMPTY_REPLY_MESSAGE.
        If Removed: Turns end without a user-visible answer.
        Testing Notes: A failed handler result is returned verbatim without synthesis.
        """
        # Failed function calls answer with the handler's own message.
        if turn.function_called:
            result = turn.function_result or {}
            turn.data = result.get("data")
            if result.get("success"):
                turn.reply = self._classifier.generate_response(turn.message, result, turn.history)
            else:
                turn.reply = result.get("message") or ""
        else:
            turn.reply = turn.classification.content if turn.classification else ""
        if not isinstance(turn.reply, str) or not turn.reply.strip():
            turn.reply = EMPTY_REPLY_MESSAGE

    def _step_record_reply(self, turn: TurnContext) -> None:
        self._contexts.add_message(
            turn.session_id,
            "assistant",
            turn.reply,
            {"function_called": turn.function_name, "function_result": turn.function_result},
        )
        logger.info("session=%s intent=%s replied", turn.session_id, turn.function_name or GENERAL_INTENT)

    def update_context_from_function(
        self, session_id: str, function_name: Optional[str], result: Optional[HandlerResult]
    ) -> None:
        """Purpose: Apply the per-function context mapping after a successful call.
        Inputs/Outputs: Inputs are session_id, function name and handler result; no return.
        Side Effects / State: Merges the mapped fields into the session context.
        Dependencies: CONTEXT_UPDATES, ContextManager.update_context.
        Failure Modes: Failed results are ignored; update errors are logged, not raised.
        If Removed: Follow-up turns lose intent, state and referents.
        Testing Notes: search_products success sets awaiting_product_selection.
        """
        # Only successful calls move the conversation forward.
        if not function_name or not result or not result.get("success"):
            return
        builder = CONTEXT_UPDATES.get(function_name)
        if builder is None:
            return
        data = result.get("data") if isinstance(result.get("data"), dict) else {}
        try:
            self._contexts.update_context(session_id, builder(data))
        except Exception:
            logger.exception("session=%s context update after %s failed", session_id, function_name)

    def _owned_session(self, session_id: str, user_id: Optional[str]) -> Optional[SessionRecord]:
        record = self._contexts.get_session(session_id)
        if record is None or (user_id is not None and record.user_id != str(user_id)):
            return None
        return record

    def get_session_history(self, session_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            record = self._owned_session(session_id, user_id)
            if record is None:
                return {"success": False, "message": SESSION_NOT_FOUND_MESSAGE}
            return {
                "success": True,
                "data": {
                    "session_id": record.session_id,
                    "messages": [message.model_dump() for message in record.messages],
                    "context": record.context,
                    "created_at": record.created_at,
                    "last_active_at": record.last_active_at,
                    "next_actions": self._contexts.get_next_actions(session_id),
                },
            }
        except Exception as exc:
            logger.exception("session=%s history lookup failed", session_id)
            return {"success": False, "error": str(exc), "message": HISTORY_FAILURE_MESSAGE}

    def clear_session(self, session_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            if self._owned_session(session_id, user_id) is None:
                return {"success": False, "message": SESSION_NOT_FOUND_MESSAGE}
            self._contexts.clear_context(session_id)
            self._contexts.deactivate_session(session_id)
        except SessionNotFound:
            return {"success": False, "message": SESSION_NOT_FOUND_MESSAGE}
        except Exception as exc:
            logger.exception("session=%s clear failed", session_id)
            return {"success": False, "error": str(exc), "message": CLEAR_FAILURE_MESSAGE}
        logger.info("session=%s cleared", session_id)
        return {"success": True, "message": CLEARED_MESSAGE}

    def get_suggestions(self, context: Optional[Dict[str, Any]]) -> List[str]:
        return get_suggestions(context)

    def get_user_sessions(self, user_id: str, limit: int = 5) -> Dict[str, Any]:
        try:
            sessions = self._contexts.list_user_sessions(str(user_id), limit=limit)
        except Exception as exc:
            logger.exception("user=%s session list failed", user_id)
            return {"success": False, "error": str(exc), "message": SESSIONS_FAILURE_MESSAGE}
        return {"success": True, "data": [summary.model_dump() for summary in sessions]}
