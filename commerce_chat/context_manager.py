"""Conversation context management on top of the session store.

Context contract (per session):
    - conversation_state: funnel stage (discovery/interest/decision/purchase/retention)
      or an operational state (idle, awaiting_product_selection, ...).
    - stage_history: append-only audit of funnel stages for the session.
    - entities: slot-filling map; merged one level deep on update.
    - last_mentioned_product / last_mentioned_order / current_product: referents used
      by handlers when the model omits an entity id.
    - comparison_list: at most COMPARISON_LIMIT products, oldest evicted first.
    - cart_context / user_preferences / last_action: last-write-wins snapshots.

Every mutation runs under the session's lock so concurrent turns on one session
cannot lose each other's updates.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional

from .errors import SessionNotFound
from .models import SessionRecord, SessionSummary, StoredMessage
from .session_store import SessionStore
from .utils import format_vnd, to_jsonable

logger = logging.getLogger("commerce_chat.context")

FUNNEL_STAGES = ("discovery", "interest", "decision", "purchase", "retention")
OPERATIONAL_STATES = (
    "idle",
    "awaiting_product_selection",
    "awaiting_order_confirmation",
    "awaiting_address_update",
    "awaiting_payment_method",
)
COMPARISON_LIMIT = 3
HISTORY_ANNOTATION_LIMIT = 3

NEXT_ACTIONS_BY_STAGE: Dict[str, List[str]] = {
    "discovery": ["get_product_details", "filter_products_by_price", "get_hot_trending_products"],
    "purchase": ["create_payment_link", "check_order_status", "add_delivery_address"],
    "retention": ["get_user_orders", "create_product_review", "recommend_products", "get_new_arrivals"],
}
DEFAULT_NEXT_ACTIONS = ["search_products", "get_hot_trending_products", "browse_categories"]


def initial_context(now: float) -> Dict[str, Any]:
    """Purpose: Build the context shape of a brand-new or cleared session.
    Inputs/Outputs: Input is the current epoch time; returns a fresh context dict.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: None; deterministic structure.
    If Removed: New sessions start without funnel state and referent slots.
    Testing Notes: Check conversation_state, stage_history, comparison_list, entities.
    """
    # Start every conversation at the top of the funnel.
    return {
        "current_intent": None,
        "conversation_state": "discovery",
        "stage_history": ["discovery"],
        "funnel_metadata": {"stage": "discovery", "last_stage_change": now},
        "entities": {},
        "comparison_list": [],
        "current_product": None,
        "last_mentioned_product": None,
        "last_mentioned_order": None,
        "cart_context": {},
        "user_preferences": {},
        "last_action": None,
    }


def merge_context(context: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Purpose: Apply a partial update to a context document.
    Inputs/Outputs: Inputs are the current context and the update; returns a new dict.
    Side Effects / State: None; inputs are not mutated.
    Dependencies: None.
    Failure Modes: None.
    If Removed: Slot-filled entities would be wiped by unrelated updates.
    Testing Notes: {a:1, entities:{x:1}} + {b:2, entities:{y:2}}
        -> {a:1, b:2, entities:{x:1, y:2}}.
    """
    # Top-level keys overwrite; entities merge one level deeper.
    merged = {**context, **update}
    if isinstance(update.get("entities"), dict):
        merged["entities"] = {**(context.get("entities") or {}), **update["entities"]}
    return merged


def product_price(product: Dict[str, Any]) -> Any:
    """Price shown for a product: first variant price, else sale price, else list price."""
    variants = product.get("variants") or []
    if variants and isinstance(variants[0], dict) and variants[0].get("price"):
        return variants[0]["price"]
    return product.get("sale_price") or product.get("price")


def annotate_content(content: str, metadata: Dict[str, Any]) -> str:
    """Purpose: Append a compact note of products shown by a prior function call.
    Inputs/Outputs: Inputs are message text and metadata; returns possibly extended text.
    Side Effects / State: None.
    Dependencies: product_price, format_vnd.
    Failure Modes: Non-dict results are ignored and the content returns unchanged.
    If Removed: The classifier cannot resolve "the second one" or "that product".
    Testing Notes: Five products shown -> only three appear in the annotation.
    """
    # Only function results carrying products are annotated.
    result = (metadata or {}).get("function_result")
    if not isinstance(result, dict):
        return content
    data = result.get("data")
    if not isinstance(data, dict):
        return content
    products = data.get("products")
    if isinstance(products, list) and products:
        entries = [
            f'[ID: {p.get("id")}, Name: "{p.get("name")}", Price: {format_vnd(product_price(p))}]'
            for p in products[:HISTORY_ANNOTATION_LIMIT]
            if isinstance(p, dict)
        ]
        if entries:
            content += f"\n[System Context - Products shown: {', '.join(entries)}]"
    product = data.get("product")
    if isinstance(product, dict) and not products:
        content += f'\n[System Context - Product shown: ID: {product.get("id")}, Name: "{product.get("name")}"]'
    return content


class ContextManager:
    """Owns session lifecycle, message logging, and context mutation semantics."""

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    @property
    def store(self) -> SessionStore:
        return self._store

    def _require(self, session_id: str) -> SessionRecord:
        # Expired or deactivated sessions are not revived by late writes.
        record = self._store.find_active(session_id)
        if record is None:
            raise SessionNotFound(session_id)
        return record

    def get_or_create_session(self, user_id: str, session_id: Optional[str] = None) -> SessionRecord:
        """Purpose: Resume the caller's live session or start a new one.
        Inputs/Outputs: Inputs are user_id and optional session_id; returns a SessionRecord.
        Side Effects / State: Persists a new session when none matches.
        Dependencies: SessionStore.find_active/create, initial_context.
        Failure Modes: Store IO errors propagate.
        If Removed: The orchestrator has no session to log messages against.
        Testing Notes: Another user's session id or an expired one yields a fresh session.
        """
        # Only an active, unexpired session owned by this user is resumed.
        if session_id:
            record = self._store.find_active(session_id, user_id)
            if record is not None:
                logger.debug("session=%s resumed for user=%s", session_id, user_id)
                return record
        record = self._store.create(str(user_id), initial_context(self._store.now()))
        logger.info("session=%s created for user=%s", record.session_id, user_id)
        return record

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self._store.find_active(session_id)

    def get_context(self, session_id: str) -> Optional[Dict[str, Any]]:
        record = self._store.find_active(session_id)
        return copy.deepcopy(record.context) if record else None

    def add_message(
        self, session_id: str, role: str, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> SessionRecord:
        """Purpose: Append one message to the session log.
        Inputs/Outputs: Inputs are session_id, role, content, optional metadata; returns the record.
        Side Effects / State: Mutates messages, refreshes expiry, persists.
        Dependencies: StoredMessage, SessionStore.save, to_jsonable.
        Failure Modes: Raises SessionNotFound for unknown session ids.
        If Removed: Conversation history is never recorded.
        Testing Notes: Append twice and verify order and metadata round-trip.
        """
        # Store a JSON-safe copy of metadata so the session file stays serializable.
        with self._store.lock(session_id):
            record = self._require(session_id)
            record.messages.append(
                StoredMessage(
                    role=role,
                    content=content,
                    timestamp=self._store.now(),
                    metadata=to_jsonable(metadata or {}),
                )
            )
            return self._store.save(record)

    def get_conversation_history(self, session_id: str, limit: int = 10) -> List[Dict[str, str]]:
        """Purpose: Return the most recent messages for the classifier, with product annotations.
        Inputs/Outputs: Inputs are session_id and limit; returns [{role, content}, ...].
        Side Effects / State: None.
        Dependencies: annotate_content.
        Failure Modes: Raises SessionNotFound for unknown session ids.
        If Removed: The model sees no prior turns and cannot resolve references.
        Testing Notes: Messages with function_result products gain a System Context suffix.
        """
        # Slice the tail, then annotate each message from its metadata.
        record = self._require(session_id)
        messages = record.messages[-limit:] if limit > 0 else []
        return [
            {"role": message.role, "content": annotate_content(message.content, message.metadata)}
            for message in messages
        ]

    def update_context(self, session_id: str, update: Dict[str, Any]) -> SessionRecord:
        """Purpose: Merge a partial update into the session context and persist.
        Inputs/Outputs: Inputs are session_id and update dict; returns the record.
        Side Effects / State: Replaces record.context with the merged document.
        Dependencies: merge_context.
        Failure Modes: Raises SessionNotFound for unknown session ids.
        If Removed: Handlers and the orchestrator cannot carry state across turns.
        Testing Notes: Concurrent updates with disjoint keys must all survive.
        """
        # Merge under the session lock so the read-modify-write is atomic.
        with self._store.lock(session_id):
            record = self._require(session_id)
            record.context = merge_context(record.context, to_jsonable(update))
            return self._store.save(record)

    def update_conversation_state(self, session_id: str, state: str) -> SessionRecord:
        return self.update_context(session_id, {"conversation_state": state})

    def update_funnel_stage(
        self, session_id: str, stage: str, metadata: Optional[Dict[str, Any]] = None
    ) -> SessionRecord:
        """Purpose: Move the session to a funnel stage and audit the change.
        Inputs/Outputs: Inputs are session_id, stage, optional metadata; returns the record.
        Side Effects / State: Sets conversation_state, appends stage_history, merges funnel_metadata.
        Dependencies: SessionStore.lock/save.
        Failure Modes: Raises SessionNotFound for unknown session ids.
        If Removed: Funnel-based next actions never advance.
        Testing Notes: Two calls append two entries; history is never pruned.
        """
        # Append-only history; metadata extends the funnel metadata snapshot.
        with self._store.lock(session_id):
            record = self._require(session_id)
            context = dict(record.context)
            context["conversation_state"] = stage
            context["stage_history"] = list(context.get("stage_history") or []) + [stage]
            context["funnel_metadata"] = {
                **(context.get("funnel_metadata") or {}),
                "stage": stage,
                "last_stage_change": self._store.now(),
                **to_jsonable(metadata or {}),
            }
            record.context = context
            return self._store.save(record)

    def store_entity(self, session_id: str, name: str, value: Any) -> SessionRecord:
        """Put one slot value into the entities map."""
        return self.update_context(session_id, {"entities": {name: value}})

    def get_entity(self, session_id: str, name: str) -> Any:
        context = self.get_context(session_id) or {}
        return (context.get("entities") or {}).get(name)

    def store_conversation_entity(self, session_id: str, entity_type: str, entity_data: Dict[str, Any]) -> SessionRecord:
        """Purpose: Store a timestamped snapshot under a top-level context key.
        Inputs/Outputs: Inputs are session_id, key (e.g. current_product), data; returns record.
        Side Effects / State: Overwrites the key with {..., stored_at}.
        Dependencies: update_context.
        Failure Modes: Raises SessionNotFound for unknown session ids.
        If Removed: current_product/cart snapshots cannot be kept for follow-ups.
        Testing Notes: stored_at is added and prior value is replaced.
        """
        # Last write wins for snapshot keys.
        snapshot = {**(entity_data or {}), "stored_at": self._store.now()}
        return self.update_context(session_id, {entity_type: snapshot})

    def get_conversation_entity(self, session_id: str, entity_type: str) -> Any:
        context = self.get_context(session_id) or {}
        return context.get(entity_type)

    def add_to_comparison(self, session_id: str, product_data: Dict[str, Any]) -> SessionRecord:
        """Purpose: Push a product onto the bounded comparison list.
        Inputs/Outputs: Inputs are session_id and product summary; returns the record.
        Side Effects / State: Evicts the oldest entry when COMPARISON_LIMIT is reached.
        Dependencies: SessionStore.lock/save.
        Failure Modes: Raises SessionNotFound for unknown session ids.
        If Removed: "compare them" follow-ups have nothing to compare.
        Testing Notes: Adding a 4th item drops index 0 and appends at the end.
        """
        # FIFO eviction keeps the list at most COMPARISON_LIMIT long.
        with self._store.lock(session_id):
            record = self._require(session_id)
            context = dict(record.context)
            items = list(context.get("comparison_list") or [])
            while len(items) >= COMPARISON_LIMIT:
                items.pop(0)
            items.append(to_jsonable(product_data))
            context["comparison_list"] = items
            record.context = context
            return self._store.save(record)

    def update_user_preferences(self, session_id: str, preferences: Dict[str, Any]) -> SessionRecord:
        """Merge preference fields into user_preferences and stamp last_updated."""
        with self._store.lock(session_id):
            record = self._require(session_id)
            context = dict(record.context)
            context["user_preferences"] = {
                **(context.get("user_preferences") or {}),
                **to_jsonable(preferences or {}),
                "last_updated": self._store.now(),
            }
            record.context = context
            return self._store.save(record)

    def record_last_action(self, session_id: str, action_data: Dict[str, Any]) -> SessionRecord:
        snapshot = {**(action_data or {}), "timestamp": self._store.now()}
        return self.update_context(session_id, {"last_action": snapshot})

    def clear_context(self, session_id: str) -> SessionRecord:
        """Reset the context to its initial shape; messages are kept."""
        with self._store.lock(session_id):
            record = self._require(session_id)
            record.context = initial_context(self._store.now())
            return self._store.save(record)

    def deactivate_session(self, session_id: str) -> SessionRecord:
        with self._store.lock(session_id):
            record = self._require(session_id)
            record.is_active = False
            return self._store.save(record)

    def cleanup_expired_sessions(self) -> int:
        """Delete every session past its expiry; returns how many were removed."""
        removed = self._store.delete_expired()
        if removed:
            logger.info("cleanup removed %d expired sessions", removed)
        return removed

    def list_user_sessions(self, user_id: str, limit: int = 5) -> List[SessionSummary]:
        return self._store.list_for_user(user_id, limit=limit)

    def get_next_actions(self, session_id: str) -> List[str]:
        """Purpose: Suggest catalog functions that fit the session's funnel stage.
        Inputs/Outputs: Input is session_id; returns a list of function names.
        Side Effects / State: None.
        Dependencies: NEXT_ACTIONS_BY_STAGE and context referents.
        Failure Modes: Unknown session returns an empty list.
        If Removed: Session views lose their next-step hints.
        Testing Notes: interest with/without current_product; decision with/without cart items.
        """
        # Branch on stage, with interest/decision depending on referents.
        context = self.get_context(session_id)
        if context is None:
            return []
        stage = context.get("conversation_state") or "discovery"
        if stage == "interest":
            if context.get("current_product") or context.get("last_mentioned_product"):
                return ["add_to_cart", "get_similar_products", "compare_products", "get_product_reviews"]
            return ["search_products", "browse_categories"]
        if stage == "decision":
            cart = context.get("cart_context") or {}
            if cart.get("item_count") or cart.get("items"):
                return ["create_order_from_cart", "get_best_voucher", "view_cart", "calculate_shipping_fee"]
            return ["add_to_cart", "search_products"]
        return list(NEXT_ACTIONS_BY_STAGE.get(stage, DEFAULT_NEXT_ACTIONS))
