import tempfile
import threading
import time
import unittest
from pathlib import Path

from commerce_chat.context_manager import (
    COMPARISON_LIMIT,
    ContextManager,
    annotate_content,
    initial_context,
    merge_context,
)
from commerce_chat.errors import SessionNotFound
from commerce_chat.session_store import SessionStore

from .support import FakeClock

HOUR = 3600


class MergeContextTests(unittest.TestCase):
    def test_entities_merge_one_level_and_other_keys_overwrite(self):
        context = {"a": 1, "entities": {"x": 1}, "cart_context": {"items": [1]}}
        merged = merge_context(context, {"b": 2, "entities": {"y": 2}, "cart_context": {"total": 5}})
        self.assertEqual(merged["entities"], {"x": 1, "y": 2})
        self.assertEqual(merged["cart_context"], {"total": 5})
        self.assertEqual(merged["a"], 1)
        self.assertEqual(merged["b"], 2)
        self.assertEqual(context["entities"], {"x": 1})

    def test_initial_context_starts_in_discovery(self):
        context = initial_context(10.0)
        self.assertEqual(context["conversation_state"], "discovery")
        self.assertEqual(context["stage_history"], ["discovery"])
        self.assertEqual(context["comparison_list"], [])
        self.assertEqual(context["entities"], {})


class AnnotateContentTests(unittest.TestCase):
    def test_only_first_three_products_are_listed(self):
        products = [{"id": f"p{i}", "name": f"Item {i}", "price": 1000 * i} for i in range(1, 6)]
        content = annotate_content("Kết quả", {"function_result": {"data": {"products": products}}})
        self.assertIn("[System Context - Products shown:", content)
        self.assertIn("ID: p3", content)
        self.assertNotIn("ID: p4", content)

    def test_variant_price_wins_over_sale_price(self):
        product = {"id": "p1", "name": "Áo", "price": 500000, "sale_price": 400000, "variants": [{"price": 350000}]}
        content = annotate_content("x", {"function_result": {"data": {"products": [product]}}})
        self.assertIn("Price: 350.000đ", content)

    def test_single_product_annotation(self):
        content = annotate_content("x", {"function_result": {"data": {"product": {"id": "p9", "name": "Tai nghe"}}}})
        self.assertTrue(content.endswith('[System Context - Product shown: ID: p9, Name: "Tai nghe"]'))

    def test_messages_without_results_are_unchanged(self):
        self.assertEqual(annotate_content("hello", {}), "hello")
        self.assertEqual(annotate_content("hello", {"function_result": "oops"}), "hello")


class ContextManagerTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.store = SessionStore(None, ttl_sec=24 * HOUR, clock=self.clock)
        self.contexts = ContextManager(self.store)
        self.session_id = self.contexts.get_or_create_session("u1").session_id

    def test_resume_requires_same_owner(self):
        self.assertEqual(self.contexts.get_or_create_session("u1", self.session_id).session_id, self.session_id)
        other = self.contexts.get_or_create_session("u2", self.session_id)
        self.assertNotEqual(other.session_id, self.session_id)
        self.assertEqual(other.user_id, "u2")

    def test_expired_session_is_not_resumed(self):
        self.clock.advance(25 * HOUR)
        fresh = self.contexts.get_or_create_session("u1", self.session_id)
        self.assertNotEqual(fresh.session_id, self.session_id)
        # Still physically present until the sweep runs.
        self.assertIsNotNone(self.store.get(self.session_id))
        self.assertIsNone(self.contexts.get_session(self.session_id))

    def test_writes_to_an_expired_session_do_not_revive_it(self):
        self.clock.advance(25 * HOUR)
        expires_at = self.store.get(self.session_id).expires_at
        with self.assertRaises(SessionNotFound):
            self.contexts.update_context(self.session_id, {"current_intent": "cart_view"})
        with self.assertRaises(SessionNotFound):
            self.contexts.add_message(self.session_id, "user", "còn đó không?")
        self.assertEqual(self.store.get(self.session_id).expires_at, expires_at)
        self.assertIsNone(self.contexts.get_session(self.session_id))

    def test_activity_slides_expiry(self):
        self.clock.advance(20 * HOUR)
        self.contexts.add_message(self.session_id, "user", "xin chào")
        self.clock.advance(20 * HOUR)
        self.assertIsNotNone(self.contexts.get_session(self.session_id))

    def test_cleanup_removes_only_expired(self):
        self.clock.advance(12 * HOUR)
        keep = self.contexts.get_or_create_session("u3").session_id
        self.clock.advance(13 * HOUR)
        self.assertEqual(self.contexts.cleanup_expired_sessions(), 1)
        self.assertIsNone(self.store.get(self.session_id))
        self.assertIsNotNone(self.store.get(keep))

    def test_history_is_tail_and_annotated(self):
        for index in range(12):
            self.contexts.add_message(self.session_id, "user", f"m{index}")
        self.contexts.add_message(
            self.session_id,
            "assistant",
            "Đây là kết quả",
            {"function_called": "search_products", "function_result": {"data": {"products": [{"id": "p1", "name": "A", "price": 1}]}}},
        )
        history = self.contexts.get_conversation_history(self.session_id, limit=10)
        self.assertEqual(len(history), 10)
        self.assertEqual(history[0]["content"], "m3")
        self.assertIn("ID: p1", history[-1]["content"])
        self.assertEqual(history[-1]["role"], "assistant")

    def test_unknown_session_raises(self):
        with self.assertRaises(SessionNotFound):
            self.contexts.add_message("missing", "user", "x")
        with self.assertRaises(SessionNotFound):
            self.contexts.update_context("missing", {"a": 1})

    def test_comparison_list_is_fifo_bounded(self):
        for index in range(COMPARISON_LIMIT + 1):
            self.contexts.add_to_comparison(self.session_id, {"id": f"p{index}"})
        items = self.contexts.get_context(self.session_id)["comparison_list"]
        self.assertEqual([item["id"] for item in items], ["p1", "p2", "p3"])

    def test_funnel_stage_history_is_append_only(self):
        self.contexts.update_funnel_stage(self.session_id, "interest", {"source": "search"})
        self.contexts.update_funnel_stage(self.session_id, "decision")
        context = self.contexts.get_context(self.session_id)
        self.assertEqual(context["stage_history"], ["discovery", "interest", "decision"])
        self.assertEqual(context["conversation_state"], "decision")
        self.assertEqual(context["funnel_metadata"]["stage"], "decision")
        self.assertEqual(context["funnel_metadata"]["source"], "search")

    def test_entities_and_conversation_entities(self):
        self.contexts.store_entity(self.session_id, "size", "M")
        self.contexts.store_entity(self.session_id, "color", "Đen")
        self.assertEqual(self.contexts.get_entity(self.session_id, "size"), "M")
        self.contexts.store_conversation_entity(self.session_id, "current_product", {"id": "p1"})
        snapshot = self.contexts.get_conversation_entity(self.session_id, "current_product")
        self.assertEqual(snapshot["id"], "p1")
        self.assertEqual(snapshot["stored_at"], self.clock())
        self.assertEqual(self.contexts.get_context(self.session_id)["entities"], {"size": "M", "color": "Đen"})

    def test_next_actions_follow_stage(self):
        self.assertEqual(
            self.contexts.get_next_actions(self.session_id),
            ["get_product_details", "filter_products_by_price", "get_hot_trending_products"],
        )
        self.contexts.update_funnel_stage(self.session_id, "interest")
        self.contexts.update_context(self.session_id, {"last_mentioned_product": "p1"})
        self.assertIn("add_to_cart", self.contexts.get_next_actions(self.session_id))
        self.assertEqual(self.contexts.get_next_actions("missing"), [])

    def test_clear_and_deactivate(self):
        self.contexts.update_context(self.session_id, {"current_intent": "cart_view"})
        self.contexts.add_message(self.session_id, "user", "hi")
        self.contexts.clear_context(self.session_id)
        record = self.store.get(self.session_id)
        self.assertIsNone(record.context["current_intent"])
        self.assertEqual(len(record.messages), 1)
        self.contexts.deactivate_session(self.session_id)
        self.assertIsNone(self.contexts.get_session(self.session_id))

    def test_user_sessions_listing(self):
        self.contexts.add_message(self.session_id, "user", "Tìm áo sơ mi trắng")
        self.clock.advance(60)
        second = self.contexts.get_or_create_session("u1").session_id
        summaries = self.contexts.list_user_sessions("u1")
        self.assertEqual([s.session_id for s in summaries], [second, self.session_id])
        self.assertEqual(summaries[1].title, "Tìm áo sơ mi trắng")
        self.assertEqual(summaries[0].title, "New Chat")


class SlowClock(FakeClock):
    """Frozen clock that yields the GIL on every read so threads interleave."""

    def __call__(self):
        time.sleep(0.02)
        return self.value


class ConcurrentSessionTests(unittest.TestCase):
    def run_threads(self, count, target):
        barrier = threading.Barrier(count)
        errors = []

        def worker(index):
            try:
                barrier.wait()
                target(index)
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(index,)) for index in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        self.assertEqual(errors, [])

    def test_sessions_created_in_the_same_millisecond_get_distinct_ids(self):
        contexts = ContextManager(SessionStore(None, clock=SlowClock()))
        created = {}
        self.run_threads(4, lambda index: created.__setitem__(index, contexts.get_or_create_session("u1").session_id))
        self.assertEqual(len(set(created.values())), 4)
        self.assertEqual(len(contexts.list_user_sessions("u1", limit=10)), 4)

    def test_interleaved_context_updates_keep_every_entity(self):
        contexts = ContextManager(SessionStore(None, clock=FakeClock()))
        session_id = contexts.get_or_create_session("u1").session_id

        def update(index):
            for step in range(200):
                contexts.update_context(session_id, {"entities": {f"k{index}_{step}": step}})

        self.run_threads(4, update)
        self.assertEqual(len(contexts.get_context(session_id)["entities"]), 800)


class SessionStorePersistenceTests(unittest.TestCase):
    def test_sessions_reload_from_disk(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "sessions.json"
            clock = FakeClock()
            contexts = ContextManager(SessionStore(path, clock=clock))
            session_id = contexts.get_or_create_session("u1").session_id
            contexts.add_message(session_id, "user", "xin chào", {"function_result": {"ok": {1, 2}}})

            reloaded = SessionStore(path, clock=clock)
            record = reloaded.get(session_id)
            self.assertIsNotNone(record)
            self.assertEqual(record.messages[0].content, "xin chào")
            self.assertIsInstance(record.messages[0].metadata["function_result"]["ok"], str)

    def test_corrupt_file_starts_empty(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "sessions.json"
            path.write_text("{not json", encoding="utf-8")
            store = SessionStore(path, clock=FakeClock())
            self.assertEqual(store.list_for_user("u1"), [])


if __name__ == "__main__":
    unittest.main()
