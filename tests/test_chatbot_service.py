import unittest
from unittest import mock

from commerce_chat.chatbot_service import (
    CART_VIEW_SUGGESTIONS,
    DEFAULT_SUGGESTIONS,
    EMPTY_REPLY_MESSAGE,
    FAILURE_MESSAGE,
    ORDER_TRACKING_SUGGESTIONS,
    PRODUCT_SEARCH_SUGGESTIONS,
    get_suggestions,
)
from commerce_chat.errors import ClassificationServiceError
from commerce_chat.pipeline_runtime import PipelineRunner, PipelineStep

from .support import OTHER_USER_ID, PENDING_ORDER_ID, SYNTHESIZED_REPLY, USER_ID, build_stack

HOUR = 3600


class ChatbotTestCase(unittest.TestCase):
    def setUp(self):
        self.stack = build_stack()
        self.chatbot = self.stack.chatbot
        self.model = self.stack.model
        self.contexts = self.stack.contexts


class ProcessMessageTests(ChatbotTestCase):
    def test_add_to_cart_without_referent_replies_with_handler_question(self):
        self.model.queue_call("add_to_cart")
        result = self.chatbot.process_message(USER_ID, "thêm vào giỏ hàng")
        self.assertTrue(result["success"])
        self.assertIn("Bạn muốn thêm sản phẩm nào", result["message"])
        self.assertEqual(result["metadata"], {"intent": "add_to_cart", "function_called": True})
        self.assertEqual(self.model.text_calls, [])
        self.assertEqual(self.stack.services.cart.get(USER_ID)["items"], [])

    def test_add_that_to_cart_uses_last_mentioned_product(self):
        self.model.queue_call("get_product_details", productId="p009")
        first = self.chatbot.process_message(USER_ID, "cho xem AirPods Pro 2")
        session_id = first["session_id"]

        self.model.queue_call("add_to_cart", quantity=2)
        with mock.patch.object(
            self.stack.services.cart, "add", wraps=self.stack.services.cart.add
        ) as cart_add:
            second = self.chatbot.process_message(USER_ID, "thêm cái đó vào giỏ, số lượng 2", session_id)

        self.assertEqual(second["session_id"], session_id)
        self.assertEqual(second["message"], SYNTHESIZED_REPLY)
        cart_add.assert_called_once_with(USER_ID, {"product_id": "p009", "variant_id": None, "quantity": 2})
        context = self.contexts.get_context(session_id)
        self.assertEqual(context["conversation_state"], "idle")
        self.assertEqual(context["current_intent"], "cart_management")

    def test_expired_session_starts_fresh(self):
        self.model.queue_text("Xin chào! Mình có thể giúp gì cho bạn?")
        first = self.chatbot.process_message(USER_ID, "xin chào")
        self.stack.clock.advance(25 * HOUR)
        self.model.queue_text("Chào bạn lần nữa!")
        second = self.chatbot.process_message(USER_ID, "xin chào", first["session_id"])
        self.assertNotEqual(second["session_id"], first["session_id"])
        self.assertEqual(self.model.tool_calls[1]["history"], [])

    def test_foreign_session_is_not_resumed(self):
        self.model.queue_text("Chào bạn!")
        first = self.chatbot.process_message(USER_ID, "xin chào")
        self.model.queue_text("Chào bạn!")
        second = self.chatbot.process_message(OTHER_USER_ID, "xin chào", first["session_id"])
        self.assertNotEqual(second["session_id"], first["session_id"])

    def test_text_reply_and_persistence(self):
        self.model.queue_text("Chào bạn! Bạn cần tìm gì?")
        result = self.chatbot.process_message(USER_ID, "xin chào")
        self.assertEqual(result["message"], "Chào bạn! Bạn cần tìm gì?")
        self.assertEqual(result["metadata"], {"intent": "general_conversation", "function_called": False})
        record = self.stack.store.get(result["session_id"])
        self.assertEqual([m.role for m in record.messages], ["user", "assistant"])
        self.assertIsNone(record.messages[1].metadata["function_called"])

    def test_current_message_is_not_repeated_in_history(self):
        self.model.queue_text("Chào bạn!")
        first = self.chatbot.process_message(USER_ID, "xin chào")
        self.model.queue_text("Ok")
        self.chatbot.process_message(USER_ID, "tìm áo", first["session_id"])
        history = self.model.tool_calls[1]["history"]
        self.assertEqual([turn["parts"][0]["text"] for turn in history], ["xin chào", "Chào bạn!"])
        self.assertEqual(self.model.tool_calls[1]["message"], "tìm áo")

    def test_empty_text_reply_is_replaced(self):
        self.model.queue_text("   ")
        result = self.chatbot.process_message(USER_ID, "???")
        self.assertEqual(result["message"], EMPTY_REPLY_MESSAGE)

    def test_model_failure_returns_apology(self):
        self.model.queue_error(ClassificationServiceError("quota exceeded"))
        result = self.chatbot.process_message(USER_ID, "xin chào")
        self.assertEqual(result, {"success": False, "error": "quota exceeded", "message": FAILURE_MESSAGE})

    def test_search_updates_context_and_annotates_next_turn(self):
        self.model.queue_call("search_products", query="iphone")
        first = self.chatbot.process_message(USER_ID, "tìm iphone")
        session_id = first["session_id"]
        context = self.contexts.get_context(session_id)
        self.assertEqual(context["current_intent"], "product_search")
        self.assertEqual(context["conversation_state"], "awaiting_product_selection")
        self.assertEqual([p["id"] for p in first["data"]["products"]], ["p001", "p002", "p010"])

        self.model.queue_text("Bạn muốn xem mẫu nào?")
        self.chatbot.process_message(USER_ID, "cái thứ hai", session_id)
        assistant_turn = self.model.tool_calls[1]["history"][-1]
        self.assertEqual(assistant_turn["role"], "model")
        self.assertIn("[System Context - Products shown:", assistant_turn["parts"][0]["text"])

    def test_failed_function_leaves_context_alone(self):
        self.model.queue_call("search_products", query="tủ lạnh")
        result = self.chatbot.process_message(USER_ID, "tìm tủ lạnh")
        context = self.contexts.get_context(result["session_id"])
        self.assertIsNone(context["current_intent"])
        self.assertEqual(result["data"], {"products": [], "query": "tủ lạnh"})

    def test_order_status_remembers_order(self):
        self.model.queue_call("check_order_status", orderId=PENDING_ORDER_ID)
        result = self.chatbot.process_message(USER_ID, "đơn hàng của tôi thế nào")
        context = self.contexts.get_context(result["session_id"])
        self.assertEqual(context["current_intent"], "order_tracking")
        self.assertEqual(context["last_mentioned_order"], PENDING_ORDER_ID)

    def test_payment_link_gets_request_ip(self):
        self.model.queue_call("create_payment_link", orderId=PENDING_ORDER_ID)
        result = self.chatbot.process_message(USER_ID, "thanh toán đơn", ip_address="203.0.113.7")
        self.assertIn("vnp_IpAddr=203.0.113.7", result["data"]["payment_url"])

    def test_context_update_errors_do_not_fail_the_turn(self):
        self.model.queue_call("view_cart")
        with mock.patch.object(self.contexts, "update_context", side_effect=RuntimeError("disk full")):
            result = self.chatbot.process_message(USER_ID, "xem giỏ hàng")
        self.assertTrue(result["success"])


class SessionOperationTests(ChatbotTestCase):
    def _start(self, user_id=USER_ID):
        self.model.queue_call("view_cart")
        return self.chatbot.process_message(user_id, "xem giỏ hàng")["session_id"]

    def test_history_includes_messages_context_and_next_actions(self):
        session_id = self._start()
        result = self.chatbot.get_session_history(session_id, user_id=USER_ID)
        self.assertTrue(result["success"])
        data = result["data"]
        self.assertEqual(len(data["messages"]), 2)
        self.assertEqual(data["context"]["current_intent"], "cart_view")
        self.assertIsInstance(data["next_actions"], list)

    def test_history_of_another_users_session_is_not_found(self):
        session_id = self._start()
        result = self.chatbot.get_session_history(session_id, user_id=OTHER_USER_ID)
        self.assertFalse(result["success"])
        self.assertFalse(self.chatbot.get_session_history("missing")["success"])

    def test_clear_session_deactivates(self):
        session_id = self._start()
        self.assertFalse(self.chatbot.clear_session(session_id, user_id=OTHER_USER_ID)["success"])
        self.assertTrue(self.chatbot.clear_session(session_id, user_id=USER_ID)["success"])
        self.assertIsNone(self.contexts.get_session(session_id))
        self.assertFalse(self.chatbot.clear_session(session_id, user_id=USER_ID)["success"])

    def test_user_sessions(self):
        self._start()
        self.stack.clock.advance(10)
        self._start()
        self._start(OTHER_USER_ID)
        result = self.chatbot.get_user_sessions(USER_ID)
        self.assertTrue(result["success"])
        self.assertEqual(len(result["data"]), 2)
        self.assertEqual(result["data"][0]["title"], "xem giỏ hàng")


class SuggestionTests(unittest.TestCase):
    def test_cart_view_state(self):
        self.assertEqual(get_suggestions({"conversation_state": "cart_view"}), CART_VIEW_SUGGESTIONS)

    def test_intent_wins_over_state(self):
        context = {"current_intent": "order_tracking", "conversation_state": "awaiting_product_selection"}
        self.assertEqual(get_suggestions(context), ORDER_TRACKING_SUGGESTIONS)

    def test_product_search(self):
        self.assertEqual(get_suggestions({"current_intent": "product_search"}), PRODUCT_SEARCH_SUGGESTIONS)
        self.assertEqual(get_suggestions({"conversation_state": "awaiting_product_selection"}), PRODUCT_SEARCH_SUGGESTIONS)

    def test_default(self):
        self.assertEqual(get_suggestions(None), DEFAULT_SUGGESTIONS)
        self.assertEqual(get_suggestions({"conversation_state": "discovery"}), DEFAULT_SUGGESTIONS)
        self.assertEqual(len(DEFAULT_SUGGESTIONS), 4)


class PipelineRunnerTests(unittest.TestCase):
    def test_steps_run_in_order_with_skips(self):
        calls = []
        runner = PipelineRunner(
            [
                PipelineStep("a", lambda ctx: calls.append("a")),
                PipelineStep("b", lambda ctx: calls.append("b"), skip_if=lambda ctx: True),
                PipelineStep("c", lambda ctx: calls.append("c"), skip_if=lambda ctx: True, always_run=True),
            ]
        )
        context = {}
        self.assertIs(runner.run(context), context)
        self.assertEqual(calls, ["a", "c"])
        self.assertEqual(runner.step_names, ["a", "b", "c"])

    def test_step_errors_propagate(self):
        def boom(ctx):
            raise ValueError("bad step")

        with self.assertRaises(ValueError):
            PipelineRunner([PipelineStep("boom", boom)]).run({})

    def test_chatbot_step_order(self):
        steps = build_stack().chatbot._pipeline.step_names
        self.assertEqual(
            steps,
            [
                "resolve_session",
                "load_history",
                "record_user_message",
                "classify",
                "dispatch",
                "update_context",
                "compose_reply",
                "record_reply",
            ],
        )


if __name__ == "__main__":
    unittest.main()
