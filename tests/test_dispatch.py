import unittest
from unittest import mock

from commerce_chat.argument_validation import validate_arguments
from commerce_chat.errors import ClassificationServiceError, UnknownFunction
from commerce_chat.function_catalog import CATALOG, FUNCTION_DECLARATIONS, function_names, get_declaration
from commerce_chat.function_map import PAYMENT_FUNCTIONS, create_function_map, lookup
from commerce_chat.intent_classifier import DEFAULT_DONE_MESSAGE, to_model_history, trim_to_user_first

from .support import PENDING_ORDER_ID, SYNTHESIZED_REPLY, USER_ID, build_stack, make_settings


class CatalogTests(unittest.TestCase):
    def test_names_are_unique_and_complete(self):
        names = function_names()
        self.assertEqual(len(names), 52)
        self.assertEqual(len(set(names)), len(names))
        self.assertEqual(set(CATALOG), set(names))

    def test_declarations_are_well_formed(self):
        for entry in FUNCTION_DECLARATIONS:
            parameters = entry["parameters"]
            self.assertEqual(parameters["type"], "object")
            for required in parameters.get("required", []):
                self.assertIn(required, parameters["properties"], entry["name"])

    def test_unknown_declaration(self):
        self.assertIsNone(get_declaration("launch_rocket"))


class ArgumentValidationTests(unittest.TestCase):
    def test_numbers_are_coerced_from_strings(self):
        outcome = validate_arguments(get_declaration("add_to_cart"), {"productId": "p001", "quantity": "2"})
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.arguments, {"productId": "p001", "quantity": 2})

    def test_wrong_type_is_a_problem(self):
        outcome = validate_arguments(get_declaration("add_to_cart"), {"productId": {"id": "p001"}})
        self.assertFalse(outcome.ok)
        self.assertIn("chưa hợp lệ", outcome.message)

    def test_undeclared_arguments_are_dropped(self):
        outcome = validate_arguments(get_declaration("view_cart"), {"userId": "someone-else"})
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.arguments, {})

    def test_single_string_becomes_list(self):
        outcome = validate_arguments(get_declaration("compare_products"), {"productIds": "p001"})
        self.assertEqual(outcome.arguments["productIds"], ["p001"])

    def test_missing_required_only_fails_when_strict(self):
        declaration = get_declaration("validate_voucher")
        self.assertTrue(validate_arguments(declaration, {}).ok)
        strict = validate_arguments(declaration, {}, strict=True)
        self.assertFalse(strict.ok)
        self.assertTrue(strict.message.startswith("Bạn vui lòng cho biết"))

    def test_context_fallback_functions_skip_strict_required(self):
        self.assertTrue(validate_arguments(get_declaration("add_to_cart"), {}, strict=True).ok)


class FunctionMapTests(unittest.TestCase):
    def setUp(self):
        self.stack = build_stack()

    def test_every_catalog_name_is_bound(self):
        function_map = create_function_map(self.stack.handlers, USER_ID)
        self.assertEqual(set(function_map), set(function_names()))

    def test_identity_is_injected_and_overrides_arguments(self):
        handler = mock.Mock(return_value={"success": True, "message": "ok"})
        with mock.patch.object(self.stack.handlers, "view_cart", handler, create=True):
            function_map = create_function_map(self.stack.handlers, USER_ID, session_id="s1", ip_address="10.0.0.1")
            function_map["view_cart"]({"userId": "intruder", "ipAddress": "6.6.6.6"})
        handler.assert_called_once_with(user_id=USER_ID, session_id="s1")

    def test_only_payment_link_receives_ip(self):
        self.assertEqual(PAYMENT_FUNCTIONS, frozenset({"create_payment_link"}))
        handler = mock.Mock(return_value={"success": True, "message": "ok"})
        with mock.patch.object(self.stack.handlers, "create_payment_link", handler, create=True):
            function_map = create_function_map(self.stack.handlers, USER_ID, session_id="s1")
            function_map["create_payment_link"]({"orderId": PENDING_ORDER_ID})
        handler.assert_called_once_with(order_id=PENDING_ORDER_ID, user_id=USER_ID, session_id="s1", ip_address="127.0.0.1")

    def test_lookup_unknown_raises(self):
        with self.assertRaises(UnknownFunction):
            lookup({}, "launch_rocket")


class HistoryShapingTests(unittest.TestCase):
    def test_leading_assistant_turns_are_dropped(self):
        history = [
            {"role": "assistant", "content": "Xin chào!"},
            {"role": "user", "content": "Tìm áo"},
            {"role": "assistant", "content": "Đây là áo"},
        ]
        self.assertEqual([m["role"] for m in trim_to_user_first(history)], ["user", "assistant"])
        self.assertEqual(
            to_model_history(history),
            [
                {"role": "user", "parts": [{"text": "Tìm áo"}]},
                {"role": "model", "parts": [{"text": "Đây là áo"}]},
            ],
        )

    def test_all_assistant_history_is_empty(self):
        self.assertEqual(to_model_history([{"role": "assistant", "content": "hi"}]), [])


class IntentClassifierTests(unittest.TestCase):
    def setUp(self):
        self.stack = build_stack()
        self.classifier = self.stack.classifier
        self.model = self.stack.model

    def test_classify_function_call_keeps_arguments(self):
        self.model.queue_call("search_products", query="iphone", maxPrice=20000000)
        result = self.classifier.classify("tìm iphone dưới 20 triệu", [], USER_ID)
        self.assertTrue(result.is_function_call)
        self.assertEqual(result.function_name, "search_products")
        self.assertEqual(result.arguments, {"query": "iphone", "maxPrice": 20000000})
        call = self.model.tool_calls[0]
        self.assertEqual(len(call["declarations"]), 52)
        self.assertTrue(call["system_instruction"])
        self.assertEqual(call["temperature"], 0.7)
        self.assertEqual(call["max_output_tokens"], 1000)

    def test_classify_text(self):
        self.model.queue_text("Chào bạn!")
        result = self.classifier.classify("hi", [{"role": "assistant", "content": "x"}], USER_ID)
        self.assertEqual(result.type, "text")
        self.assertEqual(result.content, "Chào bạn!")
        self.assertEqual(self.model.tool_calls[0]["history"], [])

    def test_classify_propagates_service_errors(self):
        self.model.queue_error(ClassificationServiceError("timeout"))
        with self.assertRaises(ClassificationServiceError):
            self.classifier.classify("hi", [], USER_ID)

    def test_unknown_function(self):
        result = self.classifier.execute_function("launch_rocket", {}, USER_ID)
        self.assertEqual(result, {"success": False, "message": "Function launch_rocket không tồn tại"})

    def test_raising_handler_becomes_failure(self):
        with mock.patch.object(self.stack.handlers, "view_cart", side_effect=RuntimeError("boom"), create=True):
            result = self.classifier.execute_function("view_cart", {}, USER_ID)
        self.assertFalse(result["success"])
        self.assertTrue(result["message"].startswith("Lỗi khi thực hiện: "))
        self.assertIn("boom", result["message"])

    def test_invalid_arguments_stop_before_handler(self):
        handler = mock.Mock()
        with mock.patch.object(self.stack.handlers, "add_to_cart", handler, create=True):
            result = self.classifier.execute_function("add_to_cart", {"quantity": "nhiều"}, USER_ID)
        handler.assert_not_called()
        self.assertFalse(result["success"])

    def test_strict_mode_rejects_missing_required(self):
        stack = build_stack(settings=make_settings(strict_arguments=True))
        result = stack.classifier.execute_function("validate_voucher", {}, USER_ID)
        self.assertFalse(result["success"])
        self.assertIn("Bạn vui lòng cho biết", result["message"])

    def test_generate_response_uses_model_text(self):
        reply = self.classifier.generate_response("giỏ hàng", {"success": True, "message": "Giỏ trống", "data": {}}, [])
        self.assertEqual(reply, SYNTHESIZED_REPLY)
        prompt = self.model.text_calls[0]["message"]
        self.assertIn("giỏ hàng", prompt)
        self.assertIn('"message": "Giỏ trống"', prompt)

    def test_short_synthesis_falls_back_to_handler_message(self):
        self.model.texts.append("ok")
        reply = self.classifier.generate_response("x", {"success": True, "message": "Đã thêm vào giỏ!"}, [])
        self.assertEqual(reply, "Đã thêm vào giỏ!")

    def test_synthesis_error_falls_back_to_default(self):
        self.model.texts.append(ClassificationServiceError("down"))
        reply = self.classifier.generate_response("x", {"success": True}, [])
        self.assertEqual(reply, DEFAULT_DONE_MESSAGE)


if __name__ == "__main__":
    unittest.main()
