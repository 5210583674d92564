import unittest
from types import SimpleNamespace
from unittest import mock

from commerce_chat.errors import ClassificationServiceError
from commerce_chat.function_catalog import get_declaration
from commerce_chat.gemini_client import (
    GeminiClient,
    _extract_turn,
    _normalize_model_name,
    _response_text,
    to_tool_declaration,
)

from .support import make_settings


def function_part(name, args):
    return SimpleNamespace(function_call=SimpleNamespace(name=name, args=args))


def text_part(text):
    return SimpleNamespace(text=text, function_call=None)


def response_with(parts, text=""):
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))], text=text)


class BlockedResponse:
    candidates = []

    @property
    def text(self):
        raise ValueError("no text part")


class ExtractTurnTests(unittest.TestCase):
    def test_function_call_args_become_plain_values(self):
        args = {
            "maxPrice": 20000000.0,
            "productIds": ("p001", "p002"),
            "filters": {"colors": ("Đen", "Trắng"), "rating": 4.5},
        }
        turn = _extract_turn(response_with([function_part("search_products", args)]))
        self.assertTrue(turn.is_function_call)
        self.assertEqual(turn.function_name, "search_products")
        self.assertEqual(
            turn.arguments,
            {"maxPrice": 20000000.0, "productIds": ["p001", "p002"], "filters": {"colors": ["Đen", "Trắng"], "rating": 4.5}},
        )
        self.assertIsInstance(turn.arguments["filters"], dict)

    def test_function_call_wins_over_text_part(self):
        response = response_with(
            [text_part("Để mình tìm nhé"), function_part("view_cart", {})],
            text="Để mình tìm nhé",
        )
        turn = _extract_turn(response)
        self.assertEqual(turn.function_name, "view_cart")
        self.assertEqual(turn.arguments, {})

    def test_text_reply_is_stripped(self):
        turn = _extract_turn(response_with([text_part("  Chào bạn!  ")], text="  Chào bạn!  "))
        self.assertFalse(turn.is_function_call)
        self.assertEqual(turn.text, "Chào bạn!")

    def test_blocked_response_has_empty_text(self):
        self.assertEqual(_response_text(BlockedResponse()), "")
        self.assertEqual(_extract_turn(BlockedResponse()).text, "")


class ToolDeclarationTests(unittest.TestCase):
    def test_parameterless_function_has_no_schema(self):
        self.assertEqual(set(to_tool_declaration(get_declaration("browse_categories"))), {"name", "description"})

    def test_schema_types_are_upper_cased_without_touching_the_catalog(self):
        declaration = get_declaration("compare_products")
        converted = to_tool_declaration(declaration)
        parameters = converted["parameters"]
        self.assertEqual(parameters["type"], "OBJECT")
        self.assertEqual(parameters["properties"]["productIds"]["type"], "ARRAY")
        self.assertEqual(parameters["properties"]["productIds"]["items"]["type"], "STRING")
        self.assertEqual(parameters["required"], ["productIds"])
        self.assertEqual(declaration["parameters"]["type"], "object")

    def test_model_name_normalization(self):
        self.assertEqual(_normalize_model_name(" models/gemini-2.5-pro "), "gemini-2.5-pro")
        self.assertEqual(_normalize_model_name(None), "")


class GeminiClientTests(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch("commerce_chat.gemini_client.genai")
        self.genai = patcher.start()
        self.addCleanup(patcher.stop)
        self.chat = self.genai.GenerativeModel.return_value.start_chat.return_value
        self.client = GeminiClient(make_settings(gemini_api_key="test-key", gemini_model="models/gemini-2.5-pro"))

    def test_missing_key_is_rejected(self):
        with self.assertRaises(ValueError):
            GeminiClient(make_settings())

    def test_tool_call_sends_declarations_and_timeout(self):
        self.chat.send_message.return_value = response_with([function_part("view_cart", {})])
        history = [{"role": "user", "parts": [{"text": "xin chào"}]}]
        turn = self.client.chat_with_tools(
            history, "xem giỏ hàng", [get_declaration("view_cart")], system_instruction="sys"
        )
        self.assertEqual(turn.function_name, "view_cart")
        self.genai.configure.assert_called_once_with(api_key="test-key")
        _, kwargs = self.genai.GenerativeModel.call_args
        self.assertEqual(self.genai.GenerativeModel.call_args[0][0], "gemini-2.5-pro")
        self.assertEqual(kwargs["system_instruction"], "sys")
        self.assertEqual(kwargs["tools"][0]["function_declarations"][0]["name"], "view_cart")
        self.genai.GenerativeModel.return_value.start_chat.assert_called_with(history=history)
        _, send_kwargs = self.chat.send_message.call_args
        self.assertEqual(send_kwargs["request_options"], {"timeout": 30})
        self.assertEqual(send_kwargs["generation_config"], {"temperature": 0.7, "max_output_tokens": 1000})

    def test_models_are_cached_per_tool_set(self):
        self.chat.send_message.return_value = response_with([], text="ok")
        declarations = [get_declaration("view_cart")]
        self.client.chat_with_tools([], "a", declarations, system_instruction="sys")
        self.client.chat_with_tools([], "b", declarations, system_instruction="sys")
        self.assertEqual(self.genai.GenerativeModel.call_count, 1)
        self.client.chat_text([], "c")
        self.assertEqual(self.genai.GenerativeModel.call_count, 2)

    def test_sdk_failures_become_service_errors(self):
        self.chat.send_message.side_effect = RuntimeError("deadline exceeded")
        with self.assertRaises(ClassificationServiceError):
            self.client.chat_with_tools([], "xin chào", [get_declaration("view_cart")])
        with self.assertRaises(ClassificationServiceError):
            self.client.chat_text([], "xin chào")

    def test_chat_text_returns_stripped_text(self):
        self.chat.send_message.return_value = SimpleNamespace(text=" Đơn hàng đã được tạo! ")
        self.assertEqual(self.client.chat_text([], "prompt"), "Đơn hàng đã được tạo!")


if __name__ == "__main__":
    unittest.main()
