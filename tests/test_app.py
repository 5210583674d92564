import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from commerce_chat.app import create_app

from .support import FakeClock, ScriptedModel, USER_ID, make_settings


class AppRouteTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.settings = make_settings(Path(self._tmp.name))
        self.model = ScriptedModel()
        self.app = create_app(self.settings, model=self.model, clock=FakeClock())
        self.client = TestClient(self.app)
        self.headers = {"X-User-Id": USER_ID}

    def test_message_requires_user_header(self):
        response = self.client.post("/api/chatbot/message", json={"message": "xin chào"})
        self.assertEqual(response.status_code, 401)

    def test_message_validation(self):
        response = self.client.post("/api/chatbot/message", json={"message": ""}, headers=self.headers)
        self.assertEqual(response.status_code, 422)
        response = self.client.post("/api/chatbot/message", json={"message": "a" * 1001}, headers=self.headers)
        self.assertEqual(response.status_code, 422)

    def test_message_round_trip_and_session_routes(self):
        self.model.queue_call("view_cart")
        response = self.client.post("/api/chatbot/message", json={"message": "xem giỏ hàng"}, headers=self.headers)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["metadata"], {"intent": "view_cart", "function_called": True})
        session_id = body["session_id"]
        self.assertTrue((Path(self._tmp.name) / "sessions.json").exists())

        history = self.client.get(f"/api/chatbot/session/{session_id}", headers=self.headers)
        self.assertEqual(history.status_code, 200)
        self.assertEqual(len(history.json()["data"]["messages"]), 2)

        suggestions = self.client.get("/api/chatbot/suggestions", params={"session_id": session_id}, headers=self.headers)
        self.assertEqual(suggestions.json()["data"][0], "Thanh toán ngay")

        sessions = self.client.get("/api/chatbot/sessions", headers=self.headers)
        self.assertEqual([s["session_id"] for s in sessions.json()["data"]], [session_id])

        foreign = self.client.get(f"/api/chatbot/session/{session_id}", headers={"X-User-Id": "someone"})
        self.assertEqual(foreign.status_code, 404)

        cleared = self.client.delete(f"/api/chatbot/session/{session_id}", headers=self.headers)
        self.assertEqual(cleared.status_code, 200)
        self.assertTrue(cleared.json()["success"])
        gone = self.client.get(f"/api/chatbot/session/{session_id}", headers=self.headers)
        self.assertEqual(gone.status_code, 404)

    def test_default_suggestions_without_session(self):
        response = self.client.get("/api/chatbot/suggestions", headers=self.headers)
        self.assertEqual(len(response.json()["data"]), 4)

    def test_orchestrator_failure_is_500_with_apology(self):
        self.model.queue_error(RuntimeError("model offline"))
        response = self.client.post("/api/chatbot/message", json={"message": "xin chào"}, headers=self.headers)
        self.assertEqual(response.status_code, 500)
        self.assertFalse(response.json()["success"])
        self.assertEqual(response.json()["error"], "model offline")

    def test_missing_api_key_without_injected_model(self):
        with self.assertRaises(ValueError):
            create_app(self.settings)

    def test_lifecycle_starts_and_stops_janitor(self):
        app = create_app(make_settings(Path(self._tmp.name), cleanup_interval_sec=3600), model=self.model)
        with TestClient(app):
            self.assertTrue(app.state.janitor.running)
        self.assertFalse(app.state.janitor.running)


if __name__ == "__main__":
    unittest.main()
