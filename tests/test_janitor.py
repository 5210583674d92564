import unittest
from unittest import mock

from commerce_chat.context_manager import ContextManager
from commerce_chat.janitor import SessionJanitor
from commerce_chat.session_store import SessionStore

from .support import FakeClock


class SessionJanitorTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.contexts = ContextManager(SessionStore(None, ttl_sec=60, clock=self.clock))

    def test_sweep_removes_expired_sessions(self):
        self.contexts.get_or_create_session("u1")
        self.clock.advance(61)
        self.assertEqual(SessionJanitor(self.contexts, 10).sweep(), 1)

    def test_sweep_errors_are_logged_not_raised(self):
        janitor = SessionJanitor(self.contexts, 10)
        with mock.patch.object(self.contexts, "cleanup_expired_sessions", side_effect=OSError("read-only")):
            with self.assertLogs("commerce_chat.janitor", level="ERROR"):
                self.assertEqual(janitor.sweep(), 0)

    def test_zero_interval_disables(self):
        janitor = SessionJanitor(self.contexts, 0)
        janitor.start()
        self.assertFalse(janitor.running)
        janitor.stop()

    def test_start_and_stop(self):
        janitor = SessionJanitor(self.contexts, 3600)
        janitor.start()
        self.assertTrue(janitor.running)
        janitor.stop()
        self.assertFalse(janitor.running)


if __name__ == "__main__":
    unittest.main()
