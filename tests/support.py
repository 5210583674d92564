from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Union

from commerce_chat.chatbot_service import ChatbotService
from commerce_chat.config import BASE_DIR, Settings
from commerce_chat.context_manager import ContextManager
from commerce_chat.gemini_client import ModelTurn
from commerce_chat.handlers import IntentHandlers
from commerce_chat.intent_classifier import IntentClassifier
from commerce_chat.memory_services import build_memory_services
from commerce_chat.session_store import SessionStore

SEED_PATH = (Path(__file__).resolve().parent.parent / "resources" / "store_seed.json").resolve()
START_TIME = 1_700_000_000.0

# Seed data referenced by the tests.
USER_ID = "u1001"
OTHER_USER_ID = "u1002"
PENDING_ORDER_ID = "65f0a1b2c3d4e5f6a7b8c902"
COMPLETED_ORDER_ID = "65f0a1b2c3d4e5f6a7b8c901"
FOREIGN_ORDER_ID = "65f0a1b2c3d4e5f6a7b8c903"
SYNTHESIZED_REPLY = "Mình đã xử lý xong yêu cầu của bạn rồi nhé!"


class FakeClock:
    def __init__(self, start: float = START_TIME) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class ScriptedModel:
    """Model client that replays queued turns and records every call."""

    def __init__(self) -> None:
        self.turns: List[Union[ModelTurn, Exception]] = []
        self.texts: List[Union[str, Exception]] = []
        self.tool_calls: List[Dict[str, Any]] = []
        self.text_calls: List[Dict[str, Any]] = []

    def queue_call(self, name: str, **arguments: Any) -> "ScriptedModel":
        self.turns.append(ModelTurn(function_name=name, arguments=arguments))
        return self

    def queue_text(self, text: str) -> "ScriptedModel":
        self.turns.append(ModelTurn(text=text))
        return self

    def queue_error(self, exc: Exception) -> "ScriptedModel":
        self.turns.append(exc)
        return self

    def chat_with_tools(
        self,
        history: List[Dict[str, Any]],
        message: str,
        declarations: List[Dict[str, Any]],
        system_instruction: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 1000,
    ) -> ModelTurn:
        self.tool_calls.append(
            {
                "history": history,
                "message": message,
                "declarations": declarations,
                "system_instruction": system_instruction,
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
            }
        )
        if not self.turns:
            return ModelTurn(text="")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn

    def chat_text(
        self,
        history: List[Dict[str, Any]],
        message: str,
        temperature: float = 0.8,
        max_output_tokens: int = 500,
    ) -> str:
        self.text_calls.append({"history": history, "message": message, "temperature": temperature})
        if not self.texts:
            return SYNTHESIZED_REPLY
        text = self.texts.pop(0)
        if isinstance(text, Exception):
            raise text
        return text


def make_settings(data_dir: Optional[Path] = None, **overrides: Any) -> Settings:
    settings = Settings(
        gemini_api_key="",
        gemini_model="gemini-2.5-pro",
        classify_temperature=0.7,
        classify_max_tokens=1000,
        response_temperature=0.8,
        response_max_tokens=500,
        model_timeout_sec=30,
        session_ttl_hours=24,
        history_limit=10,
        cleanup_interval_sec=0,
        data_dir=data_dir or Path("/nonexistent-commerce-chat-data"),
        store_seed_path=SEED_PATH,
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        strict_arguments=False,
    )
    return replace(settings, **overrides) if overrides else settings


def build_stack(
    clock: Optional[FakeClock] = None,
    settings: Optional[Settings] = None,
    seed: bool = True,
) -> SimpleNamespace:
    """Wire an isolated in-memory assistant: no disk, no network."""
    clock = clock or FakeClock()
    settings = settings or make_settings()
    model = ScriptedModel()
    store = SessionStore(None, ttl_sec=settings.session_ttl_sec, clock=clock)
    contexts = ContextManager(store)
    services = build_memory_services(SEED_PATH if seed else None, clock=clock)
    handlers = IntentHandlers(services, contexts, clock=clock)
    classifier = IntentClassifier(model, handlers, settings)
    chatbot = ChatbotService(contexts, classifier, history_limit=settings.history_limit)
    return SimpleNamespace(
        clock=clock,
        settings=settings,
        model=model,
        store=store,
        contexts=contexts,
        services=services,
        handlers=handlers,
        classifier=classifier,
        chatbot=chatbot,
    )
