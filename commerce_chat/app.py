from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response

from .chatbot_service import ChatbotService
from .config import Settings, load_settings
from .context_manager import ContextManager
from .gemini_client import GeminiClient
from .handlers import IntentHandlers
from .intent_classifier import IntentClassifier, ModelClient
from .janitor import SessionJanitor
from .memory_services import build_memory_services
from .models import ChatRequest, ChatResponse
from .services import CommerceServices
from .session_store import SessionStore

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("commerce_chat").setLevel(log_level)
logger = logging.getLogger("commerce_chat.app")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

LOGIN_REQUIRED_MESSAGE = "Vui lòng đăng nhập để sử dụng trợ lý mua sắm."


def create_app(
    settings: Optional[Settings] = None,
    model: Optional[ModelClient] = None,
    services: Optional[CommerceServices] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Purpose: Build the FastAPI app with every collaborator wired together.
    Inputs/Outputs: Inputs are optional Settings, model client, services and clock;
        returns a FastAPI application.
    Side Effects / State: Creates the data directory and loads the sessions file and seed.
    Dependencies: SessionStore, ContextManager, build_memory_services, IntentHandlers,
        GeminiClient, IntentClassifier, ChatbotService, SessionJanitor.
    Failure Modes: Missing GEMINI_API_KEY raises ValueError when no model is injected.
    If Removed: The assistant has no HTTP surface.
    Testing Notes: Inject a scripted model and a tmp DATA_DIR; use TestClient.
    """
    # Everything hangs off app.state so tests can reach the collaborators.
    settings = settings or load_settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)

    store = SessionStore(settings.sessions_path, ttl_sec=settings.session_ttl_sec, clock=clock)
    contexts = ContextManager(store)
    services = services or build_memory_services(settings.store_seed_path, clock=clock)
    handlers = IntentHandlers(services, contexts, clock=clock)
    classifier = IntentClassifier(model or GeminiClient(settings), handlers, settings)
    chatbot = ChatbotService(contexts, classifier, history_limit=settings.history_limit)
    janitor = SessionJanitor(contexts, settings.cleanup_interval_sec)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        janitor.start()
        try:
            yield
        finally:
            janitor.stop()

    app = FastAPI(title="Commerce Chat Assistant", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services
    app.state.chatbot = chatbot
    app.state.janitor = janitor

    def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
        # Authentication happens upstream; the gateway forwards the user id.
        if not x_user_id or not x_user_id.strip():
            raise HTTPException(status_code=401, detail=LOGIN_REQUIRED_MESSAGE)
        return x_user_id.strip()

    @app.post("/api/chatbot/message", response_model=ChatResponse)
    def send_message(
        payload: ChatRequest,
        request: Request,
        response: Response,
        user_id: str = Depends(current_user),
    ) -> ChatResponse:
        """Purpose: Run one chat turn for the authenticated caller.
        Inputs/Outputs: Input is ChatRequest plus X-User-Id; output is ChatResponse.
        Side Effects / State: Creates/updates the session; handlers may mutate services.
        Dependencies: ChatbotService.process_message.
        Failure Modes: Orchestrator failures return success=false with HTTP 500.
        If Removed: Core chat functionality is unavailable.
        Testing Notes: Send a message with a scripted model and check metadata.intent.
        """
        # The client address feeds payment link creation only.
        ip_address = request.client.host if request.client else None
        result = chatbot.process_message(user_id, payload.message, payload.session_id, ip_address=ip_address)
        if not result.get("success"):
            response.status_code = 500
        return ChatResponse(**result)

    @app.get("/api/chatbot/session/{session_id}")
    def session_history(session_id: str, response: Response, user_id: str = Depends(current_user)) -> Dict[str, Any]:
        result = chatbot.get_session_history(session_id, user_id=user_id)
        if not result.get("success"):
            response.status_code = 500 if result.get("error") else 404
        return result

    @app.delete("/api/chatbot/session/{session_id}")
    def clear_session(session_id: str, response: Response, user_id: str = Depends(current_user)) -> Dict[str, Any]:
        result = chatbot.clear_session(session_id, user_id=user_id)
        if not result.get("success"):
            response.status_code = 500 if result.get("error") else 404
        return result

    @app.get("/api/chatbot/suggestions")
    def suggestions(session_id: Optional[str] = None, user_id: str = Depends(current_user)) -> Dict[str, Any]:
        context = chatbot.contexts.get_context(session_id) if session_id else None
        return {"success": True, "data": chatbot.get_suggestions(context)}

    @app.get("/api/chatbot/sessions")
    def user_sessions(response: Response, user_id: str = Depends(current_user)) -> Dict[str, Any]:
        result = chatbot.get_user_sessions(user_id)
        if not result.get("success"):
            response.status_code = 500
        return result

    logger.info("app ready model=%s data_dir=%s", settings.gemini_model, settings.data_dir)
    return app


def main() -> None:
    import uvicorn

    uvicorn.run(
        "commerce_chat.app:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
